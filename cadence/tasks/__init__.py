"""Scheduled assistant tasks — models, persistence, dispatch and creation."""

from cadence.tasks.creation import CreateTaskRequest, TaskCreationError, TaskCreator
from cadence.tasks.models import ScheduledTask, TaskExecution, make_task_id
from cadence.tasks.processor import TaskProcessor
from cadence.tasks.store import TaskStore

__all__ = [
    "CreateTaskRequest",
    "ScheduledTask",
    "TaskCreationError",
    "TaskCreator",
    "TaskExecution",
    "TaskProcessor",
    "TaskStore",
    "make_task_id",
]
