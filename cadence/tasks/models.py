"""ScheduledTask and TaskExecution data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from cadence.recurrence import ONCE, to_iso

TASK_TYPES = ("reminder", "research", "report", "check_in", "custom")
DELIVERY_METHODS = ("conversation", "notification", "both")

STATUS_ACTIVE = "active"
STATUS_PAUSED = "paused"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"

EXECUTION_RUNNING = "running"
EXECUTION_SUCCESS = "success"
EXECUTION_FAILED = "failed"


@dataclass
class ScheduledTask:
    """A user-defined task the assistant runs on a schedule.

    Attributes:
        id: Unique identifier (UUID hex).
        user_id: Owner.
        team_id: Owner's team.
        task_type: One of ``TASK_TYPES``; ``"report"`` routes output to the
            reports feed instead of the conversation.
        title: Short name shown to the user.
        ai_prompt: The user's instructions for each run.
        frequency: ``once``, ``daily``, ``weekly``, ``biweekly`` or ``monthly``.
        schedule_hour: Local hour (0-23).
        schedule_minute: Local minute (0-59).
        schedule_day: Weekday (0=Sunday) or day of month, depending on frequency.
        timezone: IANA zone the schedule is expressed in.
        next_run_at: UTC ISO timestamp of the next due run (None once finished).
        run_count: Successful dispatches so far.
        max_runs: Optional cap on run_count.
        status: ``active``, ``paused``, ``completed`` or ``expired``.
        delivery_method: ``conversation``, ``notification`` or ``both``.
    """

    id: str
    user_id: str
    team_id: str
    title: str
    ai_prompt: str
    task_type: str = "custom"
    description: str = ""
    frequency: str = ONCE
    schedule_hour: int = 9
    schedule_minute: int = 0
    schedule_day: int | None = None
    timezone: str = "America/New_York"
    next_run_at: str | None = None
    last_run_at: str | None = None
    run_count: int = 0
    max_runs: int | None = None
    status: str = STATUS_ACTIVE
    delivery_method: str = "conversation"
    metadata: dict[str, Any] = field(default_factory=dict)
    claimed_until: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = to_iso(datetime.now(UTC))

    # -- Convenience properties ------------------------------------------------

    @property
    def is_one_time(self) -> bool:
        return self.frequency == ONCE

    @property
    def is_report(self) -> bool:
        return self.task_type == "report"

    @property
    def wants_notification(self) -> bool:
        return self.delivery_method in ("notification", "both")

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``scheduled_tasks`` column order."""
        return (
            self.id,
            self.user_id,
            self.team_id,
            self.task_type,
            self.title,
            self.description,
            self.ai_prompt,
            self.frequency,
            self.schedule_hour,
            self.schedule_minute,
            self.schedule_day,
            self.timezone,
            self.next_run_at,
            self.last_run_at,
            self.run_count,
            self.max_runs,
            self.status,
            self.delivery_method,
            json.dumps(self.metadata),
            self.claimed_until,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> ScheduledTask:
        return cls(
            id=row[0],
            user_id=row[1],
            team_id=row[2],
            task_type=row[3],
            title=row[4],
            description=row[5] or "",
            ai_prompt=row[6],
            frequency=row[7],
            schedule_hour=row[8],
            schedule_minute=row[9],
            schedule_day=row[10],
            timezone=row[11],
            next_run_at=row[12],
            last_run_at=row[13],
            run_count=row[14],
            max_runs=row[15],
            status=row[16],
            delivery_method=row[17],
            metadata=json.loads(row[18] or "{}"),
            claimed_until=row[19],
            created_at=row[20],
        )


@dataclass
class TaskExecution:
    """Audit record for one dispatch attempt of a task."""

    id: str
    task_id: str
    user_id: str
    team_id: str
    status: str = EXECUTION_RUNNING
    started_at: str = ""
    completed_at: str | None = None
    result_message: str | None = None
    error: str | None = None

    @classmethod
    def from_row(cls, row: tuple) -> TaskExecution:
        return cls(
            id=row[0],
            task_id=row[1],
            user_id=row[2],
            team_id=row[3],
            status=row[4],
            started_at=row[5],
            completed_at=row[6],
            result_message=row[7],
            error=row[8],
        )


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex
