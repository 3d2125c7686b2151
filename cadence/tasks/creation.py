"""Task creation — validates a request and stores a task with its first run."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, field_validator

from cadence.config import settings
from cadence.recurrence import first_task_run, to_iso
from cadence.tasks.models import STATUS_ACTIVE, ScheduledTask, make_task_id

if TYPE_CHECKING:
    from cadence.directory.store import DirectoryStore
    from cadence.tasks.store import TaskStore

logger = logging.getLogger(__name__)


class TaskCreationError(Exception):
    """The task could not be created (e.g. the user has no team)."""


class CreateTaskRequest(BaseModel):
    title: str = Field(min_length=1, description="Short name shown to the user")
    ai_prompt: str = Field(min_length=1, description="Instructions for each run")
    description: str = Field(default="", description="Optional longer description")
    task_type: Literal["reminder", "research", "report", "check_in", "custom"] = "custom"
    frequency: Literal["once", "daily", "weekly", "biweekly", "monthly"] = "once"
    schedule_hour: int = Field(ge=0, le=23, description="Local hour the task runs at")
    schedule_minute: int = Field(default=0, ge=0, le=59)
    schedule_day: int | None = Field(
        default=None,
        ge=0,
        le=31,
        description="Weekday (0=Sunday) for weekly/biweekly, day of month for monthly",
    )
    timezone: str | None = Field(default=None, description="IANA timezone name")
    delivery_method: Literal["conversation", "notification", "both"] = "conversation"
    max_runs: int | None = Field(default=None, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", "ai_prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value


def features_used(task_type: str, delivery_method: str) -> list[str]:
    """Product features a task touches, recorded in its metadata."""
    features = ["Team Data Search", "Reports View" if task_type == "report" else "Agent Chat"]
    if delivery_method in ("notification", "both"):
        features.append("Notifications")
    return features


class TaskCreator:
    """Creates scheduled tasks on behalf of a user.

    Args:
        store: TaskStore the task is written to.
        directory: DirectoryStore used to resolve the user's team.
        default_timezone: Zone for requests that don't name one.
    """

    def __init__(
        self,
        store: TaskStore,
        directory: DirectoryStore,
        default_timezone: str | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._default_timezone = default_timezone or settings.default_task_timezone

    async def create(
        self, user_id: str, request: CreateTaskRequest, *, now: datetime | None = None
    ) -> ScheduledTask:
        """Store a new active task whose first run is strictly after *now*."""
        now = now or datetime.now(UTC)
        team_id = await self._resolve_team(user_id)
        if not team_id:
            msg = "No team found"
            raise TaskCreationError(msg)

        timezone = request.timezone or self._default_timezone
        next_run = first_task_run(
            request.frequency,
            request.schedule_hour,
            request.schedule_minute,
            request.schedule_day,
            timezone,
            now,
            default_timezone=self._default_timezone,
        )
        task = ScheduledTask(
            id=make_task_id(),
            user_id=user_id,
            team_id=team_id,
            task_type=request.task_type,
            title=request.title,
            description=request.description,
            ai_prompt=request.ai_prompt,
            frequency=request.frequency,
            schedule_hour=request.schedule_hour,
            schedule_minute=request.schedule_minute,
            schedule_day=request.schedule_day,
            timezone=timezone,
            next_run_at=to_iso(next_run),
            max_runs=request.max_runs,
            status=STATUS_ACTIVE,
            delivery_method=request.delivery_method,
            metadata={
                **request.metadata,
                "features_used": features_used(request.task_type, request.delivery_method),
            },
            created_at=to_iso(now),
        )
        await self._store.add_task(task)
        logger.info(
            "Created %s task '%s' for user %s, first run %s",
            task.frequency,
            task.title,
            user_id,
            task.next_run_at,
        )
        return task

    async def _resolve_team(self, user_id: str) -> str | None:
        record = await self._directory.get_user(user_id)
        if record and record.get("team_id"):
            return record["team_id"]
        account = await self._directory.get_account(user_id)
        if account:
            return account["metadata"].get("team_id")
        return None
