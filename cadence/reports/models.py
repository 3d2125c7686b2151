"""ReportDefinition data model."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from cadence.recurrence import to_iso


@dataclass
class ReportDefinition:
    """A recurring report owned by one user (or their whole team).

    Attributes:
        id: Unique identifier (UUID hex).
        user_id: Owner's user ID.
        title: Human-readable title.
        prompt: Natural-language instruction for the Generation Service.
        schedule_type: ``"scheduled"`` or ``"manual"``; only scheduled
            reports are picked up by the dispatcher.
        schedule_frequency: ``"daily"``, ``"weekly"`` or ``"monthly"``.
        schedule_time: Local time of day, ``"HH:MM"``.
        schedule_day: Weekday (0=Sunday) for weekly, day of month for monthly.
        is_team_report: Deliver to every member of the owner's team.
        created_by_user_id: Who set up a team report.
        send_email: Whether delivery also emails each recipient.
        is_active: Toggled by the user; inactive reports never run.
        next_run_at: UTC ISO timestamp of the next due run.
        last_run_at: UTC ISO timestamp of the last run that delivered.
        claimed_until: Lease held by a dispatcher while it works on the report.
    """

    id: str
    user_id: str
    title: str
    prompt: str
    schedule_type: str = "scheduled"
    schedule_frequency: str = "daily"
    schedule_time: str = "09:00"
    schedule_day: int | None = None
    is_team_report: bool = False
    created_by_user_id: str | None = None
    send_email: bool = True
    is_active: bool = True
    next_run_at: str | None = None
    last_run_at: str | None = None
    claimed_until: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = to_iso(datetime.now(UTC))

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``reports`` column order."""
        return (
            self.id,
            self.user_id,
            self.title,
            self.prompt,
            self.schedule_type,
            self.schedule_frequency,
            self.schedule_time,
            self.schedule_day,
            int(self.is_team_report),
            self.created_by_user_id,
            int(self.send_email),
            int(self.is_active),
            self.next_run_at,
            self.last_run_at,
            self.claimed_until,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> ReportDefinition:
        return cls(
            id=row[0],
            user_id=row[1],
            title=row[2],
            prompt=row[3],
            schedule_type=row[4],
            schedule_frequency=row[5],
            schedule_time=row[6],
            schedule_day=row[7],
            is_team_report=bool(row[8]),
            created_by_user_id=row[9],
            send_email=bool(row[10]),
            is_active=bool(row[11]),
            next_run_at=row[12],
            last_run_at=row[13],
            claimed_until=row[14],
            created_at=row[15],
        )


def make_report_id() -> str:
    """Generate a new report ID."""
    return uuid.uuid4().hex
