"""ReportStore — libsql persistence for report definitions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from cadence.db import BaseStore
from cadence.recurrence import to_iso
from cadence.reports.models import ReportDefinition

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS reports (
    id                 TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    title              TEXT NOT NULL,
    prompt             TEXT NOT NULL,
    schedule_type      TEXT NOT NULL DEFAULT 'scheduled',
    schedule_frequency TEXT NOT NULL,
    schedule_time      TEXT NOT NULL,
    schedule_day       INTEGER,
    is_team_report     INTEGER NOT NULL DEFAULT 0,
    created_by_user_id TEXT,
    send_email         INTEGER NOT NULL DEFAULT 1,
    is_active          INTEGER NOT NULL DEFAULT 1,
    next_run_at        TEXT,
    last_run_at        TEXT,
    claimed_until      TEXT,
    created_at         TEXT NOT NULL
)
"""

_CREATE_DUE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_reports_due ON reports (is_active, schedule_type, next_run_at)
"""


class ReportStore(BaseStore):
    """Persists report definitions in SQLite / Turso."""

    _SCHEMA = (_CREATE_TABLE, _CREATE_DUE_INDEX)

    async def add_report(self, report: ReportDefinition) -> ReportDefinition:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO reports
                    (id, user_id, title, prompt, schedule_type, schedule_frequency,
                     schedule_time, schedule_day, is_team_report, created_by_user_id,
                     send_email, is_active, next_run_at, last_run_at, claimed_until,
                     created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                report.to_row(),
            )
            await db.commit()
            logger.info("Added report: %s (%s)", report.title, report.id)
            return report
        finally:
            await db.close()

    async def get_report(self, report_id: str) -> ReportDefinition | None:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT * FROM reports WHERE id = ?", (report_id,))
            row = await cursor.fetchone()
            return ReportDefinition.from_row(row) if row else None
        finally:
            await db.close()

    async def list_due(self, cutoff: str, now: str) -> list[ReportDefinition]:
        """Active scheduled reports due by *cutoff*, oldest first.

        Reports with a live claim (held by another run) are left out.
        """
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM reports
                WHERE is_active = 1
                  AND schedule_type = 'scheduled'
                  AND next_run_at IS NOT NULL
                  AND next_run_at <= ?
                  AND (claimed_until IS NULL OR claimed_until <= ?)
                ORDER BY next_run_at ASC
                """,
                (cutoff, now),
            )
            rows = await cursor.fetchall()
            return [ReportDefinition.from_row(row) for row in rows]
        finally:
            await db.close()

    async def claim(self, report_id: str, now: datetime, lease_seconds: int) -> bool:
        """Take a lease on a report. Returns False if another run holds it."""
        now_iso = to_iso(now)
        until = to_iso(now + timedelta(seconds=lease_seconds))
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE reports SET claimed_until = ?
                WHERE id = ? AND (claimed_until IS NULL OR claimed_until <= ?)
                """,
                (until, report_id, now_iso),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def release(self, report_id: str) -> None:
        await self._update(report_id, "claimed_until", None)

    async def update_next_run(self, report_id: str, timestamp: str | None) -> None:
        """Set or clear the next_run_at timestamp."""
        await self._update(report_id, "next_run_at", timestamp)

    async def update_last_run(self, report_id: str, timestamp: str) -> None:
        await self._update(report_id, "last_run_at", timestamp)

    async def _update(self, report_id: str, column: str, value: str | None) -> None:
        db = await self._connect()
        try:
            await db.execute(
                f"UPDATE reports SET {column} = ? WHERE id = ?",  # noqa: S608
                (value, report_id),
            )
            await db.commit()
        finally:
            await db.close()
