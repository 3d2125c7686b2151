"""TaskStore — libsql persistence for scheduled tasks and their executions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from cadence.db import BaseStore
from cadence.recurrence import to_iso
from cadence.tasks.models import (
    EXECUTION_RUNNING,
    STATUS_ACTIVE,
    ScheduledTask,
    TaskExecution,
)

logger = logging.getLogger(__name__)

_CREATE_TASKS = """
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    team_id         TEXT NOT NULL,
    task_type       TEXT NOT NULL,
    title           TEXT NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    ai_prompt       TEXT NOT NULL,
    frequency       TEXT NOT NULL,
    schedule_hour   INTEGER NOT NULL,
    schedule_minute INTEGER NOT NULL DEFAULT 0,
    schedule_day    INTEGER,
    timezone        TEXT NOT NULL,
    next_run_at     TEXT,
    last_run_at     TEXT,
    run_count       INTEGER NOT NULL DEFAULT 0,
    max_runs        INTEGER,
    status          TEXT NOT NULL DEFAULT 'active',
    delivery_method TEXT NOT NULL DEFAULT 'conversation',
    metadata        TEXT NOT NULL DEFAULT '{}',
    claimed_until   TEXT,
    created_at      TEXT NOT NULL
)
"""

_CREATE_EXECUTIONS = """
CREATE TABLE IF NOT EXISTS task_executions (
    id             TEXT PRIMARY KEY,
    task_id        TEXT NOT NULL,
    user_id        TEXT NOT NULL,
    team_id        TEXT NOT NULL,
    status         TEXT NOT NULL,
    started_at     TEXT NOT NULL,
    completed_at   TEXT,
    result_message TEXT,
    error          TEXT
)
"""

_CREATE_DUE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_scheduled_tasks_due ON scheduled_tasks (status, next_run_at)
"""


class TaskStore(BaseStore):
    """Persists scheduled tasks and the execution audit trail in SQLite / Turso."""

    _SCHEMA = (_CREATE_TASKS, _CREATE_EXECUTIONS, _CREATE_DUE_INDEX)

    # -- Tasks -----------------------------------------------------------------

    async def add_task(self, task: ScheduledTask) -> ScheduledTask:
        """Insert a new task. Returns the same task object."""
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO scheduled_tasks
                    (id, user_id, team_id, task_type, title, description, ai_prompt,
                     frequency, schedule_hour, schedule_minute, schedule_day, timezone,
                     next_run_at, last_run_at, run_count, max_runs, status,
                     delivery_method, metadata, claimed_until, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                task.to_row(),
            )
            await db.commit()
            logger.info("Added scheduled task: %s (%s)", task.title, task.id)
            return task
        finally:
            await db.close()

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        """Fetch a task by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM scheduled_tasks WHERE id = ?", (task_id,)
            )
            row = await cursor.fetchone()
            return ScheduledTask.from_row(row) if row else None
        finally:
            await db.close()

    async def list_due(self, cutoff: str, now: str) -> list[ScheduledTask]:
        """Active, unclaimed tasks due by *cutoff*, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE status = ?
                  AND next_run_at IS NOT NULL
                  AND next_run_at <= ?
                  AND (claimed_until IS NULL OR claimed_until <= ?)
                ORDER BY next_run_at ASC
                """,
                (STATUS_ACTIVE, cutoff, now),
            )
            rows = await cursor.fetchall()
            return [ScheduledTask.from_row(row) for row in rows]
        finally:
            await db.close()

    async def claim(self, task_id: str, now: datetime, lease_seconds: int) -> bool:
        """Take a lease on a task. Returns False if another run holds it."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE scheduled_tasks SET claimed_until = ?
                WHERE id = ? AND (claimed_until IS NULL OR claimed_until <= ?)
                """,
                (to_iso(now + timedelta(seconds=lease_seconds)), task_id, to_iso(now)),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def release(self, task_id: str) -> None:
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE scheduled_tasks SET claimed_until = NULL WHERE id = ?", (task_id,)
            )
            await db.commit()
        finally:
            await db.close()

    async def record_run(
        self,
        task_id: str,
        *,
        run_count: int,
        last_run_at: str,
        next_run_at: str | None,
        status: str,
    ) -> None:
        """Apply the bookkeeping of a successful dispatch."""
        db = await self._connect()
        try:
            await db.execute(
                """
                UPDATE scheduled_tasks
                SET run_count = ?, last_run_at = ?, next_run_at = ?, status = ?
                WHERE id = ?
                """,
                (run_count, last_run_at, next_run_at, status, task_id),
            )
            await db.commit()
        finally:
            await db.close()

    async def reschedule(self, task_id: str, next_run_at: str | None, status: str) -> None:
        """Move a task's next run (and status) without counting a run."""
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE scheduled_tasks SET next_run_at = ?, status = ? WHERE id = ?",
                (next_run_at, status, task_id),
            )
            await db.commit()
        finally:
            await db.close()

    # -- Executions ------------------------------------------------------------

    async def start_execution(self, task: ScheduledTask, started_at: str) -> TaskExecution:
        """Open a ``running`` execution row for one dispatch attempt."""
        execution = TaskExecution(
            id=uuid.uuid4().hex,
            task_id=task.id,
            user_id=task.user_id,
            team_id=task.team_id,
            started_at=started_at,
        )
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO task_executions (id, task_id, user_id, team_id, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    execution.id,
                    execution.task_id,
                    execution.user_id,
                    execution.team_id,
                    execution.status,
                    execution.started_at,
                ),
            )
            await db.commit()
            return execution
        finally:
            await db.close()

    async def finish_execution(
        self,
        execution_id: str,
        status: str,
        *,
        completed_at: str,
        result_message: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Close a running execution. Returns False if it was already closed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE task_executions
                SET status = ?, completed_at = ?, result_message = ?, error = ?
                WHERE id = ? AND status = ?
                """,
                (status, completed_at, result_message, error, execution_id, EXECUTION_RUNNING),
            )
            await db.commit()
            closed = cursor.rowcount > 0
            if not closed:
                logger.warning("Execution %s was not running; left unchanged", execution_id)
            return closed
        finally:
            await db.close()

    async def get_execution(self, execution_id: str) -> TaskExecution | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM task_executions WHERE id = ?", (execution_id,)
            )
            row = await cursor.fetchone()
            return TaskExecution.from_row(row) if row else None
        finally:
            await db.close()

    async def list_executions(self, task_id: str) -> list[TaskExecution]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM task_executions WHERE task_id = ? ORDER BY started_at, rowid",
                (task_id,),
            )
            rows = await cursor.fetchall()
            return [TaskExecution.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_stale_executions(self, started_before: str) -> list[TaskExecution]:
        """Executions still ``running`` that started before the given instant."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM task_executions
                WHERE status = ? AND started_at < ?
                ORDER BY started_at
                """,
                (EXECUTION_RUNNING, started_before),
            )
            rows = await cursor.fetchall()
            return [TaskExecution.from_row(row) for row in rows]
        finally:
            await db.close()
