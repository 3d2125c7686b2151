"""MessageStore — delivered messages (reports and conversation feeds) and the notification queue."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cadence.db import BaseStore
from cadence.recurrence import to_iso

logger = logging.getLogger(__name__)

REPORTS_MODE = "reports"
ASSISTANT_MESSAGE = "astra"

_CREATE_REPORT_MESSAGES = """
CREATE TABLE IF NOT EXISTS report_messages (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL,
    user_email   TEXT NOT NULL DEFAULT '',
    mode         TEXT NOT NULL,
    message      TEXT NOT NULL,
    message_type TEXT NOT NULL,
    deliver_at   TEXT,
    metadata     TEXT NOT NULL DEFAULT '{}',
    created_at   TEXT NOT NULL
)
"""

_CREATE_CONVERSATION_MESSAGES = """
CREATE TABLE IF NOT EXISTS conversation_messages (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL,
    team_id    TEXT,
    role       TEXT NOT NULL,
    message    TEXT NOT NULL,
    metadata   TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
)
"""

_CREATE_NOTIFICATION_QUEUE = """
CREATE TABLE IF NOT EXISTS notification_queue (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    event_type    TEXT NOT NULL,
    priority      INTEGER NOT NULL,
    context       TEXT NOT NULL DEFAULT '{}',
    scheduled_for TEXT NOT NULL,
    created_at    TEXT NOT NULL
)
"""


@dataclass
class ReportMessage:
    """A row in the reports feed.

    ``deliver_at`` is set on pre-generated rows and cleared on delivery; a
    row is only visible to its user once it is None.
    """

    id: str
    user_id: str
    user_email: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    deliver_at: str | None = None
    mode: str = REPORTS_MODE
    message_type: str = ASSISTANT_MESSAGE
    created_at: str = ""

    @classmethod
    def from_row(cls, row: tuple) -> ReportMessage:
        return cls(
            id=row[0],
            user_id=row[1],
            user_email=row[2],
            mode=row[3],
            message=row[4],
            message_type=row[5],
            deliver_at=row[6],
            metadata=json.loads(row[7] or "{}"),
            created_at=row[8],
        )


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return to_iso(datetime.now(UTC))


class MessageStore(BaseStore):
    """Persists delivery records in SQLite / Turso."""

    _SCHEMA = (
        _CREATE_REPORT_MESSAGES,
        _CREATE_CONVERSATION_MESSAGES,
        _CREATE_NOTIFICATION_QUEUE,
    )

    # -- Reports feed ----------------------------------------------------------

    async def insert_report_message(
        self,
        *,
        user_id: str,
        user_email: str,
        message: str,
        metadata: dict[str, Any],
        deliver_at: str | None = None,
    ) -> str:
        """Insert a reports-feed row and return its ID."""
        message_id = _new_id()
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO report_messages
                    (id, user_id, user_email, mode, message, message_type,
                     deliver_at, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    user_id,
                    user_email,
                    REPORTS_MODE,
                    message,
                    ASSISTANT_MESSAGE,
                    deliver_at,
                    json.dumps(metadata),
                    _now(),
                ),
            )
            await db.commit()
            return message_id
        finally:
            await db.close()

    async def get_report_message(self, message_id: str) -> ReportMessage | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM report_messages WHERE id = ?", (message_id,)
            )
            row = await cursor.fetchone()
            return ReportMessage.from_row(row) if row else None
        finally:
            await db.close()

    async def list_report_messages(self, user_id: str | None = None) -> list[ReportMessage]:
        """All reports-feed rows, optionally for one user, oldest first."""
        db = await self._connect()
        try:
            if user_id is None:
                cursor = await db.execute(
                    "SELECT * FROM report_messages ORDER BY created_at, rowid"
                )
            else:
                cursor = await db.execute(
                    "SELECT * FROM report_messages WHERE user_id = ? ORDER BY created_at, rowid",
                    (user_id,),
                )
            rows = await cursor.fetchall()
            return [ReportMessage.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_pending_deliveries(self, now: str, limit: int) -> list[ReportMessage]:
        """Pre-generated rows whose ``deliver_at`` has passed, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM report_messages
                WHERE mode = ? AND message_type = ?
                  AND deliver_at IS NOT NULL AND deliver_at <= ?
                ORDER BY deliver_at
                LIMIT ?
                """,
                (REPORTS_MODE, ASSISTANT_MESSAGE, now, limit),
            )
            rows = await cursor.fetchall()
            return [ReportMessage.from_row(row) for row in rows]
        finally:
            await db.close()

    async def mark_delivered(self, message_id: str) -> bool:
        """Clear ``deliver_at``. Returns True only for the caller that cleared it."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE report_messages SET deliver_at = NULL"
                " WHERE id = ? AND deliver_at IS NOT NULL",
                (message_id,),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- Conversation feed -----------------------------------------------------

    async def insert_conversation_message(
        self,
        *,
        user_id: str,
        team_id: str | None,
        message: str,
        metadata: dict[str, Any],
        role: str = "agent",
    ) -> str:
        message_id = _new_id()
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO conversation_messages
                    (id, user_id, team_id, role, message, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (message_id, user_id, team_id, role, message, json.dumps(metadata), _now()),
            )
            await db.commit()
            return message_id
        finally:
            await db.close()

    async def list_conversation_messages(self, user_id: str) -> list[dict[str, Any]]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT id, user_id, team_id, role, message, metadata, created_at
                FROM conversation_messages WHERE user_id = ?
                ORDER BY created_at, rowid
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [
                {
                    "id": row[0],
                    "user_id": row[1],
                    "team_id": row[2],
                    "role": row[3],
                    "message": row[4],
                    "metadata": json.loads(row[5] or "{}"),
                    "created_at": row[6],
                }
                for row in rows
            ]
        finally:
            await db.close()

    # -- Notification queue ----------------------------------------------------

    async def enqueue_notification(
        self,
        *,
        user_id: str,
        context: dict[str, Any],
        scheduled_for: str,
        event_type: str = "custom",
        priority: int = 5,
    ) -> str:
        notification_id = _new_id()
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO notification_queue
                    (id, user_id, event_type, priority, context, scheduled_for, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification_id,
                    user_id,
                    event_type,
                    priority,
                    json.dumps(context),
                    scheduled_for,
                    _now(),
                ),
            )
            await db.commit()
            logger.info("Queued %s notification for user %s", event_type, user_id)
            return notification_id
        finally:
            await db.close()

    async def list_notifications(self, user_id: str) -> list[dict[str, Any]]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT id, user_id, event_type, priority, context, scheduled_for
                FROM notification_queue WHERE user_id = ?
                ORDER BY created_at, rowid
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [
                {
                    "id": row[0],
                    "user_id": row[1],
                    "event_type": row[2],
                    "priority": row[3],
                    "context": json.loads(row[4] or "{}"),
                    "scheduled_for": row[5],
                }
                for row in rows
            ]
        finally:
            await db.close()
