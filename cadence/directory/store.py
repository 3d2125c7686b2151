"""DirectoryStore — accounts, users, teams and assistant settings via libsql.

The dispatchers only read from these tables.  The write helpers exist for
provisioning jobs and tests.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cadence.db import BaseStore

logger = logging.getLogger(__name__)

_CREATE_ACCOUNTS = """
CREATE TABLE IF NOT EXISTS accounts (
    id       TEXT PRIMARY KEY,
    email    TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
)
"""

_CREATE_TEAMS = """
CREATE TABLE IF NOT EXISTS teams (
    id   TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT ''
)
"""

_CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    id             TEXT PRIMARY KEY,
    team_id        TEXT,
    name           TEXT,
    email          TEXT,
    role           TEXT NOT NULL DEFAULT 'member',
    view_financial INTEGER NOT NULL DEFAULT 1
)
"""

_CREATE_AGENT_SETTINGS = """
CREATE TABLE IF NOT EXISTS team_agent_settings (
    team_id    TEXT PRIMARY KEY,
    agent_name TEXT
)
"""

_CREATE_TEAM_PRIORITIES = """
CREATE TABLE IF NOT EXISTS team_priorities (
    team_id    TEXT PRIMARY KEY,
    priorities TEXT
)
"""

_CREATE_USER_PRIORITIES = """
CREATE TABLE IF NOT EXISTS user_priorities (
    user_id    TEXT PRIMARY KEY,
    priorities TEXT
)
"""

_CREATE_SKILLS = """
CREATE TABLE IF NOT EXISTS assistant_skills (
    user_id      TEXT NOT NULL,
    skill_id     TEXT NOT NULL,
    display_name TEXT NOT NULL,
    is_active    INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (user_id, skill_id)
)
"""


class DirectoryStore(BaseStore):
    """Read access to identity and team data in SQLite / Turso."""

    _SCHEMA = (
        _CREATE_ACCOUNTS,
        _CREATE_TEAMS,
        _CREATE_USERS,
        _CREATE_AGENT_SETTINGS,
        _CREATE_TEAM_PRIORITIES,
        _CREATE_USER_PRIORITIES,
        _CREATE_SKILLS,
    )

    # -- Reads -----------------------------------------------------------------

    async def get_account(self, user_id: str) -> dict[str, Any] | None:
        """Auth identity: ``{"id", "email", "metadata"}`` or None."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, email, metadata FROM accounts WHERE id = ?", (user_id,)
            )
            row = await cursor.fetchone()
            if not row:
                return None
            return {"id": row[0], "email": row[1], "metadata": json.loads(row[2] or "{}")}
        finally:
            await db.close()

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Normalized user row joined with its team name, or None."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT u.id, u.team_id, u.name, u.email, u.role, u.view_financial, t.name
                FROM users u LEFT JOIN teams t ON t.id = u.team_id
                WHERE u.id = ?
                """,
                (user_id,),
            )
            row = await cursor.fetchone()
            if not row:
                return None
            return {
                "id": row[0],
                "team_id": row[1],
                "name": row[2],
                "email": row[3],
                "role": row[4],
                "view_financial": bool(row[5]),
                "team_name": row[6],
            }
        finally:
            await db.close()

    async def list_team_members(self, team_id: str) -> list[dict[str, Any]]:
        """All users on a team with their best-known email and display name."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT u.id, COALESCE(u.email, a.email), u.name, a.metadata
                FROM users u LEFT JOIN accounts a ON a.id = u.id
                WHERE u.team_id = ?
                ORDER BY u.rowid
                """,
                (team_id,),
            )
            rows = await cursor.fetchall()
            members = []
            for row in rows:
                metadata = json.loads(row[3] or "{}")
                members.append(
                    {
                        "id": row[0],
                        "email": row[1],
                        "name": row[2] or metadata.get("full_name"),
                    }
                )
            return members
        finally:
            await db.close()

    async def get_team_name(self, team_id: str) -> str | None:
        return await self._scalar("SELECT name FROM teams WHERE id = ?", team_id)

    async def get_agent_name(self, team_id: str) -> str | None:
        return await self._scalar(
            "SELECT agent_name FROM team_agent_settings WHERE team_id = ?", team_id
        )

    async def get_team_priorities(self, team_id: str) -> Any:
        raw = await self._scalar(
            "SELECT priorities FROM team_priorities WHERE team_id = ?", team_id
        )
        return json.loads(raw) if raw else None

    async def get_user_priorities(self, user_id: str) -> Any:
        raw = await self._scalar(
            "SELECT priorities FROM user_priorities WHERE user_id = ?", user_id
        )
        return json.loads(raw) if raw else None

    async def list_active_skills(self, user_id: str) -> list[str]:
        """Display names of the user's active assistant skills."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT display_name FROM assistant_skills
                WHERE user_id = ? AND is_active = 1
                ORDER BY rowid
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        finally:
            await db.close()

    async def _scalar(self, sql: str, key: str) -> Any:
        db = await self._connect()
        try:
            cursor = await db.execute(sql, (key,))
            row = await cursor.fetchone()
            return row[0] if row else None
        finally:
            await db.close()

    # -- Provisioning ----------------------------------------------------------

    async def upsert_account(
        self, user_id: str, email: str | None, metadata: dict[str, Any] | None = None
    ) -> None:
        await self._write(
            "INSERT OR REPLACE INTO accounts (id, email, metadata) VALUES (?, ?, ?)",
            (user_id, email, json.dumps(metadata or {})),
        )

    async def upsert_team(self, team_id: str, name: str) -> None:
        await self._write(
            "INSERT OR REPLACE INTO teams (id, name) VALUES (?, ?)", (team_id, name)
        )

    async def upsert_user(
        self,
        user_id: str,
        *,
        team_id: str | None,
        name: str | None = None,
        email: str | None = None,
        role: str = "member",
        view_financial: bool = True,
    ) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO users (id, team_id, name, email, role, view_financial)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, team_id, name, email, role, int(view_financial)),
        )

    async def set_agent_name(self, team_id: str, agent_name: str) -> None:
        await self._write(
            "INSERT OR REPLACE INTO team_agent_settings (team_id, agent_name) VALUES (?, ?)",
            (team_id, agent_name),
        )

    async def set_team_priorities(self, team_id: str, priorities: Any) -> None:
        await self._write(
            "INSERT OR REPLACE INTO team_priorities (team_id, priorities) VALUES (?, ?)",
            (team_id, json.dumps(priorities)),
        )

    async def set_user_priorities(self, user_id: str, priorities: Any) -> None:
        await self._write(
            "INSERT OR REPLACE INTO user_priorities (user_id, priorities) VALUES (?, ?)",
            (user_id, json.dumps(priorities)),
        )

    async def add_skill(
        self, user_id: str, skill_id: str, display_name: str, *, active: bool = True
    ) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO assistant_skills (user_id, skill_id, display_name, is_active)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, skill_id, display_name, int(active)),
        )

    async def _write(self, sql: str, params: tuple) -> None:
        db = await self._connect()
        try:
            await db.execute(sql, params)
            await db.commit()
        finally:
            await db.close()
