"""libsql connection layer shared by every Cadence store.

The ``libsql`` driver is synchronous; each call is pushed onto a worker
thread with ``asyncio.to_thread()`` so the dispatchers never block the loop.
Where the database lives is decided once per connection:

- an explicit path (tests, or a store built with ``db_path``) wins;
- otherwise ``TURSO_DATABASE_URL`` / ``TURSO_AUTH_TOKEN`` select hosted Turso;
- otherwise the local file at ``database_path`` is used.
"""

from __future__ import annotations

import asyncio
from functools import partial
from pathlib import Path
from typing import Any, Callable

import libsql

from cadence.config import settings

_BUSY_TIMEOUT_MS = 5000


class _AsyncCursor:
    """Result of one statement; rows are fetched off the event loop."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        """Rows touched by an UPDATE/DELETE; claims rely on this being 0 or 1."""
        return self._cursor.rowcount


class _AsyncConnection:
    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        return _AsyncCursor(await asyncio.to_thread(self._conn.execute, sql, params))

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open_file(path: Path) -> Any:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = libsql.connect(str(path))
    # Overlapping dispatcher runs share this file.
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
    return conn


def _opener(local_path_override: Path | None) -> Callable[[], Any]:
    if local_path_override:
        return partial(_open_file, local_path_override)
    if settings.turso_database_url:
        return partial(
            libsql.connect,
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )
    return partial(_open_file, settings.database_path)


async def get_connection(local_path_override: Path | None = None) -> _AsyncConnection:
    """Open a connection to the configured database (see module docstring)."""
    conn = await asyncio.to_thread(_opener(local_path_override))
    return _AsyncConnection(conn)


class BaseStore:
    """Shared connection handling for the table-owning stores.

    Subclasses list their DDL in ``_SCHEMA``; tables are created lazily on the
    first connection.  Pass an explicit *db_path* for test isolation.
    """

    _SCHEMA: tuple[str, ...] = ()

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    async def _connect(self) -> _AsyncConnection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            for statement in self._SCHEMA:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db
