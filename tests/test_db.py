"""Tests for async database connection abstraction."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cadence.db import BaseStore, _AsyncConnection, get_connection

pytestmark = pytest.mark.usefixtures("_no_turso")


class TestGetConnection:
    async def test_returns_async_connection(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        assert isinstance(conn, _AsyncConnection)
        await conn.close()

    async def test_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await get_connection(local_path_override=db_path)
        assert db_path.parent.exists()
        await conn.close()

    async def test_turso_url_selects_remote(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("cadence.config.settings.turso_database_url", "libsql://acme.turso.io")
        monkeypatch.setattr("cadence.config.settings.turso_auth_token", "tok")
        with patch("cadence.db.libsql.connect", return_value=MagicMock()) as connect:
            conn = await get_connection()
        connect.assert_called_once_with(database="libsql://acme.turso.io", auth_token="tok")
        assert isinstance(conn, _AsyncConnection)

    async def test_explicit_path_beats_turso(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setattr("cadence.config.settings.turso_database_url", "libsql://acme.turso.io")
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.close()
        assert (tmp_path / "test.db").exists()

    async def test_defaults_to_database_path(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        path = tmp_path / "data" / "cadence.db"
        monkeypatch.setattr("cadence.config.settings.database_path", path)
        conn = await get_connection()
        await conn.close()
        assert path.exists()


class TestAsyncConnection:
    async def test_execute_and_fetchall(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
        await conn.execute("INSERT INTO t (name) VALUES (?)", ("alice",))
        await conn.commit()

        cursor = await conn.execute("SELECT name FROM t")
        rows = await cursor.fetchall()
        assert rows == [("alice",)]
        await conn.close()

    async def test_fetchone_returns_none_when_empty(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")

        cursor = await conn.execute("SELECT * FROM t WHERE id = 999")
        row = await cursor.fetchone()
        assert row is None
        await conn.close()

    async def test_conditional_update_rowcount(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id TEXT PRIMARY KEY, claimed_until TEXT)")
        await conn.execute("INSERT INTO t (id) VALUES (?)", ("a",))
        await conn.commit()

        sql = "UPDATE t SET claimed_until = ? WHERE id = ? AND claimed_until IS NULL"
        first = await conn.execute(sql, ("2026-03-09T13:15:00.000+00:00", "a"))
        second = await conn.execute(sql, ("2026-03-09T13:16:00.000+00:00", "a"))
        assert first.rowcount == 1
        assert second.rowcount == 0
        await conn.close()


class _WidgetStore(BaseStore):
    _SCHEMA = ("CREATE TABLE IF NOT EXISTS widgets (id TEXT PRIMARY KEY)",)

    async def count(self) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT COUNT(*) FROM widgets")
            row = await cursor.fetchone()
            return row[0]
        finally:
            await db.close()


class TestBaseStore:
    async def test_schema_created_lazily(self, tmp_path: Path):
        store = _WidgetStore(db_path=tmp_path / "test.db")
        assert await store.count() == 0

    async def test_stores_share_one_file(self, tmp_path: Path):
        path = tmp_path / "test.db"
        first = _WidgetStore(db_path=path)
        await first.count()

        conn = await get_connection(local_path_override=path)
        await conn.execute("INSERT INTO widgets (id) VALUES (?)", ("w1",))
        await conn.commit()
        await conn.close()

        assert await _WidgetStore(db_path=path).count() == 1
