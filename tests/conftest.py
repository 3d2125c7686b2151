"""Shared test fixtures."""

from pathlib import Path

import pytest


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("cadence.config.settings.turso_database_url", "")


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """One database file shared by every store in a test."""
    return tmp_path / "cadence.db"
