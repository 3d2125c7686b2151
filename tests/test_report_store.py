"""Tests for ReportStore — libsql CRUD, due selection and claims."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cadence.recurrence import to_iso
from cadence.reports.models import ReportDefinition
from cadence.reports.store import ReportStore

pytestmark = pytest.mark.usefixtures("_no_turso")

NOW = datetime(2026, 3, 9, 13, 5, tzinfo=UTC)


@pytest.fixture
async def store(db_path: Path) -> ReportStore:
    return ReportStore(db_path=db_path)


def _make_report(report_id: str = "r1", minutes_ago: int = 5, **kwargs) -> ReportDefinition:
    defaults = {
        "user_id": "u1",
        "title": f"Report {report_id}",
        "prompt": "Summarize",
        "next_run_at": to_iso(NOW - timedelta(minutes=minutes_ago)),
        "created_at": "2026-01-01T00:00:00.000+00:00",
    }
    defaults.update(kwargs)
    return ReportDefinition(id=report_id, **defaults)


# -- add_report / get_report ---------------------------------------------------


async def test_add_and_get_report(store: ReportStore) -> None:
    report = _make_report(schedule_frequency="weekly", schedule_day=1, is_team_report=True)
    await store.add_report(report)

    fetched = await store.get_report("r1")
    assert fetched == report
    assert fetched.is_team_report is True
    assert fetched.send_email is True


async def test_get_report_not_found(store: ReportStore) -> None:
    assert await store.get_report("missing") is None


# -- list_due ------------------------------------------------------------------


async def test_list_due_filters_and_orders(store: ReportStore) -> None:
    await store.add_report(_make_report("late", minutes_ago=60))
    await store.add_report(_make_report("recent", minutes_ago=1))
    await store.add_report(_make_report("future", minutes_ago=-60))
    await store.add_report(_make_report("inactive", is_active=False))
    await store.add_report(_make_report("manual", schedule_type="manual"))
    await store.add_report(_make_report("unscheduled", next_run_at=None))

    due = await store.list_due(to_iso(NOW), to_iso(NOW))
    assert [r.id for r in due] == ["late", "recent"]


async def test_list_due_with_lookahead(store: ReportStore) -> None:
    await store.add_report(_make_report("soon", minutes_ago=-60))
    cutoff = to_iso(NOW + timedelta(hours=2))
    assert [r.id for r in await store.list_due(cutoff, to_iso(NOW))] == ["soon"]


# -- claims --------------------------------------------------------------------


async def test_claim_is_exclusive_until_released(store: ReportStore) -> None:
    await store.add_report(_make_report())

    assert await store.claim("r1", NOW, 900) is True
    assert await store.claim("r1", NOW, 900) is False
    assert await store.list_due(to_iso(NOW), to_iso(NOW)) == []

    await store.release("r1")
    assert await store.claim("r1", NOW, 900) is True


async def test_expired_claim_can_be_retaken(store: ReportStore) -> None:
    await store.add_report(_make_report())
    assert await store.claim("r1", NOW, 60) is True
    assert await store.claim("r1", NOW + timedelta(seconds=61), 60) is True


# -- updates -------------------------------------------------------------------


async def test_update_next_and_last_run(store: ReportStore) -> None:
    await store.add_report(_make_report())
    await store.update_next_run("r1", "2026-03-16T13:00:00.000+00:00")
    await store.update_last_run("r1", to_iso(NOW))

    report = await store.get_report("r1")
    assert report.next_run_at == "2026-03-16T13:00:00.000+00:00"
    assert report.last_run_at == to_iso(NOW)
