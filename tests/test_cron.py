"""Tests for DispatchCron — APScheduler job registration and callbacks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cadence.cron import PENDING_JOB, PREGENERATE_JOB, REPORTS_JOB, TASKS_JOB, DispatchCron

SUMMARY = {"success": True, "message": "done"}


@pytest.fixture
def services() -> MagicMock:
    services = MagicMock()
    services.generation_configured = True
    services.report_scheduler.run = AsyncMock(return_value=SUMMARY)
    services.pending_delivery.run = AsyncMock(return_value=SUMMARY)
    services.task_processor.run = AsyncMock(return_value=SUMMARY)
    return services


def _cron(services, hours_ahead: float = 0) -> DispatchCron:
    return DispatchCron(
        services,
        report_minutes=5,
        task_minutes=1,
        pending_minutes=5,
        pregenerate_hours_ahead=hours_ahead,
    )


# -- Jobs ----------------------------------------------------------------------


def test_default_jobs(services) -> None:
    cron = _cron(services)
    cron.add_jobs()
    assert sorted(cron.job_ids) == sorted([REPORTS_JOB, TASKS_JOB])


def test_pregeneration_jobs_when_enabled(services) -> None:
    cron = _cron(services, hours_ahead=2)
    cron.add_jobs()
    assert sorted(cron.job_ids) == sorted([REPORTS_JOB, TASKS_JOB, PREGENERATE_JOB, PENDING_JOB])


async def test_start_and_stop(services) -> None:
    cron = _cron(services)
    await cron.start()
    assert cron.running
    assert TASKS_JOB in cron.job_ids
    await cron.stop()
    assert not cron.running


# -- Callbacks -----------------------------------------------------------------


async def test_run_reports(services) -> None:
    await _cron(services).run_reports()
    services.report_scheduler.run.assert_awaited_once_with()


async def test_run_reports_skipped_without_generation(services) -> None:
    services.generation_configured = False
    cron = _cron(services, hours_ahead=2)
    await cron.run_reports()
    await cron.run_pregeneration()
    services.report_scheduler.run.assert_not_awaited()


async def test_run_pregeneration(services) -> None:
    await _cron(services, hours_ahead=2).run_pregeneration()
    services.report_scheduler.run.assert_awaited_once_with(pregenerate=True, hours_ahead=2)


async def test_run_pending_and_tasks(services) -> None:
    cron = _cron(services)
    await cron.run_pending()
    await cron.run_tasks()
    services.pending_delivery.run.assert_awaited_once()
    services.task_processor.run.assert_awaited_once()
