"""DispatchCron — APScheduler jobs that drive the dispatchers in-process.

Used when no external scheduler calls the ``/dispatch/*`` endpoints. Each
job runs one dispatcher pass; claims keep it safe alongside an external
cron hitting the same database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cadence.config import settings

if TYPE_CHECKING:
    from cadence.services import Services

logger = logging.getLogger(__name__)

REPORTS_JOB = "dispatch-reports"
PREGENERATE_JOB = "pregenerate-reports"
PENDING_JOB = "deliver-pending-reports"
TASKS_JOB = "dispatch-tasks"


class DispatchCron:
    """Manages the APScheduler lifecycle for the dispatch jobs.

    Args:
        services: Wired dispatchers.
        report_minutes: Interval of the report dispatch (and pre-generation) job.
        task_minutes: Interval of the scheduled-task job.
        pending_minutes: Interval of the pending-delivery job.
        pregenerate_hours_ahead: Look-ahead for pre-generation; 0 disables it.
    """

    def __init__(
        self,
        services: Services,
        *,
        report_minutes: int | None = None,
        task_minutes: int | None = None,
        pending_minutes: int | None = None,
        pregenerate_hours_ahead: float | None = None,
    ) -> None:
        self._services = services
        self._report_minutes = report_minutes or settings.report_cron_minutes
        self._task_minutes = task_minutes or settings.task_cron_minutes
        self._pending_minutes = pending_minutes or settings.pending_cron_minutes
        self._hours_ahead = (
            settings.pregenerate_hours_ahead
            if pregenerate_hours_ahead is None
            else pregenerate_hours_ahead
        )
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    # -- Lifecycle -------------------------------------------------------------

    def add_jobs(self) -> None:
        """Register the dispatch jobs."""
        self._add_job(REPORTS_JOB, self.run_reports, self._report_minutes)
        self._add_job(TASKS_JOB, self.run_tasks, self._task_minutes)
        if self._hours_ahead > 0:
            self._add_job(PREGENERATE_JOB, self.run_pregeneration, self._report_minutes)
            self._add_job(PENDING_JOB, self.run_pending, self._pending_minutes)

    async def start(self) -> None:
        """Add the jobs and start the scheduler."""
        self.add_jobs()
        self._scheduler.start()
        self._running = True
        logger.info("Dispatch cron started with jobs: %s", ", ".join(self.job_ids))

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Dispatch cron stopped")

    # -- Job callbacks ---------------------------------------------------------

    async def run_reports(self) -> None:
        if not self._services.generation_configured:
            logger.warning("Skipping report dispatch: generation webhook not configured")
            return
        summary = await self._services.report_scheduler.run()
        logger.info("Report dispatch: %s", summary["message"])

    async def run_pregeneration(self) -> None:
        if not self._services.generation_configured:
            return
        summary = await self._services.report_scheduler.run(
            pregenerate=True, hours_ahead=self._hours_ahead
        )
        logger.info("Report pre-generation: %s", summary["message"])

    async def run_pending(self) -> None:
        summary = await self._services.pending_delivery.run()
        logger.info("Pending delivery: %s", summary["message"])

    async def run_tasks(self) -> None:
        summary = await self._services.task_processor.run()
        logger.info("Task dispatch: %s", summary["message"])

    # -- Internal --------------------------------------------------------------

    def _add_job(self, job_id: str, func, minutes: int):
        return self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
