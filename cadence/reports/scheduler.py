"""ReportScheduler — the polling dispatcher for recurring reports."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from cadence.config import settings
from cadence.generation.service import (
    SOURCE_SCHEDULED_REPORT,
    GenerationError,
    GenerationRequest,
)
from cadence.recurrence import next_report_run, parse_iso, to_iso

if TYPE_CHECKING:
    from cadence.directory.context import ContextLoader, OwnerContext
    from cadence.generation.service import GenerationService
    from cadence.reports.delivery import ReportDelivery
    from cadence.reports.models import ReportDefinition
    from cadence.reports.store import ReportStore

logger = logging.getLogger(__name__)


class ReportScheduler:
    """Finds due reports and runs each through generate → deliver → reschedule.

    Items are processed serially, oldest-due first, with a fixed pause
    between them to respect the Generation Service's rate limits.  At most
    ``batch_size`` reports run per invocation; the rest stay due for the
    next one.

    Args:
        store: ReportStore with the report definitions.
        loader: ContextLoader for owner identity and team rosters.
        generator: GenerationService producing the report text.
        delivery: ReportDelivery persisting rows and firing triggers.
        batch_size: Max reports per invocation (default from settings).
        delay_seconds: Pause between reports (default from settings).
        timezone: Zone the schedule times are expressed in.
        lease_seconds: How long a claim on a report lasts.
    """

    def __init__(
        self,
        store: ReportStore,
        loader: ContextLoader,
        generator: GenerationService,
        delivery: ReportDelivery,
        *,
        batch_size: int | None = None,
        delay_seconds: float | None = None,
        timezone: str | None = None,
        lease_seconds: int | None = None,
    ) -> None:
        self._store = store
        self._loader = loader
        self._generator = generator
        self._delivery = delivery
        self._batch_size = batch_size or settings.report_batch_size
        self._delay_seconds = (
            settings.report_delay_seconds if delay_seconds is None else delay_seconds
        )
        self._timezone = timezone or settings.report_timezone
        self._lease_seconds = lease_seconds or settings.claim_lease_seconds

    # -- Entry points ----------------------------------------------------------

    async def run(
        self,
        *,
        pregenerate: bool = False,
        hours_ahead: float = 0,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Process reports due now (or within *hours_ahead* when pre-generating)."""
        now = now or datetime.now(UTC)
        pregenerate = pregenerate and hours_ahead > 0
        cutoff = now + timedelta(hours=hours_ahead) if pregenerate else now
        logger.info(
            "Checking for scheduled reports (mode=%s, now=%s, cutoff=%s)",
            f"pre-generation {hours_ahead}h" if pregenerate else "normal",
            to_iso(now),
            to_iso(cutoff),
        )

        due = await self._store.list_due(to_iso(cutoff), to_iso(now))
        if not due:
            logger.info("No reports need to run")
            return self._summary([], total=0, processed=0, now=now)

        batch = due[: self._batch_size]
        if len(due) > len(batch):
            logger.info(
                "Found %d due report(s), processing first %d; the rest wait for the next run",
                len(due),
                len(batch),
            )
        results = await self._process_batch(batch, now=now, pregenerate=pregenerate)
        return self._summary(results, total=len(due), processed=len(batch), now=now)

    async def run_reports(
        self, report_ids: list[str], *, now: datetime | None = None
    ) -> dict[str, Any]:
        """Run specific reports regardless of their schedule (missed-run recovery)."""
        now = now or datetime.now(UTC)
        results: list[dict[str, Any]] = []
        found: list[ReportDefinition] = []
        for report_id in report_ids:
            report = await self._store.get_report(report_id)
            if report is None:
                logger.error("Report %s not found", report_id)
                results.append({"reportId": report_id, "success": False, "error": "Report not found"})
            else:
                found.append(report)

        logger.info("Running %d requested report(s)", len(found))
        results.extend(await self._process_batch(found, now=now, pregenerate=False))
        return self._summary(results, total=len(report_ids), processed=len(found), now=now)

    # -- Batch loop ------------------------------------------------------------

    async def _process_batch(
        self, reports: list[ReportDefinition], *, now: datetime, pregenerate: bool
    ) -> list[dict[str, Any]]:
        results = []
        for index, report in enumerate(reports):
            if index > 0 and self._delay_seconds > 0:
                logger.info("Waiting %.0fs before next report...", self._delay_seconds)
                await asyncio.sleep(self._delay_seconds)
            try:
                result = await self._process_one(report, now=now, pregenerate=pregenerate)
            except Exception as exc:
                logger.exception("Error processing report %s", report.id)
                result = self._failure(report, str(exc) or "Unknown error")
            results.append(result)
        return results

    async def _process_one(
        self, report: ReportDefinition, *, now: datetime, pregenerate: bool
    ) -> dict[str, Any]:
        if not await self._store.claim(report.id, now, self._lease_seconds):
            logger.info("Report %s is claimed by another run, skipping", report.id)
            return {
                "reportId": report.id,
                "reportTitle": report.title,
                "success": False,
                "skipped": True,
                "error": "Already being processed",
            }
        try:
            return await self._run_report(report, now=now, pregenerate=pregenerate)
        finally:
            await self._store.release(report.id)

    async def _run_report(
        self, report: ReportDefinition, *, now: datetime, pregenerate: bool
    ) -> dict[str, Any]:
        logger.info("Running report: %s (%s)", report.title, report.id)

        owner = await self._loader.load_report_owner(report.user_id)
        if owner is None:
            return self._failure(report, "User not found")

        # Advance first so an overlapping run sees the report as no longer due;
        # revert below if nothing gets delivered.
        previous_next_run = report.next_run_at
        deliver_at = None
        if pregenerate and previous_next_run and parse_iso(previous_next_run) > now:
            deliver_at = previous_next_run
        # A pre-generated run covers its scheduled slot, so recur from that slot.
        anchor = parse_iso(deliver_at) if deliver_at else now
        next_run_at = to_iso(
            next_report_run(
                report.schedule_frequency,
                report.schedule_time,
                report.schedule_day,
                anchor,
                self._timezone,
            )
        )
        logger.info("Advancing next_run_at for %s to %s", report.id, next_run_at)
        await self._store.update_next_run(report.id, next_run_at)

        try:
            content = await self._generator.generate(self._build_request(report, owner, now))
        except GenerationError as exc:
            logger.error("Generation failed for report %s: %s", report.id, exc)
            await self._revert(report, previous_next_run)
            return self._failure(report, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error generating report %s", report.id)
            await self._revert(report, previous_next_run)
            return self._failure(report, str(exc) or "Unknown error")

        if not content.strip():
            logger.error("Generation returned no content for report %s", report.id)
            await self._revert(report, previous_next_run)
            return self._failure(report, "Empty response from generation service")

        if deliver_at:
            logger.info("Pre-generating report %s for delivery at %s", report.id, deliver_at)

        recipients = await self._loader.resolve_recipients(owner, team_wide=report.is_team_report)
        outcome = await self._delivery.deliver(
            report,
            owner,
            recipients,
            content,
            executed_at=to_iso(now),
            deliver_at=deliver_at,
        )
        if not outcome.messages:
            await self._revert(report, previous_next_run)
            return self._failure(report, "No delivery records inserted")

        await self._store.update_last_run(report.id, to_iso(now))
        logger.info("Report %s completed successfully", report.title)
        return {
            "reportId": report.id,
            "reportTitle": report.title,
            "success": True,
            "nextRunAt": next_run_at,
            "recipients": len(outcome.messages),
            "pregenerated": outcome.pregenerated,
        }

    # -- Helpers ---------------------------------------------------------------

    def _build_request(
        self, report: ReportDefinition, owner: OwnerContext, now: datetime
    ) -> GenerationRequest:
        return GenerationRequest(
            prompt=report.prompt,
            user_id=report.user_id,
            team_id=owner.team_id,
            source=SOURCE_SCHEDULED_REPORT,
            context={
                "user_email": owner.email,
                "user_name": owner.name,
                "conversation_id": None,
                "team_name": owner.team_name,
                "role": owner.role,
                "view_financial": owner.view_financial,
                "mode": "reports",
                "original_message": report.prompt,
                "mentions": [],
                "report_title": report.title,
                "report_schedule": report.schedule_time,
                "report_frequency": report.schedule_frequency,
                "is_manual_run": False,
                "is_team_report": report.is_team_report,
                "created_by_user_id": report.created_by_user_id,
                "executed_at": to_iso(now),
            },
        )

    async def _revert(self, report: ReportDefinition, previous_next_run: str | None) -> None:
        logger.info("Reverting next_run_at for %s so it is retried", report.id)
        await self._store.update_next_run(report.id, previous_next_run)

    @staticmethod
    def _failure(report: ReportDefinition, error: str) -> dict[str, Any]:
        return {
            "reportId": report.id,
            "reportTitle": report.title,
            "success": False,
            "error": error,
        }

    @staticmethod
    def _summary(
        results: list[dict[str, Any]], *, total: int, processed: int, now: datetime
    ) -> dict[str, Any]:
        succeeded = sum(1 for r in results if r["success"])
        claimed_elsewhere = sum(1 for r in results if r.get("skipped"))
        failed = len(results) - succeeded - claimed_elsewhere
        skipped = total - len(results) + claimed_elsewhere
        logger.info(
            "Report summary: %d succeeded, %d failed, %d deferred",
            succeeded,
            failed,
            skipped,
        )
        return {
            "success": True,
            "message": (
                f"Processed {processed} of {total} report(s)" if total else "No reports need to run"
            ),
            "processed": processed,
            "successCount": succeeded,
            "failureCount": failed,
            "skippedCount": skipped,
            "results": results,
            "checkedAt": to_iso(now),
        }
