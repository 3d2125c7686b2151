"""PendingDeliveryProcessor — releases pre-generated reports when they come due."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from cadence.config import settings
from cadence.recurrence import to_iso
from cadence.reports.delivery import DeliveredMessage

if TYPE_CHECKING:
    from cadence.delivery.store import MessageStore, ReportMessage
    from cadence.directory.context import ContextLoader
    from cadence.reports.delivery import ReportDelivery
    from cadence.reports.store import ReportStore

logger = logging.getLogger(__name__)


class PendingDeliveryProcessor:
    """Makes pre-generated report rows visible and fires their deferred triggers.

    Args:
        messages: MessageStore holding the pre-generated rows.
        reports: ReportStore, for each row's current email settings.
        loader: ContextLoader, for recipient display names.
        delivery: ReportDelivery, for the email/visualization triggers.
        batch_size: Max rows per invocation (default from settings).
    """

    def __init__(
        self,
        messages: MessageStore,
        reports: ReportStore,
        loader: ContextLoader,
        delivery: ReportDelivery,
        *,
        batch_size: int | None = None,
    ) -> None:
        self._messages = messages
        self._reports = reports
        self._loader = loader
        self._delivery = delivery
        self._batch_size = batch_size or settings.pending_delivery_batch_size

    async def run(self, *, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        pending = await self._messages.list_pending_deliveries(to_iso(now), self._batch_size)
        if not pending:
            logger.info("No pending reports to deliver")
            return {
                "success": True,
                "message": "No pending reports to deliver",
                "successCount": 0,
                "failureCount": 0,
                "skippedCount": 0,
                "total": 0,
                "results": [],
                "checkedAt": to_iso(now),
            }

        logger.info("Found %d pre-generated report(s) to deliver", len(pending))
        results = []
        for row in pending:
            try:
                if await self._deliver(row):
                    results.append(self._result(row, success=True))
                else:
                    results.append(self._result(row, success=False, skipped=True))
            except Exception as exc:
                logger.exception("Error delivering report message %s", row.id)
                results.append(self._result(row, success=False, error=str(exc)))

        succeeded = sum(1 for r in results if r["success"])
        skipped = sum(1 for r in results if r.get("skipped"))
        failed = len(results) - succeeded - skipped
        logger.info(
            "Delivery summary: %d succeeded, %d failed, %d skipped", succeeded, failed, skipped
        )
        return {
            "success": True,
            "message": f"Delivered {succeeded} of {len(pending)} report(s)",
            "successCount": succeeded,
            "failureCount": failed,
            "skippedCount": skipped,
            "total": len(pending),
            "results": results,
            "checkedAt": to_iso(now),
        }

    async def _deliver(self, row: ReportMessage) -> bool:
        """Release one row and fire its triggers. False if another run released it."""
        # Clearing deliver_at first makes this run the only one that fires triggers.
        if not await self._messages.mark_delivered(row.id):
            logger.info("Report message %s already delivered by another run, skipping", row.id)
            return False

        metadata = row.metadata
        title = metadata.get("title") or "Report"
        report_id = metadata.get("reportId")
        logger.info("Delivering report '%s' to %s", title, row.user_email)

        report = await self._reports.get_report(report_id) if report_id else None
        send_email = metadata.get("send_email") is not False and (
            report is None or report.send_email
        )
        recipient = await self._loader.describe_recipient(row.user_id, row.user_email)
        delivered = [DeliveredMessage(message_id=row.id, recipient=recipient)]

        if send_email and report_id:
            await self._delivery.send_emails(
                report_id=report_id,
                title=title,
                frequency=report.schedule_frequency if report else metadata.get("report_frequency"),
                is_team_report=(
                    report.is_team_report if report else bool(metadata.get("is_team_report"))
                ),
                content=row.message,
                messages=delivered,
            )
        await self._delivery.generate_visualizations(row.message, delivered)
        return True

    @staticmethod
    def _result(
        row: ReportMessage,
        *,
        success: bool,
        skipped: bool = False,
        error: str | None = None,
    ) -> dict[str, Any]:
        result: dict[str, Any] = {
            "messageId": row.id,
            "reportId": row.metadata.get("reportId"),
            "title": row.metadata.get("title"),
            "userEmail": row.user_email,
            "success": success,
        }
        if skipped:
            result["skipped"] = True
        if error is not None:
            result["error"] = error
        return result
