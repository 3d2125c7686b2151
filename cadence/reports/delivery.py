"""ReportDelivery — fans generated report content out to its recipients.

One reports-feed row per recipient, then best-effort email and
visualization triggers for each row that is visible immediately.
Pre-generated rows (``deliver_at`` set) skip the triggers; the pending
delivery sweep fires them once the row comes due.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cadence.delivery.triggers import TriggerError

if TYPE_CHECKING:
    from cadence.delivery.store import MessageStore
    from cadence.delivery.triggers import TriggerClient
    from cadence.directory.context import OwnerContext, Recipient
    from cadence.reports.models import ReportDefinition

logger = logging.getLogger(__name__)


@dataclass
class DeliveredMessage:
    """A reports-feed row that was inserted for one recipient."""

    message_id: str
    recipient: Recipient


@dataclass
class DeliveryOutcome:
    messages: list[DeliveredMessage] = field(default_factory=list)
    pregenerated: bool = False
    email_failures: int = 0
    visualization_failures: int = 0


class ReportDelivery:
    """Persists report content and kicks off its dependent side effects.

    Args:
        messages: MessageStore for the reports feed.
        triggers: TriggerClient for email and visualization functions.
    """

    def __init__(self, messages: MessageStore, triggers: TriggerClient) -> None:
        self._messages = messages
        self._triggers = triggers

    async def deliver(
        self,
        report: ReportDefinition,
        owner: OwnerContext,
        recipients: list[Recipient],
        content: str,
        *,
        executed_at: str,
        deliver_at: str | None = None,
    ) -> DeliveryOutcome:
        """Insert one row per recipient; fire triggers unless pre-generating."""
        outcome = DeliveryOutcome(pregenerated=deliver_at is not None)
        metadata = {
            "reportId": report.id,
            "title": report.title,
            "report_title": report.title,
            "report_schedule": report.schedule_time,
            "report_frequency": report.schedule_frequency,
            "is_manual_run": False,
            "executed_at": executed_at,
            "is_team_report": report.is_team_report,
            "created_by_user_id": report.created_by_user_id,
            "created_by_name": owner.name if report.is_team_report else None,
            "send_email": report.send_email,
        }

        for recipient in recipients:
            try:
                message_id = await self._messages.insert_report_message(
                    user_id=recipient.user_id,
                    user_email=recipient.email,
                    message=content,
                    metadata=metadata,
                    deliver_at=deliver_at,
                )
            except Exception:
                logger.exception(
                    "Failed to insert report %s for %s", report.id, recipient.email
                )
                continue
            outcome.messages.append(DeliveredMessage(message_id=message_id, recipient=recipient))

        logger.info(
            "Report '%s' %s to %d of %d recipient(s)",
            report.title,
            "pre-generated" if outcome.pregenerated else "delivered",
            len(outcome.messages),
            len(recipients),
        )
        if outcome.pregenerated or not outcome.messages:
            return outcome

        if report.send_email:
            outcome.email_failures = await self.send_emails(
                report_id=report.id,
                title=report.title,
                frequency=report.schedule_frequency,
                is_team_report=report.is_team_report,
                content=content,
                messages=outcome.messages,
            )
        else:
            logger.info("Email disabled for report '%s'", report.title)

        outcome.visualization_failures = await self.generate_visualizations(
            content, outcome.messages
        )
        return outcome

    async def send_emails(
        self,
        *,
        report_id: str | None,
        title: str,
        frequency: str | None,
        is_team_report: bool,
        content: str,
        messages: list[DeliveredMessage],
    ) -> int:
        """Email each recipient independently. Returns the number of failures."""
        failures = 0
        for msg in messages:
            try:
                result = await self._triggers.send_report_email(
                    report_id=report_id,
                    chat_message_id=msg.message_id,
                    user_id=msg.recipient.user_id,
                    user_email=msg.recipient.email,
                    user_name=msg.recipient.name,
                    report_title=title,
                    content=content,
                    frequency=frequency,
                    is_team_report=is_team_report,
                )
            except TriggerError as exc:
                logger.error("Failed to send report email to %s: %s", msg.recipient.email, exc)
                failures += 1
                continue
            except Exception:
                logger.exception("Error sending report email to %s", msg.recipient.email)
                failures += 1
                continue
            if result.skipped:
                logger.info("Email skipped for %s: %s", msg.recipient.email, result.reason)
            else:
                logger.info("Email sent to %s", msg.recipient.email)
        return failures

    async def generate_visualizations(
        self, content: str, messages: list[DeliveredMessage]
    ) -> int:
        """Request a visualization per delivered row. Returns the number of failures."""
        failures = 0
        for msg in messages:
            try:
                result = await self._triggers.generate_visualization(
                    chat_message_id=msg.message_id, content=content
                )
            except TriggerError as exc:
                logger.error(
                    "Failed to generate visualization for %s: %s", msg.recipient.email, exc
                )
                failures += 1
                continue
            except Exception:
                logger.exception(
                    "Error generating visualization for %s", msg.recipient.email
                )
                failures += 1
                continue
            if result.skipped:
                logger.info(
                    "Visualization skipped for %s: %s", msg.recipient.email, result.reason
                )
        return failures
