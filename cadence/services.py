"""Service wiring — builds the stores, clients and dispatchers from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from cadence.delivery.store import MessageStore
from cadence.delivery.triggers import TriggerClient
from cadence.directory.context import ContextLoader
from cadence.directory.store import DirectoryStore
from cadence.generation.service import GenerationService
from cadence.generation.webhook import WorkflowWebhookClient
from cadence.reports.delivery import ReportDelivery
from cadence.reports.pending import PendingDeliveryProcessor
from cadence.reports.scheduler import ReportScheduler
from cadence.reports.store import ReportStore
from cadence.tasks.creation import TaskCreator
from cadence.tasks.processor import TaskProcessor
from cadence.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP server and the cron need, wired together."""

    directory: DirectoryStore
    messages: MessageStore
    reports: ReportStore
    tasks: TaskStore
    report_scheduler: ReportScheduler
    pending_delivery: PendingDeliveryProcessor
    task_processor: TaskProcessor
    task_creator: TaskCreator
    generation_configured: bool


def build_services(
    db_path: Path | None = None,
    generator: GenerationService | None = None,
    triggers: TriggerClient | None = None,
) -> Services:
    """Construct the service graph.

    ``generator`` and ``triggers`` default to the HTTP clients configured in
    settings; tests pass fakes instead.
    """
    if generator is None:
        webhook = WorkflowWebhookClient()
        generation_configured = webhook.configured
        generator = webhook
        if not generation_configured:
            logger.warning("GENERATION_WEBHOOK_URL is empty; report dispatch will be refused")
    else:
        generation_configured = True

    directory = DirectoryStore(db_path)
    messages = MessageStore(db_path)
    reports = ReportStore(db_path)
    tasks = TaskStore(db_path)
    loader = ContextLoader(directory)
    delivery = ReportDelivery(messages, triggers or TriggerClient())

    return Services(
        directory=directory,
        messages=messages,
        reports=reports,
        tasks=tasks,
        report_scheduler=ReportScheduler(reports, loader, generator, delivery),
        pending_delivery=PendingDeliveryProcessor(messages, reports, loader, delivery),
        task_processor=TaskProcessor(tasks, messages, loader, generator),
        task_creator=TaskCreator(tasks, directory),
        generation_configured=generation_configured,
    )
