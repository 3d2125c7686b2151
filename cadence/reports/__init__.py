"""Scheduled reports — definitions, persistence, dispatch and delivery."""

from cadence.reports.delivery import DeliveryOutcome, ReportDelivery
from cadence.reports.models import ReportDefinition, make_report_id
from cadence.reports.pending import PendingDeliveryProcessor
from cadence.reports.scheduler import ReportScheduler
from cadence.reports.store import ReportStore

__all__ = [
    "DeliveryOutcome",
    "PendingDeliveryProcessor",
    "ReportDefinition",
    "ReportDelivery",
    "ReportScheduler",
    "ReportStore",
    "make_report_id",
]
