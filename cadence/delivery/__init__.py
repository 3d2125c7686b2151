"""Delivery records and the side-effect triggers fired for them."""

from cadence.delivery.store import MessageStore, ReportMessage
from cadence.delivery.triggers import TriggerClient, TriggerError, TriggerResult

__all__ = [
    "MessageStore",
    "ReportMessage",
    "TriggerClient",
    "TriggerError",
    "TriggerResult",
]
