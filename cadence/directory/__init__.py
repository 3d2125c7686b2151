"""Identity and team context — store and loader."""

from cadence.directory.context import (
    ContextLoader,
    OwnerContext,
    Recipient,
    TaskContext,
)
from cadence.directory.store import DirectoryStore

__all__ = [
    "ContextLoader",
    "DirectoryStore",
    "OwnerContext",
    "Recipient",
    "TaskContext",
]
