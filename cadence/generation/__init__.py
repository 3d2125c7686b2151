"""Generation Service — the external workflow engine that writes content."""

from cadence.generation.service import (
    GenerationError,
    GenerationRequest,
    GenerationService,
    extract_text,
)
from cadence.generation.webhook import WorkflowWebhookClient

__all__ = [
    "GenerationError",
    "GenerationRequest",
    "GenerationService",
    "WorkflowWebhookClient",
    "extract_text",
]
