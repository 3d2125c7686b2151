"""WorkflowWebhookClient — Generation Service backed by a workflow-engine webhook."""

from __future__ import annotations

import logging

import httpx

from cadence.config import settings
from cadence.generation.service import GenerationError, GenerationRequest, extract_text

logger = logging.getLogger(__name__)

_ERROR_EXCERPT_CHARS = 200


class WorkflowWebhookClient:
    """POSTs prompts to the workflow engine and normalizes the reply.

    One request per call; there is no retry loop.  Retries happen when the
    next dispatcher tick picks the item up again.

    Args:
        url: Webhook URL (default from settings).
        api_key: Bearer credential (default from settings; omitted if empty).
        timeout: Request timeout in seconds (default from settings).
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._url = url if url is not None else settings.generation_webhook_url
        self._api_key = api_key if api_key is not None else settings.generation_api_key
        self._timeout = timeout or settings.http_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self._url)

    async def generate(self, request: GenerationRequest) -> str:
        if not self._url:
            msg = "Generation webhook URL is not configured"
            raise GenerationError(msg)

        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        logger.info(
            "Calling generation webhook: source=%s user=%s team=%s (prompt: %d chars)",
            request.source,
            request.user_id,
            request.team_id,
            len(request.prompt),
        )
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=request.to_payload(), headers=headers)
        except httpx.HTTPError as exc:
            msg = f"Generation request failed: {exc.__class__.__name__}"
            raise GenerationError(msg) from exc

        if not resp.is_success:
            logger.error(
                "Generation webhook returned %d: %s",
                resp.status_code,
                resp.text[:_ERROR_EXCERPT_CHARS],
            )
            msg = f"Webhook failed: {resp.status_code}"
            raise GenerationError(msg, status_code=resp.status_code)

        text = extract_text(resp.text)
        logger.info("Generation webhook responded (%d chars)", len(text))
        return text
