"""TriggerClient — fires the email and visualization functions for a delivered report."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from cadence.config import settings

logger = logging.getLogger(__name__)

EMAIL_FUNCTION = "send-report-email"
VISUALIZATION_FUNCTION = "generate-report-visualization"


class TriggerError(Exception):
    """A dependent side-effect function failed or could not be reached."""


@dataclass
class TriggerResult:
    """Outcome of a trigger that didn't fail.

    A function may decline the work (e.g. the user disabled email
    notifications); that comes back as ``skipped`` and is not an error.
    """

    skipped: bool = False
    reason: str = ""


class TriggerClient:
    """HTTP client for the email and visualization functions.

    Args:
        base_url: Functions base URL (default from settings).
        service_key: Bearer credential (default from settings).
        timeout: Request timeout in seconds (default from settings).
    """

    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = base_url if base_url is not None else settings.functions_base_url
        self._service_key = service_key if service_key is not None else settings.service_key
        self._timeout = timeout or settings.http_timeout_seconds

    async def send_report_email(
        self,
        *,
        report_id: str | None,
        chat_message_id: str,
        user_id: str,
        user_email: str,
        user_name: str,
        report_title: str,
        content: str,
        frequency: str | None,
        is_team_report: bool,
    ) -> TriggerResult:
        return await self._post(
            EMAIL_FUNCTION,
            {
                "reportId": report_id,
                "chatMessageId": chat_message_id,
                "userId": user_id,
                "userEmail": user_email,
                "userName": user_name,
                "reportTitle": report_title,
                "reportContent": content,
                "reportFrequency": frequency or "scheduled",
                "isTeamReport": is_team_report,
            },
        )

    async def generate_visualization(self, *, chat_message_id: str, content: str) -> TriggerResult:
        return await self._post(
            VISUALIZATION_FUNCTION,
            {"chatMessageId": chat_message_id, "reportContent": content},
        )

    async def _post(self, function: str, payload: dict[str, Any]) -> TriggerResult:
        if not self._base_url:
            msg = "FUNCTIONS_BASE_URL is not configured"
            raise TriggerError(msg)

        url = f"{self._base_url.rstrip('/')}/{function}"
        headers = {"Content-Type": "application/json"}
        if self._service_key:
            headers["Authorization"] = f"Bearer {self._service_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            msg = f"{function} request failed: {exc.__class__.__name__}"
            raise TriggerError(msg) from exc

        if not resp.is_success:
            msg = f"{function} returned {resp.status_code}: {resp.text[:200]}"
            raise TriggerError(msg)

        try:
            data = resp.json()
        except ValueError:
            return TriggerResult()
        if isinstance(data, dict) and data.get("skipped"):
            return TriggerResult(skipped=True, reason=str(data.get("reason", "")))
        return TriggerResult()
