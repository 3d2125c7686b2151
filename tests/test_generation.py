"""Tests for the Generation Service client and response parsing."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from cadence.generation.service import (
    GenerationError,
    GenerationRequest,
    GenerationService,
    extract_text,
)
from cadence.generation.webhook import WorkflowWebhookClient

WEBHOOK_URL = "https://flows.example.com/webhook/agent"


def _mock_httpx_client(mock_client_cls: MagicMock, response: httpx.Response) -> AsyncMock:
    """Wire up an AsyncClient context-manager mock that returns *response*."""
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _response(status_code: int = 200, **kwargs) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        request=httpx.Request("POST", WEBHOOK_URL),
        **kwargs,
    )


def _request() -> GenerationRequest:
    return GenerationRequest(
        prompt="Summarize weekly sales",
        user_id="u1",
        team_id="t1",
        source="scheduled_report",
        context={"report_title": "Weekly Sales Summary"},
    )


# -- extract_text --------------------------------------------------------------


class TestExtractText:
    def test_output_field(self):
        assert extract_text('{"output": "hello"}') == "hello"

    def test_field_precedence(self):
        assert extract_text('{"message": "m", "response": "r"}') == "r"

    def test_skips_empty_fields(self):
        assert extract_text('{"output": "", "text": "t"}') == "t"

    def test_object_without_text_is_empty(self):
        assert extract_text('{"status": "ok"}') == ""

    def test_list_uses_first_element(self):
        assert extract_text('[{"output": "first"}, {"output": "second"}]') == "first"

    def test_json_string(self):
        assert extract_text('"plain"') == "plain"

    def test_non_json_returned_raw(self):
        assert extract_text("## Report\n- item") == "## Report\n- item"


# -- GenerationRequest ---------------------------------------------------------


def test_payload_merges_context():
    payload = _request().to_payload()
    assert payload == {
        "prompt": "Summarize weekly sales",
        "chatInput": "Summarize weekly sales",
        "user_id": "u1",
        "team_id": "t1",
        "source": "scheduled_report",
        "report_title": "Weekly Sales Summary",
    }


# -- WorkflowWebhookClient -----------------------------------------------------


class TestWorkflowWebhookClient:
    def test_satisfies_protocol(self):
        assert isinstance(WorkflowWebhookClient(url=WEBHOOK_URL), GenerationService)

    async def test_success(self):
        client = WorkflowWebhookClient(url=WEBHOOK_URL, api_key="secret-key")
        with patch("cadence.generation.webhook.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _response(json={"output": "Sales up 4%"}))
            text = await client.generate(_request())

        assert text == "Sales up 4%"
        _, kwargs = mock_client.post.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
        assert kwargs["json"]["chatInput"] == "Summarize weekly sales"

    async def test_no_auth_header_without_key(self):
        client = WorkflowWebhookClient(url=WEBHOOK_URL, api_key="")
        with patch("cadence.generation.webhook.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _response(text="raw text"))
            text = await client.generate(_request())

        assert text == "raw text"
        _, kwargs = mock_client.post.call_args
        assert "Authorization" not in kwargs["headers"]

    async def test_http_error_status(self):
        client = WorkflowWebhookClient(url=WEBHOOK_URL)
        with patch("cadence.generation.webhook.httpx.AsyncClient") as mock_cls:
            _mock_httpx_client(mock_cls, _response(502, text="bad gateway"))
            with pytest.raises(GenerationError, match="Webhook failed: 502") as exc_info:
                await client.generate(_request())
        assert exc_info.value.status_code == 502

    async def test_transport_error(self):
        client = WorkflowWebhookClient(url=WEBHOOK_URL)
        with patch("cadence.generation.webhook.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _response())
            mock_client.post.side_effect = httpx.ConnectTimeout("timed out")
            with pytest.raises(GenerationError, match="ConnectTimeout"):
                await client.generate(_request())

    async def test_unconfigured(self):
        client = WorkflowWebhookClient(url="")
        assert not client.configured
        with pytest.raises(GenerationError, match="not configured"):
            await client.generate(_request())
