"""Tests for service wiring."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from cadence.delivery.triggers import TriggerClient
from cadence.services import build_services

pytestmark = pytest.mark.usefixtures("_no_turso")


def test_injected_generator_counts_as_configured(db_path: Path) -> None:
    services = build_services(
        db_path, generator=AsyncMock(), triggers=AsyncMock(spec=TriggerClient)
    )
    assert services.generation_configured is True
    assert services.tasks._db_path == db_path
    assert services.messages._db_path == db_path


def test_missing_webhook_url_is_reported(db_path: Path) -> None:
    with patch("cadence.generation.webhook.settings.generation_webhook_url", ""):
        services = build_services(db_path)
    assert services.generation_configured is False


def test_webhook_url_enables_generation(db_path: Path) -> None:
    with patch(
        "cadence.generation.webhook.settings.generation_webhook_url", "https://wf.test/hook"
    ):
        services = build_services(db_path)
    assert services.generation_configured is True
