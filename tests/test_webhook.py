"""
Test Outcome Webhook Module
===========================

Unit tests for outcome reporting over HTTP.
"""

import pytest
import httpx
from unittest.mock import patch, MagicMock
from pathlib import Path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import SMSConfig
from core.models import InboundMessage
from services.forwarder import ForwardOutcome, SkipReason
from services.webhook import OutcomeWebhook


@pytest.fixture
def message():
    return InboundMessage(parts=("URG", "ENT"), metadata={"sender": "+1234567890"})


class TestOutcomeWebhook:
    """Tests for OutcomeWebhook."""

    def test_from_config_disabled(self):
        assert OutcomeWebhook.from_config(SMSConfig()) is None

    def test_from_config_enabled(self):
        config = SMSConfig(
            webhook_enabled=True,
            webhook_url="https://example.org/hook",
            webhook_headers={"X-Token": "abc"}
        )
        webhook = OutcomeWebhook.from_config(config)
        assert webhook.url == "https://example.org/hook"
        assert webhook.headers == {"X-Token": "abc"}

    def test_payload(self, message):
        webhook = OutcomeWebhook("https://example.org/hook")
        payload = webhook.build_payload(message, ForwardOutcome.forwarded(1, matched_keyword="urgent"))

        assert payload["message"] == {"sender": "+12****7890", "length": 6, "parts": 2}
        assert payload["outcome"]["status"] == "forwarded"
        assert payload["outcome"]["matched_keyword"] == "urgent"
        assert "timestamp" in payload

    @patch("services.webhook.httpx.Client")
    def test_notify_posts(self, mock_client_cls, message):
        client = mock_client_cls.return_value.__enter__.return_value
        webhook = OutcomeWebhook(
            "https://example.org/hook", headers={"X-Token": "abc"}, background=False
        )

        webhook.notify(message, ForwardOutcome.skipped(SkipReason.NO_KEYWORD_MATCH))

        client.post.assert_called_once()
        args, kwargs = client.post.call_args
        assert args[0] == "https://example.org/hook"
        assert kwargs["headers"] == {"X-Token": "abc"}
        assert kwargs["json"]["outcome"]["reason"] == "no_keyword_match"

    @patch("services.webhook.httpx.Client")
    def test_http_error_is_logged_not_raised(self, mock_client_cls, message):
        client = mock_client_cls.return_value.__enter__.return_value
        client.post.side_effect = httpx.ConnectError("refused")
        webhook = OutcomeWebhook("https://example.org/hook", background=False)

        webhook.notify(message, ForwardOutcome.forwarded(1))  # Should not raise

    @patch("services.webhook.httpx.Client")
    def test_error_status_is_logged_not_raised(self, mock_client_cls, message):
        client = mock_client_cls.return_value.__enter__.return_value
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "server error", request=MagicMock(), response=MagicMock()
        )
        client.post.return_value = response
        webhook = OutcomeWebhook("https://example.org/hook", background=False)

        webhook.notify(message, ForwardOutcome.forwarded(1))  # Should not raise
