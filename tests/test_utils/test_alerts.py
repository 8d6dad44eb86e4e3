"""Tests for Discord webhook alerts and alert throttling.

Tests cover:
    - send_alert: Discord webhook integration
    - Message sanitization (2000 char limit)
    - Graceful degradation (log on failure, don't crash)
    - should_send_alert: per-key, per-level throttle window
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.utils.alerts import MIN_ALERT_INTERVAL_SECONDS, send_alert, should_send_alert


@pytest.fixture
def mock_webhook_url(monkeypatch):
    """Mock DISCORD_WEBHOOK_URL environment variable."""
    webhook_url = "https://discord.com/api/webhooks/test/webhook"
    monkeypatch.setenv("DISCORD_WEBHOOK_URL", webhook_url)
    return webhook_url


class TestSendAlert:
    """Test send_alert function."""

    async def test_send_warning_alert_with_details(self, mock_webhook_url):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = MagicMock(status_code=204)

            await send_alert(
                level="WARNING",
                message="Credential 'primary' at 85% of daily quota",
                details={"used": "8500", "limit": "10000"},
            )

            mock_post.assert_called_once()
            url = mock_post.call_args.args[0]
            payload = mock_post.call_args.kwargs["json"]
            assert url == mock_webhook_url
            assert payload["content"].startswith("**WARNING**")
            assert payload["embeds"][0]["color"] == 0xFFA500
            assert {"name": "used", "value": "8500", "inline": True} in payload["embeds"][0][
                "fields"
            ]

    async def test_long_messages_are_truncated(self, mock_webhook_url):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = MagicMock(status_code=204)

            await send_alert(level="CRITICAL", message="x" * 5000)

            payload = mock_post.call_args.kwargs["json"]
            assert len(payload["embeds"][0]["description"]) == 2000

    async def test_no_webhook_url_skips_request(self, monkeypatch):
        monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            await send_alert(level="CRITICAL", message="ignored")

            mock_post.assert_not_called()

    async def test_timeout_is_swallowed(self, mock_webhook_url):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=httpx.TimeoutException("slow"),
        ):
            await send_alert(level="CRITICAL", message="still fine")

    async def test_http_error_is_swallowed(self, mock_webhook_url):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("refused"),
        ):
            await send_alert(level="WARNING", message="still fine")


class TestShouldSendAlert:
    def test_first_alert_is_allowed(self):
        assert should_send_alert("credential:1", "WARNING") is True

    def test_repeat_within_window_is_throttled(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

        assert should_send_alert("credential:1", "WARNING", now) is True
        assert should_send_alert("credential:1", "WARNING", now + timedelta(seconds=10)) is False

    def test_repeat_after_window_is_allowed(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        later = now + timedelta(seconds=MIN_ALERT_INTERVAL_SECONDS + 1)

        assert should_send_alert("credential:1", "WARNING", now) is True
        assert should_send_alert("credential:1", "WARNING", later) is True

    def test_levels_and_keys_are_throttled_separately(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

        assert should_send_alert("credential:1", "WARNING", now) is True
        assert should_send_alert("credential:1", "CRITICAL", now) is True
        assert should_send_alert("credential:2", "WARNING", now) is True
