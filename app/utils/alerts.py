"""Discord webhook alerts for credential quota pressure and job failures.

Sends structured alerts to a Discord channel via the webhook URL configured
in DISCORD_WEBHOOK_URL. Alerting is best effort: a missing URL or a failed
delivery is logged and never raised to the caller.

Architecture Pattern:
    - Async HTTP client (httpx)
    - Message truncation (Discord 2000 char / 1024 char field limits)
    - Timeout handling (5s max)
    - Per-key throttling so a hot loop cannot spam the channel
"""

import os
from datetime import datetime, timezone

import httpx
import structlog

log = structlog.get_logger(__name__)

# Minimum seconds between two alerts with the same throttle key
MIN_ALERT_INTERVAL_SECONDS = 300

_last_alert_times: dict[tuple[str, str], datetime] = {}

_COLORS = {
    "CRITICAL": 0xFF0000,
    "WARNING": 0xFFA500,
    "INFO": 0x0000FF,
}


def should_send_alert(key: str, level: str, now: datetime | None = None) -> bool:
    """Check whether an alert for (key, level) is outside the throttle window.

    Records the send time when the alert is allowed.

    Args:
        key: Throttle key, e.g. "credential:3" or "job:content_sync"
        level: Alert level ("WARNING" or "CRITICAL")
        now: Current time (defaults to UTC now)

    Returns:
        True if alert should be sent, False if throttled
    """
    now = now or datetime.now(timezone.utc)
    last = _last_alert_times.get((key, level))
    if last is not None and (now - last).total_seconds() < MIN_ALERT_INTERVAL_SECONDS:
        log.debug("alert_throttled", key=key, level=level)
        return False
    _last_alert_times[(key, level)] = now
    return True


def reset_alert_throttle() -> None:
    """Forget all throttle timestamps (for testing)."""
    _last_alert_times.clear()


async def send_alert(level: str, message: str, details: dict[str, str] | None = None) -> None:
    """Send alert to Discord webhook.

    Args:
        level: Alert level ("CRITICAL", "WARNING", "INFO")
        message: Alert message (truncated to 2000 chars)
        details: Optional structured details rendered as embed fields

    Example:
        >>> await send_alert(
        ...     level="WARNING",
        ...     message="Credential 'primary' at 85% of daily quota",
        ...     details={"used": "8500", "limit": "10000"},
        ... )
    """
    webhook_url = os.getenv("DISCORD_WEBHOOK_URL")
    if not webhook_url:
        log.debug("discord_webhook_not_configured", level=level, message=message[:100])
        return

    sanitized_message = message[:2000]
    payload = {
        "content": f"**{level}**: {sanitized_message}",
        "embeds": [
            {
                "title": f"{level} Alert",
                "description": sanitized_message,
                "fields": [
                    {"name": key, "value": str(value)[:1024], "inline": True}
                    for key, value in (details or {}).items()
                ],
                "color": _COLORS.get(level, 0x808080),
            }
        ],
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(webhook_url, json=payload, timeout=5.0)
            response.raise_for_status()
        log.info("discord_alert_sent", level=level, message=message[:100])
    except httpx.TimeoutException:
        log.error("discord_webhook_timeout")
    except httpx.HTTPStatusError as e:
        log.error(
            "discord_webhook_http_error",
            status_code=e.response.status_code,
            response=e.response.text[:500],
        )
    except httpx.HTTPError as e:
        log.error("discord_webhook_failed", error=str(e))
