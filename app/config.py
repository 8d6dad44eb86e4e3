"""Configuration management for the orchestration core.

This module provides centralized configuration loading from environment
variables. Required values are cached with lru_cache; tunables are read on
every call so tests can monkeypatch the environment.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required for production)
    FERNET_KEY: Encryption key for credential secrets (required)
    YOUTUBE_API_KEY: Bootstrap credential added when the pool is empty (optional)
    SYNC_SCHEDULE: Schedule expression for the content sync job
    MISSING_DATA_SCHEDULE: Schedule expression for the duration repair job
    PENDING_RETRY_SCHEDULE: Schedule expression for the pending re-scan job
    JOB_TIMEOUT_MINUTES: Per-run timeout for every job (default: 50)
    MAX_CONCURRENT_SUBMISSIONS: Submission queue concurrency (default: 2)
    SUBMISSION_MAX_DURATION_SECONDS: Submission duration cap (default: 1800)
    SUBMISSION_SERVICE_URL: Base URL of the AI submission service
    SUBMISSION_SERVICE_TOKEN: Bearer token for the submission service
    TRANSLATION_SERVICE: "google" or "none" (default: "none")
    TRANSLATION_TARGET_LANG: Target language code (default: "zh-CN")
    QUOTA_RESET_TIMEZONE: IANA zone of the upstream quota day (default: America/Los_Angeles)
    COMPLETION_WEBHOOK_SECRET: HMAC secret for the completion webhook

Usage:
    from app.config import get_database_url, get_job_timeout_seconds

    db_url = get_database_url()  # Raises if DATABASE_URL not set
    timeout = get_job_timeout_seconds()
"""

import os
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

log = structlog.get_logger(__name__)

# Defaults
DEFAULT_SYNC_SCHEDULE = "*/15 * * * *"
DEFAULT_MISSING_DATA_SCHEDULE = "0 * * * *"
DEFAULT_PENDING_RETRY_SCHEDULE = "*/15 * * * *"
DEFAULT_JOB_TIMEOUT_MINUTES = 50
DEFAULT_MAX_CONCURRENT_SUBMISSIONS = 2
DEFAULT_SUBMISSION_MAX_DURATION_SECONDS = 1800  # 30 minutes
DEFAULT_QUOTA_RESET_TIMEZONE = "America/Los_Angeles"


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Returns:
        Database URL with asyncpg driver.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


@lru_cache
def get_fernet_key() -> str:
    """Get Fernet encryption key from environment.

    Raises:
        ValueError: If FERNET_KEY not set.
    """
    key = os.getenv("FERNET_KEY")
    if not key:
        raise ValueError("FERNET_KEY environment variable is required")
    return key


def get_bootstrap_api_key() -> str | None:
    """Get the YouTube API key used to seed an empty credential pool.

    Returns:
        API key string, or None if not set.
    """
    return os.getenv("YOUTUBE_API_KEY") or None


def get_sync_schedule() -> str:
    """Schedule expression for the content sync job (default: every 15 minutes)."""
    return os.getenv("SYNC_SCHEDULE", DEFAULT_SYNC_SCHEDULE)


def get_missing_data_schedule() -> str:
    """Schedule expression for the missing-duration repair job (default: hourly)."""
    return os.getenv("MISSING_DATA_SCHEDULE", DEFAULT_MISSING_DATA_SCHEDULE)


def get_pending_retry_schedule() -> str:
    """Schedule expression for the pending-submission re-scan job."""
    return os.getenv("PENDING_RETRY_SCHEDULE", DEFAULT_PENDING_RETRY_SCHEDULE)


def get_job_timeout_seconds() -> float:
    """Get the per-run job timeout in seconds.

    Environment Variable:
        JOB_TIMEOUT_MINUTES: Timeout in minutes (default: 50)

    Returns:
        Timeout in seconds, clamped between 1 and 240 minutes.
    """
    try:
        minutes = int(os.getenv("JOB_TIMEOUT_MINUTES", str(DEFAULT_JOB_TIMEOUT_MINUTES)))
    except ValueError:
        log.warning(
            "invalid_job_timeout",
            value=os.getenv("JOB_TIMEOUT_MINUTES"),
            using_default=DEFAULT_JOB_TIMEOUT_MINUTES,
        )
        minutes = DEFAULT_JOB_TIMEOUT_MINUTES
    return float(max(1, min(240, minutes)) * 60)


def get_max_concurrent_submissions() -> int:
    """Get max concurrent submissions to the AI service.

    Environment Variable:
        MAX_CONCURRENT_SUBMISSIONS: Maximum parallel submissions (default: 2)

    Returns:
        Concurrency limit, clamped between 1 and 10.

    Note:
        The downstream service is slow and session based; more than a couple
        of parallel submissions tends to trip its own throttling.
    """
    try:
        value = int(
            os.getenv("MAX_CONCURRENT_SUBMISSIONS", str(DEFAULT_MAX_CONCURRENT_SUBMISSIONS))
        )
    except ValueError:
        log.warning(
            "invalid_max_concurrent_submissions",
            value=os.getenv("MAX_CONCURRENT_SUBMISSIONS"),
            using_default=DEFAULT_MAX_CONCURRENT_SUBMISSIONS,
        )
        return DEFAULT_MAX_CONCURRENT_SUBMISSIONS
    return max(1, min(10, value))


def get_submission_max_duration_seconds() -> int | None:
    """Get the submission queue's own duration cap.

    Environment Variable:
        SUBMISSION_MAX_DURATION_SECONDS: Cap in seconds (default: 1800).
            "0" disables the cap.

    Returns:
        Cap in seconds, or None when disabled.
    """
    raw = os.getenv("SUBMISSION_MAX_DURATION_SECONDS", str(DEFAULT_SUBMISSION_MAX_DURATION_SECONDS))
    try:
        value = int(raw)
    except ValueError:
        log.warning(
            "invalid_submission_max_duration",
            value=raw,
            using_default=DEFAULT_SUBMISSION_MAX_DURATION_SECONDS,
        )
        return DEFAULT_SUBMISSION_MAX_DURATION_SECONDS
    return value if value > 0 else None


def get_submission_service_url() -> str | None:
    """Base URL of the AI submission service, or None if not configured."""
    return os.getenv("SUBMISSION_SERVICE_URL") or None


def get_submission_service_token() -> str | None:
    """Bearer token for the AI submission service, or None."""
    return os.getenv("SUBMISSION_SERVICE_TOKEN") or None


def get_translation_service() -> str:
    """Get the translation backend name ("google" or "none").

    Note:
        Any value other than "google" disables translation; synced items then
        keep their original title and description.
    """
    return os.getenv("TRANSLATION_SERVICE", "none").strip().lower()


def get_translation_target_lang() -> str:
    """Target language code for metadata translation (default: zh-CN)."""
    return os.getenv("TRANSLATION_TARGET_LANG", "zh-CN")


def get_quota_reset_timezone() -> str:
    """IANA timezone whose midnight starts a new upstream quota day.

    YouTube Data API quotas reset at midnight Pacific Time, so the default
    follows America/Los_Angeles including its DST transitions. Unknown zone
    names fall back to the default with a warning.
    """
    value = os.getenv("QUOTA_RESET_TIMEZONE", DEFAULT_QUOTA_RESET_TIMEZONE)
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning(
            "invalid_quota_reset_timezone",
            value=value,
            using_default=DEFAULT_QUOTA_RESET_TIMEZONE,
        )
        return DEFAULT_QUOTA_RESET_TIMEZONE
    return value


def get_completion_webhook_secret() -> str:
    """Shared HMAC secret for the completion webhook (empty when unset)."""
    return os.getenv("COMPLETION_WEBHOOK_SECRET", "")
