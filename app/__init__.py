"""Subscription sync and submission orchestrator.

This package contains the job orchestration core: a quota-aware credential
pool, a generic recurring-job runner, the subscription sync engine and the
bounded-concurrency submission queue, plus the FastAPI surface around them.
"""

from app.database import async_session_factory
from app.models import Base, ContentItem, Credential, JobStatus, Subscription

__all__ = [
    "Base",
    "ContentItem",
    "Credential",
    "JobStatus",
    "Subscription",
    "async_session_factory",
]
