"""Pydantic schemas for validation and serialization."""

from app.schemas.content import FetchedItem
from app.schemas.jobs import JobStatusResponse, QueueSnapshotResponse, TriggerResponse
from app.schemas.webhook import CompletionWebhookPayload

__all__ = [
    "CompletionWebhookPayload",
    "FetchedItem",
    "JobStatusResponse",
    "QueueSnapshotResponse",
    "TriggerResponse",
]
