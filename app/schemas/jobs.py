"""Pydantic schemas for the job dashboard and queue endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models import JobState


class JobStatusResponse(BaseModel):
    """Serialized JobStatus row plus the live lock state."""

    model_config = ConfigDict(from_attributes=True)

    task_name: str
    status: JobState
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    message: str | None = None
    run_count: int = 0
    is_running: bool = False


class TriggerResponse(BaseModel):
    """Result of a manual trigger request."""

    task_name: str
    result: str


class QueueSnapshotResponse(BaseModel):
    """Current state of the submission queue."""

    queue_length: int
    active_count: int
    concurrency_limit: int
    queued_ids: list[int]
