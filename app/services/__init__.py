"""Business logic services for the orchestration core."""

from app.exceptions import ConfigurationError
from app.services.completion import mark_item_completed
from app.services.credential_pool import CredentialLease, CredentialPool
from app.services.job_runner import JobRunner, TriggerResult, next_run_time
from app.services.status_store import JobFailed, JobIdle, JobStarted, JobSucceeded, StatusStore
from app.services.submission_queue import SubmissionQueue
from app.services.sync_engine import SyncEngine, SyncResult

__all__ = [
    "ConfigurationError",
    "CredentialLease",
    "CredentialPool",
    "JobFailed",
    "JobIdle",
    "JobRunner",
    "JobStarted",
    "JobSucceeded",
    "StatusStore",
    "SubmissionQueue",
    "SyncEngine",
    "SyncResult",
    "TriggerResult",
    "mark_item_completed",
    "next_run_time",
]
