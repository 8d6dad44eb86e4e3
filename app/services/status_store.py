"""Persisted status of recurring jobs (one JobStatus row per task).

The JobRunner is the only writer. Updates are passed as one of four typed
variants, so a caller cannot build a half-specified status change:

    JobStarted    → running, last_run_at = started_at
    JobSucceeded  → success, next_run_at, message, run_count + 1
    JobFailed     → failed,  next_run_at, message, run_count + 1
    JobIdle       → idle,    next_run_at

Rows are created on demand, so recording against a task that was never
initialized still works.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import JobState, JobStatus
from app.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class JobStarted:
    started_at: datetime


@dataclass(frozen=True)
class JobSucceeded:
    next_run_at: datetime | None
    message: str | None = None


@dataclass(frozen=True)
class JobFailed:
    next_run_at: datetime | None
    message: str


@dataclass(frozen=True)
class JobIdle:
    next_run_at: datetime | None


StatusUpdate = JobStarted | JobSucceeded | JobFailed | JobIdle


def _apply(row: JobStatus, update: StatusUpdate) -> None:
    if isinstance(update, JobStarted):
        row.status = JobState.RUNNING
        row.last_run_at = update.started_at
    elif isinstance(update, (JobSucceeded, JobFailed)):
        row.status = JobState.SUCCESS if isinstance(update, JobSucceeded) else JobState.FAILED
        row.next_run_at = update.next_run_at
        row.message = update.message
        row.run_count = (row.run_count or 0) + 1
    elif isinstance(update, JobIdle):
        row.status = JobState.IDLE
        row.next_run_at = update.next_run_at
    else:
        raise TypeError(f"Unsupported status update: {update!r}")


class StatusStore:
    """Reads and writes JobStatus rows with short-lived sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def initialize(self, tasks: dict[str, datetime | None]) -> None:
        """Create an idle row for every task that does not have one yet.

        Args:
            tasks: Mapping of task name to its first scheduled run time.
        """
        async with self._session_factory() as session:
            existing = set(
                (
                    await session.execute(
                        select(JobStatus.task_name).where(JobStatus.task_name.in_(list(tasks)))
                    )
                ).scalars()
            )
            for task_name, next_run_at in tasks.items():
                if task_name in existing:
                    continue
                session.add(
                    JobStatus(
                        task_name=task_name,
                        status=JobState.IDLE,
                        next_run_at=next_run_at,
                        message="Task initialized",
                        run_count=0,
                    )
                )
            await session.commit()

        created = [name for name in tasks if name not in existing]
        if created:
            log.info("job_status_initialized", tasks=created)

    async def record(self, task_name: str, update: StatusUpdate) -> JobStatus:
        """Apply one status update to a task's row, creating it if missing."""
        async with self._session_factory() as session:
            row = await session.scalar(select(JobStatus).where(JobStatus.task_name == task_name))
            if row is None:
                row = JobStatus(task_name=task_name, status=JobState.IDLE, run_count=0)
                session.add(row)
            _apply(row, update)
            await session.commit()

        log.debug("job_status_recorded", task_name=task_name, status=row.status.value)
        return row

    async def get(self, task_name: str) -> JobStatus | None:
        async with self._session_factory() as session:
            return await session.scalar(select(JobStatus).where(JobStatus.task_name == task_name))

    async def list_all(self) -> list[JobStatus]:
        async with self._session_factory() as session:
            result = await session.execute(select(JobStatus).order_by(JobStatus.task_name))
            return list(result.scalars().all())
