"""Generic recurring-job runner with single-flight execution and timeouts.

One engine drives every recurring job (content sync, missing-data repair,
pending-submission re-scan). Each job is a zero-argument coroutine function
returning an optional summary message.

Architecture Pattern:
    - One asyncio scheduling loop per job; each firing is spawned as its own
      task so a slow run never delays the cadence
    - Single-flight: an in-memory per-task lock, acquired synchronously on
      the event loop; a firing that finds the lock held is skipped
    - Timeout race: work() against the job timeout via asyncio.wait; a run
      that loses the race is orphaned, not cancelled, and its eventual
      result is only logged
    - Status persistence through StatusStore: running → success | failed
    - The lock is released in a finally on every exit path, and only the
      lock holder writes status

Job state machine (per task, no terminal state):
    idle → running → success | failed → running → ...
"""

import asyncio
import enum
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.config import get_job_timeout_seconds
from app.constants import DEFAULT_SCHEDULE_INTERVAL_MINUTES
from app.exceptions import JobTimeoutError
from app.models import utcnow
from app.services.status_store import (
    JobFailed,
    JobIdle,
    JobStarted,
    JobSucceeded,
    StatusStore,
    StatusUpdate,
)
from app.utils.logging import get_logger

log = get_logger(__name__)

JobWork = Callable[[], Awaitable[str | None]]

_EVERY_N_MINUTES = re.compile(r"^\*/(\d+) \* \* \* \*$")
_EVERY_N_HOURS = re.compile(r"^0 \*/(\d+) \* \* \*$")
_EVERY_INTERVAL = re.compile(r"^@every (\d+)([smh])$")
_INTERVAL_UNITS = {"s": "seconds", "m": "minutes", "h": "hours"}


class TriggerResult(enum.Enum):
    """Outcome of a manual trigger."""

    ACCEPTED = "accepted"
    BUSY = "busy"


@dataclass
class ScheduledJob:
    task_name: str
    schedule_expr: str
    work: JobWork
    timeout: float


def _fallback(schedule_expr: str, now: datetime) -> datetime:
    log.warning(
        "schedule_expression_unsupported",
        schedule_expr=schedule_expr,
        fallback_minutes=DEFAULT_SCHEDULE_INTERVAL_MINUTES,
    )
    return now + timedelta(minutes=DEFAULT_SCHEDULE_INTERVAL_MINUTES)


def next_run_time(schedule_expr: str, now: datetime | None = None) -> datetime:
    """Compute the next firing time of a schedule expression.

    Exact for:
        "*/N * * * *"   every N minutes (minute divisible by N, 1 ≤ N ≤ 59)
        "0 * * * *"     at the top of every hour
        "0 */N * * *"   at the top of every hour divisible by N (1 ≤ N ≤ 23)
        "@every 30s" / "@every 10m" / "@every 2h"   fixed interval from now

    Anything else falls back to now + 15 minutes and never raises.

    Returns:
        A datetime strictly after `now`.
    """
    now = now or utcnow()
    expr = " ".join((schedule_expr or "").split())

    match = _EVERY_INTERVAL.match(expr)
    if match:
        amount = int(match.group(1))
        if amount <= 0:
            return _fallback(schedule_expr, now)
        return now + timedelta(**{_INTERVAL_UNITS[match.group(2)]: amount})

    base = now.replace(second=0, microsecond=0)

    if expr == "0 * * * *":
        return base.replace(minute=0) + timedelta(hours=1)

    match = _EVERY_N_MINUTES.match(expr)
    if match:
        step = int(match.group(1))
        if not 1 <= step <= 59:
            return _fallback(schedule_expr, now)
        candidate = base + timedelta(minutes=1)
        while candidate.minute % step:
            candidate += timedelta(minutes=1)
        return candidate

    match = _EVERY_N_HOURS.match(expr)
    if match:
        step = int(match.group(1))
        if not 1 <= step <= 23:
            return _fallback(schedule_expr, now)
        candidate = base.replace(minute=0) + timedelta(hours=1)
        while candidate.hour % step:
            candidate += timedelta(hours=1)
        return candidate

    return _fallback(schedule_expr, now)


def _log_orphan_result(task_name: str, task: "asyncio.Task[str | None]") -> None:
    if task.cancelled():
        log.info("job_orphan_cancelled", task_name=task_name)
        return
    error = task.exception()
    if error is not None:
        log.warning(
            "job_orphan_failed",
            task_name=task_name,
            error=str(error),
            error_type=type(error).__name__,
        )
    else:
        log.info("job_orphan_finished", task_name=task_name, message=task.result())


class JobRunner:
    """Schedules recurring jobs and runs each one at most once at a time."""

    def __init__(
        self,
        status_store: StatusStore,
        default_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = status_store
        self._default_timeout = default_timeout
        self._clock = clock
        self._jobs: dict[str, ScheduledJob] = {}
        self._running: set[str] = set()
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._firings: set[asyncio.Task[None]] = set()
        self._work_tasks: set[asyncio.Future[str | None]] = set()

    @property
    def jobs(self) -> dict[str, ScheduledJob]:
        return dict(self._jobs)

    def schedule(
        self,
        task_name: str,
        schedule_expr: str,
        work: JobWork,
        timeout: float | None = None,
    ) -> ScheduledJob:
        """Register a recurring job. Re-registering a name replaces it."""
        if timeout is None:
            timeout = self._default_timeout
        if timeout is None:
            timeout = get_job_timeout_seconds()
        job = ScheduledJob(
            task_name=task_name,
            schedule_expr=schedule_expr,
            work=work,
            timeout=timeout,
        )
        self._jobs[task_name] = job
        log.info(
            "job_scheduled",
            task_name=task_name,
            schedule_expr=schedule_expr,
            timeout_seconds=job.timeout,
        )
        return job

    def is_running(self, task_name: str) -> bool:
        return task_name in self._running

    async def start(self) -> None:
        """Persist idle status for every job and arm its scheduling loop."""
        now = self._clock()
        first_runs = {
            name: next_run_time(job.schedule_expr, now) for name, job in self._jobs.items()
        }
        await self._store.initialize(first_runs)
        for name, next_run_at in first_runs.items():
            if name in self._running:
                continue
            # Clears a stale "running" row left by a previous process
            await self._store.record(name, JobIdle(next_run_at=next_run_at))

        for name, job in self._jobs.items():
            if name not in self._loops:
                self._loops[name] = asyncio.create_task(
                    self._schedule_loop(job), name=f"schedule:{name}"
                )
        log.info("job_runner_started", jobs=list(self._jobs))

    async def shutdown(self) -> None:
        """Cancel scheduling loops, in-flight firings and orphaned runs."""
        tasks: list[asyncio.Future] = [*self._loops.values(), *self._firings, *self._work_tasks]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._firings.clear()
        self._work_tasks.clear()
        log.info("job_runner_stopped", cancelled=len(tasks))

    async def trigger_now(self, task_name: str, wait: bool = False) -> TriggerResult:
        """Run a job immediately, unless it is already running.

        Args:
            task_name: Registered job name.
            wait: Await the run before returning.

        Returns:
            ACCEPTED if a run was started, BUSY if one is in flight.

        Raises:
            KeyError: Unknown task name.
        """
        job = self._jobs[task_name]
        firing = self._spawn_firing(job)
        if firing is None:
            return TriggerResult.BUSY
        log.info("job_triggered_manually", task_name=task_name)
        if wait:
            await firing
        return TriggerResult.ACCEPTED

    def _spawn_firing(self, job: ScheduledJob) -> "asyncio.Task[None] | None":
        # Lock check and acquisition happen without an await in between
        if job.task_name in self._running:
            log.warning("job_skipped_busy", task_name=job.task_name)
            return None
        self._running.add(job.task_name)
        firing = asyncio.create_task(self._run_locked(job), name=f"run:{job.task_name}")
        self._firings.add(firing)
        firing.add_done_callback(self._firings.discard)
        return firing

    async def _schedule_loop(self, job: ScheduledJob) -> None:
        while True:
            now = self._clock()
            delay = (next_run_time(job.schedule_expr, now) - now).total_seconds()
            await asyncio.sleep(max(0.0, delay))
            self._spawn_firing(job)

    async def _record(self, task_name: str, update: StatusUpdate) -> None:
        try:
            await self._store.record(task_name, update)
        except Exception as e:
            log.error(
                "job_status_write_failed",
                task_name=task_name,
                update=type(update).__name__,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _run_locked(self, job: ScheduledJob) -> None:
        """Execute one firing. The caller has already acquired the lock."""
        name = job.task_name
        try:
            started_at = self._clock()
            await self._record(name, JobStarted(started_at=started_at))
            log.info("job_started", task_name=name)

            update: StatusUpdate
            try:
                message = await self._race(job)
            except Exception as e:
                error = str(e) or type(e).__name__
                update = JobFailed(
                    next_run_at=next_run_time(job.schedule_expr, self._clock()),
                    message=error,
                )
                log.error(
                    "job_failed",
                    task_name=name,
                    error=error,
                    error_type=type(e).__name__,
                )
            else:
                update = JobSucceeded(
                    next_run_at=next_run_time(job.schedule_expr, self._clock()),
                    message=message or "Completed",
                )
                log.info(
                    "job_completed",
                    task_name=name,
                    message=message,
                    duration_seconds=(self._clock() - started_at).total_seconds(),
                )
            await self._record(name, update)
        finally:
            self._running.discard(name)

    async def _race(self, job: ScheduledJob) -> str | None:
        work = asyncio.ensure_future(job.work())
        self._work_tasks.add(work)
        work.add_done_callback(self._work_tasks.discard)

        done, _ = await asyncio.wait({work}, timeout=job.timeout)
        if work in done:
            return work.result()

        work.add_done_callback(lambda t: _log_orphan_result(job.task_name, t))
        raise JobTimeoutError(job.task_name, job.timeout)
