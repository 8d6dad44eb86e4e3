"""Tests for the generic recurring-job runner.

Tests cover:
    - next_run_time: supported schedule expressions and fallback
    - trigger_now: success / failure status persistence
    - Single-flight: a second firing while running is rejected (BUSY)
    - Timeout: the run is marked failed, the lock is released, and the
      orphaned work's late result never touches the status row
    - start()/shutdown(): status rows initialized, loops cancelled
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models import JobState
from app.services.job_runner import JobRunner, TriggerResult, next_run_time
from app.services.status_store import StatusStore

NOW = datetime(2026, 1, 1, 12, 7, 30, tzinfo=timezone.utc)


@pytest.fixture
def runner(status_store: StatusStore):
    return JobRunner(status_store, default_timeout=5)


@pytest.fixture
async def started_runner(runner: JobRunner):
    yield runner
    await runner.shutdown()


class TestNextRunTime:
    """Test schedule expression evaluation."""

    def test_every_n_minutes_aligns_to_minute_boundary(self):
        assert next_run_time("*/15 * * * *", NOW) == datetime(2026, 1, 1, 12, 15, tzinfo=timezone.utc)

    def test_every_n_minutes_is_strictly_after_now(self):
        on_boundary = datetime(2026, 1, 1, 12, 15, tzinfo=timezone.utc)

        assert next_run_time("*/15 * * * *", on_boundary) == datetime(
            2026, 1, 1, 12, 30, tzinfo=timezone.utc
        )

    def test_every_n_minutes_rolls_over_the_hour(self):
        late = datetime(2026, 1, 1, 12, 50, tzinfo=timezone.utc)

        assert next_run_time("*/15 * * * *", late) == datetime(2026, 1, 1, 13, 0, tzinfo=timezone.utc)

    def test_hourly(self):
        assert next_run_time("0 * * * *", NOW) == datetime(2026, 1, 1, 13, 0, tzinfo=timezone.utc)

    def test_every_n_hours(self):
        assert next_run_time("0 */6 * * *", NOW) == datetime(2026, 1, 1, 18, 0, tzinfo=timezone.utc)

    def test_every_n_hours_crosses_midnight(self):
        late = datetime(2026, 1, 1, 19, 0, tzinfo=timezone.utc)

        assert next_run_time("0 */6 * * *", late) == datetime(2026, 1, 2, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        ("expr", "delta"),
        [
            ("@every 30s", timedelta(seconds=30)),
            ("@every 10m", timedelta(minutes=10)),
            ("@every 2h", timedelta(hours=2)),
        ],
    )
    def test_fixed_intervals(self, expr, delta):
        assert next_run_time(expr, NOW) == NOW + delta

    def test_extra_whitespace_is_tolerated(self):
        assert next_run_time("*/5  *  * * *", NOW) == datetime(2026, 1, 1, 12, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize("expr", ["bogus", "", "*/0 * * * *", "*/75 * * * *", "30 2 * * 1"])
    def test_unsupported_expressions_fall_back_to_15_minutes(self, expr):
        assert next_run_time(expr, NOW) == NOW + timedelta(minutes=15)


class TestTriggerNow:
    """Test manual triggering and status persistence."""

    async def test_successful_run_records_success(self, runner: JobRunner, status_store):
        runner.schedule("content_sync", "*/15 * * * *", AsyncMock(return_value="Synced 3 items"))

        result = await runner.trigger_now("content_sync", wait=True)

        assert result == TriggerResult.ACCEPTED
        row = await status_store.get("content_sync")
        assert row.status == JobState.SUCCESS
        assert row.message == "Synced 3 items"
        assert row.run_count == 1
        assert row.last_run_at is not None
        assert row.next_run_at is not None
        assert runner.is_running("content_sync") is False

    async def test_none_result_is_recorded_as_completed(self, runner: JobRunner, status_store):
        runner.schedule("content_sync", "*/15 * * * *", AsyncMock(return_value=None))

        await runner.trigger_now("content_sync", wait=True)

        assert (await status_store.get("content_sync")).message == "Completed"

    async def test_exception_records_failure_and_releases_lock(
        self, runner: JobRunner, status_store
    ):
        runner.schedule(
            "content_sync", "*/15 * * * *", AsyncMock(side_effect=RuntimeError("upstream down"))
        )

        await runner.trigger_now("content_sync", wait=True)

        row = await status_store.get("content_sync")
        assert row.status == JobState.FAILED
        assert row.message == "upstream down"
        assert row.run_count == 1
        assert runner.is_running("content_sync") is False

    async def test_unknown_task_raises_key_error(self, runner: JobRunner):
        with pytest.raises(KeyError):
            await runner.trigger_now("does_not_exist")

    async def test_status_write_failure_does_not_leak_lock(self):
        """A broken status store is logged; the lock is still released."""
        store = MagicMock()
        store.record = AsyncMock(side_effect=RuntimeError("database gone"))
        runner = JobRunner(store, default_timeout=5)
        work = AsyncMock(return_value="ok")
        runner.schedule("content_sync", "*/15 * * * *", work)

        await runner.trigger_now("content_sync", wait=True)

        work.assert_awaited_once()
        assert runner.is_running("content_sync") is False


class TestSingleFlight:
    """At most one run per task at any time."""

    async def test_second_trigger_while_running_is_busy(self, runner: JobRunner, status_store):
        release = asyncio.Event()
        started = asyncio.Event()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            started.set()
            await release.wait()
            return "done"

        runner.schedule("content_sync", "*/15 * * * *", work)

        first = await runner.trigger_now("content_sync")
        await asyncio.wait_for(started.wait(), timeout=2)
        second = await runner.trigger_now("content_sync")

        assert first == TriggerResult.ACCEPTED
        assert second == TriggerResult.BUSY
        assert runner.is_running("content_sync") is True
        assert (await status_store.get("content_sync")).status == JobState.RUNNING

        release.set()
        for _ in range(100):
            if not runner.is_running("content_sync"):
                break
            await asyncio.sleep(0.01)

        assert calls == 1
        assert (await runner.trigger_now("content_sync", wait=True)) == TriggerResult.ACCEPTED
        assert calls == 2

    async def test_lock_is_taken_before_first_await(self, runner: JobRunner):
        """Two triggers issued back to back never both start."""
        release = asyncio.Event()

        async def work():
            await release.wait()

        runner.schedule("content_sync", "*/15 * * * *", work)

        results = await asyncio.gather(
            runner.trigger_now("content_sync"), runner.trigger_now("content_sync")
        )
        release.set()

        assert sorted(r.value for r in results) == ["accepted", "busy"]
        await runner.shutdown()

    async def test_different_tasks_run_independently(self, runner: JobRunner):
        release = asyncio.Event()

        async def work():
            await release.wait()

        runner.schedule("content_sync", "*/15 * * * *", work)
        runner.schedule("missing_data_repair", "0 * * * *", work)

        assert await runner.trigger_now("content_sync") == TriggerResult.ACCEPTED
        assert await runner.trigger_now("missing_data_repair") == TriggerResult.ACCEPTED

        release.set()
        await runner.shutdown()


class TestTimeout:
    """The timeout race marks the run failed without waiting for the work."""

    async def test_timeout_marks_failed_and_ignores_late_result(
        self, runner: JobRunner, status_store
    ):
        release = asyncio.Event()
        finished = asyncio.Event()

        async def slow_work():
            await release.wait()
            finished.set()
            return "late result"

        runner.schedule("content_sync", "*/15 * * * *", slow_work, timeout=0.05)

        await runner.trigger_now("content_sync", wait=True)

        row = await status_store.get("content_sync")
        assert row.status == JobState.FAILED
        assert "timed out" in row.message
        assert runner.is_running("content_sync") is False

        # The orphaned run completes later; its result is only logged
        release.set()
        await asyncio.wait_for(finished.wait(), timeout=2)
        await asyncio.sleep(0.01)

        row = await status_store.get("content_sync")
        assert row.status == JobState.FAILED
        assert row.run_count == 1

    async def test_explicit_zero_timeout_is_kept(self, runner: JobRunner, status_store):
        release = asyncio.Event()

        async def slow_work():
            await release.wait()

        job = runner.schedule("content_sync", "*/15 * * * *", slow_work, timeout=0)
        await runner.trigger_now("content_sync", wait=True)

        assert job.timeout == 0
        row = await status_store.get("content_sync")
        assert row.status == JobState.FAILED
        release.set()
        await runner.shutdown()

    def test_missing_timeout_uses_runner_default(self, runner: JobRunner):
        job = runner.schedule("content_sync", "*/15 * * * *", AsyncMock(return_value="ok"))

        assert job.timeout == 5

    async def test_new_run_allowed_while_orphan_still_running(self, runner: JobRunner):
        release = asyncio.Event()

        async def slow_work():
            await release.wait()

        runner.schedule("content_sync", "*/15 * * * *", slow_work, timeout=0.05)

        await runner.trigger_now("content_sync", wait=True)

        assert await runner.trigger_now("content_sync") == TriggerResult.ACCEPTED
        release.set()
        await runner.shutdown()


class TestLifecycle:
    async def test_start_initializes_idle_status_rows(self, started_runner: JobRunner, status_store):
        started_runner.schedule("content_sync", "@every 1h", AsyncMock(return_value="ok"))
        started_runner.schedule("missing_data_repair", "0 * * * *", AsyncMock(return_value="ok"))

        await started_runner.start()

        rows = {row.task_name: row for row in await status_store.list_all()}
        assert set(rows) == {"content_sync", "missing_data_repair"}
        assert all(row.status == JobState.IDLE for row in rows.values())
        assert all(row.next_run_at is not None for row in rows.values())

    async def test_start_clears_stale_running_row(self, started_runner: JobRunner, status_store):
        from app.services.status_store import JobStarted

        await status_store.record("content_sync", JobStarted(started_at=NOW))
        started_runner.schedule("content_sync", "@every 1h", AsyncMock(return_value="ok"))

        await started_runner.start()

        assert (await status_store.get("content_sync")).status == JobState.IDLE

    @pytest.mark.slow
    async def test_schedule_loop_fires_job(self, started_runner: JobRunner):
        fired = asyncio.Event()

        async def work():
            fired.set()
            return "tick"

        started_runner.schedule("content_sync", "@every 1s", work)
        await started_runner.start()

        await asyncio.wait_for(fired.wait(), timeout=3)

    async def test_shutdown_cancels_in_flight_work(self, runner: JobRunner):
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        runner.schedule("content_sync", "@every 1h", work)
        await runner.start()
        await runner.trigger_now("content_sync")
        await asyncio.sleep(0.05)

        await runner.shutdown()

        assert cancelled.is_set()
