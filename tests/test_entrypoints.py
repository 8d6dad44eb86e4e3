"""Tests for runtime assembly and job registration."""

import pytest

from app.clients.translator import GoogleTranslator
from app.constants import ALL_TASK_NAMES, TASK_CONTENT_SYNC, TASK_MISSING_DATA_REPAIR
from app.entrypoints import build_runtime
from app.models import JobState
from app.services.job_runner import TriggerResult
from tests.fixtures.fakes import FakeSource, FakeTranslator, RecordingSubmissionClient


@pytest.fixture
def runtime(session_factory, monkeypatch):
    monkeypatch.delenv("TRANSLATION_SERVICE", raising=False)
    return build_runtime(
        session_factory,
        source=FakeSource(),
        submission_client=RecordingSubmissionClient(),
    )


class TestBuildRuntime:
    def test_registers_all_jobs(self, runtime):
        assert sorted(runtime.runner.jobs) == sorted(ALL_TASK_NAMES)

    def test_schedules_come_from_environment(self, session_factory, monkeypatch):
        monkeypatch.setenv("SYNC_SCHEDULE", "@every 30s")

        runtime = build_runtime(
            session_factory,
            source=FakeSource(),
            submission_client=RecordingSubmissionClient(),
        )

        assert runtime.runner.jobs[TASK_CONTENT_SYNC].schedule_expr == "@every 30s"

    def test_injected_clients_are_not_closed_by_runtime(self, runtime):
        assert runtime.closeables == []

    def test_translation_disabled_by_default(self, runtime):
        assert runtime.sync_engine._translator is None

    def test_google_translator_when_enabled(self, session_factory, monkeypatch):
        monkeypatch.setenv("TRANSLATION_SERVICE", "google")

        runtime = build_runtime(
            session_factory,
            source=FakeSource(),
            submission_client=RecordingSubmissionClient(),
        )

        assert isinstance(runtime.sync_engine._translator, GoogleTranslator)
        assert runtime.sync_engine._translator in runtime.closeables

    def test_explicit_translator_wins(self, session_factory, monkeypatch):
        monkeypatch.setenv("TRANSLATION_SERVICE", "google")
        translator = FakeTranslator()

        runtime = build_runtime(
            session_factory,
            source=FakeSource(),
            submission_client=RecordingSubmissionClient(),
            translator=translator,
        )

        assert runtime.sync_engine._translator is translator
        assert runtime.closeables == []


class TestRegisteredJobs:
    async def test_content_sync_reports_summary(self, runtime):
        result = await runtime.runner.trigger_now(TASK_CONTENT_SYNC, wait=True)

        assert result is TriggerResult.ACCEPTED
        status = await runtime.status_store.get(TASK_CONTENT_SYNC)
        assert status.status == JobState.SUCCESS
        assert status.message.startswith("Synced 0 new items from 0 subscriptions")
        await runtime.stop()

    async def test_missing_data_repair_reports_counts(self, runtime):
        await runtime.runner.trigger_now(TASK_MISSING_DATA_REPAIR, wait=True)

        status = await runtime.status_store.get(TASK_MISSING_DATA_REPAIR)
        assert status.status == JobState.SUCCESS
        assert status.message.startswith("Updated durations for 0/0 items")
        await runtime.stop()

    async def test_start_seeds_bootstrap_credential(self, runtime, monkeypatch):
        monkeypatch.setenv("YOUTUBE_API_KEY", "AIzaSyBootstrapKey000")

        await runtime.start()
        try:
            credentials = await runtime.pool.list_credentials()
            assert len(credentials) == 1
            assert {s.task_name for s in await runtime.status_store.list_all()} == set(
                ALL_TASK_NAMES
            )
        finally:
            await runtime.stop()
