"""Runtime assembly and recurring job registration.

Builds the long-lived objects (credential pool, submission queue, sync
engine, job runner) from configuration and registers the recurring jobs:

    content_sync              SYNC_SCHEDULE            sync every subscription
    missing_data_repair       MISSING_DATA_SCHEDULE    fill in missing durations
    pending_submission_retry  PENDING_RETRY_SCHEDULE   re-enqueue pending items

Both the FastAPI lifespan (app.main) and the standalone process
(app.worker) go through build_runtime(), so the two run identical jobs.
"""

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.clients.submission import HttpSubmissionClient, SubmissionClient
from app.clients.translator import GoogleTranslator, Translator
from app.clients.youtube import ContentSourceClient, YouTubeClient
from app.config import (
    get_bootstrap_api_key,
    get_job_timeout_seconds,
    get_max_concurrent_submissions,
    get_missing_data_schedule,
    get_pending_retry_schedule,
    get_submission_max_duration_seconds,
    get_sync_schedule,
    get_translation_service,
)
from app.constants import (
    TASK_CONTENT_SYNC,
    TASK_MISSING_DATA_REPAIR,
    TASK_PENDING_SUBMISSION_RETRY,
)
from app.services.credential_pool import CredentialPool
from app.services.job_runner import JobRunner
from app.services.status_store import StatusStore
from app.services.submission_queue import SubmissionQueue
from app.services.sync_engine import SyncEngine
from app.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class Runtime:
    """Everything a running process needs, wired together."""

    session_factory: async_sessionmaker[AsyncSession]
    pool: CredentialPool
    queue: SubmissionQueue
    sync_engine: SyncEngine
    status_store: StatusStore
    runner: JobRunner
    closeables: list = field(default_factory=list)

    async def start(self) -> None:
        """Seed the credential pool and start the recurring jobs."""
        await self.pool.initialize_default_credential(get_bootstrap_api_key())
        await self.runner.start()

    async def stop(self) -> None:
        await self.runner.shutdown()
        await self.queue.close()
        for client in self.closeables:
            await client.close()


def register_jobs(runner: JobRunner, sync_engine: SyncEngine, queue: SubmissionQueue) -> None:
    """Register the recurring jobs on a runner."""

    async def content_sync() -> str:
        summary = await sync_engine.sync_all()
        return summary.message()

    async def missing_data_repair() -> str:
        result = await sync_engine.repair_missing_durations()
        return result.message()

    async def pending_submission_retry() -> str:
        enqueued = await queue.enqueue_pending()
        return f"Re-enqueued {enqueued} pending items"

    runner.schedule(TASK_CONTENT_SYNC, get_sync_schedule(), content_sync)
    runner.schedule(TASK_MISSING_DATA_REPAIR, get_missing_data_schedule(), missing_data_repair)
    runner.schedule(
        TASK_PENDING_SUBMISSION_RETRY, get_pending_retry_schedule(), pending_submission_retry
    )


def build_runtime(
    session_factory: async_sessionmaker[AsyncSession],
    source: ContentSourceClient | None = None,
    submission_client: SubmissionClient | None = None,
    translator: Translator | None = None,
) -> Runtime:
    """Wire the orchestration core from configuration.

    Clients not passed in are created from configuration; those are closed
    by Runtime.stop().
    """
    closeables = []
    if source is None:
        source = YouTubeClient()
        closeables.append(source)
    if submission_client is None:
        submission_client = HttpSubmissionClient()
        closeables.append(submission_client)
    if translator is None and get_translation_service() == "google":
        translator = GoogleTranslator()
        closeables.append(translator)

    pool = CredentialPool(session_factory)
    queue = SubmissionQueue(
        session_factory,
        submission_client,
        concurrency_limit=get_max_concurrent_submissions(),
        max_duration_seconds=get_submission_max_duration_seconds(),
    )
    sync_engine = SyncEngine(session_factory, pool, source, queue=queue, translator=translator)
    status_store = StatusStore(session_factory)
    runner = JobRunner(status_store, default_timeout=get_job_timeout_seconds())
    register_jobs(runner, sync_engine, queue)

    log.info(
        "runtime_built",
        translation=get_translation_service(),
        max_concurrent_submissions=queue.concurrency_limit,
    )
    return Runtime(
        session_factory=session_factory,
        pool=pool,
        queue=queue,
        sync_engine=sync_engine,
        status_store=status_store,
        runner=runner,
        closeables=closeables,
    )
