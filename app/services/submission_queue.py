"""Bounded-concurrency submission of content items to the AI processing service.

Reactive worker with no polling loop: enqueueing an item, or finishing a
submission, drains the queue up to the concurrency limit.

Architecture Pattern:
    - In-memory FIFO of item ids (not durable; the pending re-scan job
      re-enqueues anything lost on restart)
    - active_count is only touched on the event loop, in enqueue() and in
      the submission task's done-callback, so no lock is needed
    - Short transactions: mark processing → close DB → call service →
      reopen DB → mark failed if needed
    - No self-retry: a failed submission stays failed

Status flow per item:
    pending → processing → (completed via completion webhook)
                         ↘ failed
"""

import asyncio
from collections import deque
from functools import partial
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.clients.submission import SubmissionClient
from app.config import (
    DEFAULT_MAX_CONCURRENT_SUBMISSIONS,
    DEFAULT_SUBMISSION_MAX_DURATION_SECONDS,
)
from app.constants import PENDING_RESCAN_LIMIT
from app.models import ContentItem, TranslationStatus
from app.utils.logging import get_logger

log = get_logger(__name__)


class SubmissionQueue:
    """FIFO of content item ids submitted with at most `concurrency_limit` in flight.

    Args:
        session_factory: Async session factory.
        client: Downstream submission client.
        concurrency_limit: Maximum parallel submissions.
        max_duration_seconds: Items this long or longer are failed without
            being submitted. None disables the cap.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: SubmissionClient,
        concurrency_limit: int = DEFAULT_MAX_CONCURRENT_SUBMISSIONS,
        max_duration_seconds: int | None = DEFAULT_SUBMISSION_MAX_DURATION_SECONDS,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self._session_factory = session_factory
        self._client = client
        self.concurrency_limit = concurrency_limit
        self.max_duration_seconds = max_duration_seconds
        self.active_count = 0
        self._queue: deque[int] = deque()
        self._queued: set[int] = set()
        self._in_flight: set[int] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def enqueue(self, item_id: int) -> bool:
        """Queue an item for submission and drain immediately.

        Must be called from the event loop.

        Returns:
            False if the item is already queued or being submitted.
        """
        if item_id in self._queued or item_id in self._in_flight:
            log.debug("submission_already_queued", item_id=item_id)
            return False
        self._queue.append(item_id)
        self._queued.add(item_id)
        self._idle.clear()
        log.info("submission_enqueued", item_id=item_id, queue_length=len(self._queue))
        self._drain()
        return True

    def _drain(self) -> None:
        while self._queue and self.active_count < self.concurrency_limit:
            item_id = self._queue.popleft()
            self._queued.discard(item_id)
            self._in_flight.add(item_id)
            self.active_count += 1
            task = asyncio.create_task(self._process(item_id), name=f"submit:{item_id}")
            self._tasks.add(task)
            task.add_done_callback(partial(self._on_done, item_id))

        if not self._queue and self.active_count == 0:
            self._idle.set()

    def _on_done(self, item_id: int, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        self._in_flight.discard(item_id)
        self.active_count = max(0, self.active_count - 1)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            log.error(
                "submission_task_crashed",
                item_id=item_id,
                error=str(error),
                error_type=type(error).__name__,
            )
        self._drain()

    async def _process(self, item_id: int) -> None:
        async with self._session_factory() as session:
            item = await session.get(ContentItem, item_id)
            if item is None:
                log.warning("submission_item_missing", item_id=item_id)
                return
            if item.translation_status != TranslationStatus.PENDING:
                log.info(
                    "submission_skipped_status",
                    item_id=item_id,
                    status=item.translation_status.value,
                )
                return

            duration = item.duration_seconds
            if (
                self.max_duration_seconds is not None
                and duration is not None
                and duration >= self.max_duration_seconds
            ):
                item.translation_status = TranslationStatus.FAILED
                item.translation_error = (
                    f"Duration {duration}s exceeds submission limit of "
                    f"{self.max_duration_seconds}s"
                )
                await session.commit()
                log.warning(
                    "submission_rejected_duration",
                    item_id=item_id,
                    duration_seconds=duration,
                    max_duration_seconds=self.max_duration_seconds,
                )
                return

            item.translation_status = TranslationStatus.PROCESSING
            item.translation_error = None
            external_id = item.external_id
            await session.commit()

        # No session held during the external call
        try:
            accepted = await self._client.submit(item_id, external_id)
        except asyncio.CancelledError:
            # Back to pending so enqueue_pending picks it up after a restart
            log.warning("submission_cancelled", item_id=item_id)
            await self._revert_to_pending(item_id)
            raise
        except Exception as e:
            log.error(
                "submission_failed",
                item_id=item_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._mark_failed(item_id, f"{type(e).__name__}: {e}")
            return

        if not accepted:
            log.warning("submission_not_accepted", item_id=item_id)
            await self._mark_failed(item_id, "Submission was not accepted by the processing service")
            return

        log.info("submission_accepted", item_id=item_id)

    async def _revert_to_pending(self, item_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ContentItem)
                .where(
                    ContentItem.id == item_id,
                    ContentItem.translation_status == TranslationStatus.PROCESSING,
                )
                .values(translation_status=TranslationStatus.PENDING)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _mark_failed(self, item_id: int, error: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ContentItem)
                .where(ContentItem.id == item_id)
                .values(translation_status=TranslationStatus.FAILED, translation_error=error[:2000])
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def enqueue_pending(self, limit: int = PENDING_RESCAN_LIMIT) -> int:
        """Re-enqueue the oldest pending items (retry path for lost queue entries).

        Returns:
            Number of items newly enqueued.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(ContentItem.id)
                .where(ContentItem.translation_status == TranslationStatus.PENDING)
                .order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
                .limit(limit)
            )
            item_ids = list(result.scalars().all())

        added = sum(1 for item_id in item_ids if self.enqueue(item_id))
        log.info("pending_submissions_rescanned", found=len(item_ids), enqueued=added)
        return added

    def snapshot(self) -> dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "active_count": self.active_count,
            "concurrency_limit": self.concurrency_limit,
            "queued_ids": list(self._queue),
        }

    async def join(self) -> None:
        """Wait until nothing is queued or in flight."""
        await self._idle.wait()

    async def close(self) -> None:
        """Cancel in-flight submissions and drop queued ids.

        Items whose submission was interrupted go back to pending.
        """
        self._queue.clear()
        self._queued.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._idle.set()
