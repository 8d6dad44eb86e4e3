"""Subscription sync: fetch new upstream items, dedup, translate, persist.

Architecture Pattern:
    - Credential draw per fetch from CredentialPool; on quota exhaustion the
      next credential is drawn (up to MAX_CREDENTIAL_DRAWS)
    - Dedup is per subscription: the same upstream item may belong to
      several subscriptions, so existing rows are matched on
      (external_id, subscription_id)
    - Short transactions: the DB is never held open while fetching or
      translating
    - Conflict tolerance: new items are inserted as one batch; on a
      uniqueness conflict (an overlapping sync got there first) each item is
      re-checked and inserted on its own, continuing past failures
    - Watermark: last_sync_at moves to the cycle start time once persistence
      finishes, unless every new item failed to persist

Errors:
    - QuotaExhaustedError / ConfigurationError abort the whole cycle
    - Any other error is contained to the subscription (sync_all) or to
      the single item (fallback insert path)
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.clients.translator import Translator
from app.clients.youtube import ContentSourceClient
from app.config import get_translation_service, get_translation_target_lang
from app.constants import FETCH_PAGE_SIZE, MAX_CREDENTIAL_DRAWS, MISSING_DATA_BATCH_SIZE
from app.exceptions import ConfigurationError, QuotaExhaustedError, UniquenessConflictError
from app.models import ContentItem, Subscription, TranslationStatus, as_utc, utcnow
from app.schemas.content import FetchedItem
from app.services.credential_pool import CredentialLease, CredentialPool
from app.services.submission_queue import SubmissionQueue
from app.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class SyncResult:
    """Outcome of syncing one subscription.

    Attributes:
        synced_count: New items persisted.
        skipped_count: Fetched items that already existed for the subscription.
        failed_count: New items that could not be persisted.
        eligible_ids: Ids of persisted items marked pending for submission.
    """

    subscription_id: int
    synced_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    eligible_ids: list[int] = field(default_factory=list)


@dataclass
class SyncCycleSummary:
    """Aggregate outcome of sync_all()."""

    subscriptions: int = 0
    synced_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    enqueued_count: int = 0
    errors: dict[int, str] = field(default_factory=dict)

    def message(self) -> str:
        text = (
            f"Synced {self.synced_count} new items from {self.subscriptions} subscriptions "
            f"({self.skipped_count} skipped, {self.failed_count} failed, "
            f"{self.enqueued_count} queued for submission)"
        )
        if self.errors:
            text += f"; {len(self.errors)} subscriptions failed"
        return text


@dataclass
class RepairResult:
    """Outcome of one missing-duration repair batch."""

    checked: int = 0
    updated: int = 0
    missing_upstream: int = 0
    enqueued: int = 0

    def message(self) -> str:
        return (
            f"Updated durations for {self.updated}/{self.checked} items "
            f"({self.missing_upstream} missing upstream, {self.enqueued} queued for submission)"
        )


def is_eligible(
    auto_translate: bool,
    duration_seconds: int | None,
    max_duration_minutes: int | None,
) -> bool:
    """Whether an item may be submitted downstream.

    auto_translate ∧ duration > 0 ∧ (no cap ∨ duration in minutes < cap)
    """
    if not auto_translate or not duration_seconds or duration_seconds <= 0:
        return False
    if max_duration_minutes is None:
        return True
    return duration_seconds / 60 < max_duration_minutes


class SyncEngine:
    """Pulls new items for subscriptions and hands eligible ones to the queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pool: CredentialPool,
        source: ContentSourceClient,
        queue: SubmissionQueue | None = None,
        translator: Translator | None = None,
        translation_enabled: bool | None = None,
        target_lang: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._pool = pool
        self._source = source
        self._queue = queue
        self._translator = translator
        if translation_enabled is None:
            translation_enabled = get_translation_service() != "none"
        self._translation_enabled = translation_enabled and translator is not None
        self._target_lang = target_lang or get_translation_target_lang()
        self._clock = clock

    # ------------------------------------------------------------------
    # Credential handling
    # ------------------------------------------------------------------

    async def _with_credential(self, call: Callable[[CredentialLease], Awaitable[T]]) -> T:
        """Run an upstream call with a pooled credential, rotating on quota exhaustion.

        Raises:
            ConfigurationError: The pool holds no credentials at all.
            QuotaExhaustedError: No credential with quota left, or every
                drawn credential was rejected.
        """
        last_error: QuotaExhaustedError | None = None
        for attempt in range(1, MAX_CREDENTIAL_DRAWS + 1):
            lease = await self._pool.select_active()
            if lease is None:
                if not await self._pool.has_credentials():
                    raise ConfigurationError("No YouTube API credentials configured")
                raise QuotaExhaustedError(
                    "No API credential with remaining quota"
                ) from last_error
            try:
                return await call(lease)
            except QuotaExhaustedError as e:
                log.warning(
                    "credential_rejected_rotating",
                    credential_id=lease.id,
                    attempt=attempt,
                    error=str(e),
                )
                e.credential_id = lease.id
                last_error = e

        raise QuotaExhaustedError(
            f"Quota exhausted on {MAX_CREDENTIAL_DRAWS} credentials",
            credential_id=last_error.credential_id if last_error else None,
        ) from last_error

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def _translate(self, text: str | None) -> str | None:
        if not text or not self._translation_enabled or self._translator is None:
            return text
        try:
            translated = await self._translator.translate(text, self._target_lang)
        except Exception as e:
            log.warning(
                "translation_failed_using_original",
                error=str(e),
                error_type=type(e).__name__,
            )
            return text
        if not translated or translated == text:
            log.debug("translation_soft_failure", preview=text[:30])
            return text
        return translated

    async def _build_row(self, subscription: Subscription, item: FetchedItem) -> dict[str, Any]:
        eligible = is_eligible(
            subscription.auto_translate,
            item.duration_seconds,
            subscription.max_duration_minutes,
        )
        values: dict[str, Any] = {
            "external_id": item.external_id,
            "subscription_id": subscription.id,
            "title": item.title,
            "description": item.description,
            "thumbnail_url": item.thumbnail_url,
            "published_at": item.published_at,
            "duration_seconds": item.duration_seconds,
            "owner_id": item.owner_id,
            "owner_name": item.owner_name,
            "translation_status": (
                TranslationStatus.PENDING if eligible else TranslationStatus.NONE
            ),
        }
        if self._translation_enabled:
            values["title_translated"] = await self._translate(item.title)
            values["description_translated"] = await self._translate(item.description)
        return values

    async def _insert_one(self, values: dict[str, Any]) -> ContentItem:
        """Insert a single item after re-checking it does not exist.

        Raises:
            UniquenessConflictError: The item already exists for the subscription.
        """
        async with self._session_factory() as session:
            existing = await session.scalar(
                select(ContentItem.id).where(
                    ContentItem.external_id == values["external_id"],
                    ContentItem.subscription_id == values["subscription_id"],
                )
            )
            if existing is not None:
                raise UniquenessConflictError(values["external_id"], values["subscription_id"])
            item = ContentItem(**values)
            session.add(item)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise UniquenessConflictError(
                    values["external_id"], values["subscription_id"]
                ) from e
        return item

    async def _persist(self, rows: list[dict[str, Any]], result: SyncResult) -> list[ContentItem]:
        try:
            async with self._session_factory() as session:
                items = [ContentItem(**values) for values in rows]
                session.add_all(items)
                await session.commit()
            result.synced_count += len(items)
            return items
        except IntegrityError as e:
            log.warning(
                "sync_batch_conflict_fallback",
                subscription_id=result.subscription_id,
                batch_size=len(rows),
                error=str(e.orig) if e.orig else str(e),
            )

        inserted: list[ContentItem] = []
        for values in rows:
            try:
                inserted.append(await self._insert_one(values))
                result.synced_count += 1
            except UniquenessConflictError:
                log.debug(
                    "sync_item_already_exists",
                    subscription_id=result.subscription_id,
                    external_id=values["external_id"],
                )
                result.skipped_count += 1
            except SQLAlchemyError as e:
                log.error(
                    "sync_item_insert_failed",
                    subscription_id=result.subscription_id,
                    external_id=values["external_id"],
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.failed_count += 1
        return inserted

    async def sync_one(
        self, subscription: Subscription, max_items: int | None = None
    ) -> SyncResult:
        """Sync one subscription.

        Args:
            subscription: Subscription to sync (detached ORM object is fine).
            max_items: Optional cap on new items persisted this cycle. When it
                defers items the watermark is left unchanged, so the next
                cycle fetches them again.

        Returns:
            SyncResult with counts and ids of items queued for submission.

        Raises:
            QuotaExhaustedError: No credential could serve the fetch.
            ConfigurationError: No credentials configured.
        """
        cycle_started = self._clock()
        result = SyncResult(subscription_id=subscription.id)
        watermark = as_utc(subscription.last_sync_at)

        fetched = await self._with_credential(
            lambda lease: self._source.fetch_items(
                subscription.source_type,
                subscription.source_id,
                FETCH_PAGE_SIZE,
                watermark,
                api_key=lease.secret,
                on_request=self._pool.usage_reporter(lease),
            )
        )

        # Keep page order, drop in-page duplicates
        unique: dict[str, FetchedItem] = {}
        for item in fetched:
            unique.setdefault(item.external_id, item)

        existing: set[str] = set()
        if unique:
            async with self._session_factory() as session:
                existing = set(
                    (
                        await session.execute(
                            select(ContentItem.external_id).where(
                                ContentItem.subscription_id == subscription.id,
                                ContentItem.external_id.in_(list(unique)),
                            )
                        )
                    ).scalars()
                )

        new_items = [item for external_id, item in unique.items() if external_id not in existing]
        result.skipped_count = len(unique) - len(new_items)
        deferred = 0
        if max_items is not None and len(new_items) > max_items:
            deferred = len(new_items) - max_items
            new_items = new_items[:max_items]

        inserted: list[ContentItem] = []
        if new_items:
            rows = [await self._build_row(subscription, item) for item in new_items]
            inserted = await self._persist(rows, result)

        if new_items and result.failed_count == len(new_items):
            log.error(
                "sync_all_items_failed",
                subscription_id=subscription.id,
                failed=result.failed_count,
            )
        elif deferred:
            # Items beyond max_items are older than the watermark would become
            log.info(
                "sync_watermark_held",
                subscription_id=subscription.id,
                deferred=deferred,
            )
        else:
            await self._advance_watermark(subscription, cycle_started)

        result.eligible_ids = [
            item.id for item in inserted if item.translation_status == TranslationStatus.PENDING
        ]
        if self._queue is not None:
            for item_id in result.eligible_ids:
                self._queue.enqueue(item_id)

        log.info(
            "subscription_synced",
            subscription_id=subscription.id,
            name=subscription.name,
            fetched=len(fetched),
            synced=result.synced_count,
            skipped=result.skipped_count,
            failed=result.failed_count,
            eligible=len(result.eligible_ids),
        )
        return result

    async def _advance_watermark(self, subscription: Subscription, synced_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Subscription)
                .where(Subscription.id == subscription.id)
                .values(last_sync_at=synced_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        subscription.last_sync_at = synced_at

    async def sync_all(self) -> SyncCycleSummary:
        """Sync every subscription in id order.

        Raises:
            QuotaExhaustedError: Aborts the cycle; later subscriptions wait
                for the next run.
            ConfigurationError: Aborts the cycle.
        """
        async with self._session_factory() as session:
            subscriptions = list(
                (await session.execute(select(Subscription).order_by(Subscription.id))).scalars()
            )

        summary = SyncCycleSummary(subscriptions=len(subscriptions))
        for subscription in subscriptions:
            try:
                result = await self.sync_one(subscription)
            except (QuotaExhaustedError, ConfigurationError) as e:
                log.error(
                    "sync_cycle_aborted",
                    subscription_id=subscription.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            except Exception as e:
                log.error(
                    "subscription_sync_failed",
                    subscription_id=subscription.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                summary.errors[subscription.id] = str(e)
                continue

            summary.synced_count += result.synced_count
            summary.skipped_count += result.skipped_count
            summary.failed_count += result.failed_count
            summary.enqueued_count += len(result.eligible_ids)

        log.info(
            "sync_cycle_completed",
            subscriptions=summary.subscriptions,
            synced=summary.synced_count,
            errors=len(summary.errors),
        )
        return summary

    async def sync_subscription(
        self, subscription_id: int, max_items: int | None = None
    ) -> SyncResult:
        """Load and sync a single subscription by id.

        Raises:
            LookupError: Unknown subscription.
        """
        async with self._session_factory() as session:
            subscription = await session.get(Subscription, subscription_id)
        if subscription is None:
            raise LookupError(f"Subscription {subscription_id} not found")
        return await self.sync_one(subscription, max_items=max_items)

    # ------------------------------------------------------------------
    # Missing-duration repair
    # ------------------------------------------------------------------

    async def repair_missing_durations(
        self, batch_size: int = MISSING_DATA_BATCH_SIZE
    ) -> RepairResult:
        """Fill in durations the sync could not get, oldest items first.

        Items the upstream no longer returns get duration 0, which keeps
        them ineligible and out of later batches. Items of auto-translate
        subscriptions that become eligible are marked pending and enqueued.
        """
        async with self._session_factory() as session:
            missing = (
                await session.execute(
                    select(ContentItem.id, ContentItem.external_id)
                    .where(ContentItem.duration_seconds.is_(None))
                    .order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
                    .limit(batch_size)
                )
            ).all()

        result = RepairResult(checked=len(missing))
        if not missing:
            return result

        external_ids = list(dict.fromkeys(row.external_id for row in missing))
        durations = await self._with_credential(
            lambda lease: self._source.fetch_durations(
                external_ids,
                api_key=lease.secret,
                on_request=self._pool.usage_reporter(lease),
            )
        )

        newly_eligible: list[int] = []
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(ContentItem, Subscription)
                    .join(Subscription, ContentItem.subscription_id == Subscription.id)
                    .where(
                        ContentItem.id.in_([row.id for row in missing]),
                        ContentItem.duration_seconds.is_(None),
                    )
                )
            ).all()
            for item, subscription in rows:
                seconds = durations.get(item.external_id)
                if seconds is None:
                    item.duration_seconds = 0
                    result.missing_upstream += 1
                    continue
                item.duration_seconds = seconds
                result.updated += 1
                if item.translation_status == TranslationStatus.NONE and is_eligible(
                    subscription.auto_translate, seconds, subscription.max_duration_minutes
                ):
                    item.translation_status = TranslationStatus.PENDING
                    newly_eligible.append(item.id)
            await session.commit()

        if self._queue is not None:
            for item_id in newly_eligible:
                self._queue.enqueue(item_id)
        result.enqueued = len(newly_eligible)

        log.info(
            "missing_durations_repaired",
            checked=result.checked,
            updated=result.updated,
            missing_upstream=result.missing_upstream,
            enqueued=result.enqueued,
        )
        return result
