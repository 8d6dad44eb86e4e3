"""Quota-aware pool of rotating YouTube Data API credentials.

Several API keys are pooled so a sync cycle can keep going when one key runs
out of its daily quota. Usage is accounted per key in the database and the
best key is selected on every draw.

Architecture Pattern:
    - Lazy reset: expired quotas are reset in one UPDATE before every selection
    - Selection: active ∧ valid ∧ used < limit, by (priority asc, used asc)
    - Atomic accounting: quota_used = quota_used + cost, evaluated in SQL
    - Audit: one UsageRecord per upstream call, success or failure, written in
      the same transaction as the increment
    - Alert thresholds: 80% warning, 100% critical (throttled per credential)
    - Daily reset: midnight in QUOTA_RESET_TIMEZONE (America/Los_Angeles),
      which is when YouTube Data API quotas reset, PST or PDT alike

Secrets are Fernet-encrypted at rest and only ever leave the pool inside a
CredentialLease. Everything logged or returned for display uses the masked
hint.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_quota_reset_timezone
from app.constants import (
    DEFAULT_OPERATION_COST,
    DEFAULT_QUOTA_LIMIT,
    QUOTA_CRITICAL_PERCENT,
    QUOTA_EXHAUSTED_MARKERS,
    QUOTA_OPERATION_COSTS,
    QUOTA_WARNING_PERCENT,
)
from app.exceptions import ConfigurationError, DuplicateCredentialError
from app.models import Credential, UsageRecord, utcnow
from app.utils.alerts import send_alert, should_send_alert
from app.utils.encryption import (
    DecryptionError,
    EncryptionService,
    fingerprint_secret,
    get_encryption_service,
    mask_secret,
)
from app.utils.logging import get_logger

log = get_logger(__name__)

RECENT_ACTIVITY_LIMIT = 20


@dataclass(frozen=True)
class CredentialLease:
    """A selected credential handed to a caller for one upstream call sequence.

    Attributes:
        id: Credential id, used to report usage back to the pool.
        name: Human-readable label.
        secret: Decrypted API key. Never log this.
    """

    id: int
    name: str
    secret: str = field(repr=False)


def operation_cost(operation: str) -> int:
    """Quota units charged for an upstream operation (unknown operations cost 1)."""
    return QUOTA_OPERATION_COSTS.get(operation, DEFAULT_OPERATION_COST)


def is_quota_exhausted_error(error_info: str | None) -> bool:
    """Check whether upstream error text reports an exhausted daily quota."""
    if not error_info:
        return False
    return any(marker in error_info for marker in QUOTA_EXHAUSTED_MARKERS)


def next_quota_reset(now: datetime | None = None, tz_name: str | None = None) -> datetime:
    """Next midnight in the quota timezone, returned as aware UTC.

    Uses zoneinfo so the PST/PDT switch is exact: midnight Pacific is 08:00
    UTC in winter and 07:00 UTC in summer.

    Args:
        now: Reference time (aware); defaults to current UTC time.
        tz_name: IANA timezone; defaults to QUOTA_RESET_TIMEZONE.

    Returns:
        A datetime strictly after `now`.
    """
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tz = ZoneInfo(tz_name or get_quota_reset_timezone())
    local_today = now.astimezone(tz).date()
    next_midnight = datetime.combine(local_today + timedelta(days=1), time.min, tzinfo=tz)
    return next_midnight.astimezone(timezone.utc)


class CredentialPool:
    """Selection, accounting and administration of pooled API credentials.

    Every method opens its own short session; no session is held while the
    caller talks to the upstream API.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption: EncryptionService | None = None,
        tz_name: str | None = None,
    ):
        self._session_factory = session_factory
        self._encryption = encryption
        if tz_name is not None:
            try:
                ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ConfigurationError(f"Unknown quota reset timezone: {tz_name}") from e
        self._tz_name = tz_name

    @property
    def encryption(self) -> EncryptionService:
        if self._encryption is None:
            self._encryption = get_encryption_service()
        return self._encryption

    def next_quota_reset(self, now: datetime | None = None) -> datetime:
        return next_quota_reset(now, self._tz_name)

    # ------------------------------------------------------------------
    # Selection and accounting
    # ------------------------------------------------------------------

    async def reset_expired(self, now: datetime | None = None) -> int:
        """Reset usage of every credential whose reset time has passed.

        One batched UPDATE: quota_used = 0 and reset_at = next quota midnight.
        Validity is left alone; keys invalidated by the upstream need a
        manual reset_credential().

        Returns:
            Number of credentials reset.
        """
        now = (now or utcnow()).astimezone(timezone.utc)
        async with self._session_factory() as session:
            result = await session.execute(
                update(Credential)
                .where(Credential.reset_at < now)
                .values(quota_used=0, reset_at=self.next_quota_reset(now))
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        count = result.rowcount or 0
        if count:
            log.info("credential_quotas_reset", count=count)
        return count

    async def select_active(self, now: datetime | None = None) -> CredentialLease | None:
        """Select the best available credential.

        Runs reset_expired() first. A credential whose secret cannot be
        decrypted is marked invalid and skipped.

        Returns:
            CredentialLease, or None when every credential is exhausted,
            inactive or invalid.
        """
        await self.reset_expired(now)

        async with self._session_factory() as session:
            result = await session.execute(
                select(Credential)
                .where(
                    Credential.is_active.is_(True),
                    Credential.is_valid.is_(True),
                    Credential.quota_used < Credential.quota_limit,
                )
                .order_by(Credential.priority.asc(), Credential.quota_used.asc(), Credential.id.asc())
            )
            candidates = list(result.scalars().all())

        for credential in candidates:
            try:
                secret = self.encryption.decrypt(credential.secret_encrypted, credential.id)
            except DecryptionError as e:
                log.error("credential_decryption_failed", credential_id=credential.id, error=str(e))
                await self._invalidate(credential.id, str(e))
                continue

            log.debug(
                "credential_selected",
                credential_id=credential.id,
                name=credential.name,
                key=credential.secret_hint,
                quota_used=credential.quota_used,
                quota_limit=credential.quota_limit,
            )
            return CredentialLease(id=credential.id, name=credential.name, secret=secret)

        log.warning("no_credential_available", candidates=len(candidates))
        return None

    async def has_credentials(self) -> bool:
        """True if the pool holds at least one credential, usable or not."""
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Credential))
        return bool(count)

    async def record_usage(
        self,
        credential_id: int,
        operation: str,
        endpoint: str,
        success: bool,
        error_info: str | None = None,
    ) -> int:
        """Account one upstream call against a credential.

        The increment is evaluated in SQL so concurrent callers never lose
        an update. A failed call whose error reports quota exhaustion also
        marks the credential invalid.

        Returns:
            Quota units charged.
        """
        cost = operation_cost(operation)
        now = utcnow()
        values: dict[str, Any] = {
            "quota_used": Credential.quota_used + cost,
            "last_used_at": now,
        }
        exhausted = not success and is_quota_exhausted_error(error_info)
        if exhausted:
            values["is_valid"] = False
            values["last_error"] = error_info

        async with self._session_factory() as session:
            await session.execute(
                update(Credential)
                .where(Credential.id == credential_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.add(
                UsageRecord(
                    credential_id=credential_id,
                    operation=operation,
                    endpoint=endpoint,
                    cost=cost,
                    success=success,
                    error_info=error_info,
                    created_at=now,
                )
            )
            row = (
                await session.execute(
                    select(
                        Credential.name,
                        Credential.secret_hint,
                        Credential.quota_used,
                        Credential.quota_limit,
                    ).where(Credential.id == credential_id)
                )
            ).one_or_none()
            await session.commit()

        if exhausted:
            log.warning(
                "credential_invalidated_quota_exhausted",
                credential_id=credential_id,
                endpoint=endpoint,
                error=error_info,
            )

        if row is not None:
            await self._check_thresholds(credential_id, row.name, row.quota_used, row.quota_limit)
        return cost

    def usage_reporter(self, lease: CredentialLease):
        """Bind record_usage to a lease, in the shape upstream clients call back."""

        async def report(
            operation: str, endpoint: str, success: bool, error_info: str | None
        ) -> None:
            await self.record_usage(lease.id, operation, endpoint, success, error_info)

        return report

    async def _check_thresholds(
        self, credential_id: int, name: str, used: int, limit: int
    ) -> None:
        percent = used * 100 / limit if limit else 100
        if percent >= QUOTA_CRITICAL_PERCENT:
            level = "CRITICAL"
        elif percent >= QUOTA_WARNING_PERCENT:
            level = "WARNING"
        else:
            return

        if not should_send_alert(f"credential:{credential_id}", level):
            return
        log.warning(
            "credential_quota_threshold",
            credential_id=credential_id,
            level=level,
            quota_used=used,
            quota_limit=limit,
        )
        await send_alert(
            level,
            f"Credential '{name}' at {percent:.0f}% of daily quota",
            {"used": str(used), "limit": str(limit)},
        )

    async def _invalidate(self, credential_id: int, reason: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Credential)
                .where(Credential.id == credential_id)
                .values(is_valid=False, last_error=reason)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def _ensure_unique(
        self, session: AsyncSession, fingerprint: str, exclude_id: int | None = None
    ) -> None:
        stmt = select(Credential.id).where(Credential.secret_fingerprint == fingerprint)
        if exclude_id is not None:
            stmt = stmt.where(Credential.id != exclude_id)
        if await session.scalar(stmt) is not None:
            raise DuplicateCredentialError("API key already exists in the pool")

    async def add_credential(
        self,
        secret: str,
        name: str,
        priority: int = 0,
        quota_limit: int = DEFAULT_QUOTA_LIMIT,
        is_active: bool = True,
    ) -> Credential:
        """Add a credential to the pool.

        Raises:
            ValueError: Empty secret or non-positive quota limit.
            DuplicateCredentialError: The secret is already pooled.
        """
        secret = (secret or "").strip()
        if not secret:
            raise ValueError("API key must not be empty")
        if quota_limit <= 0:
            raise ValueError("quota_limit must be positive")

        fingerprint = fingerprint_secret(secret)
        async with self._session_factory() as session:
            await self._ensure_unique(session, fingerprint)
            credential = Credential(
                name=name.strip() or mask_secret(secret),
                secret_encrypted=self.encryption.encrypt(secret),
                secret_fingerprint=fingerprint,
                secret_hint=mask_secret(secret),
                priority=priority,
                quota_limit=quota_limit,
                quota_used=0,
                is_active=is_active,
                is_valid=True,
                reset_at=self.next_quota_reset(),
            )
            session.add(credential)
            await session.commit()

        log.info(
            "credential_added",
            credential_id=credential.id,
            name=credential.name,
            key=credential.secret_hint,
            priority=priority,
        )
        return credential

    async def _get_or_raise(self, session: AsyncSession, credential_id: int) -> Credential:
        credential = await session.get(Credential, credential_id)
        if credential is None:
            raise LookupError(f"Credential {credential_id} not found")
        return credential

    async def update_credential(
        self,
        credential_id: int,
        *,
        secret: str | None = None,
        name: str | None = None,
        priority: int | None = None,
        quota_limit: int | None = None,
        is_active: bool | None = None,
    ) -> Credential:
        """Update selected fields of a credential.

        Replacing the secret re-validates the credential.

        Raises:
            LookupError: Unknown credential.
            ValueError: Empty secret or non-positive quota limit.
            DuplicateCredentialError: The new secret belongs to another credential.
        """
        async with self._session_factory() as session:
            credential = await self._get_or_raise(session, credential_id)

            if secret is not None:
                secret = secret.strip()
                if not secret:
                    raise ValueError("API key must not be empty")
                fingerprint = fingerprint_secret(secret)
                await self._ensure_unique(session, fingerprint, exclude_id=credential_id)
                credential.secret_encrypted = self.encryption.encrypt(secret)
                credential.secret_fingerprint = fingerprint
                credential.secret_hint = mask_secret(secret)
                credential.is_valid = True
                credential.last_error = None
            if quota_limit is not None:
                if quota_limit <= 0:
                    raise ValueError("quota_limit must be positive")
                credential.quota_limit = quota_limit
            if name is not None:
                credential.name = name
            if priority is not None:
                credential.priority = priority
            if is_active is not None:
                credential.is_active = is_active

            await session.commit()

        log.info("credential_updated", credential_id=credential_id, key=credential.secret_hint)
        return credential

    async def delete_credential(self, credential_id: int) -> bool:
        """Delete a credential and its usage records.

        Returns:
            True if deleted, False if it did not exist.
        """
        async with self._session_factory() as session:
            await session.execute(
                delete(UsageRecord).where(UsageRecord.credential_id == credential_id)
            )
            result = await session.execute(delete(Credential).where(Credential.id == credential_id))
            await session.commit()

        if not result.rowcount:
            return False

        log.info("credential_deleted", credential_id=credential_id)
        return True

    async def reset_credential(self, credential_id: int) -> Credential:
        """Manually restore a credential: valid, error cleared, usage zeroed.

        Raises:
            LookupError: Unknown credential.
        """
        async with self._session_factory() as session:
            credential = await self._get_or_raise(session, credential_id)
            credential.is_valid = True
            credential.last_error = None
            credential.quota_used = 0
            credential.reset_at = self.next_quota_reset()
            await session.commit()

        log.info("credential_reset", credential_id=credential_id, key=credential.secret_hint)
        return credential

    async def list_credentials(self) -> list[Credential]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Credential).order_by(Credential.priority.asc(), Credential.id.asc())
            )
            return list(result.scalars().all())

    async def get_quota_status(self) -> dict[str, Any]:
        """Dashboard view of the pool.

        Returns:
            {"credentials": [...], "summary": {...}, "recent_activity": [...]}
            with masked keys only.
        """
        async with self._session_factory() as session:
            credentials = list(
                (
                    await session.execute(
                        select(Credential).order_by(
                            Credential.priority.asc(), Credential.is_active.desc()
                        )
                    )
                ).scalars()
            )
            record_counts = dict(
                (
                    await session.execute(
                        select(UsageRecord.credential_id, func.count()).group_by(
                            UsageRecord.credential_id
                        )
                    )
                ).all()
            )
            recent = (
                await session.execute(
                    select(UsageRecord, Credential.name, Credential.secret_hint)
                    .join(Credential, UsageRecord.credential_id == Credential.id)
                    .order_by(UsageRecord.created_at.desc(), UsageRecord.id.desc())
                    .limit(RECENT_ACTIVITY_LIMIT)
                )
            ).all()

        usable = [c for c in credentials if c.is_active and c.is_valid]
        total_usage = sum(c.quota_used for c in credentials)
        total_limit = sum(c.quota_limit for c in usable)

        return {
            "credentials": [
                {
                    "id": c.id,
                    "name": c.name,
                    "key": c.secret_hint,
                    "is_active": c.is_active,
                    "is_valid": c.is_valid,
                    "priority": c.priority,
                    "quota_used": c.quota_used,
                    "quota_limit": c.quota_limit,
                    "usage_percentage": round(c.quota_used * 100 / c.quota_limit),
                    "reset_at": c.reset_at,
                    "last_used_at": c.last_used_at,
                    "last_error": c.last_error,
                    "record_count": record_counts.get(c.id, 0),
                }
                for c in credentials
            ],
            "summary": {
                "total_credentials": len(credentials),
                "usable_credentials": len(usable),
                "total_usage": total_usage,
                "total_limit": total_limit,
                "usage_percentage": round(total_usage * 100 / total_limit) if total_limit else 0,
            },
            "recent_activity": [
                {
                    "id": record.id,
                    "credential_name": name,
                    "key": hint,
                    "operation": record.operation,
                    "endpoint": record.endpoint,
                    "cost": record.cost,
                    "success": record.success,
                    "error_info": record.error_info,
                    "created_at": record.created_at,
                }
                for record, name, hint in recent
            ],
        }

    async def initialize_default_credential(self, secret: str | None) -> Credential | None:
        """Seed an empty pool from the YOUTUBE_API_KEY environment variable.

        Returns:
            The created credential, or None when the pool already has
            credentials or no secret is configured.
        """
        if not secret or not secret.strip():
            return None
        if await self.has_credentials():
            return None
        log.info("credential_pool_bootstrap", key=mask_secret(secret.strip()))
        return await self.add_credential(secret, name="Default API Key", priority=0)
