"""Completion signal handling for submitted content items.

The AI processing service reports finished jobs out of band (webhook). This
module verifies the webhook signature and applies the storage mutation:
every non-completed copy of the upstream item becomes `completed` with the
output reference attached.
"""

import hashlib
import hmac

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import ContentItem, TranslationStatus
from app.schemas.webhook import CompletionWebhookPayload
from app.utils.logging import get_logger

log = get_logger(__name__)


def verify_completion_signature(body: bytes, signature: str, secret: str) -> bool:
    """Verify the webhook signature using HMAC-SHA256.

    Args:
        body: Raw request body (bytes, not parsed JSON)
        signature: Hex digest from the X-Completion-Signature header
        secret: Shared secret from COMPLETION_WEBHOOK_SECRET

    Returns:
        True if signature valid, False otherwise (always False without a secret)
    """
    if not secret:
        log.warning("completion_webhook_secret_not_configured")
        return False

    computed = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature or "")


async def mark_item_completed(
    session_factory: async_sessionmaker[AsyncSession],
    external_id: str,
    output_ref: str,
) -> int:
    """Mark every non-completed item with this external id as completed.

    Returns:
        Number of items updated (0 when unknown or already completed).
    """
    async with session_factory() as session:
        result = await session.execute(
            update(ContentItem)
            .where(
                ContentItem.external_id == external_id,
                ContentItem.translation_status != TranslationStatus.COMPLETED,
            )
            .values(
                translation_status=TranslationStatus.COMPLETED,
                output_ref=output_ref,
                translation_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

    updated = result.rowcount or 0
    if updated:
        log.info("item_completed", external_id=external_id, updated=updated)
    else:
        log.warning("completion_for_unknown_item", external_id=external_id)
    return updated


async def process_completion_event(
    payload: CompletionWebhookPayload,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Background task for the completion webhook.

    Errors are logged, never raised: the webhook has already returned 200.
    """
    try:
        await mark_item_completed(session_factory, payload.external_id, payload.output_ref)
    except Exception as e:
        log.error(
            "completion_event_failed",
            event_id=payload.event_id,
            external_id=payload.external_id,
            error=str(e),
            error_type=type(e).__name__,
        )
