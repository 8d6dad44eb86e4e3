"""Tests for completion signal handling."""

import hashlib
import hmac
from unittest.mock import MagicMock

from app.models import ContentItem, SourceType, TranslationStatus
from app.schemas.webhook import CompletionWebhookPayload
from app.services.completion import (
    mark_item_completed,
    process_completion_event,
    verify_completion_signature,
)

SECRET = "test_completion_secret"


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerifySignature:
    def test_valid_signature(self):
        body = b'{"event_id": "evt_1"}'

        assert verify_completion_signature(body, sign(body), SECRET) is True

    def test_tampered_body_is_rejected(self):
        signature = sign(b'{"event_id": "evt_1"}')

        assert verify_completion_signature(b'{"event_id": "evt_2"}', signature, SECRET) is False

    def test_missing_signature_is_rejected(self):
        assert verify_completion_signature(b"{}", "", SECRET) is False

    def test_unconfigured_secret_fails_closed(self):
        body = b"{}"

        assert verify_completion_signature(body, sign(body, ""), "") is False


class TestMarkItemCompleted:
    async def test_completes_every_copy_of_the_item(
        self, session_factory, make_subscription, make_item
    ):
        channel = await make_subscription()
        playlist = await make_subscription(source_type=SourceType.PLAYLIST, source_id="PL_1")
        first = await make_item(
            channel, external_id="vid_done", translation_status=TranslationStatus.PROCESSING
        )
        second = await make_item(
            playlist, external_id="vid_done", translation_status=TranslationStatus.FAILED
        )
        other = await make_item(
            channel, external_id="vid_other", translation_status=TranslationStatus.PROCESSING
        )

        updated = await mark_item_completed(session_factory, "vid_done", "https://cdn/out.mp4")

        assert updated == 2
        async with session_factory() as session:
            for item_id in (first.id, second.id):
                item = await session.get(ContentItem, item_id)
                assert item.translation_status == TranslationStatus.COMPLETED
                assert item.output_ref == "https://cdn/out.mp4"
            untouched = await session.get(ContentItem, other.id)
            assert untouched.translation_status == TranslationStatus.PROCESSING

    async def test_already_completed_items_are_left_alone(
        self, session_factory, make_subscription, make_item
    ):
        subscription = await make_subscription()
        item = await make_item(
            subscription,
            external_id="vid_done",
            translation_status=TranslationStatus.COMPLETED,
            output_ref="first",
        )

        assert await mark_item_completed(session_factory, "vid_done", "second") == 0

        async with session_factory() as session:
            assert (await session.get(ContentItem, item.id)).output_ref == "first"

    async def test_unknown_item_updates_nothing(self, session_factory):
        assert await mark_item_completed(session_factory, "nope", "ref") == 0


class TestProcessCompletionEvent:
    async def test_marks_item_completed(self, session_factory, make_subscription, make_item):
        subscription = await make_subscription()
        item = await make_item(
            subscription, external_id="vid_1", translation_status=TranslationStatus.PROCESSING
        )
        payload = CompletionWebhookPayload(event_id="evt_1", external_id="vid_1", output_ref="ref")

        await process_completion_event(payload, session_factory)

        async with session_factory() as session:
            stored = await session.get(ContentItem, item.id)
        assert stored.translation_status == TranslationStatus.COMPLETED

    async def test_database_errors_are_logged_not_raised(self):
        broken_factory = MagicMock(side_effect=RuntimeError("database unavailable"))
        payload = CompletionWebhookPayload(event_id="evt_1", external_id="vid_1", output_ref="ref")

        await process_completion_event(payload, broken_factory)
