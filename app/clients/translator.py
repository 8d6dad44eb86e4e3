"""Metadata translation via the free Google Translate endpoint.

Translation is best effort. A failed request, a malformed response or an
unchanged result all leave the caller with the original text; the sync
engine never fails an item because of translation.
"""

import asyncio
import re
from typing import Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.utils.logging import get_logger

log = get_logger(__name__)

GOOGLE_TRANSLATE_URL = "https://translate.googleapis.com/translate_a/single"

# Texts at least this long are translated paragraph by paragraph
LONG_TEXT_THRESHOLD = 1000
PARAGRAPH_BATCH_SIZE = 5

_CJK_RE = re.compile(r"[一-龥]")


class Translator(Protocol):
    """Text translator used for item titles and descriptions."""

    async def translate(self, text: str, target_lang: str) -> str: ...


def is_mostly_cjk(text: str) -> bool:
    """True when more than half of the characters are CJK ideographs."""
    if not text:
        return False
    return len(_CJK_RE.findall(text)) / len(text) > 0.5


class GoogleTranslator:
    """Translator backed by translate.googleapis.com (client=gtx)."""

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self.client = http_client or httpx.AsyncClient(timeout=15.0)

    async def close(self) -> None:
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _request(self, text: str, target_lang: str) -> list:
        response = await self.client.get(
            GOOGLE_TRANSLATE_URL,
            params={"client": "gtx", "sl": "auto", "tl": target_lang, "dt": "t", "q": text},
        )
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]

    async def _translate_chunk(self, text: str, target_lang: str) -> str:
        if not text.strip():
            return text
        if target_lang.lower().startswith("zh") and is_mostly_cjk(text):
            log.debug("translation_skipped_already_target", preview=text[:30])
            return text

        try:
            data = await self._request(text, target_lang)
        except (httpx.HTTPError, ValueError) as e:
            log.warning("translation_request_failed", error=str(e), error_type=type(e).__name__)
            return text

        if not isinstance(data, list) or not data or not isinstance(data[0], list):
            log.warning("translation_response_malformed", response=str(data)[:200])
            return text

        translated = "".join(segment[0] for segment in data[0] if segment and segment[0])
        if translated == text:
            log.warning("translation_unchanged", preview=text[:30])
        return translated or text

    async def translate(self, text: str, target_lang: str) -> str:
        """Translate text, paragraph-wise when it is long.

        Returns:
            Translated text, or the input unchanged on any failure.
        """
        if len(text) < LONG_TEXT_THRESHOLD:
            return await self._translate_chunk(text, target_lang)

        paragraphs = re.split(r"\r?\n\r?\n", text)
        translated: list[str] = []
        for start in range(0, len(paragraphs), PARAGRAPH_BATCH_SIZE):
            batch = paragraphs[start : start + PARAGRAPH_BATCH_SIZE]
            translated.extend(
                await asyncio.gather(*[self._translate_chunk(p, target_lang) for p in batch])
            )
        return "\n\n".join(translated)
