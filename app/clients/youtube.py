"""YouTube Data API v3 client for subscription sync.

This module fetches new items for a channel or playlist subscription and the
durations of known items. It implements:
- Global request rate limit via AsyncLimiter
- Automatic retry with exponential backoff for transient errors (5xx, timeouts)
- Quota-exhaustion detection (403 quotaExceeded / dailyLimitExceeded)
- A usage callback invoked after every HTTP call, so the credential pool can
  account each call against the key that made it

The client never selects credentials itself: callers pass the API key per
call and rotate keys when QuotaExhaustedError is raised.

Usage:
    client = YouTubeClient()
    items = await client.fetch_items(
        SourceType.CHANNEL, "UC...", 30, last_sync_at,
        api_key=lease.secret, on_request=report_usage,
    )
"""

import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

import httpx
from aiolimiter import AsyncLimiter
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.constants import QUOTA_EXHAUSTED_MARKERS
from app.exceptions import QuotaExhaustedError, TransientNetworkError
from app.models import SourceType
from app.schemas.content import FetchedItem
from app.utils.logging import get_logger

log = get_logger(__name__)

# (operation, endpoint, success, error_info) -> None
UsageCallback = Callable[[str, str, bool, str | None], Awaitable[None]]

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"

# videos.list accepts at most 50 ids per call
VIDEOS_LIST_MAX_IDS = 50

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


class YouTubeAPIError(Exception):
    """Raised for non-retriable YouTube API errors (400, 401, 403 other than quota, 404)."""

    def __init__(self, message: str, status_code: int, response_body: str = ""):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"{message} - Status: {status_code}")


class ContentSourceClient(Protocol):
    """Upstream content source used by the sync engine."""

    async def fetch_items(
        self,
        source_type: SourceType,
        source_id: str,
        max_results: int,
        published_after: datetime | None,
        *,
        api_key: str,
        on_request: UsageCallback,
    ) -> list[FetchedItem]: ...

    async def fetch_durations(
        self,
        external_ids: list[str],
        *,
        api_key: str,
        on_request: UsageCallback,
    ) -> dict[str, int]: ...


def parse_iso8601_duration(value: str | None) -> int | None:
    """Parse an ISO 8601 duration (PT1H2M3S) into seconds.

    Returns:
        Seconds, or None when the value is missing or not a duration.

    Example:
        >>> parse_iso8601_duration("PT1H2M3S")
        3723
        >>> parse_iso8601_duration("P0D")
        0
    """
    if not value:
        return None
    match = _DURATION_RE.match(value)
    if not match:
        log.warning("unparseable_duration", value=value)
        return None
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _published_after(entry: dict[str, Any], watermark: datetime) -> bool:
    published = _parse_timestamp(entry.get("snippet", {}).get("publishedAt"))
    return published is not None and published > watermark


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _error_reason(response: httpx.Response) -> str:
    """Extract the API error reason(s) and message from an error response."""
    try:
        error = response.json().get("error", {})
    except ValueError:
        return response.text[:500]
    reasons = [e.get("reason", "") for e in error.get("errors", [])]
    return f"{','.join(r for r in reasons if r)}: {error.get('message', '')}".strip(": ")


def _is_quota_error(response: httpx.Response, reason: str) -> bool:
    return response.status_code in (403, 429) and any(
        marker in reason for marker in QUOTA_EXHAUSTED_MARKERS
    )


def _thumbnail(snippet: dict[str, Any]) -> str | None:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("high", "medium", "default"):
        if size in thumbnails:
            return thumbnails[size].get("url")
    return None


class YouTubeClient:
    """YouTube Data API v3 client with rate limiting and transient-error retry.

    Implements:
    - Global 5 requests per second rate limit via AsyncLimiter
    - Automatic retry with exponential backoff for 5xx and timeouts
    - Proper error classification (quota vs transient vs non-retriable)
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        """Initialize the client.

        Args:
            http_client: Optional preconfigured httpx client (tests inject a
                MockTransport-backed client here).
        """
        self.client = http_client or httpx.AsyncClient(timeout=30.0)
        self.rate_limiter = AsyncLimiter(max_rate=5, time_period=1)
        self.base_url = YOUTUBE_API_BASE

    async def close(self) -> None:
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(TransientNetworkError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(
        self,
        resource: str,
        params: dict[str, str],
        *,
        operation: str,
        endpoint: str,
        api_key: str,
        on_request: UsageCallback,
    ) -> dict[str, Any]:
        """GET one API resource and report the call through on_request.

        Raises:
            QuotaExhaustedError: The key is out of quota.
            TransientNetworkError: Network error or 5xx (retried 3 times).
            YouTubeAPIError: Any other non-2xx response.
        """
        try:
            async with self.rate_limiter:
                response = await self.client.get(
                    f"{self.base_url}/{resource}",
                    params={**params, "key": api_key},
                )
        except httpx.HTTPError as e:
            await on_request(operation, endpoint, False, f"{type(e).__name__}: {e}")
            raise TransientNetworkError(f"{endpoint} request failed: {e}") from e

        if response.is_success:
            await on_request(operation, endpoint, True, None)
            return response.json()  # type: ignore[no-any-return]

        reason = _error_reason(response)
        await on_request(operation, endpoint, False, reason)

        if _is_quota_error(response, reason):
            raise QuotaExhaustedError(f"{endpoint}: {reason}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientNetworkError(
                f"{endpoint} returned {response.status_code}: {reason}",
                status_code=response.status_code,
            )
        raise YouTubeAPIError(
            f"{endpoint} failed: {reason}",
            response.status_code,
            response.text[:500],
        )

    async def fetch_items(
        self,
        source_type: SourceType,
        source_id: str,
        max_results: int,
        published_after: datetime | None,
        *,
        api_key: str,
        on_request: UsageCallback,
    ) -> list[FetchedItem]:
        """Fetch the newest items of a channel or playlist.

        Channels use search.list (100 units) ordered by date with
        publishedAfter; playlists use playlistItems.list (1 unit) filtered
        locally. Details and durations come from one videos.list call.

        Returns:
            Items in upstream order (newest first for channels).
        """
        if source_type == SourceType.CHANNEL:
            params = {
                "part": "snippet",
                "channelId": source_id,
                "maxResults": str(max_results),
                "order": "date",
                "type": "video",
            }
            if published_after is not None:
                params["publishedAfter"] = _format_timestamp(published_after)
            data = await self._get(
                "search",
                params,
                operation="search",
                endpoint="search.list",
                api_key=api_key,
                on_request=on_request,
            )
            video_ids = [
                item["id"]["videoId"] if isinstance(item.get("id"), dict) else item.get("id")
                for item in data.get("items", [])
            ]
        else:
            data = await self._get(
                "playlistItems",
                {"part": "snippet", "playlistId": source_id, "maxResults": str(max_results)},
                operation="playlistItems.list",
                endpoint="playlistItems.list",
                api_key=api_key,
                on_request=on_request,
            )
            entries = data.get("items", [])
            if published_after is not None:
                entries = [e for e in entries if _published_after(e, published_after)]
            video_ids = [e["snippet"]["resourceId"]["videoId"] for e in entries]

        video_ids = [v for v in video_ids if v]
        if not video_ids:
            log.debug("no_new_items_upstream", source_type=source_type.value, source_id=source_id)
            return []

        details = await self._get(
            "videos",
            {"part": "snippet,contentDetails", "id": ",".join(video_ids)},
            operation="videos.list",
            endpoint="videos.list",
            api_key=api_key,
            on_request=on_request,
        )
        by_id = {item["id"]: item for item in details.get("items", [])}

        items = []
        for video_id in video_ids:
            video = by_id.get(video_id)
            if video is None:
                # Deleted or private between the two calls
                continue
            snippet = video.get("snippet", {})
            items.append(
                FetchedItem(
                    external_id=video_id,
                    title=snippet.get("title", ""),
                    description=snippet.get("description"),
                    thumbnail_url=_thumbnail(snippet),
                    published_at=_parse_timestamp(snippet.get("publishedAt")),
                    duration_seconds=parse_iso8601_duration(
                        video.get("contentDetails", {}).get("duration")
                    ),
                    owner_id=snippet.get("channelId"),
                    owner_name=snippet.get("channelTitle"),
                )
            )

        log.info(
            "upstream_items_fetched",
            source_type=source_type.value,
            source_id=source_id,
            count=len(items),
        )
        return items

    async def fetch_durations(
        self,
        external_ids: list[str],
        *,
        api_key: str,
        on_request: UsageCallback,
    ) -> dict[str, int]:
        """Fetch durations (seconds) for known items, 50 ids per videos.list call.

        Items the API no longer returns, or returns without a parseable
        duration, are absent from the result.
        """
        durations: dict[str, int] = {}
        for start in range(0, len(external_ids), VIDEOS_LIST_MAX_IDS):
            chunk = external_ids[start : start + VIDEOS_LIST_MAX_IDS]
            data = await self._get(
                "videos",
                {"part": "contentDetails", "id": ",".join(chunk)},
                operation="videos.list",
                endpoint="videos.list",
                api_key=api_key,
                on_request=on_request,
            )
            for item in data.get("items", []):
                seconds = parse_iso8601_duration(item.get("contentDetails", {}).get("duration"))
                if seconds is not None:
                    durations[item["id"]] = seconds
        return durations
