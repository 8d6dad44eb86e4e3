"""HTTP client for the external AI processing (video translation) service.

The service is opaque: we POST the item to it and it later reports
completion out of band through the completion webhook, keyed by the
upstream external id sent here. `submit()` returns
whether the service accepted the job.
"""

from typing import Protocol

import httpx
from aiolimiter import AsyncLimiter

from app.config import get_submission_service_token, get_submission_service_url
from app.exceptions import ConfigurationError, TransientNetworkError
from app.utils.logging import get_logger

log = get_logger(__name__)

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={external_id}"


class SubmissionClient(Protocol):
    """Downstream AI service accepting items for processing."""

    async def submit(self, item_id: int, external_id: str) -> bool: ...


class HttpSubmissionClient:
    """Submits items to SUBMISSION_SERVICE_URL as JSON.

    Implements:
    - 1 request per second rate limit via AsyncLimiter
    - Bearer token auth when SUBMISSION_SERVICE_TOKEN is set
    - 4xx rejection → False, 5xx / network failure → TransientNetworkError
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url or get_submission_service_url()
        self.token = token or get_submission_service_token()
        self.client = http_client or httpx.AsyncClient(timeout=60.0)
        self.rate_limiter = AsyncLimiter(max_rate=1, time_period=1)

    async def close(self) -> None:
        await self.client.aclose()

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def submit(self, item_id: int, external_id: str) -> bool:
        """Submit one content item.

        Args:
            item_id: Internal content item id.
            external_id: Upstream video id; completion events refer to it.

        Raises:
            ConfigurationError: SUBMISSION_SERVICE_URL is not set.
            TransientNetworkError: Network error or 5xx response.
        """
        if not self.base_url:
            raise ConfigurationError("SUBMISSION_SERVICE_URL environment variable is required")

        try:
            async with self.rate_limiter:
                response = await self.client.post(
                    f"{self.base_url.rstrip('/')}/submissions",
                    headers=self._get_headers(),
                    json={
                        "item_id": item_id,
                        "external_id": external_id,
                        "source_url": YOUTUBE_WATCH_URL.format(external_id=external_id),
                    },
                )
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"Submission request failed: {e}") from e

        if response.status_code >= 500:
            raise TransientNetworkError(
                f"Submission service returned {response.status_code}",
                status_code=response.status_code,
            )
        if not response.is_success:
            log.warning(
                "submission_rejected",
                item_id=item_id,
                external_id=external_id,
                status_code=response.status_code,
                response=response.text[:500],
            )
            return False
        return True
