"""Tests for the HTTP submission client."""

import json

import httpx
import pytest

from app.clients.submission import HttpSubmissionClient
from app.exceptions import ConfigurationError, TransientNetworkError


def make_client(handler, base_url="https://translate.example.com/api", token="secret-token"):
    return HttpSubmissionClient(
        base_url=base_url,
        token=token,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def test_accepted_submission_returns_true():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, json={"job_id": "job_1"})

    client = make_client(handler)

    assert await client.submit(17, "dQw4w9WgXcQ") is True
    request = requests[0]
    assert str(request.url) == "https://translate.example.com/api/submissions"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert json.loads(request.content) == {
        "item_id": 17,
        "external_id": "dQw4w9WgXcQ",
        "source_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    }
    await client.close()


async def test_rejection_returns_false():
    client = make_client(lambda request: httpx.Response(422, json={"detail": "unsupported"}))

    assert await client.submit(17, "dQw4w9WgXcQ") is False


async def test_server_error_raises_transient_error():
    client = make_client(lambda request: httpx.Response(502))

    with pytest.raises(TransientNetworkError) as exc_info:
        await client.submit(17, "dQw4w9WgXcQ")

    assert exc_info.value.status_code == 502


async def test_network_error_raises_transient_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused")

    client = make_client(handler)

    with pytest.raises(TransientNetworkError):
        await client.submit(17, "dQw4w9WgXcQ")


async def test_missing_url_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("SUBMISSION_SERVICE_URL", raising=False)
    client = make_client(lambda request: httpx.Response(200), base_url=None)

    with pytest.raises(ConfigurationError):
        await client.submit(17, "dQw4w9WgXcQ")


async def test_no_token_sends_no_authorization_header(monkeypatch):
    monkeypatch.delenv("SUBMISSION_SERVICE_TOKEN", raising=False)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    client = make_client(handler, token=None)

    await client.submit(1, "dQw4w9WgXcQ")

    assert "Authorization" not in requests[0].headers
