from __future__ import annotations

import asyncio
import json
import random

import allure
import httpx
import pytest

from view_sync.errors import (
    ClientError,
    NetworkError,
    NetworkTimeout,
    ParseError,
    RateLimited,
    ServerError,
)
from view_sync.http.client import ResilientClient, parse_retry_after

pytestmark = [
    allure.epic("Remote Access"),
    allure.feature("Resilient Client"),
]


def _client(handler, recorded_sleep, **kwargs) -> ResilientClient:
    kwargs.setdefault("backoff_jitter_seconds", 0.0)
    return ResilientClient(
        "https://store.example.com",
        transport=httpx.MockTransport(handler),
        sleep=recorded_sleep,
        rng=random.Random(7),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_conditional_get_serves_memo_on_304_without_parsing(recorded_sleep) -> None:
    seen_etags: list[str | None] = []
    parsed: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_etags.append(request.headers.get("If-None-Match"))
        if request.headers.get("If-None-Match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, json={"videos": [{"id": "a"}]}, headers={"ETag": '"v1"'})

    def parser(content: bytes) -> object:
        parsed.append(content)
        return json.loads(content)

    async with _client(handler, recorded_sleep, parser=parser) as client:
        first = await client.get("/videos")
        second = await client.get("/videos")

    assert first == {"videos": [{"id": "a"}]}
    assert second == first
    assert seen_etags == [None, '"v1"']
    assert len(parsed) == 1


@pytest.mark.asyncio
async def test_response_without_etag_is_not_memoized(recorded_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "If-None-Match" not in request.headers
        return httpx.Response(200, json=[1, 2])

    async with _client(handler, recorded_sleep) as client:
        assert await client.get("/stats") == [1, 2]
        assert client.cached("/stats") is None
        assert await client.get("/stats") == [1, 2]


@pytest.mark.asyncio
async def test_unexpected_304_without_memo_is_client_error(recorded_sleep) -> None:
    async with _client(lambda request: httpx.Response(304), recorded_sleep) as client:
        with pytest.raises(ClientError) as excinfo:
            await client.get("/videos")
    assert excinfo.value.code == "unexpected_not_modified"


@pytest.mark.asyncio
async def test_rate_limit_honors_retry_after_then_raises_after_exhaustion(recorded_sleep) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429, headers={"Retry-After": "2"}, json={"error": "slow down"})

    async with _client(handler, recorded_sleep, max_attempts=3) as client:
        with pytest.raises(RateLimited) as excinfo:
            await client.get("/thumbnails")

    assert calls == 3
    assert len(recorded_sleep.delays) == 2
    assert all(delay >= 2.0 for delay in recorded_sleep.delays)
    assert excinfo.value.retry_after == 2.0
    assert "slow down" in str(excinfo.value)


@pytest.mark.asyncio
async def test_server_error_is_retried_with_exponential_backoff(recorded_sleep) -> None:
    responses = iter(
        [httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"ok": True})],
    )

    async with _client(
        lambda request: next(responses),
        recorded_sleep,
        max_attempts=3,
        backoff_base_seconds=0.5,
    ) as client:
        assert await client.get("/stats") == {"ok": True}

    assert recorded_sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_server_error_surfaces_after_last_attempt(recorded_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async with _client(handler, recorded_sleep, max_attempts=2) as client:
        with pytest.raises(ServerError) as excinfo:
            await client.request("POST", "/videos", body={"id": "x"})
    assert excinfo.value.status_code == 500
    assert len(recorded_sleep.delays) == 1


@pytest.mark.asyncio
async def test_client_error_is_not_retried(recorded_sleep) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, json={"message": "bad id"})

    async with _client(handler, recorded_sleep) as client:
        with pytest.raises(ClientError) as excinfo:
            await client.request("PUT", "/videos/x", body={})

    assert calls == 1
    assert recorded_sleep.delays == []
    assert excinfo.value.code == "http_400"


@pytest.mark.asyncio
async def test_timeout_maps_to_network_timeout(recorded_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async with _client(handler, recorded_sleep, max_attempts=2) as client:
        with pytest.raises(NetworkTimeout) as excinfo:
            await client.get("/videos")

    assert excinfo.value.code == "timeout"
    assert isinstance(excinfo.value, NetworkError)
    assert len(recorded_sleep.delays) == 1


@pytest.mark.asyncio
async def test_slow_response_is_cut_off_by_per_request_timeout(recorded_sleep) -> None:
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        await asyncio.sleep(5)
        return httpx.Response(200, json={"ok": True})

    async with _client(handler, recorded_sleep, max_attempts=2, timeout_seconds=0.05) as client:
        with pytest.raises(NetworkTimeout) as excinfo:
            await client.get("/videos")

    assert calls == 2
    assert len(recorded_sleep.delays) == 1
    assert "timed out after 0.05s" in str(excinfo.value)


@pytest.mark.asyncio
async def test_redirect_loop_is_a_permanent_client_error(recorded_sleep) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(302, headers={"Location": str(request.url)})

    async with _client(handler, recorded_sleep) as client:
        with pytest.raises(ClientError) as excinfo:
            await client.get("/videos")

    assert excinfo.value.code == "http_error"
    assert isinstance(excinfo.value.__cause__, httpx.TooManyRedirects)
    assert recorded_sleep.delays == []
    assert calls > 1


@pytest.mark.asyncio
async def test_transport_error_is_retried(recorded_sleep) -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"ok": True})

    async with _client(handler, recorded_sleep) as client:
        assert await client.get("/stats") == {"ok": True}
    assert attempts == 2


@pytest.mark.asyncio
async def test_write_invalidates_memo_even_when_it_fails(recorded_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"videos": []}, headers={"ETag": '"v1"'})
        return httpx.Response(400)

    async with _client(handler, recorded_sleep) as client:
        await client.get("/videos")
        await client.get("/stats")
        assert client.cached("/videos") is not None
        with pytest.raises(ClientError):
            await client.request("DELETE", "/videos/a", invalidates=("/videos",))
        assert client.cached("/videos") is None
        assert client.cached("/stats") is not None


@pytest.mark.asyncio
async def test_bearer_token_is_sent_on_writes_but_not_on_default_reads(recorded_sleep) -> None:
    seen: list[tuple[str, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.headers.get("Authorization")))
        return httpx.Response(200, json={})

    async with _client(handler, recorded_sleep, token="secret") as client:
        await client.get("/stats")
        await client.request("POST", "/videos", body={})

    assert seen == [("GET", None), ("POST", "Bearer secret")]


@pytest.mark.asyncio
async def test_invalid_json_raises_parse_error(recorded_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"{not json")

    async with _client(handler, recorded_sleep) as client:
        with pytest.raises(ParseError):
            await client.get("/stats")


def test_compute_backoff_caps_retry_after(recorded_sleep) -> None:
    client = _client(
        lambda request: httpx.Response(200),
        recorded_sleep,
        retry_after_max_seconds=15.0,
    )
    assert client.compute_backoff(1, retry_after=120) == 15.0
    assert client.compute_backoff(3) == pytest.approx(1.6)


def test_parse_retry_after_accepts_seconds_and_rejects_garbage() -> None:
    assert parse_retry_after("2") == 2.0
    assert parse_retry_after(" ") is None
    assert parse_retry_after("soon") is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
