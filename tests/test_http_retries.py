import asyncio

import httpx
import pytest

from sitesync.core.http import RetryPolicy, request_with_retries

NO_WAIT = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0)


def test_request_with_retries_retries_on_500():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(500, request=request)
        return httpx.Response(200, json={"ok": True}, request=request)

    async def _sleep(_delay):
        return None

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            resp = await request_with_retries(client, "GET", "/test", policy=NO_WAIT, _sleep=_sleep)
            assert resp.status_code == 200

    asyncio.run(_run())
    assert calls["count"] == 2


def test_request_with_retries_respects_retry_after():
    calls = {"count": 0}
    sleeps = []

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"}, request=request)
        return httpx.Response(200, request=request)

    async def _sleep(delay):
        sleeps.append(delay)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            resp = await request_with_retries(client, "GET", "/test", policy=NO_WAIT, _sleep=_sleep)
            assert resp.status_code == 200

    asyncio.run(_run())
    assert calls["count"] == 2
    assert sleeps and sleeps[0] >= 2.0


def test_request_with_retries_retries_on_request_error():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, request=request)

    async def _sleep(_delay):
        return None

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            resp = await request_with_retries(client, "GET", "/test", policy=NO_WAIT, _sleep=_sleep)
            assert resp.status_code == 200

    asyncio.run(_run())
    assert calls["count"] == 2


def test_request_with_retries_reraises_after_last_attempt():
    calls = {"count": 0}
    sleeps = []

    def handler(request):
        calls["count"] += 1
        raise httpx.RemoteProtocolError("peer closed connection without sending complete message body", request=request)

    async def _sleep(delay):
        sleeps.append(delay)

    policy = RetryPolicy(max_attempts=5, base_delay=2.0, multiplier=2.0, max_delay=10.0)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            await request_with_retries(client, "GET", "/test", policy=policy, _sleep=_sleep)

    with pytest.raises(httpx.RemoteProtocolError):
        asyncio.run(_run())
    assert calls["count"] == 5
    assert sleeps == [2.0, 4.0, 8.0, 10.0]


def test_request_with_retries_returns_last_retryable_response():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(503, request=request)

    async def _sleep(_delay):
        return None

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            return await request_with_retries(
                client, "GET", "/test", policy=RetryPolicy(max_attempts=3, base_delay=0.0), _sleep=_sleep
            )

    resp = asyncio.run(_run())
    assert resp.status_code == 503
    assert calls["count"] == 3


def test_request_with_retries_does_not_retry_client_errors():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(404, request=request)

    async def _sleep(_delay):
        raise AssertionError("must not sleep")

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            return await request_with_retries(client, "GET", "/test", policy=NO_WAIT, _sleep=_sleep)

    resp = asyncio.run(_run())
    assert resp.status_code == 404
    assert calls["count"] == 1


def test_request_with_retries_stops_at_elapsed_ceiling():
    calls = {"count": 0}
    clock = {"now": 0.0}

    def handler(request):
        calls["count"] += 1
        clock["now"] += 7.0
        raise httpx.ReadTimeout("slow", request=request)

    async def _sleep(delay):
        clock["now"] += delay

    policy = RetryPolicy(max_attempts=10, base_delay=1.0, multiplier=2.0, max_delay=30.0, max_elapsed=20.0)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://example.com") as client:
            await request_with_retries(
                client, "GET", "/test", policy=policy, _sleep=_sleep, _clock=lambda: clock["now"]
            )

    with pytest.raises(httpx.ReadTimeout):
        asyncio.run(_run())
    # Failures at t=7 and t=15 still leave room for the backoff; the one at t=24 does not.
    assert calls["count"] == 3
