import asyncio

import httpx
import pytest

from sitesync.core.http import RetryPolicy
from sitesync.data.providers import starfish

FAST = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, retry_statuses=frozenset({500, 502, 503, 504}))


async def _no_sleep(_delay):
    return None


def _call(fn, handler, *args):
    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://starfish.example.com") as client:
            return await fn(*args, client=client, policy=FAST, _sleep=_no_sleep)

    return asyncio.run(_run())


def test_get_site_info_returns_document():
    def handler(request):
        assert request.url.path == "/api/sites/42"
        return httpx.Response(200, json={"id": "42", "name": "Berlin"}, request=request)

    assert _call(starfish.get_site_info, handler, "42") == {"id": "42", "name": "Berlin"}


def test_get_site_info_by_code_quotes_path():
    seen = {}

    def handler(request):
        seen["raw_path"] = request.url.raw_path
        return httpx.Response(200, json={"code": "A/B"}, request=request)

    assert _call(starfish.get_site_info_by_code, handler, "A/B") == {"code": "A/B"}
    assert seen["raw_path"] == b"/api/sites/code/A%2FB"


def test_not_found_returns_none():
    def handler(request):
        return httpx.Response(404, request=request)

    assert _call(starfish.get_site_info, handler, "missing") is None


def test_server_errors_are_retried_then_raised():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(500, request=request)

    with pytest.raises(httpx.HTTPStatusError):
        _call(starfish.get_site_info, handler, "1")
    assert calls["count"] == 3


def test_client_errors_are_not_retried():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(403, request=request)

    with pytest.raises(httpx.HTTPStatusError):
        _call(starfish.get_site_info, handler, "1")
    assert calls["count"] == 1


def test_non_object_payload_returns_none():
    def handler(request):
        return httpx.Response(200, json=[{"id": "1"}], request=request)

    assert _call(starfish.get_site_info, handler, "1") is None


def test_is_api_healthy_false_on_error_status():
    def handler(request):
        return httpx.Response(503, request=request)

    async def _run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="https://starfish.example.com") as client:
            return await starfish.is_api_healthy(client=client)

    assert asyncio.run(_run()) is False
