from __future__ import annotations

import asyncio
from urllib.parse import quote

import httpx

from sitesync.core.http import STARFISH_RETRY_POLICY, RetryPolicy, request_with_retries, starfish_client
from sitesync.core.logger import get_logger

log = get_logger("providers.starfish")


async def _get_site(
    path: str,
    *,
    client: httpx.AsyncClient | None,
    policy: RetryPolicy | None,
    _sleep,
) -> dict | None:
    client = client or starfish_client()
    response = await request_with_retries(
        client,
        "GET",
        path,
        policy=policy or STARFISH_RETRY_POLICY,
        _sleep=_sleep,
    )
    if response.status_code == 404:
        log.warning("starfish_site_not_found path=%s", path)
        return None
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, dict):
        log.warning("starfish_unexpected_payload path=%s type=%s", path, type(payload).__name__)
        return None
    return payload


async def get_site_info(
    site_id: str,
    *,
    client: httpx.AsyncClient | None = None,
    policy: RetryPolicy | None = None,
    _sleep=asyncio.sleep,
) -> dict | None:
    """Site document by id, or None when the API does not know the site."""
    return await _get_site(f"/api/sites/{quote(str(site_id), safe='')}", client=client, policy=policy, _sleep=_sleep)


async def get_site_info_by_code(
    site_code: str,
    *,
    client: httpx.AsyncClient | None = None,
    policy: RetryPolicy | None = None,
    _sleep=asyncio.sleep,
) -> dict | None:
    return await _get_site(
        f"/api/sites/code/{quote(str(site_code), safe='')}", client=client, policy=policy, _sleep=_sleep
    )


async def is_api_healthy(*, client: httpx.AsyncClient | None = None) -> bool:
    try:
        client = client or starfish_client()
        response = await client.get("/health")
        return response.is_success
    except Exception as exc:
        log.warning("starfish_health_failed error=%s", exc)
        return False
