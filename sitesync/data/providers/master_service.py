from __future__ import annotations

import asyncio

import httpx

from sitesync.core.config import settings
from sitesync.core.http import RetryPolicy, master_headers, master_retry_policy, master_service_client, request_with_retries
from sitesync.core.logger import get_logger
from sitesync.data.json_repair import MODE_NOT_ARRAY, MODE_REPAIRED, MODE_SALVAGED, decode_json_array
from sitesync.data.mappers import SiteRecord, to_site_record

log = get_logger("providers.master_service")

_PREVIEW_SITES = 5
_LARGE_DATASET = 100


class MasterServiceError(RuntimeError):
    pass


async def get_sites(
    *,
    client: httpx.AsyncClient | None = None,
    policy: RetryPolicy | None = None,
    _sleep=asyncio.sleep,
) -> list[SiteRecord]:
    """Fetch every site from the master service.

    Transport errors and retryable statuses are retried per ``policy``; what
    is left after that is raised. A 2xx body is decoded leniently, so a
    truncated response yields the sites that arrived intact.
    """
    client = client or master_service_client()
    policy = policy or master_retry_policy()
    path = settings.master_sites_path

    try:
        response = await request_with_retries(
            client,
            "GET",
            path,
            headers=master_headers(),
            policy=policy,
            _sleep=_sleep,
        )
    except httpx.RequestError as exc:
        log.error("master_sites_request_failed error=%s: %s", exc.__class__.__name__, exc)
        raise MasterServiceError(
            f"Failed to fetch sites from master service after retries: {exc.__class__.__name__}: {exc}"
        ) from exc

    if response.is_error:
        log.error("master_sites_http_error status=%s", response.status_code)
        response.raise_for_status()
    if not response.is_success:
        log.warning("master_sites_non_success status=%s", response.status_code)
        return []

    items, mode = decode_json_array(response.text)
    if mode == MODE_NOT_ARRAY:
        log.error("master_sites_unexpected_body status=%s body=%.200s", response.status_code, response.text)
        raise MasterServiceError(f"Master service returned HTTP {response.status_code} without a site array")
    if mode in {MODE_REPAIRED, MODE_SALVAGED}:
        log.warning(
            "master_sites_partial_body mode=%s recovered=%s bytes=%s",
            mode,
            len(items),
            len(response.content),
        )

    sites = [to_site_record(item) for item in items]
    log.info("master_sites_fetched count=%s", len(sites))
    if len(sites) > _LARGE_DATASET:
        log.info("master_sites_large_dataset count=%s", len(sites))
    for idx, site in enumerate(sites[:_PREVIEW_SITES], start=1):
        log.info("master_site_preview n=%s name=%s cluster=%s", idx, site.name, site.cluster_name)
    return sites


async def is_service_healthy(*, client: httpx.AsyncClient | None = None) -> bool:
    try:
        client = client or master_service_client()
        response = await client.get("/health")
        return response.is_success
    except Exception as exc:
        log.warning("master_health_failed error=%s", exc)
        return False
