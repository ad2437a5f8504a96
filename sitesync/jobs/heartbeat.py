from __future__ import annotations

import httpx

from sitesync.core.config import settings
from sitesync.core.http import heartbeat_client
from sitesync.core.logger import get_logger

log = get_logger("jobs.heartbeat")


async def run(*, client: httpx.AsyncClient | None = None) -> bool:
    """Ping ``HEARTBEAT_URL`` once. Never raises; returns whether the call succeeded."""
    url = (settings.heartbeat_url or "").strip()
    if not url:
        return False
    try:
        client = client or heartbeat_client()
        response = await client.get(url)
    except Exception as exc:
        log.error("heartbeat_failed url=%s error=%s: %s", url, exc.__class__.__name__, exc)
        return False
    if response.is_success:
        log.info("heartbeat_ok url=%s status=%s", url, response.status_code)
        return True
    log.warning("heartbeat_non_success url=%s status=%s", url, response.status_code)
    return False
