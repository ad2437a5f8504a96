import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable

import httpx

from .config import settings
from .logger import get_logger

_DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
_USER_AGENT = "site-sync/1.0"
_master_client: httpx.AsyncClient | None = None
_starfish_client: httpx.AsyncClient | None = None
_heartbeat_client: httpx.AsyncClient | None = None
log = get_logger("http")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_attempts`` counts the first request. ``max_elapsed`` caps the total
    time spent (requests plus sleeps); once the next sleep would cross it the
    last outcome is surfaced instead of retrying.
    """

    max_attempts: int = 4
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0
    max_elapsed: float | None = None
    retry_statuses: frozenset[int] = _DEFAULT_RETRY_STATUSES
    retry_exceptions: tuple[type[BaseException], ...] = field(default=(httpx.RequestError,))

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_exceptions)

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** attempt))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay


def master_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max(1, int(settings.master_fetch_max_attempts)),
        base_delay=float(settings.master_fetch_backoff_base_seconds),
        multiplier=float(settings.master_fetch_backoff_multiplier),
        max_delay=float(settings.master_fetch_backoff_max_seconds),
        max_elapsed=float(settings.master_fetch_max_elapsed_seconds) or None,
    )


STARFISH_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    base_delay=2.0,
    multiplier=2.0,
    max_delay=8.0,
    retry_statuses=frozenset({500, 502, 503, 504}),
)


def _http_limits() -> httpx.Limits:
    max_conn = max(1, int(settings.http_max_connections))
    return httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn // 2))


def _http_timeout(read: float | None = None) -> httpx.Timeout:
    return httpx.Timeout(
        read if read is not None else settings.http_read_timeout_seconds,
        connect=settings.http_connect_timeout_seconds,
    )


def master_headers() -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "no-cache",
        "User-Agent": _USER_AGENT,
    }
    token = (settings.master_service_bearer_token or "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def master_service_client() -> httpx.AsyncClient:
    global _master_client
    base = (settings.master_service_base_url or "").strip()
    if not base:
        raise RuntimeError("MASTER_SERVICE_BASE_URL is not configured")
    if _master_client is None or _master_client.is_closed:
        _master_client = httpx.AsyncClient(
            base_url=base,
            timeout=_http_timeout(),
            limits=_http_limits(),
        )
    return _master_client


def starfish_client() -> httpx.AsyncClient:
    global _starfish_client
    base = (settings.starfish_api_base_url or "").strip()
    if not base:
        raise RuntimeError("STARFISH_API_BASE_URL is not configured")
    if _starfish_client is None or _starfish_client.is_closed:
        _starfish_client = httpx.AsyncClient(
            base_url=base,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": _USER_AGENT,
            },
            auth=settings.starfish_auth,
            timeout=_http_timeout(settings.starfish_api_timeout_seconds),
            limits=_http_limits(),
        )
    return _starfish_client


def heartbeat_client() -> httpx.AsyncClient:
    global _heartbeat_client
    if _heartbeat_client is None or _heartbeat_client.is_closed:
        _heartbeat_client = httpx.AsyncClient(
            headers={"User-Agent": _USER_AGENT},
            timeout=httpx.Timeout(15.0),
            limits=_http_limits(),
            follow_redirects=True,
        )
    return _heartbeat_client


async def init_http_clients() -> None:
    if settings.master_service_base_url:
        master_service_client()
    if settings.detail_source == "starfish" and settings.starfish_api_base_url:
        starfish_client()
    if settings.heartbeat_url:
        heartbeat_client()


async def close_http_clients() -> None:
    global _master_client, _starfish_client, _heartbeat_client
    if _master_client is not None and not _master_client.is_closed:
        await _master_client.aclose()
    if _starfish_client is not None and not _starfish_client.is_closed:
        await _starfish_client.aclose()
    if _heartbeat_client is not None and not _heartbeat_client.is_closed:
        await _heartbeat_client.aclose()
    _master_client = None
    _starfish_client = None
    _heartbeat_client = None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())
    except Exception:
        return None


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: dict | None = None,
    policy: RetryPolicy | None = None,
    _sleep=asyncio.sleep,
    _clock: Callable[[], float] = time.monotonic,
    **kwargs,
) -> httpx.Response:
    """Send a request, retrying transient failures according to ``policy``.

    Retryable exceptions are re-raised once attempts or time run out; a
    response with a retryable status is returned as-is so callers decide
    whether to ``raise_for_status()``.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))
    started = _clock()

    def _out_of_time(delay: float) -> bool:
        if policy.max_elapsed is None:
            return False
        return (_clock() - started) + delay > policy.max_elapsed

    for attempt in range(attempts):
        last = attempt >= attempts - 1
        try:
            response = await client.request(method, url, params=params, **kwargs)
        except Exception as exc:
            if last or not policy.is_retryable(exc):
                raise
            delay = policy.delay(attempt)
            if _out_of_time(delay):
                log.warning("http_retry_deadline method=%s url=%s attempt=%s", method, url, attempt + 1)
                raise
            log.warning(
                "http_retry method=%s url=%s attempt=%s error=%s delay=%.1fs",
                method,
                url,
                attempt + 1,
                exc.__class__.__name__,
                delay,
            )
            await _sleep(delay)
            continue

        if response.status_code in policy.retry_statuses and not last:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            delay = policy.delay(attempt, retry_after)
            if _out_of_time(delay):
                log.warning("http_retry_deadline method=%s url=%s status=%s", method, url, response.status_code)
                return response
            log.warning(
                "http_retry method=%s url=%s attempt=%s status=%s delay=%.1fs",
                method,
                url,
                attempt + 1,
                response.status_code,
                delay,
            )
            await response.aclose()
            await _sleep(delay)
            continue
        return response

    raise RuntimeError("request_with_retries: exhausted retries")
