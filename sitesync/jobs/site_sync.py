from __future__ import annotations

import asyncio
from asyncio import sleep
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sitesync.core.config import settings
from sitesync.core.logger import get_logger
from sitesync.data.mappers import SiteRecord, sites_snapshot_json
from sitesync.data.providers import starfish
from sitesync.data.providers.master_service import get_sites
from sitesync.data.providers.site_details import get_site_details
from sitesync.services import job_executions
from sitesync.services.job_executions import JobExecution, JobStatus

JOB_NAME = "SITE_SYNC_JOB"
NO_SITES_RESULT = "Site sync completed - no sites found"

log = get_logger("jobs.site_sync")
_background: set[asyncio.Task] = set()


class SiteSyncError(RuntimeError):
    def __init__(self, job_id: str, message: str):
        super().__init__(f"Site sync job {job_id} failed: {message}")
        self.job_id = job_id


def format_summary(processed: int, success: int, failed: int) -> str:
    return f"Site sync completed successfully. Processed: {processed}, Success: {success}, Failed: {failed}"


async def _throttle():
    delay = max(settings.site_sync_item_delay_ms, 0) / 1000
    if delay:
        await sleep(delay)


async def _rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception:
        log.debug("site_sync_rollback_failed", exc_info=True)


async def _save_terminal(session: AsyncSession, execution: JobExecution) -> None:
    """Persist a finished execution, retrying once on a fresh transaction."""
    try:
        await job_executions.save(session, execution)
    except Exception:
        log.warning(
            "site_sync_terminal_save_retry job_id=%s status=%s",
            execution.job_id,
            execution.status.value,
            exc_info=True,
        )
        await _rollback(session)
        await job_executions.save(session, execution)


def _error_text(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


async def lookup_site_details(session: AsyncSession, site: SiteRecord) -> list:
    """Detail records for one site; an empty list means nothing matched."""
    if settings.detail_source == "starfish":
        if site.site_id:
            info = await starfish.get_site_info(site.site_id)
        elif site.code:
            info = await starfish.get_site_info_by_code(site.code)
        else:
            return []
        return [info] if info else []

    if not site.cluster_name:
        return []
    return await get_site_details(session, site.cluster_name)


async def run(session: AsyncSession) -> str:
    execution = JobExecution.start(JOB_NAME)
    await job_executions.save(session, execution)
    log.info("site_sync_started job_id=%s", execution.job_id)

    try:
        sites = await get_sites()
        if not sites:
            log.warning("site_sync_no_sites job_id=%s", execution.job_id)
            execution.complete(0)
            await _save_terminal(session, execution)
            return NO_SITES_RESULT

        execution.set_api_response(sites_snapshot_json(sites))
        await job_executions.save(session, execution)
        log.info("site_sync_fetched job_id=%s sites=%s source=%s", execution.job_id, len(sites), settings.detail_source)

        processed = 0
        success = 0
        failed = 0
        for idx, site in enumerate(sites):
            try:
                details = await lookup_site_details(session, site)
                if details:
                    success += 1
                    log.info("site_sync_item_ok site=%s id=%s cluster=%s records=%s", site.name, site.site_id, site.cluster_name, len(details))
                else:
                    failed += 1
                    log.warning("site_sync_item_empty site=%s id=%s cluster=%s", site.name, site.site_id, site.cluster_name)
            except Exception:
                failed += 1
                log.exception("site_sync_item_failed site=%s id=%s", site.name, site.site_id)
                await _rollback(session)
            processed += 1
            if idx < len(sites) - 1:
                await _throttle()

        execution.complete(processed)
        await _save_terminal(session, execution)
    except Exception as exc:
        log.exception("site_sync_failed job_id=%s", execution.job_id)
        await _rollback(session)
        message = _error_text(exc)
        if not execution.is_terminal:
            execution.fail(message)
            try:
                await _save_terminal(session, execution)
            except Exception:
                log.exception("site_sync_fail_persist_failed job_id=%s", execution.job_id)
        else:
            # Reached only when both terminal writes failed; the row is still RUNNING.
            log.error("site_sync_terminal_not_persisted job_id=%s status=%s", execution.job_id, execution.status.value)
        raise SiteSyncError(execution.job_id, message) from exc

    result = format_summary(processed, success, failed)
    log.info("site_sync_finished job_id=%s duration_ms=%s %s", execution.job_id, execution.duration_ms, result)
    return result


def _on_dispatch_done(task: asyncio.Task) -> None:
    _background.discard(task)
    if task.cancelled():
        log.warning("site_sync_dispatch_cancelled")
        return
    exc = task.exception()
    if exc is not None:
        log.error("site_sync_dispatch_failed error=%s", exc)
        return
    log.info("site_sync_dispatch_finished result=%s", task.result())


def dispatch(session_factory=None) -> asyncio.Task:
    """Start a run in the background and return immediately.

    Must be called from a running event loop. Nothing stops a dispatched run
    from overlapping a scheduled one; each gets its own job_details row.
    """

    async def _detached() -> str:
        factory = session_factory
        if factory is None:
            from sitesync.core.db import SessionLocal

            factory = SessionLocal
        async with factory() as session:
            return await run(session)

    task = asyncio.create_task(_detached(), name="site_sync_dispatch")
    _background.add(task)
    task.add_done_callback(_on_dispatch_done)
    return task


async def last_execution(session: AsyncSession) -> Optional[JobExecution]:
    return await job_executions.get_last(session, JOB_NAME)


async def recent_executions(session: AsyncSession, limit: int = 10) -> list[JobExecution]:
    return await job_executions.get_recent(session, JOB_NAME, limit)


async def executions_since(session: AsyncSession, since: datetime) -> list[JobExecution]:
    return await job_executions.find_since(session, JOB_NAME, since)


async def status_counts_since(session: AsyncSession, since: datetime) -> dict[str, int]:
    return {
        status.value: await job_executions.count_by_status_since(session, JOB_NAME, status, since)
        for status in (JobStatus.COMPLETED, JobStatus.FAILED)
    }
