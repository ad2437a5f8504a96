import asyncio
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sitesync.core.config import Settings, settings
from sitesync.core.db import SessionLocal, dispose_db, init_db
from sitesync.core.http import close_http_clients, init_http_clients
from sitesync.core.timeutils import ensure_aware_utc
from sitesync.jobs import heartbeat, maintenance, site_sync

logger = logging.getLogger(__name__)


def site_sync_trigger(cfg: Settings = settings, *, start_date: Optional[datetime] = None) -> BaseTrigger:
    minutes = int(cfg.site_sync_interval_minutes or 0)
    if minutes > 0:
        return IntervalTrigger(minutes=minutes, start_date=start_date, timezone="UTC")
    return CronTrigger.from_crontab(cfg.site_sync_cron, timezone="UTC")


def next_fire_time(trigger: BaseTrigger, now: datetime, previous: Optional[datetime] = None) -> Optional[datetime]:
    return trigger.get_next_fire_time(previous, ensure_aware_utc(now))


async def _run_job(job_name: str, job_fn) -> None:
    try:
        async with SessionLocal() as session:
            result = await job_fn(session)
        logger.info("job_done job=%s result=%s", job_name, result)
    except Exception:
        # Failure is already on the job_details row; keep the scheduler alive.
        logger.exception("job_failed job=%s", job_name)


async def _scheduled_site_sync():
    if not settings.site_sync_enabled:
        logger.info("site_sync_disabled; skipping scheduled run")
        return
    await _run_job("site_sync", site_sync.run)


async def _scheduled_maintenance():
    await _run_job("maintenance", maintenance.run)


async def _scheduled_heartbeat():
    await heartbeat.run()


def build_scheduler(cfg: Settings = settings) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        _scheduled_site_sync,
        site_sync_trigger(cfg),
        id="site_sync",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    scheduler.add_job(
        _scheduled_maintenance,
        CronTrigger.from_crontab(cfg.job_maintenance_cron, timezone="UTC"),
        id="maintenance",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    if (cfg.heartbeat_url or "").strip():
        scheduler.add_job(
            _scheduled_heartbeat,
            IntervalTrigger(seconds=max(1, int(cfg.heartbeat_interval_seconds or 120)), timezone="UTC"),
            id="heartbeat",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
    return scheduler


def _validate_runtime_config() -> None:
    missing = []
    if not (settings.master_service_base_url or "").strip():
        missing.append("MASTER_SERVICE_BASE_URL")
    if settings.detail_source == "starfish" and not (settings.starfish_api_base_url or "").strip():
        missing.append("STARFISH_API_BASE_URL")
    if not missing:
        return
    msg = f"missing required settings: {', '.join(missing)}"
    if settings.is_prod:
        raise RuntimeError(msg)
    logger.warning(msg)


async def main() -> None:
    await init_db()
    await init_http_clients()
    _validate_runtime_config()

    if not settings.scheduler_enabled:
        logger.warning("SCHEDULER_ENABLED=false; scheduler runner exiting")
        await close_http_clients()
        await dispose_db()
        return

    scheduler = build_scheduler()
    scheduler.start()
    logger.info("scheduler_runner_started jobs=%s", [j.id for j in scheduler.get_jobs()])
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        try:
            await close_http_clients()
        except Exception:
            logger.exception("http_client_close_failed")
        await dispose_db()


if __name__ == "__main__":
    asyncio.run(main())
