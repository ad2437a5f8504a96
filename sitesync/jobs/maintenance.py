from __future__ import annotations

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from sitesync.core.config import settings
from sitesync.core.logger import get_logger
from sitesync.core.timeutils import utcnow
from sitesync.services import job_executions

log = get_logger("jobs.maintenance")


async def _cleanup_job_details(session: AsyncSession) -> dict:
    days = int(getattr(settings, "job_details_retention_days", 90) or 0)
    if days <= 0:
        return {"job_details_deleted": 0}
    cutoff = utcnow() - timedelta(days=days)
    deleted = await job_executions.delete_finished_before(session, cutoff)
    return {"job_details_deleted": deleted}


async def _report_running(session: AsyncSession) -> dict:
    # Rows still RUNNING here belong to a live run or to a crashed process; only report them.
    running = await job_executions.find_running(session)
    for execution in running:
        log.warning(
            "job_details_running job_id=%s job=%s started=%s",
            execution.job_id,
            execution.job_name,
            execution.start_time.isoformat() if execution.start_time else None,
        )
    return {"job_details_running": len(running)}


async def run(session: AsyncSession) -> dict:
    log.info("maintenance start")
    out: dict = {}
    out.update(await _cleanup_job_details(session))
    out.update(await _report_running(session))
    await session.commit()
    log.info("maintenance done %s", out)
    return out
