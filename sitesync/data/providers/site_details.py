from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from sitesync.core.logger import get_logger

log = get_logger("providers.site_details")

_SITE_DETAILS_SQL = text(
    """
    SELECT
        pc.name AS site,
        pc.id_pbx AS cm,
        pt.name AS type,
        pnr.range_from AS lowerbound,
        pnr.range_to AS upperbound,
        cr.country_code AS prefix
    FROM amsp.pbx_number_range pnr
    JOIN amsp.pbx_cluster pc ON pc.id = pnr.id_pbx_cluster
    JOIN amsp.pbx_phonenumber_type pt ON pt.id = pnr.phone_number_type
    JOIN amsp.country cr ON cr.id = pc.id_country
    WHERE pnr.active = 1 AND pc.active = 1 AND pc.name = :cluster_name
    """
)


async def get_site_details(session: AsyncSession, cluster_name: str) -> list[dict]:
    """Number ranges configured for ``cluster_name`` (exact, case-sensitive match)."""
    res = await session.execute(_SITE_DETAILS_SQL, {"cluster_name": cluster_name})
    rows = [dict(r) for r in res.mappings().all()]
    log.debug("site_details cluster=%r rows=%s", cluster_name, len(rows))
    return rows


async def list_active_clusters(session: AsyncSession) -> list[str]:
    res = await session.execute(text("SELECT DISTINCT name FROM amsp.pbx_cluster WHERE active = 1 ORDER BY name"))
    return [str(r.name) for r in res.fetchall() if r.name is not None]
