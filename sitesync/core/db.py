import os

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import text
from sqlalchemy.pool import NullPool
from .config import settings
from .logger import get_logger

_use_null_pool = bool(os.getenv("PYTEST_CURRENT_TEST")) or (settings.app_env or "").strip().lower() in {"test", "pytest"}


def _engine_kwargs() -> dict:
    if _use_null_pool:
        return {"poolclass": NullPool}
    return {
        "pool_size": max(1, int(settings.db_pool_size)),
        "max_overflow": max(0, int(settings.db_max_overflow)),
    }


engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
    **_engine_kwargs(),
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
log = get_logger("db")


async def _has_table(conn, table_name: str) -> bool:
    res = await conn.execute(
        text(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema='public'
              AND table_type='BASE TABLE'
              AND table_name=:name
            LIMIT 1
            """
        ),
        {"name": table_name},
    )
    return res.first() is not None


async def init_db():
    async with engine.begin() as conn:
        if not await _has_table(conn, "job_details"):
            msg = "job_details table is missing; run `alembic upgrade head`"
            if (settings.app_env or "").lower() == "dev":
                log.warning(msg)
                return
            raise RuntimeError(msg)

        if not await _has_table(conn, "alembic_version"):
            msg = (
                "db has tables but alembic is not initialized; run `alembic stamp head` "
                "(if schema already matches) or `alembic upgrade head`"
            )
            if (settings.app_env or "").lower() == "dev":
                log.warning(msg)
                return
            raise RuntimeError(msg)


async def dispose_db() -> None:
    await engine.dispose()
