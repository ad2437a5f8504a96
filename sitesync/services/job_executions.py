"""Persisted history of job runs (``job_details`` table).

A run is inserted as RUNNING when it starts and updated exactly once more
when it reaches a terminal status. The table is the only source of truth for
"when did the sync last run"; nothing is cached in memory.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import Integer

from sitesync.core.logger import get_logger
from sitesync.core.timeutils import ensure_aware_utc, millis_between, to_utc, utcnow

log = get_logger("services.job_executions")

_COLUMNS = """
    id, job_id, job_name, status, start_time, end_time, duration_ms,
    records_processed, error_message, api_response, create_ts, update_ts
"""


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class JobStateError(RuntimeError):
    pass


@dataclass
class JobExecution:
    job_id: str
    job_name: str
    status: JobStatus = JobStatus.RUNNING
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    records_processed: int = 0
    error_message: Optional[str] = None
    api_response: Optional[str] = None
    create_ts: datetime = field(default_factory=utcnow)
    update_ts: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    @classmethod
    def start(cls, job_name: str, *, now: Optional[datetime] = None) -> "JobExecution":
        ts = ensure_aware_utc(now) if now is not None else utcnow()
        return cls(
            job_id=str(uuid.uuid4()),
            job_name=job_name,
            start_time=ts,
            create_ts=ts,
            update_ts=ts,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != JobStatus.RUNNING

    def _finish(self, status: JobStatus, now: Optional[datetime]) -> None:
        if self.is_terminal:
            raise JobStateError(f"job {self.job_id} is already {self.status.value}; cannot move to {status.value}")
        end = ensure_aware_utc(now) if now is not None else utcnow()
        # Wall clock may step backwards; the duration must not.
        if end < self.start_time:
            end = self.start_time
        self.status = status
        self.end_time = end
        self.duration_ms = millis_between(self.start_time, end)
        self.update_ts = end

    def complete(self, records_processed: Optional[int] = None, *, now: Optional[datetime] = None) -> None:
        if records_processed is not None:
            self.records_processed = max(0, int(records_processed))
        self._finish(JobStatus.COMPLETED, now)

    def fail(self, error_message: str, *, now: Optional[datetime] = None) -> None:
        self._finish(JobStatus.FAILED, now)
        self.error_message = error_message

    def cancel(self, reason: Optional[str] = None, *, now: Optional[datetime] = None) -> None:
        self._finish(JobStatus.CANCELLED, now)
        self.error_message = reason

    def set_api_response(self, snapshot: Optional[str]) -> None:
        self.api_response = snapshot
        self.update_ts = utcnow()

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "job_name": self.job_name,
            "status": self.status.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "records_processed": self.records_processed,
            "error_message": self.error_message,
        }


def _from_row(row) -> JobExecution:
    return JobExecution(
        id=int(row.id) if row.id is not None else None,
        job_id=row.job_id,
        job_name=row.job_name,
        status=JobStatus(str(row.status).upper()),
        start_time=to_utc(row.start_time),
        end_time=to_utc(row.end_time),
        duration_ms=int(row.duration_ms) if row.duration_ms is not None else None,
        records_processed=int(row.records_processed or 0),
        error_message=row.error_message,
        api_response=row.api_response,
        create_ts=to_utc(row.create_ts),
        update_ts=to_utc(row.update_ts),
    )


def _params(execution: JobExecution) -> dict:
    return {
        "job_id": execution.job_id,
        "job_name": execution.job_name,
        "status": execution.status.value,
        "start_time": execution.start_time,
        "end_time": execution.end_time,
        "duration_ms": execution.duration_ms,
        "records_processed": int(execution.records_processed or 0),
        "error_message": execution.error_message,
        "api_response": execution.api_response,
        "create_ts": execution.create_ts,
        "update_ts": execution.update_ts,
    }


async def save(session: AsyncSession, execution: JobExecution) -> JobExecution:
    """Insert a new run or update an existing one, then commit."""
    params = _params(execution)
    if execution.id is None:
        res = await session.execute(
            text(
                """
                INSERT INTO job_details(
                  job_id, job_name, status, start_time, end_time, duration_ms,
                  records_processed, error_message, api_response, create_ts, update_ts
                )
                VALUES(
                  :job_id, :job_name, :status, :start_time, :end_time, :duration_ms,
                  :records_processed, :error_message, :api_response, :create_ts, :update_ts
                )
                RETURNING id
                """
            ),
            params,
        )
        execution.id = int(res.scalar_one())
    else:
        await session.execute(
            text(
                """
                UPDATE job_details
                SET status=:status, end_time=:end_time, duration_ms=:duration_ms,
                    records_processed=:records_processed, error_message=:error_message,
                    api_response=:api_response, update_ts=:update_ts
                WHERE job_id=:job_id
                """
            ),
            params,
        )
    await session.commit()
    log.debug("job_details_saved job_id=%s status=%s", execution.job_id, execution.status.value)
    return execution


async def get_by_job_id(session: AsyncSession, job_id: str) -> Optional[JobExecution]:
    res = await session.execute(
        text(f"SELECT {_COLUMNS} FROM job_details WHERE job_id=:job_id"),
        {"job_id": job_id},
    )
    row = res.first()
    return _from_row(row) if row else None


async def get_last(session: AsyncSession, job_name: str) -> Optional[JobExecution]:
    res = await session.execute(
        text(
            f"""
            SELECT {_COLUMNS}
            FROM job_details
            WHERE job_name=:job
            ORDER BY create_ts DESC, id DESC
            LIMIT 1
            """
        ),
        {"job": job_name},
    )
    row = res.first()
    return _from_row(row) if row else None


async def get_recent(session: AsyncSession, job_name: str, limit: int = 10) -> list[JobExecution]:
    if limit <= 0:
        return []
    res = await session.execute(
        text(
            f"""
            SELECT {_COLUMNS}
            FROM job_details
            WHERE job_name=:job
            ORDER BY create_ts DESC, id DESC
            LIMIT :limit
            """
        ).bindparams(bindparam("limit", type_=Integer)),
        {"job": job_name, "limit": int(limit)},
    )
    return [_from_row(r) for r in res.fetchall()]


async def find_running(session: AsyncSession) -> list[JobExecution]:
    res = await session.execute(
        text(
            f"""
            SELECT {_COLUMNS}
            FROM job_details
            WHERE status=:status
            ORDER BY create_ts DESC
            """
        ),
        {"status": JobStatus.RUNNING.value},
    )
    return [_from_row(r) for r in res.fetchall()]


async def find_since(session: AsyncSession, job_name: str, since: datetime) -> list[JobExecution]:
    res = await session.execute(
        text(
            f"""
            SELECT {_COLUMNS}
            FROM job_details
            WHERE job_name=:job AND create_ts >= :since
            ORDER BY create_ts DESC
            """
        ),
        {"job": job_name, "since": ensure_aware_utc(since)},
    )
    return [_from_row(r) for r in res.fetchall()]


async def count_by_status_since(session: AsyncSession, job_name: str, status: JobStatus, since: datetime) -> int:
    row = (
        await session.execute(
            text(
                """
                SELECT COUNT(*) AS cnt
                FROM job_details
                WHERE job_name=:job AND status=:status AND create_ts >= :since
                """
            ),
            {"job": job_name, "status": JobStatus(status).value, "since": ensure_aware_utc(since)},
        )
    ).first()
    return int(row.cnt or 0) if row else 0


async def delete_finished_before(session: AsyncSession, cutoff: datetime) -> int:
    res = await session.execute(
        text(
            """
            DELETE FROM job_details
            WHERE status <> :running
              AND end_time IS NOT NULL
              AND end_time < :cutoff
            """
        ),
        {"running": JobStatus.RUNNING.value, "cutoff": ensure_aware_utc(cutoff)},
    )
    return int(res.rowcount or 0)
