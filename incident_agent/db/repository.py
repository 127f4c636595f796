"""Data access layer for incident, timeline and job records.

Every write is a single statement that commits immediately so that
concurrent workers never hold a transaction across an ``await``.
"""

from __future__ import annotations

import datetime
from typing import Any, Optional

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from incident_agent.db.models import IncidentRecord, JobRecord, TimelineStepRecord


# ── Incidents ────────────────────────────────────────────────────


async def insert_incident(session: AsyncSession, **values: Any) -> IncidentRecord:
    record = IncidentRecord(**values)
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_incident(
    session: AsyncSession,
    incident_id: str,
) -> IncidentRecord | None:
    return await session.get(IncidentRecord, incident_id)


async def update_incident(
    session: AsyncSession,
    incident_id: str,
    **values: Any,
) -> int:
    """Set only the named columns. Returns the number of rows touched."""
    result = await session.execute(
        update(IncidentRecord)
        .where(IncidentRecord.id == incident_id)
        .values(**values)
    )
    await session.commit()
    return result.rowcount


async def list_incident_ids(
    session: AsyncSession,
    *,
    status: Optional[str] = None,
) -> list[str]:
    stmt = select(IncidentRecord.id).order_by(desc(IncidentRecord.created_at))
    if status:
        stmt = stmt.where(IncidentRecord.status == status)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_incidents(
    session: AsyncSession,
    *,
    limit: int = 50,
    offset: int = 0,
    status: Optional[str] = None,
) -> list[IncidentRecord]:
    stmt = select(IncidentRecord).order_by(desc(IncidentRecord.created_at))
    if status:
        stmt = stmt.where(IncidentRecord.status == status)
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_incidents(
    session: AsyncSession,
    *,
    status: Optional[str] = None,
) -> int:
    stmt = select(func.count(IncidentRecord.id))
    if status:
        stmt = stmt.where(IncidentRecord.status == status)
    result = await session.execute(stmt)
    return result.scalar_one()


# ── Timeline ─────────────────────────────────────────────────────


async def insert_timeline_step(
    session: AsyncSession,
    incident_id: str,
    **values: Any,
) -> TimelineStepRecord:
    record = TimelineStepRecord(incident_id=incident_id, **values)
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_timeline_step(
    session: AsyncSession,
    incident_id: str,
    step_number: int,
) -> TimelineStepRecord | None:
    stmt = select(TimelineStepRecord).where(
        TimelineStepRecord.incident_id == incident_id,
        TimelineStepRecord.step_number == step_number,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_timeline(
    session: AsyncSession,
    incident_id: str,
) -> list[TimelineStepRecord]:
    stmt = (
        select(TimelineStepRecord)
        .where(TimelineStepRecord.incident_id == incident_id)
        .order_by(TimelineStepRecord.step_number)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ── Jobs ─────────────────────────────────────────────────────────


async def insert_job(session: AsyncSession, **values: Any) -> JobRecord:
    record = JobRecord(**values)
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_job(session: AsyncSession, job_id: str) -> JobRecord | None:
    return await session.get(JobRecord, job_id)


async def list_due_job_ids(
    session: AsyncSession,
    queue: str,
    *,
    now: datetime.datetime,
    limit: int = 10,
) -> list[str]:
    stmt = (
        select(JobRecord.id)
        .where(
            JobRecord.queue == queue,
            JobRecord.status == "waiting",
            JobRecord.run_at <= now,
        )
        .order_by(JobRecord.run_at, JobRecord.created_at)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_stalled_job_ids(
    session: AsyncSession,
    queue: str,
    *,
    heartbeat_before: datetime.datetime,
) -> list[str]:
    stmt = select(JobRecord.id).where(
        JobRecord.queue == queue,
        JobRecord.status == "active",
        JobRecord.heartbeat_at < heartbeat_before,
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_job(
    session: AsyncSession,
    job_id: str,
    *,
    expected_status: Optional[str] = None,
    expected_token: Optional[str] = None,
    **values: Any,
) -> int:
    """Conditional update used as a compare-and-set on status and lock token."""
    stmt = update(JobRecord).where(JobRecord.id == job_id)
    if expected_status is not None:
        stmt = stmt.where(JobRecord.status == expected_status)
    if expected_token is not None:
        stmt = stmt.where(JobRecord.lock_token == expected_token)
    result = await session.execute(stmt.values(**values))
    await session.commit()
    return result.rowcount


async def count_jobs_by_status(session: AsyncSession, queue: str) -> dict[str, int]:
    stmt = (
        select(JobRecord.status, func.count(JobRecord.id))
        .where(JobRecord.queue == queue)
        .group_by(JobRecord.status)
    )
    result = await session.execute(stmt)
    return {status: count for status, count in result.all()}
