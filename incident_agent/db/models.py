"""SQLAlchemy ORM models for incidents, their timelines and the job queue."""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class IncidentRecord(Base):
    __tablename__ = "incidents"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    service: Mapped[str] = mapped_column(String(100), nullable=False)

    # Status tracking
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="created")
    step_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Outcome
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps (created_at doubles as the recency index)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, nullable=False, index=True
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)


class TimelineStepRecord(Base):
    __tablename__ = "timeline_steps"
    __table_args__ = (
        UniqueConstraint("incident_id", "step_number", name="uq_timeline_step_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("incidents.id"), nullable=False, index=True
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    input: Mapped[dict] = mapped_column(JSON, nullable=False)
    output: Mapped[Any] = mapped_column(JSON, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)


class JobRecord(Base):
    __tablename__ = "jobs"

    # The incident id is the job id, which is what makes enqueue idempotent.
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    queue: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="waiting")
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    stalled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set on every claim; only the holder may heartbeat, complete or fail the job.
    lock_token: Mapped[str | None] = mapped_column(String(32), nullable=True)

    run_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, index=True)
    heartbeat_at: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    finished_at: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)
