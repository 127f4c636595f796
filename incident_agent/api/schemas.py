"""Request/response schemas for the API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from incident_agent.core.intake import IncidentCreate
from incident_agent.core.models import Incident

# ── Request Schemas ──────────────────────────────────────────────

CreateIncidentRequest = IncidentCreate


# ── Response Schemas ─────────────────────────────────────────────


class IncidentListResponse(BaseModel):
    incidents: list[Incident]
    total: int
    limit: int
    offset: int


class QueueCounts(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    status: str = "ok"
    worker_running: bool
    active_jobs: list[str] = Field(default_factory=list)
    subscribers: int = 0
    reasoning_service: bool
    queue: QueueCounts
