"""Pydantic domain models shared by the store, queue, pipeline and API."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every table column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Enums ────────────────────────────────────────────────────────


class IncidentStatus(str, Enum):
    CREATED = "created"
    INVESTIGATING = "investigating"
    IDENTIFIED = "identified"
    MITIGATING = "mitigating"
    RESOLVED = "resolved"
    FAILED = "failed"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ToolName(str, Enum):
    CHECK_LOGS = "check_logs"
    CHECK_METRICS = "check_metrics"
    RESTART_SERVICE = "restart_service"
    SCALE_PODS = "scale_pods"
    RUN_HEALTHCHECK = "run_healthcheck"
    RESOLVE_INCIDENT = "resolve_incident"


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class EventKind(str, Enum):
    INCIDENT_CREATED = "incident:created"
    INCIDENT_UPDATED = "incident:updated"
    INCIDENTS_CHANGED = "incidents:changed"
    AGENT_STEP = "agent:step"
    AGENT_THINKING = "agent:thinking"
    AGENT_COMPLETE = "agent:complete"
    AGENT_ERROR = "agent:error"


# Timeline actions that are not tools.
ANALYSIS_ACTION = "analysis"
REASONING_ACTION = "reasoning"
ERROR_ACTION = "error"

# Actions the analysis step may recommend.
REMEDIATION_ACTIONS = (ToolName.RESTART_SERVICE, ToolName.SCALE_PODS)


# ── Status state machine ─────────────────────────────────────────

TERMINAL_STATUSES = frozenset({IncidentStatus.RESOLVED, IncidentStatus.FAILED})

ALLOWED_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    IncidentStatus.CREATED: frozenset({IncidentStatus.INVESTIGATING}),
    IncidentStatus.INVESTIGATING: frozenset(
        {IncidentStatus.IDENTIFIED, IncidentStatus.FAILED}
    ),
    IncidentStatus.IDENTIFIED: frozenset(
        {IncidentStatus.MITIGATING, IncidentStatus.FAILED}
    ),
    IncidentStatus.MITIGATING: frozenset(
        {IncidentStatus.RESOLVED, IncidentStatus.FAILED}
    ),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.FAILED: frozenset(),
}

STATUS_RANK: dict[IncidentStatus, int] = {
    IncidentStatus.CREATED: 0,
    IncidentStatus.INVESTIGATING: 1,
    IncidentStatus.IDENTIFIED: 2,
    IncidentStatus.MITIGATING: 3,
    IncidentStatus.RESOLVED: 4,
    IncidentStatus.FAILED: 4,
}


def can_transition(current: IncidentStatus, target: IncidentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_terminal(status: IncidentStatus) -> bool:
    return status in TERMINAL_STATUSES


# ── Incident & timeline ─────────────────────────────────────────


class Incident(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = Field(min_length=1)
    description: str = ""
    severity: Severity
    service: str = Field(min_length=1)
    status: IncidentStatus = IncidentStatus.CREATED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    step_count: int = Field(default=0, ge=0)


class TimelineStep(BaseModel):
    """One immutable, numbered entry in an incident's timeline."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    step_number: int = Field(ge=1)
    action: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Union[str, dict[str, Any]] = ""
    reasoning: str = ""
    result: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utcnow)


class StepDraft(BaseModel):
    """A timeline step before it has been numbered and stamped."""

    action: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Union[str, dict[str, Any]] = ""
    reasoning: str = ""
    result: Optional[dict[str, Any]] = None


class IncidentDetail(Incident):
    timeline: list[TimelineStep] = Field(default_factory=list)


# ── Jobs ─────────────────────────────────────────────────────────


class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    stalled_count: int = 0
    run_at: datetime = Field(default_factory=utcnow)
    heartbeat_at: Optional[datetime] = None
    last_error: Optional[str] = None
    lock_token: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def incident_id(self) -> str:
        return self.payload.get("incident_id", self.id)


# ── Tool execution & analysis ────────────────────────────────────


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    summary: str = ""
    error: Optional[str] = None
    resolved: bool = False


class DiagnosticBundle(BaseModel):
    """Everything phase 1 collected, handed to the analysis step."""

    logs: list[dict[str, Any]] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
    healthcheck: dict[str, Any] = Field(default_factory=dict)

    def count_level(self, level: str) -> int:
        return sum(1 for entry in self.logs if entry.get("level") == level)


class AnalysisResult(BaseModel):
    success: bool
    recommended_action: ToolName = ToolName.RESTART_SERVICE
    action_args: dict[str, Any] = Field(default_factory=dict)
    resolution_report: str


# ── Notifications ────────────────────────────────────────────────


class Event(BaseModel):
    kind: EventKind
    incident_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        dumped = self.model_dump(mode="json")
        return {"event": dumped["kind"], "data": dumped["data"]}
