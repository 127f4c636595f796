"""FastAPI dependency injection."""

from __future__ import annotations

from fastapi import Request

from incident_agent.core.intake import IncidentIntake
from incident_agent.core.runner import IncidentRuntime


def get_runtime(request: Request) -> IncidentRuntime:
    return request.app.state.runtime


def get_intake(request: Request) -> IncidentIntake:
    return get_runtime(request).intake
