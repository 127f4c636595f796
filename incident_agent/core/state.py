"""LangGraph pipeline state definition.

One state dict flows through every phase node of a single incident run.
Nodes return partial updates; every field keeps the last value written.
"""

from __future__ import annotations

from typing import Any, Optional

from typing_extensions import TypedDict

from incident_agent.core.memory import TimelineMemory
from incident_agent.core.models import AnalysisResult, Incident, IncidentStatus, ToolResult


class PipelineState(TypedDict):
    # ── Input ───────────────────────────────────────────────────
    incident: Incident
    memory: TimelineMemory

    # ── Status (mirrors the stored record) ──────────────────────
    status: IncidentStatus

    # ── Phase 1: diagnostics ────────────────────────────────────
    logs: list[dict[str, Any]]
    metrics: dict[str, Any]
    healthcheck: dict[str, Any]

    # ── Phase 2: analysis ───────────────────────────────────────
    analysis: Optional[AnalysisResult]

    # ── Phase 3: mitigation ─────────────────────────────────────
    action_result: Optional[ToolResult]
