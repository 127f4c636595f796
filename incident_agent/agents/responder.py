"""Incident Responder — the pipeline orchestrator.

Drives one incident through diagnostics, analysis and mitigation:

    CREATED → INVESTIGATING → IDENTIFIED → MITIGATING → RESOLVED | FAILED

Every completed action is appended to the incident timeline and published
to the incident's subscribers. Jobs are delivered at least once, so a run
first loads the persisted timeline and reuses any step a previous attempt
already recorded instead of executing it again. Status only ever moves
forward.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from incident_agent.agents.planner import AnalysisPlanner
from incident_agent.agents.tools import ToolExecutor
from incident_agent.core.logging import get_logger
from incident_agent.core.memory import TimelineMemory
from incident_agent.core.models import (
    ANALYSIS_ACTION,
    ERROR_ACTION,
    STATUS_RANK,
    AnalysisResult,
    DiagnosticBundle,
    Incident,
    IncidentStatus,
    Job,
    ToolName,
    ToolResult,
    can_transition,
    is_terminal,
    utcnow,
)
from incident_agent.core.notifier import Notifier
from incident_agent.core.state import PipelineState
from incident_agent.db.engine import StoreUnavailableError
from incident_agent.db.store import IncidentNotFoundError, IncidentStore
from incident_agent.graph.pipeline import build_pipeline_graph

logger = get_logger("responder")


class InvalidTransitionError(Exception):
    """A status change outside the allowed edges was attempted."""


class ToolExecutionError(Exception):
    """A tool invoked by the pipeline reported failure."""


class IncidentResponder:
    def __init__(
        self,
        store: IncidentStore,
        notifier: Notifier,
        tools: ToolExecutor,
        planner: AnalysisPlanner,
        *,
        step_delay: float = 0.8,
        action_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._tools = tools
        self._planner = planner
        self._step_delay = step_delay
        self._action_delay = action_delay
        self._sleep = sleep
        self._graph = build_pipeline_graph(self)

    # ── Entry points ─────────────────────────────────────────────

    async def handle_job(self, job: Job) -> None:
        """Queue handler: process the job's incident."""
        await self.process(job.incident_id)

    async def process(self, incident_id: str) -> Optional[IncidentStatus]:
        """Run (or resume) the pipeline for one incident.

        Returns the final status, or None when the incident was already
        terminal. Store outages and a missing incident propagate so the
        queue retries the job; every other error fails the incident.
        """
        incident = await self._store.get_incident(incident_id)
        if is_terminal(incident.status):
            logger.info("incident_already_terminal", incident_id=incident_id, status=incident.status.value)
            return None

        memory = TimelineMemory(incident_id, self._store)
        await memory.load()
        logger.info(
            "incident_processing_started",
            incident_id=incident_id,
            status=incident.status.value,
            resumed_steps=memory.count(),
        )

        initial_state: PipelineState = {
            "incident": incident,
            "memory": memory,
            "status": incident.status,
            "logs": [],
            "metrics": {},
            "healthcheck": {},
            "analysis": None,
            "action_result": None,
        }
        try:
            result = await self._graph.ainvoke(initial_state)
        except (StoreUnavailableError, IncidentNotFoundError):
            raise
        except Exception as exc:
            await self._fail(incident, memory, exc)
            return IncidentStatus.FAILED

        logger.info("incident_resolved", incident_id=incident_id, total_steps=memory.count())
        return result["status"]

    # ── Graph nodes ──────────────────────────────────────────────

    async def investigate_node(self, state: PipelineState) -> dict:
        return await self._advance(state, IncidentStatus.INVESTIGATING)

    async def check_logs_node(self, state: PipelineState) -> dict:
        service = state["incident"].service
        result = await self._run_tool(
            state,
            ToolName.CHECK_LOGS,
            {"service": service},
            thinking=f"Pulling recent logs for {service}...",
            reasoning="Collecting application logs for analysis",
        )
        return {"logs": result.data or []}

    async def check_metrics_node(self, state: PipelineState) -> dict:
        service = state["incident"].service
        result = await self._run_tool(
            state,
            ToolName.CHECK_METRICS,
            {"service": service},
            thinking=f"Reading performance metrics for {service}...",
            reasoning="Collecting service performance metrics",
        )
        return {"metrics": result.data or {}}

    async def run_healthcheck_node(self, state: PipelineState) -> dict:
        service = state["incident"].service
        result = await self._run_tool(
            state,
            ToolName.RUN_HEALTHCHECK,
            {"service": service},
            thinking=f"Running health check against {service}...",
            reasoning="Running health check on service endpoints",
            pace=False,
        )
        return {"healthcheck": result.data or {}}

    async def analyze_node(self, state: PipelineState) -> dict:
        update = await self._advance(state, IncidentStatus.IDENTIFIED)
        incident = state["incident"]
        memory = state["memory"]

        existing = memory.find(ANALYSIS_ACTION)
        if existing is not None and existing.result is not None:
            logger.info("step_reused", incident_id=incident.id, action=ANALYSIS_ACTION)
            update["analysis"] = AnalysisResult.model_validate(existing.result)
            return update

        self._notifier.emit_thinking(incident.id, "AI analyzing all diagnostic data...")
        diagnostics = DiagnosticBundle(
            logs=state["logs"],
            metrics=state["metrics"],
            healthcheck=state["healthcheck"],
        )
        analysis = await self._planner.analyze(incident, diagnostics, memory.history())
        step = await memory.add_step(
            action=ANALYSIS_ACTION,
            input={"service": incident.service},
            output=analysis.resolution_report,
            reasoning=(
                "AI completed full incident analysis"
                if analysis.success
                else "Heuristic analysis from collected diagnostics"
            ),
            result=analysis.model_dump(mode="json"),
        )
        self._notifier.emit_step(incident.id, step)
        logger.info(
            "analysis_recorded",
            incident_id=incident.id,
            recommended_action=analysis.recommended_action.value,
            success=analysis.success,
        )
        update["analysis"] = analysis
        return update

    async def mitigate_node(self, state: PipelineState) -> dict:
        update = await self._advance(state, IncidentStatus.MITIGATING)
        analysis = state["analysis"]
        action = analysis.recommended_action
        result = await self._run_tool(
            state,
            action,
            analysis.action_args,
            thinking=f"Executing {action.value}...",
            reasoning=f"Executing recommended action: {action.value}",
            pace_before=True,
        )
        update["action_result"] = result
        return update

    async def resolve_node(self, state: PipelineState) -> dict:
        incident = state["incident"]
        memory = state["memory"]
        report = state["analysis"].resolution_report

        if memory.find(ToolName.RESOLVE_INCIDENT.value) is None:
            await self._sleep(self._action_delay)
            result = self._tools.execute(ToolName.RESOLVE_INCIDENT.value, {"summary": report})
            if not result.success:
                raise ToolExecutionError(result.error or "resolve_incident failed")
            step = await memory.add_step(
                action=ToolName.RESOLVE_INCIDENT.value,
                input={},
                output="Incident resolved",
                reasoning="Incident investigation complete",
                result=result.model_dump(mode="json"),
            )
            self._notifier.emit_step(incident.id, step)

        update = await self._advance(
            state,
            IncidentStatus.RESOLVED,
            resolution=report,
            resolved_at=utcnow(),
        )
        self._notifier.emit_complete(
            incident.id,
            status=IncidentStatus.RESOLVED,
            resolution=report,
            total_steps=memory.count(),
        )
        return update

    # ── Helpers ──────────────────────────────────────────────────

    async def _advance(
        self,
        state: PipelineState,
        target: IncidentStatus,
        **extra: Any,
    ) -> dict:
        """Move the incident forward to ``target``; a no-op if already there or past it."""
        incident_id = state["incident"].id
        current = state["status"]
        if STATUS_RANK[target] <= STATUS_RANK[current]:
            return {"status": current}
        if not can_transition(current, target):
            raise InvalidTransitionError(f"{current.value} -> {target.value}")

        await self._store.update_incident_fields(incident_id, status=target, **extra)
        self._notifier.emit_incident_update(incident_id, {"status": target.value, **extra})
        logger.info("status_changed", incident_id=incident_id, previous=current.value, status=target.value)
        return {"status": target}

    async def _run_tool(
        self,
        state: PipelineState,
        tool: ToolName,
        args: dict[str, Any],
        *,
        thinking: str,
        reasoning: str,
        pace: bool = True,
        pace_before: bool = False,
    ) -> ToolResult:
        """Execute ``tool`` and record it, or reuse the step a prior attempt recorded."""
        incident_id = state["incident"].id
        memory = state["memory"]

        existing = memory.find(tool.value)
        if existing is not None and existing.result is not None:
            logger.info("step_reused", incident_id=incident_id, action=tool.value, step_number=existing.step_number)
            return ToolResult.model_validate(existing.result)

        if pace_before:
            await self._sleep(self._step_delay)
        self._notifier.emit_thinking(incident_id, thinking)
        result = self._tools.execute(tool.value, args)
        if not result.success:
            raise ToolExecutionError(result.error or f"{tool.value} failed")

        step = await memory.add_step(
            action=tool.value,
            input=args,
            output=result.summary,
            reasoning=reasoning,
            result=result.model_dump(mode="json"),
        )
        self._notifier.emit_step(incident_id, step)
        if pace and not pace_before:
            await self._sleep(self._step_delay)
        return result

    async def _fail(self, incident: Incident, memory: TimelineMemory, exc: Exception) -> None:
        """Terminal failure path: error event, error step, FAILED, completed."""
        message = str(exc) or exc.__class__.__name__
        logger.error("incident_failed", incident_id=incident.id, error=message)
        self._notifier.emit_error(incident.id, message)

        step = await memory.add_step(
            action=ERROR_ACTION,
            input={},
            output=message,
            reasoning="Pipeline aborted; manual intervention required",
        )
        self._notifier.emit_step(incident.id, step)

        current = (await self._store.get_incident(incident.id)).status
        if current == IncidentStatus.CREATED:
            await self._store.update_incident_fields(incident.id, status=IncidentStatus.INVESTIGATING)
            self._notifier.emit_incident_update(
                incident.id, {"status": IncidentStatus.INVESTIGATING.value}
            )

        resolution = f"Agent encountered an error: {message}. Manual intervention required."
        resolved_at = utcnow()
        await self._store.update_incident_fields(
            incident.id,
            status=IncidentStatus.FAILED,
            resolution=resolution,
            resolved_at=resolved_at,
        )
        self._notifier.emit_incident_update(
            incident.id,
            {"status": IncidentStatus.FAILED.value, "resolution": resolution, "resolved_at": resolved_at},
        )
        self._notifier.emit_complete(
            incident.id,
            status=IncidentStatus.FAILED,
            resolution=resolution,
            total_steps=memory.count(),
        )
