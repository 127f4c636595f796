"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from incident_agent.api.dependencies import get_runtime
from incident_agent.api.schemas import HealthResponse, QueueCounts
from incident_agent.core.runner import IncidentRuntime

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    runtime: IncidentRuntime = Depends(get_runtime),
) -> HealthResponse:
    counts = await runtime.queue.counts()
    return HealthResponse(
        status="ok",
        worker_running=runtime.worker.is_running,
        active_jobs=sorted(runtime.worker.active_job_ids),
        subscribers=runtime.notifier.subscriber_count,
        reasoning_service=runtime.planner.has_reasoning_service,
        queue=QueueCounts(**counts),
    )
