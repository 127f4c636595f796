"""Incident intake and query endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from incident_agent.api.dependencies import get_intake
from incident_agent.api.schemas import CreateIncidentRequest, IncidentListResponse
from incident_agent.core.intake import IncidentIntake
from incident_agent.core.models import Incident, IncidentDetail, IncidentStatus
from incident_agent.db.store import IncidentNotFoundError

router = APIRouter()


@router.post("/incidents", response_model=Incident, status_code=201)
async def create_incident(
    request: CreateIncidentRequest,
    intake: IncidentIntake = Depends(get_intake),
) -> Incident:
    return await intake.create(request)


@router.get("/incidents", response_model=IncidentListResponse)
async def list_all_incidents(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status: Optional[IncidentStatus] = Query(default=None),
    intake: IncidentIntake = Depends(get_intake),
) -> IncidentListResponse:
    incidents, total = await intake.list_incidents(
        limit=limit,
        offset=offset,
        status=status.value if status else None,
    )
    return IncidentListResponse(incidents=incidents, total=total, limit=limit, offset=offset)


@router.get("/incidents/{incident_id}", response_model=IncidentDetail)
async def get_incident_detail(
    incident_id: str,
    intake: IncidentIntake = Depends(get_intake),
) -> IncidentDetail:
    try:
        return await intake.get_detail(incident_id)
    except IncidentNotFoundError:
        raise HTTPException(status_code=404, detail="Incident not found")
