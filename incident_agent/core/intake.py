"""Incident intake: validate, persist, schedule and announce new incidents."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from incident_agent.core.logging import get_logger
from incident_agent.core.models import Incident, IncidentDetail, IncidentStatus, Severity
from incident_agent.core.notifier import Notifier
from incident_agent.core.queue import JobQueue
from incident_agent.db.store import IncidentStore

logger = get_logger("intake")


class IncidentValidationError(Exception):
    """The submitted incident is missing fields or has invalid values."""

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        self.errors = errors
        fields = ", ".join(".".join(str(p) for p in e.get("loc", ())) or "body" for e in errors)
        super().__init__(f"Invalid incident: {fields}")


class IncidentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, examples=["High Error Rate"])
    description: str = ""
    severity: Severity = Field(examples=["critical", "high", "medium", "low"])
    service: str = Field(min_length=1, examples=["api-gateway"])


class IncidentIntake:
    def __init__(self, store: IncidentStore, queue: JobQueue, notifier: Notifier) -> None:
        self._store = store
        self._queue = queue
        self._notifier = notifier

    async def create(self, data: IncidentCreate | dict[str, Any]) -> Incident:
        """Persist a CREATED incident, enqueue its job and broadcast it.

        Raises IncidentValidationError before anything is written.
        """
        if not isinstance(data, IncidentCreate):
            try:
                data = IncidentCreate.model_validate(data)
            except ValidationError as exc:
                raise IncidentValidationError(exc.errors()) from exc

        incident = Incident(
            title=data.title,
            description=data.description,
            severity=data.severity,
            service=data.service,
            status=IncidentStatus.CREATED,
        )
        incident = await self._store.put_incident(incident)
        await self._queue.enqueue(incident.id)
        self._notifier.emit_incident_created(incident)
        logger.info(
            "incident_created",
            incident_id=incident.id,
            service=incident.service,
            severity=incident.severity.value,
        )
        return incident

    async def reschedule_unqueued(self) -> list[str]:
        """Enqueue CREATED incidents whose job was never written.

        The incident and its job are separate writes, so a store outage
        between them leaves an incident nothing will process. Ids that
        already have a job are skipped by the queue's duplicate policy.
        """
        rescheduled = []
        for incident_id in await self._store.list_incident_ids(status=IncidentStatus.CREATED):
            if await self._queue.enqueue(incident_id):
                rescheduled.append(incident_id)
        if rescheduled:
            logger.warning("incidents_rescheduled", count=len(rescheduled), incident_ids=rescheduled)
        return rescheduled

    async def list_incidents(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> tuple[list[Incident], int]:
        """Incidents ordered by creation time, newest first, plus the total."""
        return await self._store.list_incidents(limit=limit, offset=offset, status=status)

    async def get_detail(self, incident_id: str) -> IncidentDetail:
        """The incident with its full timeline. Raises IncidentNotFoundError."""
        incident = await self._store.get_incident(incident_id)
        timeline = await self._store.get_timeline(incident_id)
        return IncidentDetail(**incident.model_dump(), timeline=timeline)
