"""IncidentStore — the single durability boundary for incident state.

Holds one record per incident, one append-only ordered step log per
incident, and the recency ordering of incident ids. Callers get pydantic
models back, never ORM objects.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incident_agent.core.models import Incident, IncidentStatus, TimelineStep, utcnow
from incident_agent.db import repository
from incident_agent.db.engine import session_scope


class IncidentNotFoundError(Exception):
    pass


class DuplicateStepError(Exception):
    """A different step already occupies this step number."""


# Columns the pipeline may change after creation.
MUTABLE_FIELDS = frozenset(
    {"status", "resolution", "resolved_at", "step_count", "updated_at"}
)


class IncidentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Incident records ─────────────────────────────────────────

    async def put_incident(self, incident: Incident) -> Incident:
        """Persist a new incident. Re-putting an existing id is a no-op."""
        async with session_scope(self._session_factory) as session:
            existing = await repository.get_incident(session, incident.id)
            if existing is not None:
                return Incident.model_validate(existing)
            values = incident.model_dump()
            values["status"] = incident.status.value
            values["severity"] = incident.severity.value
            record = await repository.insert_incident(session, **values)
            return Incident.model_validate(record)

    async def get_incident(self, incident_id: str) -> Incident:
        async with session_scope(self._session_factory) as session:
            record = await repository.get_incident(session, incident_id)
        if record is None:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        return Incident.model_validate(record)

    async def list_incident_ids(self, status: Optional[IncidentStatus] = None) -> list[str]:
        """Incident ids, most recently created first, optionally of one status."""
        async with session_scope(self._session_factory) as session:
            return await repository.list_incident_ids(
                session, status=status.value if status else None
            )

    async def list_incidents(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> tuple[list[Incident], int]:
        async with session_scope(self._session_factory) as session:
            records = await repository.list_incidents(
                session, limit=limit, offset=offset, status=status
            )
            total = await repository.count_incidents(session, status=status)
        return [Incident.model_validate(r) for r in records], total

    async def update_incident_fields(self, incident_id: str, **fields: Any) -> None:
        """Atomically set the named fields; every other column is left alone."""
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update incident fields: {sorted(unknown)}")
        fields.setdefault("updated_at", utcnow())
        if "status" in fields:
            fields["status"] = getattr(fields["status"], "value", fields["status"])

        async with session_scope(self._session_factory) as session:
            touched = await repository.update_incident(session, incident_id, **fields)
        if touched == 0:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")

    # ── Timeline ─────────────────────────────────────────────────

    async def append_timeline_step(self, incident_id: str, step: TimelineStep) -> TimelineStep:
        """Append ``step``. Replaying an identical step is a no-op.

        Raises DuplicateStepError when another step already holds the number.
        """
        values = step.model_dump(mode="json")
        values["timestamp"] = step.timestamp
        try:
            async with session_scope(self._session_factory) as session:
                record = await repository.insert_timeline_step(session, incident_id, **values)
                return TimelineStep.model_validate(record)
        except IntegrityError:
            pass

        async with session_scope(self._session_factory) as session:
            existing = await repository.get_timeline_step(
                session, incident_id, step.step_number
            )
        if existing is None:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        stored = TimelineStep.model_validate(existing)
        if _same_content(stored, step):
            return stored
        raise DuplicateStepError(
            f"Step {step.step_number} of incident {incident_id} already recorded "
            f"as '{stored.action}'"
        )

    async def get_timeline(self, incident_id: str) -> list[TimelineStep]:
        async with session_scope(self._session_factory) as session:
            records = await repository.list_timeline(session, incident_id)
        return [TimelineStep.model_validate(r) for r in records]


def _same_content(a: TimelineStep, b: TimelineStep) -> bool:
    ignore = {"timestamp"}
    return a.model_dump(mode="json", exclude=ignore) == b.model_dump(mode="json", exclude=ignore)
