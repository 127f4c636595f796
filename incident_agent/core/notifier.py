"""Room-scoped notification fan-out.

Every connected subscriber belongs to the global group, which receives
incident-created and incident-list-changed events. Subscribers also join
per-incident groups to follow one incident's progress. Delivery is
best-effort with no replay: a subscriber that (re)joins must fetch the
current snapshot from the store itself.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from incident_agent.core.logging import get_logger
from incident_agent.core.models import Event, EventKind, Incident, IncidentStatus, TimelineStep

logger = get_logger("notifier")


@dataclass(eq=False)
class Subscriber:
    """A connected client's handle: an id plus a bounded inbox."""

    buffer_size: int = 256
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    incidents: set[str] = field(default_factory=set)
    _inbox: asyncio.Queue = field(init=False)

    def __post_init__(self) -> None:
        self._inbox = asyncio.Queue(maxsize=self.buffer_size)

    def deliver(self, event: Event) -> bool:
        try:
            self._inbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    async def receive(self, timeout: Optional[float] = None) -> Event:
        if timeout is None:
            return await self._inbox.get()
        return await asyncio.wait_for(self._inbox.get(), timeout=timeout)

    def drain(self) -> list[Event]:
        """Return every event delivered so far without waiting."""
        events = []
        while not self._inbox.empty():
            events.append(self._inbox.get_nowait())
        return events


class Notifier:
    def __init__(self, buffer_size: int = 256) -> None:
        self._buffer_size = buffer_size
        self._connected: dict[str, Subscriber] = {}
        self._groups: dict[str, set[Subscriber]] = defaultdict(set)

    # ── Membership ───────────────────────────────────────────────

    def connect(self) -> Subscriber:
        subscriber = Subscriber(buffer_size=self._buffer_size)
        self._connected[subscriber.id] = subscriber
        logger.info("subscriber_connected", subscriber_id=subscriber.id)
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        for incident_id in list(subscriber.incidents):
            self.unsubscribe(subscriber, incident_id)
        self._connected.pop(subscriber.id, None)
        logger.info("subscriber_disconnected", subscriber_id=subscriber.id)

    def subscribe(self, subscriber: Subscriber, incident_id: str) -> None:
        self._groups[incident_id].add(subscriber)
        subscriber.incidents.add(incident_id)
        logger.debug("subscriber_joined", subscriber_id=subscriber.id, incident_id=incident_id)

    def unsubscribe(self, subscriber: Subscriber, incident_id: str) -> None:
        members = self._groups.get(incident_id)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self._groups[incident_id]
        subscriber.incidents.discard(incident_id)
        logger.debug("subscriber_left", subscriber_id=subscriber.id, incident_id=incident_id)

    def members(self, incident_id: str) -> frozenset[Subscriber]:
        return frozenset(self._groups.get(incident_id, ()))

    @property
    def subscriber_count(self) -> int:
        return len(self._connected)

    # ── Publishing ───────────────────────────────────────────────

    def publish(self, incident_id: str, kind: EventKind, payload: dict[str, Any]) -> int:
        """Deliver to the members of ``incident_id``'s group only."""
        event = Event(kind=kind, incident_id=incident_id, data={"incident_id": incident_id, **payload})
        return self._fan_out(self._groups.get(incident_id, ()), event)

    def broadcast(self, kind: EventKind, payload: dict[str, Any]) -> int:
        """Deliver to every connected subscriber (the global group)."""
        event = Event(kind=kind, incident_id=payload.get("incident_id"), data=payload)
        return self._fan_out(self._connected.values(), event)

    def _fan_out(self, subscribers, event: Event) -> int:
        delivered = 0
        for subscriber in list(subscribers):
            if subscriber.deliver(event):
                delivered += 1
            else:
                logger.warning(
                    "event_dropped",
                    subscriber_id=subscriber.id,
                    event_kind=event.kind.value,
                    reason="buffer_full",
                )
        return delivered

    # ── Pipeline helpers ─────────────────────────────────────────

    def emit_incident_created(self, incident: Incident) -> None:
        self.broadcast(EventKind.INCIDENT_CREATED, incident.model_dump(mode="json"))

    def emit_incident_update(self, incident_id: str, fields: dict[str, Any]) -> None:
        self.publish(incident_id, EventKind.INCIDENT_UPDATED, fields)
        self.broadcast(EventKind.INCIDENTS_CHANGED, {"incident_id": incident_id, **fields})

    def emit_step(self, incident_id: str, step: TimelineStep) -> None:
        self.publish(incident_id, EventKind.AGENT_STEP, {"step": step.model_dump(mode="json")})

    def emit_thinking(self, incident_id: str, reasoning: str) -> None:
        self.publish(incident_id, EventKind.AGENT_THINKING, {"reasoning": reasoning})

    def emit_complete(
        self,
        incident_id: str,
        *,
        status: IncidentStatus,
        resolution: str,
        total_steps: int,
    ) -> None:
        self.publish(
            incident_id,
            EventKind.AGENT_COMPLETE,
            {"status": status.value, "resolution": resolution, "total_steps": total_steps},
        )

    def emit_error(self, incident_id: str, message: str) -> None:
        self.publish(incident_id, EventKind.AGENT_ERROR, {"error": message})
