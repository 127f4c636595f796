"""TimelineMemory — the pipeline's view of one incident's step log.

Wraps the store so the pipeline can append numbered steps, resume from
whatever a previous (crashed) attempt already persisted, and replay the
log as conversation context for the analysis step.
"""

from __future__ import annotations

import json
from typing import Any, Iterator, Optional, Sequence

from incident_agent.core.logging import get_logger
from incident_agent.core.models import StepDraft, TimelineStep, utcnow
from incident_agent.db.store import IncidentStore

logger = get_logger("memory")


def format_step(step: TimelineStep) -> dict[str, str]:
    output = step.output if isinstance(step.output, str) else json.dumps(step.output)
    return {
        "role": "assistant",
        "content": (
            f"Step {step.step_number}: [{step.action}] {step.reasoning}\n"
            f"Input: {json.dumps(step.input)}\n"
            f"Output: {output}"
        ),
    }


class ConversationHistory:
    """Restartable, lazily formatted view over a step sequence."""

    def __init__(self, steps: Sequence[TimelineStep]) -> None:
        self._steps = steps

    def __iter__(self) -> Iterator[dict[str, str]]:
        for step in self._steps:
            yield format_step(step)

    def __len__(self) -> int:
        return len(self._steps)


class TimelineMemory:
    def __init__(self, incident_id: str, store: IncidentStore) -> None:
        self.incident_id = incident_id
        self._store = store
        self._steps: list[TimelineStep] = []

    async def load(self) -> list[TimelineStep]:
        """Rebuild the cache from the store (crash recovery)."""
        self._steps = await self._store.get_timeline(self.incident_id)
        incident = await self._store.get_incident(self.incident_id)
        if incident.step_count != len(self._steps):
            # A crash between the append and the counter update.
            await self._store.update_incident_fields(
                self.incident_id, step_count=len(self._steps)
            )
        logger.info("timeline_loaded", incident_id=self.incident_id, steps=len(self._steps))
        return list(self._steps)

    async def add_step(self, draft: StepDraft | None = None, **fields: Any) -> TimelineStep:
        """Number, stamp and persist a step; keeps ``step_count`` in sync."""
        if draft is None:
            draft = StepDraft(**fields)
        timestamp = utcnow()
        last = self.last()
        if last is not None and timestamp < last.timestamp:
            timestamp = last.timestamp

        step = TimelineStep(
            step_number=len(self._steps) + 1,
            timestamp=timestamp,
            **draft.model_dump(),
        )
        stored = await self._store.append_timeline_step(self.incident_id, step)
        self._steps.append(stored)
        await self._store.update_incident_fields(self.incident_id, step_count=len(self._steps))
        return stored

    def history(self) -> ConversationHistory:
        return ConversationHistory(self._steps)

    def count(self) -> int:
        return len(self._steps)

    def last(self) -> Optional[TimelineStep]:
        return self._steps[-1] if self._steps else None

    def find(self, action: str) -> Optional[TimelineStep]:
        """Most recent step recorded for ``action``."""
        for step in reversed(self._steps):
            if step.action == action:
                return step
        return None
