"""Unit tests for incident_agent/core/notifier.py."""

from __future__ import annotations

import asyncio

import pytest

from incident_agent.core.models import EventKind, IncidentStatus, TimelineStep
from incident_agent.core.notifier import Notifier


class TestMembership:
    def test_connect_registers_subscriber(self, notifier):
        sub = notifier.connect()
        assert notifier.subscriber_count == 1
        notifier.disconnect(sub)
        assert notifier.subscriber_count == 0

    def test_subscribe_and_unsubscribe(self, notifier):
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        assert notifier.members("inc-a") == frozenset({sub})
        assert sub.incidents == {"inc-a"}
        notifier.unsubscribe(sub, "inc-a")
        assert notifier.members("inc-a") == frozenset()
        assert sub.incidents == set()

    def test_disconnect_leaves_every_group(self, notifier):
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        notifier.subscribe(sub, "inc-b")
        notifier.disconnect(sub)
        assert notifier.members("inc-a") == frozenset()
        assert notifier.members("inc-b") == frozenset()

    def test_unsubscribe_unknown_group_is_noop(self, notifier):
        sub = notifier.connect()
        notifier.unsubscribe(sub, "never-joined")
        assert sub.incidents == set()


class TestPublish:
    def test_publish_reaches_only_that_incident(self, notifier):
        sub_a = notifier.connect()
        sub_b = notifier.connect()
        notifier.subscribe(sub_a, "inc-a")
        notifier.subscribe(sub_b, "inc-b")

        delivered = notifier.publish("inc-a", EventKind.AGENT_THINKING, {"reasoning": "x"})

        assert delivered == 1
        events = sub_a.drain()
        assert [e.kind for e in events] == [EventKind.AGENT_THINKING]
        assert events[0].data == {"incident_id": "inc-a", "reasoning": "x"}
        assert sub_b.drain() == []

    def test_publish_without_members(self, notifier):
        assert notifier.publish("nobody", EventKind.AGENT_ERROR, {"error": "x"}) == 0

    def test_broadcast_reaches_everyone(self, notifier):
        subs = [notifier.connect() for _ in range(3)]
        notifier.subscribe(subs[0], "inc-a")
        assert notifier.broadcast(EventKind.INCIDENTS_CHANGED, {"incident_id": "inc-a"}) == 3
        assert all(len(s.drain()) == 1 for s in subs)

    def test_order_preserved_within_group(self, notifier):
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        for i in range(5):
            notifier.emit_thinking("inc-a", f"t{i}")
        assert [e.data["reasoning"] for e in sub.drain()] == [f"t{i}" for i in range(5)]

    def test_full_buffer_drops_events(self):
        notifier = Notifier(buffer_size=2)
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        results = [notifier.publish("inc-a", EventKind.AGENT_THINKING, {"n": i}) for i in range(3)]
        assert results == [1, 1, 0]
        assert [e.data["n"] for e in sub.drain()] == [0, 1]

    @pytest.mark.asyncio
    async def test_receive_waits_for_event(self, notifier):
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        waiter = asyncio.create_task(sub.receive(timeout=1.0))
        await asyncio.sleep(0)
        notifier.emit_error("inc-a", "boom")
        event = await waiter
        assert event.kind == EventKind.AGENT_ERROR
        assert event.data["error"] == "boom"

    @pytest.mark.asyncio
    async def test_receive_times_out(self, notifier):
        sub = notifier.connect()
        with pytest.raises(asyncio.TimeoutError):
            await sub.receive(timeout=0.01)


class TestEmitHelpers:
    def test_incident_update_goes_to_group_and_global_feed(self, notifier):
        member = notifier.connect()
        watcher = notifier.connect()
        notifier.subscribe(member, "inc-a")

        notifier.emit_incident_update("inc-a", {"status": "investigating"})

        assert [e.kind for e in member.drain()] == [
            EventKind.INCIDENT_UPDATED,
            EventKind.INCIDENTS_CHANGED,
        ]
        assert [e.kind for e in watcher.drain()] == [EventKind.INCIDENTS_CHANGED]

    def test_incident_created_is_global(self, notifier, sample_incident):
        watcher = notifier.connect()
        notifier.emit_incident_created(sample_incident)
        (event,) = watcher.drain()
        assert event.kind == EventKind.INCIDENT_CREATED
        assert event.data["id"] == sample_incident.id
        assert event.data["status"] == "created"

    def test_step_payload(self, notifier):
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        notifier.emit_step("inc-a", TimelineStep(step_number=1, action="check_logs", output="ok"))
        (event,) = sub.drain()
        assert event.to_wire()["event"] == "agent:step"
        assert event.data["step"]["step_number"] == 1

    def test_complete_payload(self, notifier):
        sub = notifier.connect()
        notifier.subscribe(sub, "inc-a")
        notifier.emit_complete(
            "inc-a", status=IncidentStatus.RESOLVED, resolution="done", total_steps=6
        )
        (event,) = sub.drain()
        assert event.data == {
            "incident_id": "inc-a",
            "status": "resolved",
            "resolution": "done",
            "total_steps": 6,
        }
