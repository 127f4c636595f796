"""Unit tests for incident_agent/core/models.py."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from incident_agent.core.models import (
    ALLOWED_TRANSITIONS,
    DiagnosticBundle,
    Event,
    EventKind,
    Incident,
    IncidentStatus,
    Job,
    Severity,
    TimelineStep,
    can_transition,
    is_terminal,
)


class TestStatusMachine:
    @pytest.mark.parametrize(
        "current,target",
        [
            (IncidentStatus.CREATED, IncidentStatus.INVESTIGATING),
            (IncidentStatus.INVESTIGATING, IncidentStatus.IDENTIFIED),
            (IncidentStatus.IDENTIFIED, IncidentStatus.MITIGATING),
            (IncidentStatus.MITIGATING, IncidentStatus.RESOLVED),
            (IncidentStatus.MITIGATING, IncidentStatus.FAILED),
            (IncidentStatus.INVESTIGATING, IncidentStatus.FAILED),
            (IncidentStatus.IDENTIFIED, IncidentStatus.FAILED),
        ],
    )
    def test_allowed_edges(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (IncidentStatus.CREATED, IncidentStatus.RESOLVED),
            (IncidentStatus.INVESTIGATING, IncidentStatus.MITIGATING),
            (IncidentStatus.IDENTIFIED, IncidentStatus.INVESTIGATING),
            (IncidentStatus.RESOLVED, IncidentStatus.INVESTIGATING),
            (IncidentStatus.FAILED, IncidentStatus.RESOLVED),
        ],
    )
    def test_rejected_edges(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_statuses_have_no_exits(self):
        for status in (IncidentStatus.RESOLVED, IncidentStatus.FAILED):
            assert is_terminal(status)
            assert ALLOWED_TRANSITIONS[status] == frozenset()
        assert not is_terminal(IncidentStatus.MITIGATING)


class TestIncident:
    def test_defaults(self):
        incident = Incident(title="High Error Rate", severity=Severity.CRITICAL, service="api-gateway")
        assert incident.status == IncidentStatus.CREATED
        assert incident.step_count == 0
        assert incident.resolved_at is None
        assert incident.resolution is None
        assert len(incident.id) == 32

    def test_ids_are_unique(self):
        a = Incident(title="a", severity="low", service="x")
        b = Incident(title="b", severity="low", service="x")
        assert a.id != b.id

    def test_empty_title_rejected(self):
        with pytest.raises(ValidationError):
            Incident(title="", severity="high", service="api-gateway")

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValidationError):
            Incident(title="t", severity="urgent", service="api-gateway")


class TestTimelineStep:
    def test_step_number_is_one_based(self):
        with pytest.raises(ValidationError):
            TimelineStep(step_number=0, action="check_logs")

    def test_steps_are_immutable(self):
        step = TimelineStep(step_number=1, action="check_logs", output="ok")
        with pytest.raises(ValidationError):
            step.output = "changed"

    def test_structured_output(self):
        step = TimelineStep(step_number=2, action="analysis", output={"report": "x"})
        assert step.output == {"report": "x"}


class TestJob:
    def test_incident_id_from_payload(self):
        job = Job(id="abc", name="process-incident", payload={"incident_id": "abc"})
        assert job.incident_id == "abc"

    def test_incident_id_falls_back_to_job_id(self):
        job = Job(id="abc", name="process-incident")
        assert job.incident_id == "abc"


class TestDiagnosticBundle:
    def test_count_level(self, sample_diagnostics):
        assert sample_diagnostics.count_level("error") == 2
        assert sample_diagnostics.count_level("warn") == 1
        assert DiagnosticBundle().count_level("error") == 0


class TestEvent:
    def test_wire_format(self):
        event = Event(kind=EventKind.AGENT_THINKING, incident_id="i1", data={"reasoning": "..."})
        assert event.to_wire() == {"event": "agent:thinking", "data": {"reasoning": "..."}}
