"""Shared test fixtures for the incident pipeline test suite."""

from __future__ import annotations

import json
import random
from typing import Any, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from incident_agent.agents.planner import AnalysisPlanner, HeuristicAnalyzer, LLMAnalyzer
from incident_agent.agents.responder import IncidentResponder
from incident_agent.agents.tools import ToolExecutor
from incident_agent.core.config import Settings
from incident_agent.core.models import DiagnosticBundle, Incident, Severity
from incident_agent.core.notifier import Notifier
from incident_agent.core.queue import JobQueue
from incident_agent.core.runner import IncidentRuntime
from incident_agent.db.engine import create_engine_from_url, create_session_factory, init_models
from incident_agent.db.store import IncidentStore


# ── LLM fakes ───────────────────────────────────────────────────


class RateLimitError(Exception):
    """Mimics a provider 429 error."""

    status_code = 429


def make_llm_response(content: str):
    """Create a mock LLM response object."""
    resp = MagicMock()
    resp.content = content
    return resp


def analysis_json(
    action: str = "scale_pods",
    args: dict[str, Any] | None = None,
    report: str = "## Root Cause\nConnection pool exhaustion on api-gateway.",
) -> str:
    return json.dumps(
        {
            "recommended_action": action,
            "action_args": args if args is not None else {"service": "api-gateway", "replicas": 5},
            "resolution_report": report,
        }
    )


def make_chat_model(*responses: Union[str, Exception]) -> MagicMock:
    """A chat model whose ``ainvoke`` yields ``responses`` in order.

    Strings become message contents; exceptions are raised.
    """
    side_effect = [r if isinstance(r, Exception) else make_llm_response(r) for r in responses]
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=side_effect)
    return llm


async def _no_sleep(seconds: float) -> None:
    return None


# ── Settings & storage ──────────────────────────────────────────


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        groq_api_key="",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'incidents.db'}",
        queue_backoff_seconds=0.0,
        queue_poll_interval_seconds=0.01,
        queue_heartbeat_interval_seconds=0.05,
        diagnostic_step_delay_seconds=0.0,
        action_step_delay_seconds=0.0,
        analysis_initial_backoff_seconds=0.0,
        rate_limit_requests_per_minute=6000,
        rate_limit_burst_size=100,
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine_from_url(settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> IncidentStore:
    return IncidentStore(session_factory)


@pytest.fixture
def queue(session_factory) -> JobQueue:
    return JobQueue(session_factory, backoff_seconds=0.0)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(buffer_size=256)


@pytest.fixture
def tools() -> ToolExecutor:
    return ToolExecutor(random.Random(7))


@pytest.fixture
def heuristic_planner() -> AnalysisPlanner:
    return AnalysisPlanner(primary=None)


def llm_planner(llm, tools: ToolExecutor, max_retries: int = 3) -> AnalysisPlanner:
    return AnalysisPlanner(
        primary=LLMAnalyzer(
            llm,
            tools=tools,
            max_retries=max_retries,
            initial_backoff_seconds=0.0,
            sleep=_no_sleep,
        ),
        fallback=HeuristicAnalyzer(),
    )


def make_responder(store, notifier, tools, planner) -> IncidentResponder:
    return IncidentResponder(
        store,
        notifier,
        tools,
        planner,
        step_delay=0.0,
        action_delay=0.0,
        sleep=_no_sleep,
    )


@pytest.fixture
async def runtime(settings, engine):
    runtime = IncidentRuntime(settings, engine=engine, rng=random.Random(11))
    await runtime.start(with_worker=False)
    yield runtime
    await runtime.stop(timeout=5.0)


# ── Sample data fixtures ────────────────────────────────────────


@pytest.fixture
def sample_incident() -> Incident:
    return Incident(
        title="High Error Rate",
        description="5xx responses above 20%",
        severity=Severity.CRITICAL,
        service="api-gateway",
    )


@pytest.fixture
def sample_diagnostics() -> DiagnosticBundle:
    return DiagnosticBundle(
        logs=[
            {"timestamp": "2025-01-15T10:00:00", "level": "error", "service": "api-gateway",
             "message": "ERROR: Connection refused to database cluster primary node"},
            {"timestamp": "2025-01-15T10:00:05", "level": "warn", "service": "api-gateway",
             "message": "WARN: Connection pool nearing capacity (85/100)"},
            {"timestamp": "2025-01-15T10:00:09", "level": "error", "service": "api-gateway",
             "message": "ERROR: Request timeout after 30000ms - upstream unresponsive"},
            {"timestamp": "2025-01-15T10:00:12", "level": "info", "service": "api-gateway",
             "message": "INFO: Cache hit ratio stable at 94%"},
        ],
        metrics={
            "service": "api-gateway",
            "cpu_usage_percent": 91.2,
            "memory_usage_percent": 84.0,
            "error_rate_percent": 23.5,
            "p99_latency_ms": 3200,
            "pod_restarts_last_hour": 6,
        },
        healthcheck={
            "service": "api-gateway",
            "status": "degraded",
            "response_time": "1800ms",
            "checks": {"http": "fail", "database": "fail", "cache": "pass", "dependencies": "degraded"},
        },
    )
