"""Jinja2-based markdown rendering for the analysis step.

Renders the user prompt sent to the reasoning service and the heuristic
fallback report used when that service cannot be reached.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, Undefined

from incident_agent.core.models import DiagnosticBundle, Incident

TEMPLATE_DIR = Path(__file__).parent / "templates"


def _fmt_metric(value: Any, unit: str = "") -> str:
    """Format a metric value, tolerating missing data."""
    if value is None or isinstance(value, Undefined):
        return "N/A"
    return f"{value}{unit}"


@lru_cache(maxsize=1)
def _get_jinja_env() -> Environment:
    """Create a Jinja2 environment with custom filters."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=False,
    )
    env.filters["metric"] = _fmt_metric
    return env


def render_analysis_prompt(
    incident: Incident,
    diagnostics: DiagnosticBundle,
    history: Optional[Iterable[dict[str, str]]] = None,
) -> str:
    template = _get_jinja_env().get_template("analysis_prompt.md.j2")
    health = diagnostics.healthcheck
    return template.render(
        incident=incident,
        diagnostics=diagnostics,
        health=health,
        checks=health.get("checks") or {},
        history=list(history or []),
    )


def render_fallback_report(incident: Incident, diagnostics: DiagnosticBundle) -> str:
    """Deterministic report built only from the diagnostics already collected."""
    template = _get_jinja_env().get_template("fallback_report.md.j2")
    errors = [entry for entry in diagnostics.logs if entry.get("level") == "error"]
    return template.render(
        incident=incident,
        diagnostics=diagnostics,
        error_count=len(errors),
        warn_count=diagnostics.count_level("warn"),
        top_errors=errors[:3],
        metrics=diagnostics.metrics,
        health=diagnostics.healthcheck,
    )
