"""Diagnostic and remediation tools available to the incident pipeline.

Each tool declares a pydantic argument schema next to its handler. The
handlers are side-effect-free simulations returning structured data plus
a one-line human summary; ``resolve_incident`` only marks resolution, the
pipeline is what updates the incident record.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, ValidationError

from incident_agent.core.logging import get_logger
from incident_agent.core.models import ToolName, ToolResult
from incident_agent.data.mock_generator import MockDataGenerator

logger = get_logger("tools")


# ── Argument schemas ─────────────────────────────────────────────


class ServiceArgs(BaseModel):
    service: str = Field(
        min_length=1,
        description="The service name (e.g., api-gateway, auth-service, payment-service)",
    )


class ScaleArgs(ServiceArgs):
    replicas: int = Field(description="Target number of replicas (1-10)")


class ResolveArgs(BaseModel):
    summary: str = Field(
        description=(
            "A detailed summary of what caused the incident and what actions "
            "were taken to resolve it"
        ),
    )


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], ToolResult]

    def definition(self) -> dict[str, Any]:
        """Function-calling style definition with the JSON schema of the args."""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        return {
            "type": "function",
            "name": self.name.value,
            "description": self.description,
            "parameters": schema,
        }


class ToolExecutor:
    """Dispatches a fixed, closed set of named tools."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        *,
        log_sample_size: int = 15,
    ) -> None:
        self._rng = rng or random.Random()
        self._generator = MockDataGenerator(rng=self._rng)
        self._log_sample_size = log_sample_size
        self._specs: dict[ToolName, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec(
                    ToolName.CHECK_LOGS,
                    "Retrieve recent application logs for a specific service to diagnose "
                    "issues. Returns timestamped log entries with severity levels.",
                    ServiceArgs,
                    self._check_logs,
                ),
                ToolSpec(
                    ToolName.CHECK_METRICS,
                    "Get current performance metrics for a service including CPU, memory, "
                    "latency, error rate, and pod status.",
                    ServiceArgs,
                    self._check_metrics,
                ),
                ToolSpec(
                    ToolName.RESTART_SERVICE,
                    "Perform a rolling restart of a service. Use this when a service is in "
                    "a degraded state and may recover from a restart.",
                    ServiceArgs,
                    self._restart_service,
                ),
                ToolSpec(
                    ToolName.SCALE_PODS,
                    "Horizontally scale a service by adjusting the number of pod replicas. "
                    "Use when a service is under heavy load.",
                    ScaleArgs,
                    self._scale_pods,
                ),
                ToolSpec(
                    ToolName.RUN_HEALTHCHECK,
                    "Run a health check against a service endpoint to verify if it is "
                    "responding correctly.",
                    ServiceArgs,
                    self._run_healthcheck,
                ),
                ToolSpec(
                    ToolName.RESOLVE_INCIDENT,
                    "Mark the incident as resolved with a summary of what was found and "
                    "done. Call this only when you are confident the issue is mitigated.",
                    ResolveArgs,
                    self._resolve_incident,
                ),
            )
        }

    # ── Introspection ────────────────────────────────────────────

    def definitions(self) -> list[dict[str, Any]]:
        return [spec.definition() for spec in self._specs.values()]

    def validate_args(self, tool_name: str, args: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Return the validated arguments, or None if they violate the schema."""
        spec = self._lookup(tool_name)
        if spec is None:
            return None
        try:
            return spec.args_model.model_validate(args).model_dump()
        except ValidationError:
            return None

    # ── Execution ────────────────────────────────────────────────

    def execute(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        spec = self._lookup(tool_name)
        if spec is None:
            logger.warning("unknown_tool", tool=str(tool_name))
            return ToolResult(success=False, error=f"Unknown tool: {tool_name}")

        try:
            parsed = spec.args_model.model_validate(args or {})
        except ValidationError as exc:
            logger.warning("invalid_tool_args", tool=spec.name.value, errors=exc.error_count())
            return ToolResult(
                success=False,
                error=f"Invalid arguments for {spec.name.value}: {exc.errors()[0]['msg']}",
            )

        result = spec.handler(parsed)
        logger.debug("tool_executed", tool=spec.name.value, success=result.success)
        return result

    def _lookup(self, tool_name: str) -> Optional[ToolSpec]:
        try:
            return self._specs[ToolName(tool_name)]
        except ValueError:
            return None

    # ── Handlers ─────────────────────────────────────────────────

    def _check_logs(self, args: ServiceArgs) -> ToolResult:
        logs = self._generator.logs(args.service, self._log_sample_size)
        errors = sum(1 for entry in logs if entry["level"] == "error")
        warnings = sum(1 for entry in logs if entry["level"] == "warn")
        return ToolResult(
            success=True,
            data=logs,
            summary=(
                f"Retrieved {len(logs)} log entries for {args.service}. "
                f"Found {errors} errors, {warnings} warnings."
            ),
        )

    def _check_metrics(self, args: ServiceArgs) -> ToolResult:
        m = self._generator.metrics(args.service)
        return ToolResult(
            success=True,
            data=m,
            summary=(
                f"Metrics for {args.service}: CPU {m['cpu_usage_percent']}%, "
                f"Memory {m['memory_usage_percent']}%, Error rate {m['error_rate_percent']}%, "
                f"P99 latency {m['p99_latency_ms']}ms, {m['pod_count']} pods "
                f"({m['pod_restarts_last_hour']} restarts/hr)"
            ),
        )

    def _restart_service(self, args: ServiceArgs) -> ToolResult:
        restart_time = f"{1 + self._rng.random() * 4:.1f}s"
        return ToolResult(
            success=True,
            data={
                "service": args.service,
                "restart_time": restart_time,
                "new_pod_id": f"{args.service}-{int(time.time() * 1000):x}",
            },
            summary=(
                f"Successfully initiated rolling restart of {args.service}. New pods came up "
                f"in {restart_time}. Old pods terminated gracefully."
            ),
        )

    def _scale_pods(self, args: ScaleArgs) -> ToolResult:
        replicas = min(max(args.replicas, 1), 10)
        return ToolResult(
            success=True,
            data={
                "service": args.service,
                "previous_replicas": self._rng.randint(2, 3),
                "new_replicas": replicas,
            },
            summary=(
                f"Scaled {args.service} to {replicas} replicas. New pods are being "
                f"scheduled and should be ready within 30 seconds."
            ),
        )

    def _run_healthcheck(self, args: ServiceArgs) -> ToolResult:
        health = self._generator.healthcheck(args.service)
        if health["status"] == "healthy":
            summary = f"{args.service} health check PASSED. All endpoints responding normally."
        else:
            summary = f"{args.service} health check DEGRADED. Some endpoints are slow or failing."
        return ToolResult(success=True, data=health, summary=summary)

    def _resolve_incident(self, args: ResolveArgs) -> ToolResult:
        return ToolResult(
            success=True,
            resolved=True,
            data={"summary": args.summary},
            summary=f"Incident marked as RESOLVED: {args.summary}",
        )
