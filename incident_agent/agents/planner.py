"""Analysis Planner — single-shot incident analysis.

Receives the incident plus every piece of diagnostic data gathered in
phase 1 and produces a recommended remediation and a markdown resolution
report with ONE reasoning-service call. Rate-limited calls are retried
with exponential backoff; anything else falls back to a deterministic
heuristic report so analysis never blocks resolution.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from incident_agent.agents.tools import ToolExecutor
from incident_agent.core.config import Settings
from incident_agent.core.logging import get_logger
from incident_agent.core.models import (
    REMEDIATION_ACTIONS,
    AnalysisResult,
    DiagnosticBundle,
    Incident,
    ToolName,
)
from incident_agent.core.rate_limiter import TokenBucketRateLimiter
from incident_agent.reports.generator import render_analysis_prompt, render_fallback_report

logger = get_logger("planner")

SYSTEM_PROMPT = """\
You are an expert DevOps SRE engineer analyzing a production incident.

You will receive:
- Incident details (title, service, severity, description)
- Diagnostic data already collected: logs, metrics, and health check results

Your job: Write a comprehensive, structured incident response report in MARKDOWN format.

RULES:
1. Write in markdown with proper headers, bold, lists, and horizontal rules
2. Be specific: reference actual data from the diagnostics (error messages, CPU %, latency values, etc.)
3. Provide a realistic root cause analysis based on the diagnostic data
4. Recommend ONE concrete action: either "restart_service" or "scale_pods" (with a replica count 3-8)
5. Include a post-mortem section with preventative measures
6. Keep it professional and concise, like a real SRE incident report

RESPONSE FORMAT: You MUST respond with valid JSON (no markdown fences around the JSON):
{
  "recommended_action": "restart_service" or "scale_pods",
  "action_args": { "service": "..." } or { "service": "...", "replicas": N },
  "resolution_report": "Full markdown report here..."
}
"""

_RATE_LIMIT_MARKERS = ("429", "rate limit", "quota", "resource exhausted")
_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_EMBEDDED_REPORT = re.compile(r"\{[\s\S]*\"resolution_report\"[\s\S]*\}")


class Analyzer(Protocol):
    async def analyze(
        self,
        incident: Incident,
        diagnostics: DiagnosticBundle,
        history: Optional[Iterable[dict[str, str]]] = None,
    ) -> AnalysisResult:
        ...


class AnalysisUnavailableError(Exception):
    """The reasoning service answered but gave nothing usable."""


# ── Response helpers ─────────────────────────────────────────────


def is_rate_limit_error(exc: BaseException) -> bool:
    for attr in ("status_code", "status", "code"):
        if getattr(exc, attr, None) == 429:
            return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned))
    return cleaned


def parse_analysis_payload(text: str) -> Optional[dict[str, Any]]:
    """Parse the model's JSON answer; None if no object can be recovered."""
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _EMBEDDED_REPORT.search(cleaned)
        if match is None:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


# ── Analyzers ────────────────────────────────────────────────────


class HeuristicAnalyzer:
    """Deterministic analysis from the diagnostic bundle alone."""

    async def analyze(
        self,
        incident: Incident,
        diagnostics: DiagnosticBundle,
        history: Optional[Iterable[dict[str, str]]] = None,
    ) -> AnalysisResult:
        return AnalysisResult(
            success=False,
            recommended_action=ToolName.RESTART_SERVICE,
            action_args={"service": incident.service},
            resolution_report=render_fallback_report(incident, diagnostics),
        )


class LLMAnalyzer:
    """Analysis through a LangChain chat model with rate-limit retries."""

    def __init__(
        self,
        llm: BaseChatModel,
        *,
        tools: ToolExecutor,
        max_retries: int = 3,
        initial_backoff_seconds: float = 5.0,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._rate_limiter = rate_limiter
        self._sleep = sleep

    async def analyze(
        self,
        incident: Incident,
        diagnostics: DiagnosticBundle,
        history: Optional[Iterable[dict[str, str]]] = None,
    ) -> AnalysisResult:
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=render_analysis_prompt(incident, diagnostics, history)),
        ]
        response = await self._invoke_with_retry(messages)
        text = _message_text(getattr(response, "content", "")).strip()
        if not text:
            raise AnalysisUnavailableError("reasoning service returned an empty response")

        payload = parse_analysis_payload(text)
        if payload is None:
            logger.warning("analysis_unparseable", incident_id=incident.id)
            return AnalysisResult(
                success=True,
                recommended_action=ToolName.RESTART_SERVICE,
                action_args={"service": incident.service},
                resolution_report=text,
            )

        action, args = self._normalise_action(incident, payload)
        report = payload.get("resolution_report")
        return AnalysisResult(
            success=True,
            recommended_action=action,
            action_args=args,
            resolution_report=report if isinstance(report, str) and report.strip() else text,
        )

    async def _invoke_with_retry(self, messages: list) -> Any:
        attempt = 0
        while True:
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire()
            try:
                return await self._llm.ainvoke(messages)
            except Exception as exc:
                if not is_rate_limit_error(exc) or attempt >= self._max_retries:
                    raise
                backoff = self._initial_backoff * 2**attempt
                attempt += 1
                logger.warning(
                    "analysis_rate_limited",
                    attempt=attempt,
                    max_attempts=self._max_retries + 1,
                    retry_in_seconds=backoff,
                )
                await self._sleep(backoff)

    def _normalise_action(
        self,
        incident: Incident,
        payload: dict[str, Any],
    ) -> tuple[ToolName, dict[str, Any]]:
        default = (ToolName.RESTART_SERVICE, {"service": incident.service})
        try:
            action = ToolName(payload.get("recommended_action") or ToolName.RESTART_SERVICE)
        except ValueError:
            return default
        if action not in REMEDIATION_ACTIONS:
            return default

        raw_args = payload.get("action_args")
        args = {"service": incident.service}
        if isinstance(raw_args, dict):
            args.update({k: v for k, v in raw_args.items() if v not in (None, "")})
        validated = self._tools.validate_args(action.value, args)
        if validated is None:
            return default
        return action, validated


class AnalysisPlanner:
    """Composes a primary analyzer with a fallback that cannot fail."""

    def __init__(self, primary: Optional[Analyzer], fallback: Optional[Analyzer] = None) -> None:
        self._primary = primary
        self._fallback = fallback or HeuristicAnalyzer()

    @property
    def has_reasoning_service(self) -> bool:
        return self._primary is not None

    async def analyze(
        self,
        incident: Incident,
        diagnostics: DiagnosticBundle,
        history: Optional[Iterable[dict[str, str]]] = None,
    ) -> AnalysisResult:
        if self._primary is None:
            logger.info("analysis_fallback", incident_id=incident.id, reason="not_configured")
            return await self._fallback.analyze(incident, diagnostics)
        try:
            return await self._primary.analyze(incident, diagnostics, history)
        except Exception as exc:
            if is_rate_limit_error(exc):
                logger.error("analysis_rate_limit_exhausted", incident_id=incident.id, error=str(exc))
            else:
                logger.error("analysis_failed", incident_id=incident.id, error=str(exc))
            return await self._fallback.analyze(incident, diagnostics)


def build_chat_model(settings: Settings) -> Optional[BaseChatModel]:
    """The Groq chat model, or None when no API key is configured."""
    if not settings.groq_api_key:
        return None
    from langchain_groq import ChatGroq

    return ChatGroq(
        api_key=settings.groq_api_key,
        model=settings.groq_model,
        temperature=settings.groq_temperature,
        max_tokens=settings.groq_max_tokens,
        max_retries=0,
    )


def build_planner(
    settings: Settings,
    tools: ToolExecutor,
    llm: Optional[BaseChatModel] = None,
) -> AnalysisPlanner:
    llm = llm if llm is not None else build_chat_model(settings)
    if llm is None:
        return AnalysisPlanner(primary=None)
    primary = LLMAnalyzer(
        llm,
        tools=tools,
        max_retries=settings.analysis_max_retries,
        initial_backoff_seconds=settings.analysis_initial_backoff_seconds,
        rate_limiter=TokenBucketRateLimiter.from_settings(settings),
    )
    return AnalysisPlanner(primary=primary)
