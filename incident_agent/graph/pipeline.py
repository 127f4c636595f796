"""LangGraph incident pipeline definition.

Graph structure:
    START → investigate → check_logs → check_metrics → run_healthcheck
          → analyze → mitigate → resolve → END

Phases run strictly in sequence; a node raising aborts the run and the
responder takes the failure path.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langgraph.graph import END, START, StateGraph

from incident_agent.core.state import PipelineState

if TYPE_CHECKING:
    from incident_agent.agents.responder import IncidentResponder

NODE_ORDER = (
    "investigate",
    "check_logs",
    "check_metrics",
    "run_healthcheck",
    "analyze",
    "mitigate",
    "resolve",
)


def build_pipeline_graph(responder: "IncidentResponder"):
    """Build and compile the pipeline graph around ``responder``'s nodes."""

    graph = StateGraph(PipelineState)

    # ── Add nodes ───────────────────────────────────────────────
    graph.add_node("investigate", responder.investigate_node)
    graph.add_node("check_logs", responder.check_logs_node)
    graph.add_node("check_metrics", responder.check_metrics_node)
    graph.add_node("run_healthcheck", responder.run_healthcheck_node)
    graph.add_node("analyze", responder.analyze_node)
    graph.add_node("mitigate", responder.mitigate_node)
    graph.add_node("resolve", responder.resolve_node)

    # ── Sequential chain ────────────────────────────────────────
    graph.add_edge(START, NODE_ORDER[0])
    for current, following in zip(NODE_ORDER, NODE_ORDER[1:]):
        graph.add_edge(current, following)
    graph.add_edge(NODE_ORDER[-1], END)

    return graph.compile()
