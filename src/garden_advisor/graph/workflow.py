"""LangGraph workflow for one per-zone analysis job."""

from functools import partial

from langgraph.graph import END, StateGraph

from garden_advisor.graph.nodes import analyze, build_context, reconcile, record_audit, select_provider
from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps


def build_zone_graph(deps: ZoneGraphDeps):
    def _route_after_selection(state: ZoneAnalysisState) -> str:
        return "skip" if state.get("skipped") else "analyze"

    graph = StateGraph(ZoneAnalysisState)

    graph.add_node("select_provider", partial(select_provider.run, deps=deps))
    graph.add_node("build_context", partial(build_context.run, deps=deps))
    graph.add_node("analyze", partial(analyze.run, deps=deps))
    graph.add_node("record_audit", partial(record_audit.run, deps=deps))
    graph.add_node("reconcile", partial(reconcile.run, deps=deps))

    graph.set_entry_point("select_provider")
    graph.add_conditional_edges(
        "select_provider", _route_after_selection, {"skip": END, "analyze": "build_context"}
    )
    graph.add_edge("build_context", "analyze")
    graph.add_edge("analyze", "record_audit")
    graph.add_edge("record_audit", "reconcile")
    graph.add_edge("reconcile", END)

    return graph.compile()
