"""Apply the result's operations to the zone's tasks."""

from __future__ import annotations

from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps


def run(state: ZoneAnalysisState, deps: ZoneGraphDeps) -> ZoneAnalysisState:
    report = deps.reconciler.apply(
        state["result"].operations,
        analysis_id=state["analysis_id"],
        garden_id=state["garden_id"],
        zone_id=state["zone_id"],
    )
    return {"report": report}
