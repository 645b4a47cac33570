"""Persist the validated result as the zone's audit row."""

from __future__ import annotations

from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps


def run(state: ZoneAnalysisState, deps: ZoneGraphDeps) -> ZoneAnalysisState:
    record = deps.store.create_analysis_record(
        garden_id=state["garden_id"],
        scope="zone",
        target_id=state["zone_id"],
        result=state["result"].model_dump(mode="json", by_alias=True, exclude_none=True),
        model_used=state["model_used"],
        tokens_used=state["usage"].model_dump(),
    )
    return {"analysis_id": record.id}
