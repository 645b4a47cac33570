"""Snapshot the zone's state into an AnalysisContext."""

from __future__ import annotations

from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps
from garden_advisor.integrations.weather import WeatherData


def run(state: ZoneAnalysisState, deps: ZoneGraphDeps) -> ZoneAnalysisState:
    raw_weather = state.get("weather")
    weather = WeatherData.model_validate(raw_weather) if raw_weather else None
    context = deps.context_builder.build(
        garden_id=state["garden_id"],
        zone_id=state["zone_id"],
        user_id=state.get("user_id"),
        now=deps.clock(),
        weather=weather,
    )
    return {"analysis_context": context}
