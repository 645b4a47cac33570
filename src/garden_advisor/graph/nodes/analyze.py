"""Call the selected provider. Provider and contract errors propagate."""

from __future__ import annotations

import logging
import time

from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps

logger = logging.getLogger(__name__)


def run(state: ZoneAnalysisState, deps: ZoneGraphDeps) -> ZoneAnalysisState:
    model_used = state["model_used"]
    provider = deps.providers[model_used]
    started_at = time.perf_counter()
    result, usage = provider.analyze(state["analysis_context"], state["credential"] or "")
    logger.info(
        "analyze_zone event=analyzed zone_id=%s provider=%s operations=%d "
        "tokens_in=%d tokens_out=%d duration_ms=%.1f",
        state["zone_id"],
        model_used,
        len(result.operations),
        usage.input,
        usage.output,
        (time.perf_counter() - started_at) * 1000.0,
    )
    return {"result": result, "usage": usage}
