"""Choose the provider the zone owner holds a credential for."""

from __future__ import annotations

import logging

from garden_advisor.ai.models import ProviderName
from garden_advisor.ai.selection import select_provider
from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps
from garden_advisor.storage.credentials import resolve_credential

logger = logging.getLogger(__name__)


def run(state: ZoneAnalysisState, deps: ZoneGraphDeps) -> ZoneAnalysisState:
    user_id = state.get("user_id")
    if not user_id:
        logger.info("analyze_zone event=skipped reason=no_owner zone_id=%s", state["zone_id"])
        return {"skipped": True, "skip_reason": "no_owner"}

    def lookup(name: ProviderName) -> str | None:
        return resolve_credential(deps.store, deps.unwrapper, user_id, name)

    selection = select_provider(lookup, deps.providers)
    if selection.skipped:
        logger.info(
            "analyze_zone event=skipped reason=no_credential zone_id=%s user_id=%s",
            state["zone_id"],
            user_id,
        )
        return {"skipped": True, "skip_reason": "no_credential"}
    return {
        "skipped": False,
        "model_used": selection.model_used,
        "credential": selection.credential,
    }
