"""Typed state contract for the per-zone LangGraph workflow."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypedDict

from garden_advisor.ai.models import AnalysisContext, ProviderName, TokenUsage
from garden_advisor.ai.provider import AIProvider
from garden_advisor.ai.schemas import AnalysisResult
from garden_advisor.jobs.context_builder import ContextBuilder
from garden_advisor.jobs.queue import Clock
from garden_advisor.jobs.reconcile import ReconciliationReport, Reconciler
from garden_advisor.storage.base import GardenStore
from garden_advisor.storage.credentials import CredentialUnwrapper


class ZoneAnalysisState(TypedDict, total=False):
    garden_id: str
    zone_id: str
    user_id: str | None
    weather: dict[str, Any] | None
    skipped: bool
    skip_reason: str | None
    model_used: ProviderName | None
    credential: str | None
    analysis_context: AnalysisContext
    result: AnalysisResult
    usage: TokenUsage
    analysis_id: str
    report: ReconciliationReport


@dataclass(frozen=True)
class ZoneGraphDeps:
    """Collaborators the per-zone nodes close over."""

    store: GardenStore
    providers: Mapping[ProviderName, AIProvider]
    unwrapper: CredentialUnwrapper
    context_builder: ContextBuilder
    reconciler: Reconciler
    clock: Clock


def initial_state(
    garden_id: str,
    zone_id: str,
    user_id: str | None,
    weather: dict[str, Any] | None = None,
) -> ZoneAnalysisState:
    return {
        "garden_id": garden_id,
        "zone_id": zone_id,
        "user_id": user_id,
        "weather": weather,
        "skipped": False,
        "skip_reason": None,
        "model_used": None,
        "credential": None,
    }
