"""FastAPI app entrypoint for garden-advisor."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from garden_advisor.config.logging import configure_logging
from garden_advisor.config.settings import Settings, get_settings
from garden_advisor.jobs.pipeline import AnalysisPipeline, AnalysisStatus
from garden_advisor.runtime import build_pipeline
from garden_advisor.storage.models import AnalysisRecord


class TriggerResponse(BaseModel):
    garden_id: str
    job_id: str | None
    queued: bool


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    pipeline_override: AnalysisPipeline | None,
) -> None:
    if not hasattr(app.state, "pipeline"):
        pipeline = pipeline_override or build_pipeline(settings)
        pipeline.store.migrate()
        pipeline.queue.connect()
        app.state.pipeline = pipeline

    if not hasattr(app.state, "settings"):
        app.state.settings = settings


def create_app(
    *,
    pipeline: AnalysisPipeline | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        _ensure_runtime_state(app, settings=settings, pipeline_override=pipeline)
        yield
        app.state.pipeline.queue.close()

    app_lifespan = lifespan if pipeline is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if pipeline is not None:
        _ensure_runtime_state(app, settings=settings, pipeline_override=pipeline)

    def _get_pipeline(request: Request) -> AnalysisPipeline:
        if not hasattr(request.app.state, "pipeline"):
            _ensure_runtime_state(request.app, settings=settings, pipeline_override=pipeline)
        return request.app.state.pipeline

    def _require_garden(active: AnalysisPipeline, garden_id: str) -> None:
        if active.store.get_garden(garden_id) is None:
            raise HTTPException(status_code=404, detail="Garden not found")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/gardens/{garden_id}/analysis", response_model=TriggerResponse, status_code=202)
    def trigger_analysis(garden_id: str, request: Request) -> TriggerResponse:
        active = _get_pipeline(request)
        _require_garden(active, garden_id)
        job_id = active.trigger_analysis(garden_id)
        return TriggerResponse(garden_id=garden_id, job_id=job_id, queued=job_id is not None)

    @app.get("/gardens/{garden_id}/analysis/status", response_model=AnalysisStatus)
    def analysis_status(garden_id: str, request: Request) -> AnalysisStatus:
        active = _get_pipeline(request)
        _require_garden(active, garden_id)
        return active.get_analysis_status(garden_id)

    @app.get("/gardens/{garden_id}/analysis/results", response_model=list[AnalysisRecord])
    def analysis_results(
        garden_id: str,
        request: Request,
        limit: int = Query(default=10, ge=1, le=50),
    ) -> list[AnalysisRecord]:
        active = _get_pipeline(request)
        _require_garden(active, garden_id)
        return active.recent_results(garden_id, limit=limit)

    @app.get("/gardens/{garden_id}/zones/{zone_id}/analysis-context")
    def analysis_context(garden_id: str, zone_id: str, request: Request) -> dict[str, Any]:
        active = _get_pipeline(request)
        try:
            context = active.preview_context(garden_id, zone_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return context.model_dump(mode="json")

    return app


app = create_app()
