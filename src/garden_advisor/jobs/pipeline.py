"""Three-stage analysis pipeline: daily trigger, per-garden fan-out, per-zone analysis."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from garden_advisor.ai.models import AnalysisContext, ProviderName
from garden_advisor.ai.provider import AIProvider
from garden_advisor.config.settings import Settings
from garden_advisor.graph.state import ZoneAnalysisState, ZoneGraphDeps, initial_state
from garden_advisor.graph.workflow import build_zone_graph
from garden_advisor.integrations.photos import PhotoLoader
from garden_advisor.integrations.weather import (
    WeatherData,
    WeatherFetchFailed,
    WeatherSource,
    get_cached_weather,
)
from garden_advisor.jobs.context_builder import ContextBuilder
from garden_advisor.jobs.queue import (
    GARDEN_JOB,
    TRIGGER_JOB,
    ZONE_JOB,
    Clock,
    Job,
    JobQueue,
    SendOptions,
    utc_now,
)
from garden_advisor.jobs.reconcile import Reconciler
from garden_advisor.jobs.worker import WorkerPool
from garden_advisor.storage.base import GardenStore
from garden_advisor.storage.credentials import CredentialUnwrapper
from garden_advisor.storage.models import AnalysisRecord

logger = logging.getLogger(__name__)

STATUS_JOB_NAMES = (GARDEN_JOB, ZONE_JOB)
DEFAULT_RESULTS_LIMIT = 10


class AnalyzeGardenPayload(BaseModel):
    garden_id: str


class AnalyzeZonePayload(BaseModel):
    garden_id: str
    zone_id: str
    user_id: str
    weather: dict[str, Any] | None = None


class AnalysisStatus(BaseModel):
    running: bool
    pending_jobs: int


class AnalysisPipeline:
    """Owns the job handlers and the on-demand entry points.

    Every collaborator is injected; the queue is connected and closed by
    whoever builds the pipeline.
    """

    def __init__(
        self,
        *,
        store: GardenStore,
        queue: JobQueue,
        providers: Mapping[ProviderName, AIProvider],
        unwrapper: CredentialUnwrapper,
        weather_source: WeatherSource,
        photo_loader: PhotoLoader,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.queue = queue
        self.providers = providers
        self.weather_source = weather_source
        self.settings = settings
        self.clock = clock
        self.context_builder = ContextBuilder(store, photo_loader, settings)
        self.reconciler = Reconciler(store, clock=clock)
        self.zone_graph = build_zone_graph(
            ZoneGraphDeps(
                store=store,
                providers=providers,
                unwrapper=unwrapper,
                context_builder=self.context_builder,
                reconciler=self.reconciler,
                clock=clock,
            )
        )

    def zone_send_options(self) -> SendOptions:
        return SendOptions(
            retry_limit=self.settings.zone_job_retry_limit,
            retry_delay_s=self.settings.zone_job_retry_delay_s,
            expire_in_s=self.settings.zone_job_expire_s,
        )

    def register(self, workers: WorkerPool) -> None:
        workers.on_batch(TRIGGER_JOB, self.handle_daily_trigger)
        # One job per batch: a failing garden or zone must not fail its neighbours.
        workers.on_batch(GARDEN_JOB, self.handle_analyze_garden, batch_size=1)
        workers.on_batch(ZONE_JOB, self.handle_analyze_zone, batch_size=1)

    def handle_daily_trigger(self, jobs: list[Job]) -> None:
        for _job in jobs:
            gardens = self.store.list_gardens()
            logger.info("daily_trigger event=start gardens=%d", len(gardens))
            for garden in gardens:
                self.queue.send(GARDEN_JOB, AnalyzeGardenPayload(garden_id=garden.id).model_dump())
            logger.info("daily_trigger event=enqueued gardens=%d", len(gardens))

    def handle_analyze_garden(self, jobs: list[Job]) -> None:
        for job in jobs:
            payload = AnalyzeGardenPayload.model_validate(job.data)
            garden = self.store.get_garden(payload.garden_id)
            if garden is None:
                logger.warning(
                    "analyze_garden event=skipped reason=not_found garden_id=%s",
                    payload.garden_id,
                )
                continue

            weather: WeatherData | None = None
            if garden.has_location:
                try:
                    weather = self.weather_source.fetch(garden.location_lat, garden.location_lng)
                except WeatherFetchFailed:
                    logger.error(
                        "analyze_garden event=weather_failed garden_id=%s",
                        garden.id,
                        exc_info=True,
                    )
            if weather is not None:
                # The fetched forecast still goes to the zones if caching it fails.
                try:
                    self.store.save_weather(
                        garden.id, weather.model_dump(mode="json"), fetched_at=self.clock()
                    )
                    logger.info("analyze_garden event=weather_cached garden_id=%s", garden.id)
                except Exception:  # noqa: BLE001
                    logger.error(
                        "analyze_garden event=weather_cache_failed garden_id=%s",
                        garden.id,
                        exc_info=True,
                    )

            zones = self.store.list_zones(garden.id)
            options = self.zone_send_options()
            for zone in zones:
                zone_payload = AnalyzeZonePayload(
                    garden_id=garden.id,
                    zone_id=zone.id,
                    user_id=garden.user_id,
                    weather=weather.model_dump(mode="json") if weather is not None else None,
                )
                self.queue.send(ZONE_JOB, zone_payload.model_dump(), options)
            logger.info(
                "analyze_garden event=enqueued garden_id=%s zones=%d", garden.id, len(zones)
            )

    def handle_analyze_zone(self, jobs: list[Job]) -> None:
        for job in jobs:
            payload = AnalyzeZonePayload.model_validate(job.data)
            logger.info(
                "analyze_zone event=start job_id=%s attempt=%d zone_id=%s garden_id=%s",
                job.id,
                job.retry_count + 1,
                payload.zone_id,
                payload.garden_id,
            )
            self.analyze_zone(payload)

    def analyze_zone(self, payload: AnalyzeZonePayload) -> ZoneAnalysisState:
        """Run the per-zone workflow; any failure after selection propagates."""
        state = initial_state(
            garden_id=payload.garden_id,
            zone_id=payload.zone_id,
            user_id=payload.user_id,
            weather=payload.weather,
        )
        result: ZoneAnalysisState = self.zone_graph.invoke(state)
        if not result.get("skipped"):
            report = result["report"]
            logger.info(
                "analyze_zone event=done zone_id=%s analysis_id=%s model_used=%s %s",
                payload.zone_id,
                result["analysis_id"],
                result["model_used"],
                " ".join(f"{key}={value}" for key, value in report.summary().items()),
            )
        return result

    def trigger_analysis(self, garden_id: str) -> str | None:
        """Enqueue a per-garden job on demand ("run now")."""
        job_id = self.queue.send(GARDEN_JOB, AnalyzeGardenPayload(garden_id=garden_id).model_dump())
        logger.info("trigger_analysis event=enqueued garden_id=%s job_id=%s", garden_id, job_id)
        return job_id

    def get_analysis_status(self, garden_id: str) -> AnalysisStatus:
        pending = self.queue.count_in_flight(STATUS_JOB_NAMES, garden_id=garden_id)
        return AnalysisStatus(running=pending > 0, pending_jobs=pending)

    def recent_results(
        self, garden_id: str, *, limit: int = DEFAULT_RESULTS_LIMIT
    ) -> list[AnalysisRecord]:
        return self.store.list_analysis_records(garden_id, limit=limit)

    def preview_context(self, garden_id: str, zone_id: str) -> AnalysisContext:
        """Context the model would see for the zone right now.

        Uses cached weather and never downloads photo bytes.
        """
        garden = self.store.get_garden(garden_id)
        if garden is None:
            raise LookupError(f"Garden {garden_id} not found")
        now = self.clock()
        weather = get_cached_weather(
            self.store, garden_id, max_age_s=self.settings.weather_cache_max_age_s, now=now
        )
        return self.context_builder.build(
            garden_id=garden_id,
            zone_id=zone_id,
            user_id=garden.user_id,
            now=now,
            weather=weather,
            load_photo_data=False,
        )
