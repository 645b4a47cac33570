"""Assembles the per-zone AnalysisContext from stored garden state."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from garden_advisor.ai.models import (
    AnalysisContext,
    CareLogSummary,
    ExistingTaskSummary,
    GardenSummary,
    GeoPoint,
    PhotoAttachment,
    PlantSummary,
    SensorReadingSummary,
    WeatherSnapshot,
    ZoneSummary,
)
from garden_advisor.config.settings import Settings
from garden_advisor.integrations.photos import PhotoGatherFailed, PhotoLoader
from garden_advisor.integrations.weather import WeatherData
from garden_advisor.storage.base import GardenStore
from garden_advisor.storage.models import CareLog, Plant, TaskRecord

logger = logging.getLogger(__name__)

# Upper bound on rows scanned when picking photos.
PHOTO_SCAN_LIMIT = 100
PHOTO_PLACEHOLDER = "(base64 image data omitted)"


class ContextBuilder:
    def __init__(
        self,
        store: GardenStore,
        photo_loader: PhotoLoader,
        settings: Settings,
    ) -> None:
        self.store = store
        self.photo_loader = photo_loader
        self.settings = settings

    def build(
        self,
        *,
        garden_id: str,
        zone_id: str,
        user_id: str | None,
        now: datetime,
        weather: WeatherData | None = None,
        load_photo_data: bool = True,
    ) -> AnalysisContext:
        """Build the context for one zone.

        Missing garden or zone rows raise LookupError so the job fails and the
        queue decides whether to retry. Photo problems only drop the photos.
        With ``load_photo_data=False`` photos are selected as usual but never
        downloaded; each carries PHOTO_PLACEHOLDER instead of a data URL.
        """
        garden = self.store.get_garden(garden_id)
        if garden is None:
            raise LookupError(f"Garden {garden_id} not found")
        zone = self.store.get_zone(zone_id)
        if zone is None or zone.garden_id != garden_id:
            raise LookupError(f"Zone {zone_id} not found in garden {garden_id}")

        plants = self.store.list_plants(zone_id)
        target_ids = [zone_id, *(plant.id for plant in plants)]
        care_logs = self.store.list_care_logs(
            target_ids, since=now - timedelta(days=self.settings.care_log_window_days)
        )
        readings = self.store.list_sensor_readings(
            zone_id, since=now - timedelta(hours=self.settings.sensor_window_hours)
        )
        tasks = self.store.list_zone_tasks(
            zone_id, resolved_since=now - timedelta(days=self.settings.task_history_days)
        )

        photos: tuple[PhotoAttachment, ...] = ()
        try:
            photos = tuple(
                self.gather_photos(zone_id, plants, now=now, load_data=load_photo_data)
            )
        except PhotoGatherFailed:
            logger.warning(
                "context_builder event=photos_skipped zone_id=%s", zone_id, exc_info=True
            )

        skill_level = None
        if user_id:
            skill_level = self.store.get_user_settings(user_id).get("skill_level")

        location = None
        if garden.has_location:
            location = GeoPoint(lat=garden.location_lat, lng=garden.location_lng)

        return AnalysisContext(
            garden=GardenSummary(
                id=garden.id,
                name=garden.name,
                hardiness_zone=garden.hardiness_zone,
                location=location,
            ),
            zone=ZoneSummary(
                id=zone.id,
                name=zone.name,
                soil_type=zone.soil_type,
                sun_exposure=zone.sun_exposure,
                plants=tuple(_plant_summary(plant) for plant in plants),
                recent_care_logs=tuple(
                    CareLogSummary(
                        action_type=log.action_type,
                        target_id=log.target_id,
                        logged_at=log.logged_at.isoformat(),
                        notes=log.notes,
                    )
                    for log in care_logs
                ),
                sensor_readings=tuple(
                    SensorReadingSummary(
                        sensor_type=reading.sensor_type,
                        value=reading.value,
                        unit=reading.unit,
                        recorded_at=reading.recorded_at.isoformat(),
                    )
                    for reading in readings
                ),
            ),
            existing_tasks=tuple(_task_summary(task) for task in tasks),
            weather=(
                WeatherSnapshot(current=weather.current, forecast=tuple(weather.daily))
                if weather is not None
                else None
            ),
            photos=photos,
            current_date=now.date().isoformat(),
            user_skill_level=skill_level,
        )

    def gather_photos(
        self,
        zone_id: str,
        plants: Sequence[Plant],
        *,
        now: datetime,
        load_data: bool = True,
    ) -> list[PhotoAttachment]:
        """Pick recent care-log photos for the zone and its plants.

        The newest ``photo_top_n`` photos of the last ``photo_window_days`` are
        taken, then every photo of the last ``photo_recent_hours`` not already
        chosen. A photo that cannot be loaded is skipped.
        """
        target_ids = [zone_id, *(plant.id for plant in plants)]
        try:
            logs = self.store.list_care_logs(
                target_ids,
                since=now - timedelta(days=self.settings.photo_window_days),
                photos_only=True,
                limit=PHOTO_SCAN_LIMIT,
            )
        except Exception as exc:  # noqa: BLE001
            raise PhotoGatherFailed(f"photo query failed for zone {zone_id}") from exc

        selected = _select_photo_logs(
            logs,
            top_n=self.settings.photo_top_n,
            recent_since=now - timedelta(hours=self.settings.photo_recent_hours),
        )
        plant_names = {plant.id: plant.name for plant in plants}
        attachments: list[PhotoAttachment] = []
        for log in selected:
            if not load_data:
                attachments.append(
                    PhotoAttachment(
                        data_url=PHOTO_PLACEHOLDER, description=describe_photo(log, plant_names)
                    )
                )
                continue
            try:
                data_url = self.photo_loader.load(log.photo_url or "")
            except Exception:  # noqa: BLE001
                logger.warning(
                    "context_builder event=photo_failed care_log_id=%s", log.id, exc_info=True
                )
                continue
            attachments.append(
                PhotoAttachment(data_url=data_url, description=describe_photo(log, plant_names))
            )
        return attachments


def describe_photo(log: CareLog, plant_names: dict[str, str]) -> str:
    if log.target_type == "plant":
        target_name = plant_names.get(log.target_id, "unknown plant")
    else:
        target_name = "zone"
    description = (
        f"Care log photo: {log.action_type} action on {log.target_type} '{target_name}' "
        f"({log.logged_at.date().isoformat()})"
    )
    if log.notes:
        description += f" - '{log.notes}'"
    return description


def _select_photo_logs(
    logs: Sequence[CareLog], *, top_n: int, recent_since: datetime
) -> list[CareLog]:
    with_photos = [log for log in logs if log.photo_url]
    top = with_photos[:top_n]
    chosen = {log.id for log in top}
    recent = [log for log in with_photos if log.logged_at >= recent_since and log.id not in chosen]
    return [*top, *recent]


def _plant_summary(plant: Plant) -> PlantSummary:
    return PlantSummary(
        id=plant.id,
        name=plant.name,
        variety=plant.variety,
        date_planted=plant.date_planted.date().isoformat() if plant.date_planted else None,
        growth_stage=plant.growth_stage,
        care_profile=plant.care_profile,
    )


def _task_summary(task: TaskRecord) -> ExistingTaskSummary:
    return ExistingTaskSummary(
        id=task.id,
        target_type=task.target_type,
        target_id=task.target_id,
        action_type=task.action_type,
        priority=task.priority,
        status=task.status,
        label=task.label,
        suggested_date=task.suggested_date,
        context=task.context,
        recurrence=task.recurrence,
        photo_requested=task.photo_requested,
        completed_at=task.completed_at.isoformat() if task.completed_at else None,
        completed_via=task.completed_via,
    )
