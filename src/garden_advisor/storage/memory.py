"""In-memory storage backend for tests and local runs."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from garden_advisor.ai.models import ProviderName
from garden_advisor.storage.models import (
    AnalysisRecord,
    AnalysisScope,
    CareLog,
    EncryptedCredential,
    Garden,
    Plant,
    SensorReading,
    TaskRecord,
    WeatherCacheRecord,
    Zone,
)


class InMemoryGardenStore:
    """Dict-backed store; a single lock makes the guarded task update atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._gardens: dict[str, Garden] = {}
        self._zones: dict[str, Zone] = {}
        self._plants: dict[str, Plant] = {}
        self._care_logs: list[CareLog] = []
        self._sensor_readings: list[SensorReading] = []
        self._user_settings: dict[str, dict[str, Any]] = {}
        self._credentials: dict[tuple[str, str], EncryptedCredential] = {}
        self._tasks: dict[str, TaskRecord] = {}
        self._analysis_records: list[AnalysisRecord] = []
        self._weather: list[WeatherCacheRecord] = []

    def migrate(self) -> None:
        return None

    # Seeding helpers; CRUD for these entities lives outside the pipeline.

    def add_garden(self, garden: Garden) -> Garden:
        self._gardens[garden.id] = garden
        return garden

    def add_zone(self, zone: Zone) -> Zone:
        self._zones[zone.id] = zone
        return zone

    def add_plant(self, plant: Plant) -> Plant:
        self._plants[plant.id] = plant
        return plant

    def add_care_log(self, care_log: CareLog) -> CareLog:
        self._care_logs.append(care_log)
        return care_log

    def add_sensor_reading(self, reading: SensorReading) -> SensorReading:
        self._sensor_readings.append(reading)
        return reading

    def set_user_settings(self, user_id: str, settings: dict[str, Any]) -> None:
        self._user_settings[user_id] = dict(settings)

    def set_encrypted_credential(self, credential: EncryptedCredential) -> None:
        self._credentials[(credential.user_id, credential.provider)] = credential

    # GardenStore

    def list_gardens(self) -> list[Garden]:
        return list(self._gardens.values())

    def get_garden(self, garden_id: str) -> Garden | None:
        return self._gardens.get(garden_id)

    def list_zones(self, garden_id: str) -> list[Zone]:
        return [zone for zone in self._zones.values() if zone.garden_id == garden_id]

    def get_zone(self, zone_id: str) -> Zone | None:
        return self._zones.get(zone_id)

    def list_plants(self, zone_id: str) -> list[Plant]:
        return [plant for plant in self._plants.values() if plant.zone_id == zone_id]

    def list_care_logs(
        self,
        target_ids: Sequence[str],
        *,
        since: datetime,
        photos_only: bool = False,
        limit: int | None = None,
    ) -> list[CareLog]:
        wanted = set(target_ids)
        matches = [
            log
            for log in self._care_logs
            if log.target_id in wanted
            and log.logged_at >= since
            and (not photos_only or log.photo_url)
        ]
        matches.sort(key=lambda log: log.logged_at, reverse=True)
        return matches[:limit] if limit is not None else matches

    def list_sensor_readings(self, zone_id: str, *, since: datetime) -> list[SensorReading]:
        matches = [
            reading
            for reading in self._sensor_readings
            if reading.zone_id == zone_id and reading.recorded_at >= since
        ]
        matches.sort(key=lambda reading: reading.recorded_at, reverse=True)
        return matches

    def get_user_settings(self, user_id: str) -> dict[str, Any]:
        return dict(self._user_settings.get(user_id, {}))

    def get_encrypted_credential(
        self, user_id: str, provider: ProviderName
    ) -> EncryptedCredential | None:
        return self._credentials.get((user_id, provider))

    def list_zone_tasks(self, zone_id: str, *, resolved_since: datetime) -> list[TaskRecord]:
        with self._lock:
            tasks = [
                task
                for task in self._tasks.values()
                if task.zone_id == zone_id
                and (
                    task.status == "pending"
                    or (task.completed_at is not None and task.completed_at >= resolved_since)
                )
            ]
        tasks.sort(key=lambda task: (task.suggested_date, task.created_at))
        return tasks

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            return self._tasks.get(task_id)

    def insert_task(self, task: TaskRecord) -> bool:
        with self._lock:
            if task.id in self._tasks:
                return False
            self._tasks[task.id] = task
            return True

    def update_pending_task(
        self, task_id: str, *, zone_id: str, changes: dict[str, Any]
    ) -> TaskRecord | None:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None or current.zone_id != zone_id or current.status != "pending":
                return None
            updated = current.model_copy(update=changes)
            self._tasks[task_id] = updated
            return updated

    def create_analysis_record(
        self,
        *,
        garden_id: str,
        scope: AnalysisScope,
        target_id: str | None,
        result: dict[str, Any],
        model_used: ProviderName | None,
        tokens_used: dict[str, int],
    ) -> AnalysisRecord:
        record = AnalysisRecord(
            id=str(uuid4()),
            garden_id=garden_id,
            scope=scope,
            target_id=target_id,
            result=result,
            model_used=model_used,
            tokens_used=dict(tokens_used),
            generated_at=datetime.now(UTC),
        )
        with self._lock:
            self._analysis_records.append(record)
        return record

    def list_analysis_records(self, garden_id: str, *, limit: int) -> list[AnalysisRecord]:
        with self._lock:
            matches = [record for record in self._analysis_records if record.garden_id == garden_id]
        matches.sort(key=lambda record: record.generated_at, reverse=True)
        return matches[:limit]

    def save_weather(
        self, garden_id: str, forecast: dict[str, Any], *, fetched_at: datetime
    ) -> WeatherCacheRecord:
        record = WeatherCacheRecord(garden_id=garden_id, forecast=forecast, fetched_at=fetched_at)
        with self._lock:
            self._weather.append(record)
        return record

    def get_latest_weather(self, garden_id: str) -> WeatherCacheRecord | None:
        with self._lock:
            matches = [record for record in self._weather if record.garden_id == garden_id]
        if not matches:
            return None
        return max(matches, key=lambda record: record.fetched_at)
