"""Storage interface for garden state, tasks and analysis audit rows."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

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


class GardenStore(Protocol):
    def migrate(self) -> None: ...

    def list_gardens(self) -> list[Garden]: ...

    def get_garden(self, garden_id: str) -> Garden | None: ...

    def list_zones(self, garden_id: str) -> list[Zone]: ...

    def get_zone(self, zone_id: str) -> Zone | None: ...

    def list_plants(self, zone_id: str) -> list[Plant]: ...

    def list_care_logs(
        self,
        target_ids: Sequence[str],
        *,
        since: datetime,
        photos_only: bool = False,
        limit: int | None = None,
    ) -> list[CareLog]:
        """Return care logs for the targets, newest first."""
        ...

    def list_sensor_readings(self, zone_id: str, *, since: datetime) -> list[SensorReading]: ...

    def get_user_settings(self, user_id: str) -> dict[str, Any]: ...

    def get_encrypted_credential(
        self, user_id: str, provider: ProviderName
    ) -> EncryptedCredential | None: ...

    def list_zone_tasks(self, zone_id: str, *, resolved_since: datetime) -> list[TaskRecord]:
        """Pending tasks plus tasks completed or cancelled at or after ``resolved_since``."""
        ...

    def get_task(self, task_id: str) -> TaskRecord | None: ...

    def insert_task(self, task: TaskRecord) -> bool:
        """Insert ``task``; return False without writing when its id already exists."""
        ...

    def update_pending_task(
        self, task_id: str, *, zone_id: str, changes: dict[str, Any]
    ) -> TaskRecord | None:
        """Apply ``changes`` only if the task belongs to ``zone_id`` and is still pending.

        The ownership and status check happen in the same write, so a task a
        user resolves concurrently is left untouched and None is returned.
        """
        ...

    def create_analysis_record(
        self,
        *,
        garden_id: str,
        scope: AnalysisScope,
        target_id: str | None,
        result: dict[str, Any],
        model_used: ProviderName | None,
        tokens_used: dict[str, int],
    ) -> AnalysisRecord: ...

    def list_analysis_records(self, garden_id: str, *, limit: int) -> list[AnalysisRecord]: ...

    def save_weather(
        self, garden_id: str, forecast: dict[str, Any], *, fetched_at: datetime
    ) -> WeatherCacheRecord: ...

    def get_latest_weather(self, garden_id: str) -> WeatherCacheRecord | None: ...
