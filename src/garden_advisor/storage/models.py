"""Storage models shared by the pipeline, the API and persistence backends."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from garden_advisor.ai.models import ProviderName
from garden_advisor.ai.schemas import ActionType, Priority, TargetType

TaskStatus = Literal["pending", "completed", "cancelled"]
CompletedVia = Literal["ai", "user", "user_dismissed"]
AnalysisScope = Literal["zone", "plant", "garden"]


class Garden(BaseModel):
    id: str
    user_id: str
    name: str
    location_lat: float | None = None
    location_lng: float | None = None
    hardiness_zone: str | None = None

    @property
    def has_location(self) -> bool:
        return self.location_lat is not None and self.location_lng is not None


class Zone(BaseModel):
    id: str
    garden_id: str
    name: str
    soil_type: str | None = None
    sun_exposure: str | None = None
    notes: str | None = None


class Plant(BaseModel):
    id: str
    zone_id: str
    name: str
    variety: str | None = None
    date_planted: datetime | None = None
    growth_stage: str | None = None
    care_profile: dict[str, Any] | None = None


class CareLog(BaseModel):
    id: str
    target_type: TargetType
    target_id: str
    action_type: ActionType
    notes: str | None = None
    photo_url: str | None = None
    logged_at: datetime


class SensorReading(BaseModel):
    id: str
    zone_id: str
    sensor_type: str
    value: float
    unit: str
    recorded_at: datetime


class EncryptedCredential(BaseModel):
    """Per-user provider API key, stored wrapped with AES-256-GCM."""

    user_id: str
    provider: ProviderName
    encrypted_key: str
    iv: str
    auth_tag: str


class TaskRecord(BaseModel):
    """Persisted care task."""

    id: str
    garden_id: str
    zone_id: str
    target_type: TargetType
    target_id: str
    action_type: ActionType
    priority: Priority
    status: TaskStatus = "pending"
    label: str
    suggested_date: str
    context: str | None = None
    recurrence: str | None = None
    photo_requested: bool = False
    completed_at: datetime | None = None
    completed_via: CompletedVia | None = None
    source_analysis_id: str | None = None
    created_at: datetime
    updated_at: datetime


class AnalysisRecord(BaseModel):
    """Immutable audit row for one AI analysis call."""

    id: str
    garden_id: str
    scope: AnalysisScope
    target_id: str | None = None
    result: dict[str, Any]
    model_used: ProviderName | None = None
    tokens_used: dict[str, int] = Field(default_factory=dict)
    generated_at: datetime


class WeatherCacheRecord(BaseModel):
    garden_id: str
    forecast: dict[str, Any]
    fetched_at: datetime
