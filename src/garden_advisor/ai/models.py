"""Value objects passed into and out of provider adapters."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ProviderName = Literal["claude", "kimi"]
ImageMediaType = Literal["image/jpeg", "image/png", "image/gif", "image/webp"]


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class TokenUsage(FrozenModel):
    input: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.input + self.output


class GeoPoint(FrozenModel):
    lat: float
    lng: float


class GardenSummary(FrozenModel):
    id: str
    name: str
    hardiness_zone: str | None = None
    location: GeoPoint | None = None


class PlantSummary(FrozenModel):
    id: str
    name: str
    variety: str | None = None
    date_planted: str | None = None
    growth_stage: str | None = None
    care_profile: dict[str, Any] | None = None


class CareLogSummary(FrozenModel):
    action_type: str
    target_id: str
    logged_at: str
    notes: str | None = None


class SensorReadingSummary(FrozenModel):
    sensor_type: str
    value: float
    unit: str
    recorded_at: str


class ExistingTaskSummary(FrozenModel):
    id: str
    target_type: str
    target_id: str
    action_type: str
    priority: str
    status: str
    label: str
    suggested_date: str
    context: str | None = None
    recurrence: str | None = None
    photo_requested: bool = False
    completed_at: str | None = None
    completed_via: str | None = None


class ZoneSummary(FrozenModel):
    id: str
    name: str
    soil_type: str | None = None
    sun_exposure: str | None = None
    plants: tuple[PlantSummary, ...] = ()
    recent_care_logs: tuple[CareLogSummary, ...] = ()
    sensor_readings: tuple[SensorReadingSummary, ...] = ()


class WeatherSnapshot(FrozenModel):
    current: dict[str, Any]
    forecast: tuple[dict[str, Any], ...] = ()


class PhotoAttachment(FrozenModel):
    data_url: str
    description: str


class AnalysisContext(FrozenModel):
    """Per-call snapshot of everything the model sees for one zone."""

    garden: GardenSummary
    zone: ZoneSummary
    existing_tasks: tuple[ExistingTaskSummary, ...] = ()
    weather: WeatherSnapshot | None = None
    photos: tuple[PhotoAttachment, ...] = ()
    current_date: str
    user_skill_level: str | None = None


class ChatMessage(FrozenModel):
    role: Literal["user", "assistant"]
    content: str


class ImageAttachment(FrozenModel):
    data_base64: str
    media_type: ImageMediaType = "image/jpeg"


class ChatResult(FrozenModel):
    content: str
    usage: TokenUsage


class ChatChunk(FrozenModel):
    """One streamed piece of a chat reply; the last chunk carries usage."""

    text: str = ""
    done: bool = False
    usage: TokenUsage | None = None
