from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from garden_advisor.ai.models import (
    AnalysisContext,
    ChatChunk,
    ChatMessage,
    ChatResult,
    ImageAttachment,
    TokenUsage,
)
from garden_advisor.ai.schemas import AnalysisResult, validate_analysis_payload
from garden_advisor.config.settings import Settings
from garden_advisor.integrations.photos import PhotoLoader
from garden_advisor.integrations.weather import WeatherData, WeatherFetchFailed
from garden_advisor.jobs.pipeline import AnalysisPipeline
from garden_advisor.jobs.queue import InMemoryJobQueue
from garden_advisor.storage.credentials import AesGcmUnwrapper
from garden_advisor.storage.memory import InMemoryGardenStore
from garden_advisor.storage.models import EncryptedCredential, Garden, Plant, TaskRecord, Zone

NOW = datetime(2025, 6, 10, 6, 0, tzinfo=UTC)
ENCRYPTION_SECRET = "local-test-secret"


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeProvider:
    """Provider double that replays queued results or raises queued errors."""

    def __init__(self, name: str, responses: Sequence[Any] = ()) -> None:
        self.name = name
        self.model = f"{name}-test"
        self.responses = list(responses)
        self.calls: list[tuple[AnalysisContext, str]] = []

    def analyze(self, context: AnalysisContext, credential: str) -> tuple[AnalysisResult, TokenUsage]:
        self.calls.append((context, credential))
        response = self.responses.pop(0) if self.responses else {"operations": []}
        if isinstance(response, Exception):
            raise response
        return validate_analysis_payload(response, provider=self.name), TokenUsage(input=120, output=45)

    def chat(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> ChatResult:
        return ChatResult(content="ok", usage=TokenUsage())

    def chat_stream(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        credential: str,
        *,
        image: ImageAttachment | None = None,
    ) -> Iterator[ChatChunk]:
        yield ChatChunk(done=True, usage=TokenUsage())


class FakeWeatherSource:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[float, float]] = []

    def fetch(self, lat: float, lng: float) -> WeatherData:
        self.calls.append((lat, lng))
        if self.fail:
            raise WeatherFetchFailed("Weather API error: 503")
        return WeatherData(
            current={"temperature": 24.5, "humidity": 40},
            daily=[{"date": "2025-06-10", "temp_max": 31.0, "temp_min": 17.0}],
        )


def make_task(
    task_id: str,
    *,
    zone_id: str = "zone-1",
    garden_id: str = "garden-1",
    status: str = "pending",
    context: str | None = "original context",
    completed_at: datetime | None = None,
) -> TaskRecord:
    return TaskRecord(
        id=task_id,
        garden_id=garden_id,
        zone_id=zone_id,
        target_type="plant",
        target_id="plant-1",
        action_type="water",
        priority="upcoming",
        status=status,
        label="Water tomatoes",
        suggested_date="2025-06-12",
        context=context,
        completed_at=completed_at,
        completed_via="user" if status != "pending" else None,
        created_at=NOW - timedelta(days=2),
        updated_at=NOW - timedelta(days=2),
    )


def add_credential(
    store: InMemoryGardenStore, user_id: str, provider: str, api_key: str
) -> None:
    encrypted_key, iv, auth_tag = AesGcmUnwrapper(ENCRYPTION_SECRET).wrap(api_key)
    store.set_encrypted_credential(
        EncryptedCredential(
            user_id=user_id,
            provider=provider,
            encrypted_key=encrypted_key,
            iv=iv,
            auth_tag=auth_tag,
        )
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(encryption_key=ENCRYPTION_SECRET, zone_job_retry_delay_s=10)


@pytest.fixture
def store() -> InMemoryGardenStore:
    garden_store = InMemoryGardenStore()
    garden_store.add_garden(
        Garden(
            id="garden-1",
            user_id="user-1",
            name="Backyard",
            location_lat=45.5,
            location_lng=-122.6,
            hardiness_zone="8b",
        )
    )
    garden_store.add_zone(Zone(id="zone-1", garden_id="garden-1", name="Raised bed", soil_type="loam"))
    garden_store.add_zone(Zone(id="zone-2", garden_id="garden-1", name="Herb pots"))
    garden_store.add_plant(
        Plant(id="plant-1", zone_id="zone-1", name="Tomato", variety="Sungold", growth_stage="flowering")
    )
    garden_store.set_user_settings("user-1", {"skill_level": "beginner"})
    return garden_store


@pytest.fixture
def queue(clock: FixedClock) -> InMemoryJobQueue:
    job_queue = InMemoryJobQueue(clock=clock)
    job_queue.connect()
    return job_queue


@pytest.fixture
def claude() -> FakeProvider:
    return FakeProvider("claude")


@pytest.fixture
def kimi() -> FakeProvider:
    return FakeProvider("kimi")


@pytest.fixture
def weather_source() -> FakeWeatherSource:
    return FakeWeatherSource()


@pytest.fixture
def pipeline(
    store: InMemoryGardenStore,
    queue: InMemoryJobQueue,
    claude: FakeProvider,
    kimi: FakeProvider,
    weather_source: FakeWeatherSource,
    settings: Settings,
    clock: FixedClock,
) -> AnalysisPipeline:
    return AnalysisPipeline(
        store=store,
        queue=queue,
        providers={"claude": claude, "kimi": kimi},
        unwrapper=AesGcmUnwrapper(ENCRYPTION_SECRET),
        weather_source=weather_source,
        photo_loader=PhotoLoader(),
        settings=settings,
        clock=clock,
    )
