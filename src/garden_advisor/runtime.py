"""Wiring of concrete backends from settings."""

from __future__ import annotations

from garden_advisor.ai.claude import ClaudeProvider
from garden_advisor.ai.kimi import KimiProvider
from garden_advisor.ai.models import ProviderName
from garden_advisor.ai.provider import AIProvider
from garden_advisor.config.settings import Settings
from garden_advisor.integrations.photos import PhotoLoader, PublicBucketPhotoStore
from garden_advisor.integrations.weather import OpenMeteoClient
from garden_advisor.jobs.pipeline import AnalysisPipeline
from garden_advisor.jobs.postgres_queue import PostgresJobQueue
from garden_advisor.storage.credentials import AesGcmUnwrapper
from garden_advisor.storage.postgres import PostgresGardenStore


def build_providers(settings: Settings) -> dict[ProviderName, AIProvider]:
    return {
        "claude": ClaudeProvider(
            model=settings.claude_model,
            base_url=settings.claude_base_url,
            analysis_max_tokens=settings.claude_max_tokens,
            chat_max_tokens=settings.claude_chat_max_tokens,
            timeout_s=settings.llm_timeout_s,
        ),
        "kimi": KimiProvider(
            model=settings.kimi_model,
            base_url=settings.kimi_base_url,
            timeout_s=settings.llm_timeout_s,
        ),
    }


def build_pipeline(settings: Settings) -> AnalysisPipeline:
    """Build a Postgres-backed pipeline. The caller connects and closes the queue."""
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set GARDEN_ADVISOR_DATABASE_URL or DATABASE_URL."
        )
    encryption_key = settings.resolved_encryption_key()
    if not encryption_key:
        raise RuntimeError("Missing encryption key. Set GARDEN_ADVISOR_ENCRYPTION_KEY or ENCRYPTION_KEY.")

    store = PostgresGardenStore(database_url)
    photo_store = (
        PublicBucketPhotoStore(settings.photo_public_base_url)
        if settings.photo_public_base_url
        else None
    )
    return AnalysisPipeline(
        store=store,
        queue=PostgresJobQueue(database_url),
        providers=build_providers(settings),
        unwrapper=AesGcmUnwrapper(encryption_key),
        weather_source=OpenMeteoClient(
            base_url=settings.weather_base_url, timeout_s=settings.weather_timeout_s
        ),
        photo_loader=PhotoLoader(photo_store, timeout_s=settings.photo_timeout_s),
        settings=settings,
    )
