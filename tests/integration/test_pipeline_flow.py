from __future__ import annotations

import pytest
from conftest import add_credential, make_task

from garden_advisor.ai.errors import ProviderEmptyResponse
from garden_advisor.jobs.queue import GARDEN_JOB, TRIGGER_JOB, ZONE_JOB
from garden_advisor.jobs.reconcile import derive_task_id
from garden_advisor.jobs.scheduler import enqueue_daily_trigger
from garden_advisor.jobs.worker import WorkerPool
from garden_advisor.storage.models import Garden, Zone

CREATE_WATERING = {
    "operations": [
        {
            "op": "create",
            "targetType": "plant",
            "targetId": "plant-1",
            "actionType": "water",
            "priority": "today",
            "label": "Water the tomato",
            "suggestedDate": "2025-06-10",
        },
        {"op": "complete", "taskId": "task-old", "reason": "Care log shows it was watered"},
    ],
    "alerts": ["Heat wave this week"],
}


@pytest.fixture
def workers(pipeline, queue) -> WorkerPool:
    pool = WorkerPool(queue)
    pipeline.register(pool)
    return pool


def test_daily_trigger_fans_out_to_every_zone(workers, pipeline, store, queue, claude, clock, weather_source) -> None:
    add_credential(store, "user-1", "claude", "sk-ant-live")
    store.insert_task(make_task("task-old"))
    claude.responses = [CREATE_WATERING]

    enqueue_daily_trigger(queue, clock=clock)
    workers.drain()

    assert [job.state for job in queue.jobs(TRIGGER_JOB)] == ["completed"]
    assert [job.state for job in queue.jobs(GARDEN_JOB)] == ["completed"]
    zone_jobs = queue.jobs(ZONE_JOB)
    assert sorted(job.data["zone_id"] for job in zone_jobs) == ["zone-1", "zone-2"]
    assert all(job.state == "completed" for job in zone_jobs)
    assert all(job.data["weather"]["current"]["temperature"] == 24.5 for job in zone_jobs)
    assert weather_source.calls == [(45.5, -122.6)]
    assert store.get_latest_weather("garden-1") is not None

    assert [credential for _context, credential in claude.calls] == ["sk-ant-live", "sk-ant-live"]
    records = pipeline.recent_results("garden-1")
    assert len(records) == 2
    assert {record.model_used for record in records} == {"claude"}
    assert all(record.tokens_used == {"input": 120, "output": 45} for record in records)

    zone_one = next(record for record in records if record.target_id == "zone-1")
    assert zone_one.result["alerts"] == ["Heat wave this week"]
    created = store.get_task(derive_task_id(zone_one.id, 0))
    assert created.label == "Water the tomato"
    assert created.source_analysis_id == zone_one.id
    assert store.get_task("task-old").status == "completed"


def test_fallback_provider_is_recorded_on_audit_row(workers, pipeline, store, claude, kimi) -> None:
    add_credential(store, "user-1", "kimi", "sk-moon")

    pipeline.trigger_analysis("garden-1")
    workers.drain()

    assert claude.calls == []
    assert len(kimi.calls) == 2
    assert {record.model_used for record in pipeline.recent_results("garden-1")} == {"kimi"}


def test_zone_without_credentials_is_skipped_without_audit(workers, pipeline, queue, claude, kimi) -> None:
    pipeline.trigger_analysis("garden-1")
    workers.drain()

    assert claude.calls == [] and kimi.calls == []
    assert pipeline.recent_results("garden-1") == []
    assert all(job.state == "completed" for job in queue.jobs(ZONE_JOB))


def test_provider_failure_retries_then_fails_only_that_zone(
    workers, pipeline, store, queue, claude, clock, settings
) -> None:
    add_credential(store, "user-1", "claude", "sk-ant")
    empty = ProviderEmptyResponse("claude returned no text content", provider="claude")
    # First zone job fails on every attempt; the second zone succeeds.
    claude.responses = [empty, {"operations": []}]

    pipeline.trigger_analysis("garden-1")
    workers.drain()

    failing = next(job for job in queue.jobs(ZONE_JOB) if job.state != "completed")
    assert failing.state == "retry"
    assert failing.retry_count == 1
    assert len(pipeline.recent_results("garden-1")) == 1

    for _ in range(settings.zone_job_retry_limit):
        claude.responses = [empty]
        clock.advance(settings.zone_job_retry_delay_s)
        workers.drain()

    failed = queue.get_job(failing.id)
    assert failed.state == "failed"
    assert failed.retry_count == settings.zone_job_retry_limit
    assert "ProviderEmptyResponse" in failed.output["error"]
    assert len(pipeline.recent_results("garden-1")) == 1


def test_weather_outage_still_analyzes_zones(workers, pipeline, store, queue, weather_source, claude) -> None:
    weather_source.fail = True
    add_credential(store, "user-1", "claude", "sk-ant")

    pipeline.trigger_analysis("garden-1")
    workers.drain()

    assert all(job.data["weather"] is None for job in queue.jobs(ZONE_JOB))
    assert all(context.weather is None for context, _credential in claude.calls)
    assert len(pipeline.recent_results("garden-1")) == 2


def test_status_reports_in_flight_jobs(pipeline, workers) -> None:
    pipeline.trigger_analysis("garden-1")
    assert pipeline.get_analysis_status("garden-1").pending_jobs == 1

    workers.run_once(GARDEN_JOB)
    status = pipeline.get_analysis_status("garden-1")
    assert status.running is True
    assert status.pending_jobs == 2

    workers.drain()
    assert pipeline.get_analysis_status("garden-1").running is False


def test_unknown_garden_job_is_completed_without_work(workers, pipeline, queue, weather_source) -> None:
    pipeline.trigger_analysis("garden-404")
    workers.drain()

    assert [job.state for job in queue.jobs(GARDEN_JOB)] == ["completed"]
    assert queue.jobs(ZONE_JOB) == []
    assert weather_source.calls == []


def test_weather_cache_write_failure_still_fans_out_with_weather(
    workers, pipeline, store, queue, weather_source, monkeypatch
) -> None:
    def _cache_down(garden_id, data, *, fetched_at):
        raise RuntimeError("weather_cache table is locked")

    monkeypatch.setattr(store, "save_weather", _cache_down)

    pipeline.trigger_analysis("garden-1")
    workers.run_once(GARDEN_JOB)

    assert [job.state for job in queue.jobs(GARDEN_JOB)] == ["completed"]
    zone_jobs = queue.jobs(ZONE_JOB)
    assert sorted(job.data["zone_id"] for job in zone_jobs) == ["zone-1", "zone-2"]
    assert all(job.data["weather"]["current"]["temperature"] == 24.5 for job in zone_jobs)
    assert store.get_latest_weather("garden-1") is None


def test_one_failing_garden_does_not_fail_another(workers, pipeline, store, queue, monkeypatch) -> None:
    store.add_garden(Garden(id="garden-2", user_id="user-1", name="Allotment"))
    store.add_zone(Zone(id="zone-9", garden_id="garden-2", name="Bean row"))
    original = store.list_zones

    def _list_zones(garden_id):
        if garden_id == "garden-1":
            raise RuntimeError("zones query timed out")
        return original(garden_id)

    monkeypatch.setattr(store, "list_zones", _list_zones)

    first = pipeline.trigger_analysis("garden-1")
    second = pipeline.trigger_analysis("garden-2")
    workers.run_once(GARDEN_JOB)
    workers.run_once(GARDEN_JOB)

    assert queue.get_job(first).state == "failed"
    assert "zones query timed out" in queue.get_job(first).output["error"]
    assert queue.get_job(second).state == "completed"
    assert [job.data["zone_id"] for job in queue.jobs(ZONE_JOB)] == ["zone-9"]
