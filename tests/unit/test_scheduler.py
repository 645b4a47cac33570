from datetime import timedelta

from garden_advisor.jobs.queue import TRIGGER_JOB
from garden_advisor.jobs.scheduler import (
    AnalysisScheduler,
    enqueue_daily_trigger,
    trigger_singleton_key,
)


def test_trigger_is_enqueued_once_per_day(queue, clock) -> None:
    first = enqueue_daily_trigger(queue, clock=clock)
    clock.advance(60)
    duplicate = enqueue_daily_trigger(queue, clock=clock)
    clock.advance(timedelta(days=1).total_seconds())
    next_day = enqueue_daily_trigger(queue, clock=clock)

    assert first is not None
    assert duplicate is None
    assert next_day is not None
    assert [job.data["slot"] for job in queue.jobs(TRIGGER_JOB)] == ["2025-06-10", "2025-06-11"]


def test_singleton_key_names_the_calendar_day(clock) -> None:
    assert trigger_singleton_key(clock()) == "daily-analysis-trigger:2025-06-10"


def test_scheduler_uses_daily_cron(queue) -> None:
    scheduler = AnalysisScheduler(queue, hour=6, minute=0, timezone="UTC")

    fields = {field.name: str(field) for field in scheduler.trigger.fields}

    assert fields["hour"] == "6"
    assert fields["minute"] == "0"
    assert fields["day"] == "*"
