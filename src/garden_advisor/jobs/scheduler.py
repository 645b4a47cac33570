"""Daily cron that enqueues the analysis trigger job."""

from __future__ import annotations

import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from garden_advisor.jobs.queue import TRIGGER_JOB, Clock, JobQueue, SendOptions, utc_now

logger = logging.getLogger(__name__)


def trigger_singleton_key(slot: datetime) -> str:
    return f"{TRIGGER_JOB}:{slot.strftime('%Y-%m-%d')}"


def enqueue_daily_trigger(queue: JobQueue, *, clock: Clock = utc_now) -> str | None:
    """Enqueue at most one trigger job per calendar day across all schedulers."""
    slot = clock()
    job_id = queue.send(
        TRIGGER_JOB,
        {"slot": slot.date().isoformat()},
        SendOptions(singleton_key=trigger_singleton_key(slot)),
    )
    if job_id is None:
        logger.info("analysis_scheduler event=duplicate_slot slot=%s", slot.date().isoformat())
    else:
        logger.info("analysis_scheduler event=enqueued job_id=%s", job_id)
    return job_id


class AnalysisScheduler:
    def __init__(
        self,
        queue: JobQueue,
        *,
        hour: int = 6,
        minute: int = 0,
        timezone: str = "UTC",
    ) -> None:
        self.queue = queue
        self.trigger = CronTrigger(hour=hour, minute=minute, timezone=timezone)
        self._scheduler = BackgroundScheduler(timezone=timezone)
        self._scheduler.add_job(
            self._fire,
            self.trigger,
            id=TRIGGER_JOB,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def start(self) -> None:
        self._scheduler.start()
        logger.info("analysis_scheduler event=started trigger=%s", self.trigger)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def _fire(self) -> None:
        try:
            enqueue_daily_trigger(self.queue)
        except Exception:  # noqa: BLE001
            logger.exception("analysis_scheduler event=enqueue_failed")
