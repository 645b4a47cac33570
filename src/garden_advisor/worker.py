"""Worker process: job handlers plus the daily schedule.

Run with ``python -m garden_advisor.worker`` or the ``garden-advisor-worker`` script.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading

from garden_advisor.config.logging import configure_logging
from garden_advisor.config.settings import get_settings
from garden_advisor.jobs.scheduler import AnalysisScheduler, enqueue_daily_trigger
from garden_advisor.jobs.worker import WorkerPool
from garden_advisor.runtime import build_pipeline

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the garden analysis worker.")
    parser.add_argument(
        "--no-schedule",
        action="store_true",
        help="Process jobs only; do not run the daily cron.",
    )
    parser.add_argument(
        "--trigger-now",
        action="store_true",
        help="Enqueue today's trigger job on startup (deduplicated per day).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    pipeline = build_pipeline(settings)
    pipeline.store.migrate()
    pipeline.queue.connect()

    workers = WorkerPool(
        pipeline.queue,
        concurrency=settings.worker_concurrency,
        poll_interval_s=settings.worker_poll_interval_s,
    )
    pipeline.register(workers)

    scheduler = None
    if not args.no_schedule:
        scheduler = AnalysisScheduler(
            pipeline.queue,
            hour=settings.analysis_cron_hour,
            minute=settings.analysis_cron_minute,
            timezone=settings.analysis_timezone,
        )

    stop = threading.Event()

    def _handle_signal(signum: int, _frame: object) -> None:
        logger.info("worker event=signal signum=%d", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    workers.start()
    if scheduler is not None:
        scheduler.start()
    if args.trigger_now:
        enqueue_daily_trigger(pipeline.queue)

    try:
        while not stop.wait(1.0):
            pass
    finally:
        if scheduler is not None:
            scheduler.shutdown()
        workers.stop()
        pipeline.queue.close()
        logger.info("worker event=shutdown")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
