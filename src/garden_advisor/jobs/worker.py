"""Polling worker pool that delivers queued jobs to batch handlers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from garden_advisor.jobs.queue import Job, JobQueue

logger = logging.getLogger(__name__)

BatchHandler = Callable[[list[Job]], None]


@dataclass(frozen=True)
class Subscription:
    name: str
    handler: BatchHandler
    batch_size: int = 1


class WorkerPool:
    """Runs each subscription on its own set of threads.

    A handler that returns normally completes every job in the batch; a
    handler that raises fails every job in the batch, which sends each one
    down its retry path.
    """

    def __init__(
        self,
        queue: JobQueue,
        *,
        concurrency: int = 1,
        poll_interval_s: float = 2.0,
    ) -> None:
        self.queue = queue
        self.concurrency = max(1, concurrency)
        self.poll_interval_s = poll_interval_s
        self._subscriptions: list[Subscription] = []
        self._threads: list[threading.Thread] = []
        self._stop = threading.Event()

    def on_batch(self, name: str, handler: BatchHandler, *, batch_size: int = 1) -> None:
        self._subscriptions.append(Subscription(name=name, handler=handler, batch_size=batch_size))

    def run_once(self, name: str) -> int:
        """Fetch and process one batch for ``name``; return how many jobs were handled."""
        subscription = next((sub for sub in self._subscriptions if sub.name == name), None)
        if subscription is None:
            raise KeyError(f"No handler registered for job {name!r}")
        return self._process(subscription)

    def drain(self, *, max_rounds: int = 100) -> int:
        """Process every subscription until no ready jobs remain."""
        handled = 0
        for _ in range(max_rounds):
            round_total = sum(self._process(sub) for sub in self._subscriptions)
            handled += round_total
            if round_total == 0:
                break
        return handled

    def start(self) -> None:
        self._stop.clear()
        for subscription in self._subscriptions:
            for index in range(self.concurrency):
                thread = threading.Thread(
                    target=self._loop,
                    args=(subscription,),
                    name=f"worker-{subscription.name}-{index}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        housekeeping = threading.Thread(target=self._expire_loop, name="worker-expiry", daemon=True)
        housekeeping.start()
        self._threads.append(housekeeping)
        logger.info(
            "worker_pool event=started subscriptions=%s concurrency=%d",
            ",".join(sub.name for sub in self._subscriptions),
            self.concurrency,
        )

    def stop(self, *, timeout_s: float = 30.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout_s)
        self._threads.clear()
        logger.info("worker_pool event=stopped")

    def _loop(self, subscription: Subscription) -> None:
        while not self._stop.is_set():
            try:
                handled = self._process(subscription)
            except Exception:  # noqa: BLE001
                logger.exception("worker_pool event=poll_error job=%s", subscription.name)
                handled = 0
            if handled == 0:
                self._stop.wait(self.poll_interval_s)

    def _expire_loop(self) -> None:
        while not self._stop.wait(self.poll_interval_s * 5):
            try:
                expired = self.queue.expire_stale()
            except Exception:  # noqa: BLE001
                logger.exception("worker_pool event=expire_error")
                continue
            if expired:
                logger.warning("worker_pool event=expired count=%d", expired)

    def _process(self, subscription: Subscription) -> int:
        jobs = self.queue.fetch(subscription.name, batch_size=subscription.batch_size)
        if not jobs:
            return 0
        try:
            subscription.handler(jobs)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "worker_pool event=batch_failed job=%s size=%d error=%s",
                subscription.name,
                len(jobs),
                exc,
                exc_info=True,
            )
            for job in jobs:
                acked = self.queue.fail(
                    job.id, f"{type(exc).__name__}: {exc}", started_at=job.started_at
                )
                self._log_stale_ack(job, acked)
        else:
            for job in jobs:
                self._log_stale_ack(job, self.queue.complete(job.id, started_at=job.started_at))
        return len(jobs)

    @staticmethod
    def _log_stale_ack(job: Job, acked: bool) -> None:
        if not acked:
            logger.warning(
                "worker_pool event=stale_ack job=%s job_id=%s", job.name, job.id
            )
