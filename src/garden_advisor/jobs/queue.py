"""Durable job queue contract and the in-memory implementation.

Delivery is at-least-once: a job stays ``active`` until a worker completes or
fails it, and an ``active`` job older than its expiry window is handed back to
the retry path so another worker can pick it up.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, Literal, Protocol
from uuid import uuid4

from pydantic import BaseModel, Field

TRIGGER_JOB = "daily-analysis-trigger"
GARDEN_JOB = "analyze-garden"
ZONE_JOB = "analyze-zone"

JobState = Literal["created", "retry", "active", "completed", "failed", "expired"]
IN_FLIGHT_STATES: tuple[JobState, ...] = ("created", "retry", "active")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class SendOptions(BaseModel):
    retry_limit: int = Field(default=0, ge=0)
    retry_delay_s: int = Field(default=0, ge=0)
    expire_in_s: int = Field(default=15 * 60, ge=1)
    singleton_key: str | None = None
    start_after: datetime | None = None


class Job(BaseModel):
    id: str
    name: str
    data: dict[str, Any]
    state: JobState = "created"
    retry_limit: int = 0
    retry_count: int = 0
    retry_delay_s: int = 0
    expire_in_s: int = 15 * 60
    singleton_key: str | None = None
    start_after: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    output: dict[str, Any] | None = None


class JobQueue(Protocol):
    def connect(self) -> None: ...

    def close(self) -> None: ...

    def send(
        self, name: str, data: dict[str, Any], options: SendOptions | None = None
    ) -> str | None:
        """Enqueue a job; return None when a job with the same singleton key exists."""
        ...

    def fetch(self, name: str, *, batch_size: int = 1) -> list[Job]: ...

    def complete(
        self,
        job_id: str,
        output: dict[str, Any] | None = None,
        *,
        started_at: datetime | None = None,
    ) -> bool:
        """Mark an active job completed; return False if it is no longer that delivery."""
        ...

    def fail(self, job_id: str, error: str, *, started_at: datetime | None = None) -> bool:
        """Schedule a retry if the job has budget left, otherwise mark it failed.

        Like ``complete``, only an ``active`` job is touched, and when
        ``started_at`` is given it must match the delivery being acknowledged.
        """
        ...

    def expire_stale(self) -> int: ...

    def count_in_flight(self, names: Sequence[str], *, garden_id: str) -> int: ...

    def get_job(self, job_id: str) -> Job | None: ...


class QueueNotConnected(RuntimeError):
    pass


def _is_current_delivery(job: Job, started_at: datetime | None) -> bool:
    # An expired or re-fetched job belongs to another delivery now.
    if job.state != "active":
        return False
    return started_at is None or job.started_at == started_at


class InMemoryJobQueue:
    """Thread-safe queue used by tests and single-process runs."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._connected = False

    def connect(self) -> None:
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def send(
        self, name: str, data: dict[str, Any], options: SendOptions | None = None
    ) -> str | None:
        self._require_connected()
        options = options or SendOptions()
        now = self._clock()
        with self._lock:
            if options.singleton_key is not None and any(
                job.name == name and job.singleton_key == options.singleton_key
                for job in self._jobs.values()
            ):
                return None
            job = Job(
                id=str(uuid4()),
                name=name,
                data=dict(data),
                retry_limit=options.retry_limit,
                retry_delay_s=options.retry_delay_s,
                expire_in_s=options.expire_in_s,
                singleton_key=options.singleton_key,
                start_after=options.start_after or now,
                created_at=now,
            )
            self._jobs[job.id] = job
        return job.id

    def fetch(self, name: str, *, batch_size: int = 1) -> list[Job]:
        self._require_connected()
        now = self._clock()
        with self._lock:
            ready = sorted(
                (
                    job
                    for job in self._jobs.values()
                    if job.name == name
                    and job.state in ("created", "retry")
                    and job.start_after <= now
                ),
                key=lambda job: job.created_at,
            )[:batch_size]
            claimed = []
            for job in ready:
                active = job.model_copy(update={"state": "active", "started_at": now})
                self._jobs[job.id] = active
                claimed.append(active)
        return claimed

    def complete(
        self,
        job_id: str,
        output: dict[str, Any] | None = None,
        *,
        started_at: datetime | None = None,
    ) -> bool:
        self._require_connected()
        with self._lock:
            job = self._jobs[job_id]
            if not _is_current_delivery(job, started_at):
                return False
            self._jobs[job_id] = job.model_copy(
                update={"state": "completed", "completed_at": self._clock(), "output": output}
            )
        return True

    def fail(self, job_id: str, error: str, *, started_at: datetime | None = None) -> bool:
        self._require_connected()
        with self._lock:
            job = self._jobs[job_id]
            if not _is_current_delivery(job, started_at):
                return False
            self._jobs[job_id] = self._retry_or(job, "failed", error)
        return True

    def expire_stale(self) -> int:
        self._require_connected()
        now = self._clock()
        expired = 0
        with self._lock:
            for job in list(self._jobs.values()):
                if job.state != "active" or job.started_at is None:
                    continue
                if job.started_at + timedelta(seconds=job.expire_in_s) > now:
                    continue
                self._jobs[job.id] = self._retry_or(job, "expired", "job expired")
                expired += 1
        return expired

    def count_in_flight(self, names: Sequence[str], *, garden_id: str) -> int:
        self._require_connected()
        with self._lock:
            return sum(
                1
                for job in self._jobs.values()
                if job.name in names
                and job.state in IN_FLIGHT_STATES
                and job.data.get("garden_id") == garden_id
            )

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self, name: str | None = None) -> list[Job]:
        with self._lock:
            return [job for job in self._jobs.values() if name is None or job.name == name]

    def _retry_or(self, job: Job, terminal: JobState, error: str) -> Job:
        now = self._clock()
        if job.retry_count < job.retry_limit:
            return job.model_copy(
                update={
                    "state": "retry",
                    "retry_count": job.retry_count + 1,
                    "start_after": now + timedelta(seconds=job.retry_delay_s),
                    "started_at": None,
                    "output": {"error": error},
                }
            )
        return job.model_copy(
            update={"state": terminal, "completed_at": now, "output": {"error": error}}
        )

    def _require_connected(self) -> None:
        if not self._connected:
            raise QueueNotConnected("job queue is not connected; call connect() first")
