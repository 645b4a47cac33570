"""PostgreSQL job queue using ``FOR UPDATE SKIP LOCKED`` claims."""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from garden_advisor.jobs.queue import IN_FLIGHT_STATES, Job, QueueNotConnected, SendOptions

# Matches only the delivery being acknowledged; a NULL started_at skips the check.
_CURRENT_DELIVERY = (
    "id = %s AND state = 'active' AND (%s::timestamptz IS NULL OR started_at = %s)"
)


class PostgresJobQueue:
    """Durable queue stored in a single ``jobs`` table.

    Each call opens its own connection, which rolls back on error. ``connect``
    creates the schema and ``close`` stops further use.
    """

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("GARDEN_ADVISOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._connected = False
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def connect(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    data JSONB NOT NULL DEFAULT '{}'::jsonb,
                    state TEXT NOT NULL DEFAULT 'created',
                    retry_limit INTEGER NOT NULL DEFAULT 0,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    retry_delay_s INTEGER NOT NULL DEFAULT 0,
                    expire_in_s INTEGER NOT NULL,
                    singleton_key TEXT,
                    start_after TIMESTAMPTZ NOT NULL,
                    started_at TIMESTAMPTZ,
                    completed_at TIMESTAMPTZ,
                    created_at TIMESTAMPTZ NOT NULL,
                    output JSONB
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_fetch
                ON jobs(name, state, start_after)
                """)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_singleton
                ON jobs(name, singleton_key)
                WHERE singleton_key IS NOT NULL
                """)
            conn.commit()
            self._connected = True

    def close(self) -> None:
        with self._lock:
            self._connected = False

    def send(
        self, name: str, data: dict[str, Any], options: SendOptions | None = None
    ) -> str | None:
        options = options or SendOptions()
        now = datetime.now(tz=UTC)
        job_id = str(uuid.uuid4())
        with self._lock, self._open() as conn:
            row = conn.execute(
                """
                INSERT INTO jobs (
                    id, name, data, retry_limit, retry_delay_s, expire_in_s,
                    singleton_key, start_after, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT DO NOTHING
                RETURNING id
                """,
                (
                    job_id,
                    name,
                    self._json_wrapper(data),
                    options.retry_limit,
                    options.retry_delay_s,
                    options.expire_in_s,
                    options.singleton_key,
                    options.start_after or now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        return str(row["id"]) if row else None

    def fetch(self, name: str, *, batch_size: int = 1) -> list[Job]:
        with self._lock, self._open() as conn:
            rows = conn.execute(
                """
                UPDATE jobs
                SET state = 'active', started_at = now()
                WHERE id IN (
                    SELECT id
                    FROM jobs
                    WHERE name = %s
                      AND state IN ('created', 'retry')
                      AND start_after <= now()
                    ORDER BY created_at
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                (name, batch_size),
            ).fetchall()
            conn.commit()
        return [self._row_to_job(row) for row in rows]

    def complete(
        self,
        job_id: str,
        output: dict[str, Any] | None = None,
        *,
        started_at: datetime | None = None,
    ) -> bool:
        with self._lock, self._open() as conn:
            cursor = conn.execute(
                f"""
                UPDATE jobs
                SET state = 'completed', completed_at = now(), output = %s
                WHERE {_CURRENT_DELIVERY}
                """,
                (
                    self._json_wrapper(output) if output is not None else None,
                    job_id,
                    started_at,
                    started_at,
                ),
            )
            conn.commit()
        return cursor.rowcount > 0

    def fail(self, job_id: str, error: str, *, started_at: datetime | None = None) -> bool:
        with self._lock, self._open() as conn:
            count = self._retry_or(
                conn, "failed", error, _CURRENT_DELIVERY, (job_id, started_at, started_at)
            )
            conn.commit()
        return count > 0

    def expire_stale(self) -> int:
        with self._lock, self._open() as conn:
            count = self._retry_or(
                conn,
                "expired",
                "job expired",
                "state = 'active' AND started_at + make_interval(secs => expire_in_s) <= now()",
                (),
            )
            conn.commit()
        return count

    def count_in_flight(self, names: Sequence[str], *, garden_id: str) -> int:
        with self._lock, self._open() as conn:
            row = conn.execute(
                """
                SELECT count(*) AS pending
                FROM jobs
                WHERE name = ANY(%s)
                  AND state = ANY(%s)
                  AND data->>'garden_id' = %s
                """,
                (list(names), list(IN_FLIGHT_STATES), garden_id),
            ).fetchone()
        return int(row["pending"]) if row else 0

    def get_job(self, job_id: str) -> Job | None:
        with self._lock, self._open() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = %s", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def _retry_or(
        self, conn: Any, terminal: str, error: str, where: str, params: tuple[Any, ...]
    ) -> int:
        cursor = conn.execute(
            f"""
            UPDATE jobs
            SET state = CASE WHEN retry_count < retry_limit THEN 'retry' ELSE %s END,
                retry_count = CASE WHEN retry_count < retry_limit
                    THEN retry_count + 1 ELSE retry_count END,
                start_after = CASE WHEN retry_count < retry_limit
                    THEN now() + make_interval(secs => retry_delay_s) ELSE start_after END,
                started_at = CASE WHEN retry_count < retry_limit THEN NULL ELSE started_at END,
                completed_at = CASE WHEN retry_count < retry_limit THEN NULL ELSE now() END,
                output = %s
            WHERE {where}
            """,
            (terminal, self._json_wrapper({"error": error}), *params),
        )
        return cursor.rowcount

    def _open(self) -> Any:
        if not self._connected:
            raise QueueNotConnected("job queue is not connected; call connect() first")
        return self._connect()

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL job queue requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _row_to_job(row: Any) -> Job:
        data = row["data"]
        output = row.get("output")
        return Job(
            id=str(row["id"]),
            name=row["name"],
            data=json.loads(data) if isinstance(data, str) else dict(data or {}),
            state=row["state"],
            retry_limit=int(row["retry_limit"]),
            retry_count=int(row["retry_count"]),
            retry_delay_s=int(row["retry_delay_s"]),
            expire_in_s=int(row["expire_in_s"]),
            singleton_key=row.get("singleton_key"),
            start_after=row["start_after"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            created_at=row["created_at"],
            output=json.loads(output) if isinstance(output, str) else output,
        )
