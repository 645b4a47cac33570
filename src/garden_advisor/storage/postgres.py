"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from garden_advisor.ai.models import ProviderName
from garden_advisor.storage.models import (
    AnalysisRecord,
    AnalysisScope,
    CareLog,
    EncryptedCredential,
    Garden,
    Plant,
    SensorReading,
    TaskRecord,
    WeatherCacheRecord,
    Zone,
)

_TASK_MUTABLE_COLUMNS = frozenset(
    {
        "priority",
        "label",
        "suggested_date",
        "context",
        "recurrence",
        "photo_requested",
        "status",
        "completed_at",
        "completed_via",
        "source_analysis_id",
        "updated_at",
    }
)


class PostgresGardenStore:
    """Persist garden state, tasks and audit rows in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("GARDEN_ADVISOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    settings JSONB
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    provider TEXT NOT NULL,
                    encrypted_key TEXT NOT NULL,
                    iv TEXT NOT NULL,
                    auth_tag TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    PRIMARY KEY (user_id, provider)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS gardens (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    location_lat DOUBLE PRECISION,
                    location_lng DOUBLE PRECISION,
                    hardiness_zone TEXT
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS zones (
                    id TEXT PRIMARY KEY,
                    garden_id TEXT NOT NULL REFERENCES gardens(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    soil_type TEXT,
                    sun_exposure TEXT,
                    notes TEXT
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS plants (
                    id TEXT PRIMARY KEY,
                    zone_id TEXT NOT NULL REFERENCES zones(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    variety TEXT,
                    date_planted TIMESTAMPTZ,
                    growth_stage TEXT,
                    care_profile JSONB
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS care_logs (
                    id TEXT PRIMARY KEY,
                    target_type TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    notes TEXT,
                    photo_url TEXT,
                    logged_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_care_logs_target_logged_at
                ON care_logs(target_id, logged_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sensors (
                    id TEXT PRIMARY KEY,
                    zone_id TEXT NOT NULL REFERENCES zones(id) ON DELETE CASCADE,
                    sensor_type TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sensor_readings (
                    id TEXT PRIMARY KEY,
                    sensor_id TEXT NOT NULL REFERENCES sensors(id) ON DELETE CASCADE,
                    value DOUBLE PRECISION NOT NULL,
                    unit TEXT NOT NULL,
                    recorded_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    garden_id TEXT NOT NULL REFERENCES gardens(id) ON DELETE CASCADE,
                    zone_id TEXT NOT NULL REFERENCES zones(id) ON DELETE CASCADE,
                    target_type TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    label TEXT NOT NULL,
                    suggested_date TEXT NOT NULL,
                    context TEXT,
                    recurrence TEXT,
                    photo_requested BOOLEAN NOT NULL DEFAULT FALSE,
                    completed_at TIMESTAMPTZ,
                    completed_via TEXT,
                    source_analysis_id TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_zone_status
                ON tasks(zone_id, status)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS analysis_results (
                    id TEXT PRIMARY KEY,
                    garden_id TEXT NOT NULL REFERENCES gardens(id) ON DELETE CASCADE,
                    scope TEXT NOT NULL,
                    target_id TEXT,
                    result JSONB NOT NULL,
                    model_used TEXT,
                    tokens_used JSONB,
                    generated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_analysis_results_garden_generated_at
                ON analysis_results(garden_id, generated_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS weather_cache (
                    id BIGSERIAL PRIMARY KEY,
                    garden_id TEXT NOT NULL REFERENCES gardens(id) ON DELETE CASCADE,
                    forecast JSONB NOT NULL,
                    fetched_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_weather_cache_garden_fetched_at
                ON weather_cache(garden_id, fetched_at DESC)
                """)
            conn.commit()

    def list_gardens(self) -> list[Garden]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM gardens ORDER BY id").fetchall()
        return [Garden.model_validate(row) for row in rows]

    def get_garden(self, garden_id: str) -> Garden | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM gardens WHERE id = %s", (garden_id,)).fetchone()
        return Garden.model_validate(row) if row else None

    def list_zones(self, garden_id: str) -> list[Zone]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM zones WHERE garden_id = %s ORDER BY name",
                (garden_id,),
            ).fetchall()
        return [Zone.model_validate(row) for row in rows]

    def get_zone(self, zone_id: str) -> Zone | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM zones WHERE id = %s", (zone_id,)).fetchone()
        return Zone.model_validate(row) if row else None

    def list_plants(self, zone_id: str) -> list[Plant]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM plants WHERE zone_id = %s ORDER BY name",
                (zone_id,),
            ).fetchall()
        return [
            Plant.model_validate(
                {**row, "care_profile": self._parse_json_optional(row.get("care_profile"))}
            )
            for row in rows
        ]

    def list_care_logs(
        self,
        target_ids: Sequence[str],
        *,
        since: datetime,
        photos_only: bool = False,
        limit: int | None = None,
    ) -> list[CareLog]:
        if not target_ids:
            return []
        query = "SELECT * FROM care_logs WHERE target_id = ANY(%s) AND logged_at >= %s"
        params: list[Any] = [list(target_ids), since]
        if photos_only:
            query += " AND photo_url IS NOT NULL"
        query += " ORDER BY logged_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [CareLog.model_validate(row) for row in rows]

    def list_sensor_readings(self, zone_id: str, *, since: datetime) -> list[SensorReading]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT r.id, s.zone_id, s.sensor_type, r.value, r.unit, r.recorded_at
                FROM sensor_readings r
                JOIN sensors s ON s.id = r.sensor_id
                WHERE s.zone_id = %s AND r.recorded_at >= %s
                ORDER BY r.recorded_at DESC
                """,
                (zone_id, since),
            ).fetchall()
        return [SensorReading.model_validate(row) for row in rows]

    def get_user_settings(self, user_id: str) -> dict[str, Any]:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT settings FROM users WHERE id = %s", (user_id,)).fetchone()
        if row is None:
            return {}
        return self._parse_json_optional(row.get("settings")) or {}

    def get_encrypted_credential(
        self, user_id: str, provider: ProviderName
    ) -> EncryptedCredential | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                SELECT user_id, provider, encrypted_key, iv, auth_tag
                FROM api_keys
                WHERE user_id = %s AND provider = %s
                """,
                (user_id, provider),
            ).fetchone()
        return EncryptedCredential.model_validate(row) if row else None

    def list_zone_tasks(self, zone_id: str, *, resolved_since: datetime) -> list[TaskRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE zone_id = %s
                  AND (status = 'pending' OR completed_at >= %s)
                ORDER BY suggested_date, created_at
                """,
                (zone_id, resolved_since),
            ).fetchall()
        return [TaskRecord.model_validate(row) for row in rows]

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = %s", (task_id,)).fetchone()
        return TaskRecord.model_validate(row) if row else None

    def insert_task(self, task: TaskRecord) -> bool:
        data = task.model_dump()
        columns = list(data)
        placeholders = ", ".join(["%s"] * len(columns))
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"""
                INSERT INTO tasks ({", ".join(columns)})
                VALUES ({placeholders})
                ON CONFLICT (id) DO NOTHING
                RETURNING id
                """,
                [data[column] for column in columns],
            ).fetchone()
            conn.commit()
        return row is not None

    def update_pending_task(
        self, task_id: str, *, zone_id: str, changes: dict[str, Any]
    ) -> TaskRecord | None:
        unknown = set(changes) - _TASK_MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported task columns: {sorted(unknown)}")
        if not changes:
            return None
        columns = list(changes)
        assignments = ", ".join(f"{column} = %s" for column in columns)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE tasks
                SET {assignments}
                WHERE id = %s AND zone_id = %s AND status = 'pending'
                RETURNING *
                """,
                [*(changes[column] for column in columns), task_id, zone_id],
            ).fetchone()
            conn.commit()
        return TaskRecord.model_validate(row) if row else None

    def create_analysis_record(
        self,
        *,
        garden_id: str,
        scope: AnalysisScope,
        target_id: str | None,
        result: dict[str, Any],
        model_used: ProviderName | None,
        tokens_used: dict[str, int],
    ) -> AnalysisRecord:
        record_id = str(uuid.uuid4())
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO analysis_results (
                    id, garden_id, scope, target_id, result, model_used, tokens_used, generated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record_id,
                    garden_id,
                    scope,
                    target_id,
                    self._json_wrapper(result),
                    model_used,
                    self._json_wrapper(tokens_used),
                    now,
                ),
            )
            conn.commit()
        return AnalysisRecord(
            id=record_id,
            garden_id=garden_id,
            scope=scope,
            target_id=target_id,
            result=result,
            model_used=model_used,
            tokens_used=dict(tokens_used),
            generated_at=now,
        )

    def list_analysis_records(self, garden_id: str, *, limit: int) -> list[AnalysisRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM analysis_results
                WHERE garden_id = %s
                ORDER BY generated_at DESC
                LIMIT %s
                """,
                (garden_id, limit),
            ).fetchall()
        return [self._row_to_analysis(row) for row in rows]

    def save_weather(
        self, garden_id: str, forecast: dict[str, Any], *, fetched_at: datetime
    ) -> WeatherCacheRecord:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO weather_cache (garden_id, forecast, fetched_at) VALUES (%s, %s, %s)",
                (garden_id, self._json_wrapper(forecast), fetched_at),
            )
            conn.commit()
        return WeatherCacheRecord(garden_id=garden_id, forecast=forecast, fetched_at=fetched_at)

    def get_latest_weather(self, garden_id: str) -> WeatherCacheRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                SELECT garden_id, forecast, fetched_at
                FROM weather_cache
                WHERE garden_id = %s
                ORDER BY fetched_at DESC
                LIMIT 1
                """,
                (garden_id,),
            ).fetchone()
        if row is None:
            return None
        return WeatherCacheRecord(
            garden_id=row["garden_id"],
            forecast=self._parse_json_optional(row["forecast"]) or {},
            fetched_at=row["fetched_at"],
        )

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
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_optional(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        return parsed if isinstance(parsed, dict) else None

    @classmethod
    def _row_to_analysis(cls, row: Any) -> AnalysisRecord:
        return AnalysisRecord(
            id=str(row["id"]),
            garden_id=str(row["garden_id"]),
            scope=row["scope"],
            target_id=row.get("target_id"),
            result=cls._parse_json_optional(row["result"]) or {},
            model_used=row.get("model_used"),
            tokens_used=cls._parse_json_optional(row.get("tokens_used")) or {},
            generated_at=row["generated_at"],
        )
