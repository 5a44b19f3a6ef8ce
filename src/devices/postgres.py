"""asyncpg-backed implementation of ActivityRepository.

Tables:
    connected_devices — UNIQUE (user_id, device_type)
    activity_records  — UNIQUE (user_id, device_id, date)
    meals             — owned by the nutrition subsystem; read-only here

Ledger writes use ``INSERT ... ON CONFLICT DO UPDATE`` so Postgres serializes
racing merges of the same key.  Database failures surface as PersistenceError.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import date, datetime
from typing import Any, AsyncGenerator
from uuid import UUID

import asyncpg

from src.devices.base import (
    LEDGER_VALUE_FIELDS,
    ActivityRecord,
    ConnectionStatus,
    Device,
    DeviceType,
    IntakeRecord,
    utc_now,
)
from src.devices.repository import ActivityRepository
from src.errors import PersistenceError
from src.services.database import get_connection

logger = logging.getLogger("kalori.devices.postgres")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS connected_devices (
    device_id          UUID PRIMARY KEY,
    user_id            UUID NOT NULL,
    device_type        TEXT NOT NULL,
    device_name        TEXT NOT NULL,
    connection_status  TEXT NOT NULL DEFAULT 'CONNECTED',
    is_primary         BOOLEAN NOT NULL DEFAULT FALSE,
    last_sync_at       TIMESTAMPTZ,
    access_token_enc   TEXT,
    refresh_token_enc  TEXT,
    token_expires_at   TIMESTAMPTZ,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, device_type)
);

CREATE TABLE IF NOT EXISTS activity_records (
    record_id        UUID PRIMARY KEY,
    user_id          UUID NOT NULL,
    device_id        UUID NOT NULL REFERENCES connected_devices (device_id),
    date             DATE NOT NULL,
    steps            INTEGER NOT NULL DEFAULT 0 CHECK (steps >= 0),
    calories_burned  DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (calories_burned >= 0),
    active_minutes   INTEGER NOT NULL DEFAULT 0 CHECK (active_minutes >= 0),
    bmr_estimate     DOUBLE PRECISION NOT NULL DEFAULT 0,
    heart_rate_avg   DOUBLE PRECISION,
    weight_kg        DOUBLE PRECISION,
    body_fat_pct     DOUBLE PRECISION,
    sleep_hours      DOUBLE PRECISION,
    distance_km      DOUBLE PRECISION,
    source_device    TEXT,
    sync_timestamp   TIMESTAMPTZ NOT NULL,
    raw_data         JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, device_id, date)
);

CREATE INDEX IF NOT EXISTS activity_records_user_date_idx
    ON activity_records (user_id, date);
"""

_DEVICE_COLUMNS = [f.name for f in fields(Device)]
_RECORD_COLUMNS = [f.name for f in fields(ActivityRecord)]


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
) -> str:
    """Build an ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING *`` query.

    On conflict the ``update_columns`` (default: every non-key column) take the
    incoming values and ``updated_at`` is set to NOW().
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause} "
        f"RETURNING *"
    )


_LEDGER_UPSERT = build_upsert_query(
    "activity_records",
    [c for c in _RECORD_COLUMNS if c != "updated_at"],
    conflict_columns=["user_id", "device_id", "date"],
    update_columns=[*LEDGER_VALUE_FIELDS, "sync_timestamp"],
)


def _device_from_row(row: asyncpg.Record) -> Device:
    data = {k: row[k] for k in _DEVICE_COLUMNS}
    data["device_type"] = DeviceType(data["device_type"])
    data["connection_status"] = ConnectionStatus(data["connection_status"])
    return Device(**data)


def _record_from_row(row: asyncpg.Record) -> ActivityRecord:
    data = {k: row[k] for k in _RECORD_COLUMNS}
    data["raw_data"] = data["raw_data"] or {}
    return ActivityRecord(**data)


def _db_value(value: Any) -> Any:
    if isinstance(value, (DeviceType, ConnectionStatus)):
        return value.value
    return value


class PostgresRepository(ActivityRepository):
    """Repository over the shared asyncpg pool (``src.services.database``)."""

    @asynccontextmanager
    async def _conn(
        self, user_id: UUID | None, operation: str
    ) -> AsyncGenerator[asyncpg.Connection, None]:
        try:
            async with get_connection(user_id=user_id) as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as exc:
            logger.error("Database error during %s: %s", operation, exc)
            raise PersistenceError(f"Database error during {operation}") from exc

    async def ensure_schema(self) -> None:
        async with self._conn(None, "ensure_schema") as conn:
            await conn.execute(SCHEMA_SQL)

    # ---------- Devices ----------

    async def find_device(self, user_id: UUID, device_id: UUID) -> Device | None:
        async with self._conn(user_id, "find_device") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM connected_devices WHERE device_id = $1 AND user_id = $2",
                device_id, user_id,
            )
        return _device_from_row(row) if row else None

    async def find_device_by_type(
        self, user_id: UUID, device_type: DeviceType
    ) -> Device | None:
        async with self._conn(user_id, "find_device_by_type") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM connected_devices WHERE user_id = $1 AND device_type = $2",
                user_id, device_type.value,
            )
        return _device_from_row(row) if row else None

    async def find_devices(
        self, user_id: UUID, status: ConnectionStatus | None = None
    ) -> list[Device]:
        conditions = ["user_id = $1"]
        params: list[Any] = [user_id]
        if status is not None:
            conditions.append("connection_status = $2")
            params.append(status.value)

        async with self._conn(user_id, "find_devices") as conn:
            rows = await conn.fetch(
                f"SELECT * FROM connected_devices WHERE {' AND '.join(conditions)} "
                "ORDER BY created_at DESC",
                *params,
            )
        return [_device_from_row(r) for r in rows]

    async def insert_device(self, device: Device) -> Device:
        placeholders = ", ".join(f"${i}" for i in range(1, len(_DEVICE_COLUMNS) + 1))
        async with self._conn(device.user_id, "insert_device") as conn:
            row = await conn.fetchrow(
                f"INSERT INTO connected_devices ({', '.join(_DEVICE_COLUMNS)}) "
                f"VALUES ({placeholders}) RETURNING *",
                *(_db_value(getattr(device, c)) for c in _DEVICE_COLUMNS),
            )
        return _device_from_row(row)

    async def update_device(
        self, user_id: UUID, device_id: UUID, **changes: Any
    ) -> Device | None:
        unknown = set(changes) - set(_DEVICE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown device columns: {sorted(unknown)}")
        changes.setdefault("updated_at", utc_now())

        set_clauses = []
        params: list[Any] = [user_id, device_id]
        for i, (key, value) in enumerate(changes.items(), start=3):
            set_clauses.append(f"{key} = ${i}")
            params.append(_db_value(value))

        async with self._conn(user_id, "update_device") as conn:
            row = await conn.fetchrow(
                f"UPDATE connected_devices SET {', '.join(set_clauses)} "
                "WHERE user_id = $1 AND device_id = $2 RETURNING *",
                *params,
            )
        return _device_from_row(row) if row else None

    # ---------- Ledger ----------

    async def find_activity_record(
        self, user_id: UUID, device_id: UUID, day: date
    ) -> ActivityRecord | None:
        async with self._conn(user_id, "find_activity_record") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM activity_records "
                "WHERE user_id = $1 AND device_id = $2 AND date = $3",
                user_id, device_id, day,
            )
        return _record_from_row(row) if row else None

    async def upsert_activity_record(self, record: ActivityRecord) -> ActivityRecord:
        columns = [c for c in _RECORD_COLUMNS if c != "updated_at"]
        async with self._conn(record.user_id, "upsert_activity_record") as conn:
            row = await conn.fetchrow(
                _LEDGER_UPSERT, *(getattr(record, c) for c in columns)
            )
        return _record_from_row(row)

    async def find_activity_records_in_range(
        self,
        user_id: UUID,
        start: date,
        end: date,
        device_id: UUID | None = None,
    ) -> list[ActivityRecord]:
        conditions = ["user_id = $1", "date >= $2", "date <= $3"]
        params: list[Any] = [user_id, start, end]
        if device_id is not None:
            conditions.append("device_id = $4")
            params.append(device_id)

        async with self._conn(user_id, "find_activity_records_in_range") as conn:
            rows = await conn.fetch(
                f"SELECT * FROM activity_records WHERE {' AND '.join(conditions)} "
                "ORDER BY date ASC, sync_timestamp ASC",
                *params,
            )
        return [_record_from_row(r) for r in rows]

    async def find_latest_activity_record(
        self, user_id: UUID, day: date
    ) -> ActivityRecord | None:
        async with self._conn(user_id, "find_latest_activity_record") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM activity_records WHERE user_id = $1 AND date = $2 "
                "ORDER BY sync_timestamp DESC, device_id DESC LIMIT 1",
                user_id, day,
            )
        return _record_from_row(row) if row else None

    # ---------- Nutrition ----------

    async def find_intake_records_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> list[IntakeRecord]:
        async with self._conn(user_id, "find_intake_records_in_range") as conn:
            rows = await conn.fetch(
                "SELECT user_id, created_at, calories FROM meals "
                "WHERE user_id = $1 AND created_at >= $2 AND created_at < $3",
                user_id, start, end,
            )
        return [
            IntakeRecord(user_id=r["user_id"], logged_at=r["created_at"], calories=r["calories"])
            for r in rows
        ]
