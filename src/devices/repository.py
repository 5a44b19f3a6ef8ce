"""Persistence interface for devices, ledger records and intake rows.

Every operation is scoped by owner.  ``upsert_activity_record`` is the only
way ledger rows are written and must be atomic per ledger key, which is what
guarantees one row per (user_id, device_id, date) under racing syncs.

Two implementations ship:
    InMemoryRepository — process-local, used by tests and local tooling.
    PostgresRepository — asyncpg-backed (``src.devices.postgres``).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime
from typing import Any
from uuid import UUID

from src.devices.base import (
    LEDGER_VALUE_FIELDS,
    ActivityRecord,
    ConnectionStatus,
    Device,
    DeviceType,
    IntakeRecord,
    utc_now,
)
from src.errors import PersistenceError

logger = logging.getLogger("kalori.devices.repository")


class ActivityRepository(ABC):
    """Repository contract consumed by the registry, ledger and calculators."""

    # ---------- Devices ----------

    @abstractmethod
    async def find_device(self, user_id: UUID, device_id: UUID) -> Device | None:
        """Return the device if it exists and belongs to ``user_id``."""

    @abstractmethod
    async def find_device_by_type(
        self, user_id: UUID, device_type: DeviceType
    ) -> Device | None:
        """Return the user's device of ``device_type`` (at most one exists)."""

    @abstractmethod
    async def find_devices(
        self, user_id: UUID, status: ConnectionStatus | None = None
    ) -> list[Device]:
        """Return the user's devices newest-first, optionally filtered by status."""

    @abstractmethod
    async def insert_device(self, device: Device) -> Device:
        """Insert a new device.  Fails if (user_id, device_type) already exists."""

    @abstractmethod
    async def update_device(
        self, user_id: UUID, device_id: UUID, **changes: Any
    ) -> Device | None:
        """Apply column changes to an owned device; None if it does not exist."""

    # ---------- Ledger ----------

    @abstractmethod
    async def find_activity_record(
        self, user_id: UUID, device_id: UUID, day: date
    ) -> ActivityRecord | None:
        """Return the ledger row for the key, if any."""

    @abstractmethod
    async def upsert_activity_record(self, record: ActivityRecord) -> ActivityRecord:
        """Insert or merge a ledger row keyed by (user_id, device_id, date).

        On conflict every value column, ``sync_timestamp`` and ``updated_at``
        are overwritten; identity, ``created_at`` and ``source_device`` are kept.
        Returns the stored row.
        """

    @abstractmethod
    async def find_activity_records_in_range(
        self,
        user_id: UUID,
        start: date,
        end: date,
        device_id: UUID | None = None,
    ) -> list[ActivityRecord]:
        """Return rows with start <= date <= end, oldest first."""

    @abstractmethod
    async def find_latest_activity_record(
        self, user_id: UUID, day: date
    ) -> ActivityRecord | None:
        """Return the most recently synced row for ``day`` across all devices."""

    # ---------- Nutrition ----------

    @abstractmethod
    async def find_intake_records_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> list[IntakeRecord]:
        """Return intake rows with start <= logged_at < end."""


class InMemoryRepository(ActivityRepository):
    """Dict-backed repository.

    No method awaits between reading and writing its maps, so under a single
    event loop each call is atomic, including the ledger upsert.  Callers get
    copies; mutating a returned object never changes stored state.
    """

    def __init__(self) -> None:
        self._devices: dict[UUID, Device] = {}
        self._records: dict[tuple[UUID, UUID, date], ActivityRecord] = {}
        self._intake: list[IntakeRecord] = []

    # ---------- Test / tooling helpers ----------

    def add_intake_record(self, record: IntakeRecord) -> None:
        self._intake.append(record)

    def add_activity_record(self, record: ActivityRecord) -> None:
        """Store a row verbatim, bypassing the upsert key check."""
        self._records[(record.user_id, record.device_id, record.date)] = replace(record)

    def all_activity_records(self) -> list[ActivityRecord]:
        return [replace(r) for r in self._records.values()]

    # ---------- Devices ----------

    async def find_device(self, user_id: UUID, device_id: UUID) -> Device | None:
        device = self._devices.get(device_id)
        if device is None or device.user_id != user_id:
            return None
        return replace(device)

    async def find_device_by_type(
        self, user_id: UUID, device_type: DeviceType
    ) -> Device | None:
        for device in self._devices.values():
            if device.user_id == user_id and device.device_type == device_type:
                return replace(device)
        return None

    async def find_devices(
        self, user_id: UUID, status: ConnectionStatus | None = None
    ) -> list[Device]:
        devices = [
            replace(d)
            for d in reversed(list(self._devices.values()))
            if d.user_id == user_id and (status is None or d.connection_status == status)
        ]
        # Equal timestamps keep reverse insertion order.
        return sorted(devices, key=lambda d: d.created_at, reverse=True)

    async def insert_device(self, device: Device) -> Device:
        for existing in self._devices.values():
            if (
                existing.user_id == device.user_id
                and existing.device_type == device.device_type
            ):
                raise PersistenceError(
                    f"Device {device.device_type.value} already exists for user {device.user_id}"
                )
        self._devices[device.device_id] = replace(device)
        return replace(device)

    async def update_device(
        self, user_id: UUID, device_id: UUID, **changes: Any
    ) -> Device | None:
        device = self._devices.get(device_id)
        if device is None or device.user_id != user_id:
            return None
        changes.setdefault("updated_at", utc_now())
        updated = replace(device, **changes)
        self._devices[device_id] = updated
        return replace(updated)

    # ---------- Ledger ----------

    async def find_activity_record(
        self, user_id: UUID, device_id: UUID, day: date
    ) -> ActivityRecord | None:
        record = self._records.get((user_id, device_id, day))
        return replace(record) if record else None

    async def upsert_activity_record(self, record: ActivityRecord) -> ActivityRecord:
        key = (record.user_id, record.device_id, record.date)
        existing = self._records.get(key)
        if existing is None:
            stored = replace(record)
        else:
            values = {name: getattr(record, name) for name in LEDGER_VALUE_FIELDS}
            stored = replace(
                existing,
                **values,
                sync_timestamp=record.sync_timestamp,
                updated_at=record.updated_at,
            )
        self._records[key] = stored
        return replace(stored)

    async def find_activity_records_in_range(
        self,
        user_id: UUID,
        start: date,
        end: date,
        device_id: UUID | None = None,
    ) -> list[ActivityRecord]:
        rows = [
            replace(r)
            for (owner, dev, day), r in self._records.items()
            if owner == user_id
            and start <= day <= end
            and (device_id is None or dev == device_id)
        ]
        return sorted(rows, key=lambda r: (r.date, r.sync_timestamp))

    async def find_latest_activity_record(
        self, user_id: UUID, day: date
    ) -> ActivityRecord | None:
        rows = [
            r for (owner, _dev, d), r in self._records.items() if owner == user_id and d == day
        ]
        if not rows:
            return None
        # Ties broken by device_id so the pick is deterministic.
        latest = max(rows, key=lambda r: (r.sync_timestamp, str(r.device_id)))
        return replace(latest)

    # ---------- Nutrition ----------

    async def find_intake_records_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> list[IntakeRecord]:
        return [
            replace(r)
            for r in self._intake
            if r.user_id == user_id and start <= r.logged_at < end
        ]
