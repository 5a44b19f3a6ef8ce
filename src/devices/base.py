"""Canonical data models for the Kalori device ingestion engine.

Devices, ledger records and intake rows are plain dataclasses shared by the
repository, registry, orchestrator and calculators.  The inbound activity
payload is a Pydantic model (``src.models.devices.ActivityPayload``) because
it crosses the wire and must be validated.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from src.errors import ValidationError

logger = logging.getLogger("kalori.devices")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Current calendar day in UTC, the day boundary the ledger and intake share."""
    return utc_now().date()


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DeviceType(str, Enum):
    """Supported device vendors.  Values are the wire identifiers."""

    APPLE_HEALTH = "APPLE_HEALTH"
    GOOGLE_FIT = "GOOGLE_FIT"
    FITBIT = "FITBIT"
    GARMIN = "GARMIN"
    WHOOP = "WHOOP"
    SAMSUNG_HEALTH = "SAMSUNG_HEALTH"
    POLAR = "POLAR"
    SUUNTO = "SUUNTO"
    WITHINGS = "WITHINGS"
    OURA = "OURA"
    AMAZFIT = "AMAZFIT"
    HUAWEI_HEALTH = "HUAWEI_HEALTH"

    @classmethod
    def parse(cls, value: str | DeviceType) -> DeviceType:
        """Return the enum member for ``value`` or raise ValidationError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Invalid device type: {value}") from None


class ConnectionStatus(str, Enum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    ERROR = "ERROR"
    SYNCING = "SYNCING"


class BalanceStatus(str, Enum):
    BALANCED = "balanced"
    SLIGHT_IMBALANCE = "slight_imbalance"
    SIGNIFICANT_IMBALANCE = "significant_imbalance"


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# ---------------------------------------------------------------------------
# Registry / ledger records
# ---------------------------------------------------------------------------


@dataclass
class Device:
    """A device connected to a user account.

    Identity is (user_id, device_type); ``device_id`` is the surrogate key
    used on the wire.  Token columns hold vault ciphertext, never plaintext.
    """

    user_id: UUID
    device_type: DeviceType
    device_name: str
    device_id: UUID = field(default_factory=uuid4)
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTED
    is_primary: bool = False
    last_sync_at: datetime | None = None
    access_token_enc: str | None = None
    refresh_token_enc: str | None = None
    token_expires_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class ActivityRecord:
    """One ledger row: a device's activity totals for one calendar day.

    Attributes:
        user_id:        Owner.
        device_id:      Device that produced the data.
        date:           Calendar date (no time component).
        steps:          Step count.
        calories_burned: Active calories burned (kcal).
        active_minutes: Minutes of moderate+ activity.
        bmr_estimate:   Basal metabolic rate estimate (kcal/day).
        heart_rate_avg: Average heart rate (bpm).
        weight_kg:      Body weight.
        body_fat_pct:   Body-fat percentage.
        sleep_hours:    Hours slept.
        distance_km:    Distance covered.
        source_device:  Display name of the device at creation time.
        sync_timestamp: UTC time of the latest merge.
        raw_data:       Snapshot of the payload that produced the values.
    """

    user_id: UUID
    device_id: UUID
    date: date
    steps: int = 0
    calories_burned: float = 0.0
    active_minutes: int = 0
    bmr_estimate: float = 0.0
    heart_rate_avg: float | None = None
    weight_kg: float | None = None
    body_fat_pct: float | None = None
    sleep_hours: float | None = None
    distance_km: float | None = None
    source_device: str | None = None
    sync_timestamp: datetime = field(default_factory=utc_now)
    raw_data: dict[str, Any] = field(default_factory=dict)
    record_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


#: Ledger columns overwritten on every merge (last-write-wins).
LEDGER_VALUE_FIELDS: tuple[str, ...] = (
    "steps",
    "calories_burned",
    "active_minutes",
    "bmr_estimate",
    "heart_rate_avg",
    "weight_kg",
    "body_fat_pct",
    "sleep_hours",
    "distance_km",
    "raw_data",
)


@dataclass
class IntakeRecord:
    """A nutrition intake row (one logged meal) owned by the nutrition subsystem."""

    user_id: UUID
    logged_at: datetime
    calories: float | None = None


@dataclass
class DeviceTokens:
    """Decrypted credential pair for a device.  Empty when the device is unknown."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None


@dataclass
class DailyBalance:
    """Energy in vs. energy out for one day.  All values are whole kcal."""

    date: date
    calories_in: int
    calories_out: int
    balance: int
    balance_status: BalanceStatus


def as_calendar_date(value: date | datetime) -> date:
    """Truncate a datetime to its calendar date; dates pass through."""
    if isinstance(value, datetime):
        return value.date()
    return value


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 → 3, -2.5 → -3)."""
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)
