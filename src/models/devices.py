"""Pydantic models for connected devices, activity payloads and derived views."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from pydantic import Field, field_validator

from src.devices.base import BalanceStatus, ConnectionStatus, DeviceType, Trend
from src.models.base import KaloriBase


# ---------- Activity payload (inbound, camelCase on the wire) ----------

class ActivityPayload(KaloriBase):
    """One day of normalized activity, as pushed by a client or pulled from a vendor.

    Missing counters default to 0; optional body metrics stay None.  A
    negative or non-numeric value makes the payload malformed.
    """

    steps: int = Field(default=0, ge=0)
    calories_burned: float = Field(default=0, ge=0, alias="caloriesBurned")
    active_minutes: int = Field(default=0, ge=0, alias="activeMinutes")
    bmr: float = Field(default=0, ge=0)
    heart_rate: float | None = Field(default=None, ge=0, le=300, alias="heartRate")
    weight: float | None = Field(default=None, ge=0)
    body_fat: float | None = Field(default=None, ge=0, le=100, alias="bodyFat")
    sleep_hours: float | None = Field(default=None, ge=0, le=24, alias="sleepHours")
    distance: float | None = Field(default=None, ge=0)
    day: dt.date | None = Field(default=None, alias="date")

    @field_validator("steps", "calories_burned", "active_minutes", "bmr", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy of the payload for the ledger's raw_data column."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------- Requests ----------

class DeviceConnectRequest(KaloriBase):
    device_type: str = Field(alias="deviceType", min_length=1)
    device_name: str = Field(alias="deviceName", min_length=1, max_length=100)
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class DeviceSyncRequest(KaloriBase):
    activity_data: ActivityPayload = Field(alias="activityData")


class BulkSyncRequest(KaloriBase):
    # Items are validated one by one so a malformed day cannot reject the batch.
    activity_data: list[dict[str, Any]] = Field(alias="activityData")


# ---------- Responses ----------

class DeviceRead(KaloriBase):
    device_id: uuid.UUID
    user_id: uuid.UUID
    device_type: DeviceType
    device_name: str
    connection_status: ConnectionStatus
    is_primary: bool
    last_sync_at: dt.datetime | None = None
    token_expires_at: dt.datetime | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class ActivityRecordRead(KaloriBase):
    record_id: uuid.UUID
    user_id: uuid.UUID
    device_id: uuid.UUID
    date: dt.date
    steps: int
    calories_burned: float
    active_minutes: int
    bmr_estimate: float
    heart_rate_avg: float | None = None
    weight_kg: float | None = None
    body_fat_pct: float | None = None
    sleep_hours: float | None = None
    distance_km: float | None = None
    source_device: str | None = None
    sync_timestamp: dt.datetime
    raw_data: dict[str, Any] = Field(default_factory=dict)


class DailyBalanceRead(KaloriBase):
    date: dt.date
    calories_in: int = Field(serialization_alias="caloriesIn")
    calories_out: int = Field(serialization_alias="caloriesOut")
    balance: int
    balance_status: BalanceStatus = Field(serialization_alias="balanceStatus")


class MetricAverages(KaloriBase):
    steps: int
    calories_burned: int
    active_minutes: int


class MetricTrends(KaloriBase):
    steps_trend: Trend
    calories_trend: Trend
    active_minutes_trend: Trend


class DeviceAnalyticsRead(KaloriBase):
    device_id: uuid.UUID
    period_days: int
    total_records: int
    averages: MetricAverages
    trends: MetricTrends
    daily_data: list[ActivityRecordRead]


class SyncAllRead(KaloriBase):
    total_devices: int
    successful_syncs: int
    failed_syncs: int
    skipped_syncs: int = 0


class BulkSyncRead(KaloriBase):
    records: list[ActivityRecordRead]
    failed_count: int
    failures: list[str] = Field(default_factory=list)


class RecommendationRead(KaloriBase):
    date: dt.date
    summary: str
    calorie_adjustment: int
    suggestions: list[str]
    generated_by: str
