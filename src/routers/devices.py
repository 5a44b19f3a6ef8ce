"""Device endpoints: connection lifecycle, activity sync, balance and analytics.

Every response is the ``{success, data?, error?, message?}`` envelope.
Domain errors raised below are translated to envelope + status code by the
exception handlers registered in ``src.main``.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, Query

from src.dependencies import CurrentUser, Services
from src.errors import NotFoundError, ValidationError
from src.models.base import ApiResponse, ok
from src.models.devices import (
    ActivityRecordRead,
    BulkSyncRead,
    BulkSyncRequest,
    DailyBalanceRead,
    DeviceAnalyticsRead,
    DeviceConnectRequest,
    DeviceRead,
    DeviceSyncRequest,
    RecommendationRead,
    SyncAllRead,
)

router = APIRouter(prefix="/devices", tags=["devices"])
logger = logging.getLogger("kalori.routers.devices")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_date(value: str, name: str = "date") -> date:
    message = f"Invalid {name} format, expected YYYY-MM-DD"
    if not _DATE_RE.fullmatch(value):
        raise ValidationError(message)
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(message) from None


def _parse_device_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise NotFoundError("Device not found") from None


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


# ---------- Connection lifecycle ----------

@router.get("", response_model=ApiResponse)
async def list_devices(user: CurrentUser, services: Services) -> Any:
    devices = await services.registry.list_devices(user.user_id)
    return ok([_dump(DeviceRead.model_validate(d)) for d in devices])


@router.post("/connect", response_model=ApiResponse)
async def connect_device(
    user: CurrentUser, services: Services, body: DeviceConnectRequest
) -> Any:
    logger.info("Connect %s for user %s", body.device_type, user.user_id)
    device = await services.registry.connect(
        user.user_id,
        body.device_type,
        body.device_name,
        body.access_token,
        body.refresh_token,
    )
    return ok(_dump(DeviceRead.model_validate(device)), message="Device connected successfully")


@router.delete("/{device_id}", response_model=ApiResponse)
async def disconnect_device(device_id: str, user: CurrentUser, services: Services) -> Any:
    await services.registry.disconnect(user.user_id, _parse_device_id(device_id))
    return ok(message="Device disconnected successfully")


@router.post("/{device_id}/test", response_model=ApiResponse)
async def test_device_connection(device_id: str, user: CurrentUser, services: Services) -> Any:
    device = await services.orchestrator.test_connection(
        user.user_id, _parse_device_id(device_id)
    )
    return ok(
        {"device_status": device.connection_status.value, "device": _dump(DeviceRead.model_validate(device))},
        message="Device connection test successful",
    )


# ---------- Sync ----------

@router.post("/sync-all", response_model=ApiResponse)
async def sync_all_devices(user: CurrentUser, services: Services) -> Any:
    result = await services.orchestrator.sync_all(user.user_id)
    return ok(_dump(SyncAllRead.model_validate(result)))


@router.post("/{device_id}/sync", response_model=ApiResponse)
async def sync_device(
    device_id: str, user: CurrentUser, services: Services, body: DeviceSyncRequest
) -> Any:
    record = await services.orchestrator.sync_one(
        user.user_id, _parse_device_id(device_id), body.activity_data
    )
    return ok(_dump(ActivityRecordRead.model_validate(record)), message="Device data synced successfully")


@router.post("/{device_id}/sync/bulk", response_model=ApiResponse)
async def bulk_sync_device(
    device_id: str, user: CurrentUser, services: Services, body: BulkSyncRequest
) -> Any:
    result = await services.orchestrator.sync_bulk(
        user.user_id, _parse_device_id(device_id), body.activity_data
    )
    return ok(
        _dump(
            BulkSyncRead(
                records=[ActivityRecordRead.model_validate(r) for r in result.records],
                failed_count=result.failed_count,
                failures=result.failures,
            )
        )
    )


# ---------- Reads ----------

@router.get("/activity/{start_date}/{end_date}", response_model=ApiResponse)
async def get_activity(
    start_date: str, end_date: str, user: CurrentUser, services: Services
) -> Any:
    start = _parse_date(start_date, "startDate")
    end = _parse_date(end_date, "endDate")
    records = await services.ledger.records_in_range(user.user_id, start, end)
    return ok([_dump(ActivityRecordRead.model_validate(r)) for r in records])


@router.get("/balance/{day}", response_model=ApiResponse)
async def get_daily_balance(day: str, user: CurrentUser, services: Services) -> Any:
    balance = await services.balance.compute_balance(user.user_id, _parse_date(day))
    if balance is None:
        return ok(None, message="No activity data for this date")
    return ok(_dump(DailyBalanceRead.model_validate(balance)))


@router.get("/recommendations/{day}", response_model=ApiResponse)
async def get_recommendation(day: str, user: CurrentUser, services: Services) -> Any:
    recommendation = await services.insights.recommend(user.user_id, _parse_date(day))
    return ok(_dump(RecommendationRead.model_validate(recommendation)))


@router.get("/{device_id}/analytics", response_model=ApiResponse)
async def get_device_analytics(
    device_id: str,
    user: CurrentUser,
    services: Services,
    days: int | None = Query(default=None),
) -> Any:
    analytics = await services.analytics.analyze(
        user.user_id, _parse_device_id(device_id), days
    )
    return ok(_dump(DeviceAnalyticsRead.model_validate(analytics)))
