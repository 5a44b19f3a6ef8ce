"""Client sync agent: platform reads, local cache, server pushes, offline fallbacks.

Usage::

    api = DeviceApiClient(api_url, user_id, auth_token=token)
    agent = ClientSyncAgent(platform, api, LocalCache(cache_dir))
    if await agent.request_permissions():
        await agent.connect_device("APPLE_HEALTH", "Apple Health")
    await agent.sync_with_server(device_id)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Awaitable, Callable

from src.client.api import DeviceApiClient
from src.client.cache import LocalCache
from src.client.platform import HealthData, HealthPlatform
from src.devices.balance import build_daily_balance
from src.devices.base import BalanceStatus, DailyBalance, DeviceType
from src.errors import KaloriError

logger = logging.getLogger("kalori.client.agent")

#: BMR pushed with every client day; the phone has no better estimate.
DEFAULT_BMR_KCAL = 1800

#: Async callback(day) → calories eaten that day, used for offline balance.
IntakeProvider = Callable[[date], Awaitable[float]]


class ClientSyncAgent:
    def __init__(
        self,
        platform: HealthPlatform,
        api: DeviceApiClient,
        cache: LocalCache,
        platform_device_type: DeviceType = DeviceType.APPLE_HEALTH,
        intake_provider: IntakeProvider | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            platform:             Native health store.
            api:                  Server client.
            cache:                Local cache for days and devices.
            platform_device_type: Device type the native store registers as.
            intake_provider:      Calories-in source for offline balance.
        """
        self._platform = platform
        self._api = api
        self._cache = cache
        self._platform_type = platform_device_type
        self._intake_provider = intake_provider

    # ------------------------------------------------------------------
    # Platform
    # ------------------------------------------------------------------

    async def request_permissions(self) -> bool:
        try:
            await self._platform.request_authorization()
        except Exception as exc:
            logger.warning("Health platform permissions denied: %s", exc)
            return False
        logger.info("Health platform permissions granted")
        return True

    async def fetch_day(self, day: date) -> HealthData:
        """Read one day from the platform.

        Any metric failure (other than weight) falls back to the cached day,
        then to an all-zero day.
        """
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)

        try:
            steps, calories, hr_samples, distance_m, weight = await asyncio.gather(
                self._platform.get_steps(start, end),
                self._platform.get_active_calories(start, end),
                self._platform.get_heart_rate_samples(start, end),
                self._platform.get_distance(start, end),
                self._latest_weight(start, end),
            )
        except Exception as exc:
            logger.warning("Error fetching health data for %s: %s", day, exc)
            return self._cache.load_health_data(day) or HealthData(date=day)

        step_count = int(steps or 0)
        data = HealthData(
            date=day,
            steps=step_count,
            calories_burned=float(calories or 0),
            heart_rate=round(sum(hr_samples) / len(hr_samples)) if hr_samples else 0.0,
            distance=round((distance_m or 0) / 1000, 3),
            active_minutes=step_count // 100,
            weight=weight or None,
        )
        self._cache.store_health_data(data)
        return data

    async def _latest_weight(self, start: datetime, end: datetime) -> float | None:
        try:
            return await self._platform.get_latest_weight(start, end)
        except Exception as exc:
            logger.debug("Weight unavailable: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Server sync
    # ------------------------------------------------------------------

    async def sync_with_server(self, device_id: str, day: date | None = None) -> bool:
        """Push one day (default today) to the server.  No retry."""
        target = day or date.today()
        data = await self.fetch_day(target)

        activity: dict[str, Any] = {
            "steps": data.steps,
            "caloriesBurned": data.calories_burned,
            "activeMinutes": data.active_minutes,
            "heartRate": data.heart_rate,
            "distance": data.distance,
            "bmr": DEFAULT_BMR_KCAL,
            "date": target.isoformat(),
        }
        if data.weight is not None:
            activity["weight"] = data.weight

        try:
            await self._api.sync_device(device_id, activity)
        except KaloriError as exc:
            logger.warning("Error syncing %s with server: %s", target, exc)
            return False
        logger.info("Synced %s for device %s", target, device_id)
        return True

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def list_devices(self) -> list[dict[str, Any]]:
        """Server device list, mirrored locally; the local list when offline."""
        try:
            server_devices = await self._api.list_devices()
        except KaloriError as exc:
            logger.warning("Server request failed, using local devices: %s", exc)
            return self._cache.load_devices()

        devices = [_local_device(d) for d in server_devices]
        self._cache.replace_devices(devices)
        return devices

    async def connect_device(
        self,
        device_type: str,
        device_name: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> bool:
        """Register a device with the server and remember it locally.

        The platform's own device type first needs permissions; vendor
        devices need an access token obtained by the app's OAuth flow.
        """
        name = device_name or f"{device_type} Device"
        if device_type == self._platform_type.value:
            if not await self.request_permissions():
                return False
        elif not access_token:
            logger.warning("Cannot connect %s without an access token", device_type)
            return False

        try:
            device = await self._api.connect_device(device_type, name, access_token, refresh_token)
        except KaloriError as exc:
            logger.warning("Server registration failed for %s: %s", device_type, exc)
            # Platform data can still be read locally.
            return device_type == self._platform_type.value

        self._cache.store_device(_local_device(device))
        return True

    async def disconnect_device(self, device_id: str) -> bool:
        self._cache.remove_device(device_id)
        try:
            await self._api.disconnect_device(device_id)
        except KaloriError as exc:
            logger.warning("Server disconnect failed for %s: %s", device_id, exc)
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_activity(self, day: date) -> HealthData | None:
        """Server record for ``day`` first, then the platform."""
        try:
            records = await self._api.get_activity(day, day)
        except KaloriError as exc:
            logger.warning("Server request failed, reading platform: %s", exc)
            records = []

        if records:
            row = records[0]
            return HealthData(
                date=day,
                steps=int(row.get("steps") or 0),
                calories_burned=float(row.get("calories_burned") or 0),
                heart_rate=float(row.get("heart_rate_avg") or 0),
                distance=float(row.get("distance_km") or 0),
                active_minutes=int(row.get("active_minutes") or 0),
                weight=row.get("weight_kg"),
            )

        devices = self._cache.load_devices()
        if any(
            d.get("type") == self._platform_type.value and d.get("status") == "CONNECTED"
            for d in devices
        ):
            return await self.fetch_day(day)
        return None

    async def get_daily_balance(self, day: date) -> DailyBalance | None:
        """Server balance first; offline, compute it from platform burn and local intake."""
        try:
            data = await self._api.get_daily_balance(day)
        except KaloriError as exc:
            logger.warning("Server request failed, calculating balance locally: %s", exc)
        else:
            if not data:
                return None
            return DailyBalance(
                date=day,
                calories_in=int(data["caloriesIn"]),
                calories_out=int(data["caloriesOut"]),
                balance=int(data["balance"]),
                balance_status=BalanceStatus(data["balanceStatus"]),
            )

        activity = await self.get_activity(day)
        calories_out = activity.calories_burned if activity else 0.0
        if calories_out <= 0:
            return None

        calories_in = 0.0
        if self._intake_provider is not None:
            try:
                calories_in = float(await self._intake_provider(day) or 0)
            except Exception as exc:
                logger.warning("Intake unavailable for %s: %s", day, exc)
        return build_daily_balance(day, calories_in, calories_out)


def _local_device(server_device: dict[str, Any]) -> dict[str, Any]:
    """Server DeviceRead → the client's compact device entry."""
    return {
        "id": str(server_device.get("device_id")),
        "name": server_device.get("device_name"),
        "type": server_device.get("device_type"),
        "status": server_device.get("connection_status"),
        "lastSync": server_device.get("last_sync_at"),
        "isPrimary": bool(server_device.get("is_primary")),
    }
