"""Oura API v2 activity source.

API base: https://api.ouraring.com

Endpoint used:
    /v2/usercollection/daily_activity — Daily activity summary
"""

from __future__ import annotations

import logging
from datetime import date

from src.devices.base import DeviceTokens, DeviceType
from src.devices.sources.base import HttpActivitySource
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources.oura")

_OURA_API_BASE = "https://api.ouraring.com"


class OuraSource(HttpActivitySource):
    """Oura ring daily activity.

    Activity times are reported in seconds and distance in meters.
    """

    DEVICE_TYPE = DeviceType.OURA
    DISPLAY_NAME = "Oura Ring"
    TOKEN_URL = f"{_OURA_API_BASE}/oauth/token"

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        date_str = day.isoformat()
        data = await self._get(
            f"{_OURA_API_BASE}/v2/usercollection/daily_activity",
            params={"start_date": date_str, "end_date": date_str},
            tokens=tokens,
        )
        return self.normalize(day, data)

    def normalize(self, day: date, raw: dict) -> ActivityPayload:
        items = raw.get("data", []) or []
        act = next((a for a in items if a.get("day") == day.isoformat()), None)
        if act is None:
            raise self._no_data(day)

        active_seconds = sum(
            self._safe_int(act.get(key)) or 0
            for key in ("medium_activity_time", "high_activity_time")
        )
        active_kcal = self._safe_float(act.get("active_calories"))
        total_kcal = self._safe_float(act.get("total_calories"))
        bmr = (
            total_kcal - active_kcal
            if total_kcal is not None and active_kcal is not None and total_kcal >= active_kcal
            else None
        )
        distance_m = self._safe_float(act.get("equivalent_walking_distance"))

        return self._payload(
            day,
            steps=self._safe_int(act.get("steps")) or 0,
            calories_burned=active_kcal or 0.0,
            active_minutes=active_seconds // 60,
            bmr=bmr,
            distance=round(distance_m / 1000, 3) if distance_m is not None else None,
        )
