"""Fitbit Web API activity source.

API base: https://api.fitbit.com

Endpoint used:
    /1/user/-/activities/date/{date}.json — Daily activity summary
"""

from __future__ import annotations

import logging
from datetime import date

from src.devices.base import DeviceTokens, DeviceType
from src.devices.sources.base import HttpActivitySource
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources.fitbit")

_FITBIT_API_BASE = "https://api.fitbit.com"


class FitbitSource(HttpActivitySource):
    """Fitbit daily activity summary.

    Fitbit reports ``caloriesOut`` as total expenditure, so active calories
    come from ``activityCalories`` and BMR from ``caloriesBMR``.
    """

    DEVICE_TYPE = DeviceType.FITBIT
    DISPLAY_NAME = "Fitbit"
    TOKEN_URL = f"{_FITBIT_API_BASE}/oauth2/token"

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        data = await self._get(
            f"{_FITBIT_API_BASE}/1/user/-/activities/date/{day.isoformat()}.json",
            params={},
            tokens=tokens,
        )
        return self.normalize(day, data)

    def normalize(self, day: date, raw: dict) -> ActivityPayload:
        """Convert a Fitbit daily summary response to an ActivityPayload."""
        summary = raw.get("summary") or {}
        if not summary:
            raise self._no_data(day)

        active_minutes = sum(
            self._safe_int(summary.get(key)) or 0
            for key in ("fairlyActiveMinutes", "veryActiveMinutes")
        )
        distance = next(
            (
                self._safe_float(d.get("distance"))
                for d in summary.get("distances", []) or []
                if d.get("activity") == "total"
            ),
            None,
        )

        return self._payload(
            day,
            steps=self._safe_int(summary.get("steps")) or 0,
            calories_burned=self._safe_float(summary.get("activityCalories")) or 0.0,
            active_minutes=active_minutes,
            bmr=self._safe_float(summary.get("caloriesBMR")),
            heart_rate=self._safe_float(summary.get("restingHeartRate")),
            distance=distance,
        )
