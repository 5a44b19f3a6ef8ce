"""Polar AccessLink v3 activity source.

API base: https://www.polaraccesslink.com/v3

Endpoint used:
    /users/activities/{date} — Daily activity summary
"""

from __future__ import annotations

import logging
import re
from datetime import date

from src.devices.base import DeviceTokens, DeviceType
from src.devices.sources.base import HttpActivitySource
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources.polar")

_POLAR_API_BASE = "https://www.polaraccesslink.com/v3"

# ISO 8601 durations as Polar emits them, e.g. "PT2H45M12S"
_DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?$")


def parse_duration_minutes(value: str | None) -> int:
    """Convert an ISO 8601 time duration to whole minutes.  Unparseable → 0."""
    if not value:
        return 0
    match = _DURATION_RE.match(value)
    if not match:
        return 0
    hours, minutes, seconds = match.groups()
    total_seconds = int(hours or 0) * 3600 + int(minutes or 0) * 60 + float(seconds or 0)
    return int(total_seconds // 60)


class PolarSource(HttpActivitySource):
    """Polar daily activity.

    ``calories`` is total expenditure and ``active_calories`` the active
    part; BMR is the difference.
    """

    DEVICE_TYPE = DeviceType.POLAR
    DISPLAY_NAME = "Polar"
    TOKEN_URL = "https://polarremote.com/v2/oauth2/token"

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        data = await self._get(
            f"{_POLAR_API_BASE}/users/activities/{day.isoformat()}",
            params={},
            tokens=tokens,
        )
        return self.normalize(day, data)

    def normalize(self, day: date, raw: dict) -> ActivityPayload:
        if not raw:
            raise self._no_data(day)
        active_kcal = self._safe_float(raw.get("active_calories"))
        total_kcal = self._safe_float(raw.get("calories"))
        bmr = None
        if total_kcal is not None and active_kcal is not None and total_kcal >= active_kcal:
            bmr = total_kcal - active_kcal
        distance_m = self._safe_float(raw.get("distance_from_steps"))

        return self._payload(
            day,
            steps=self._safe_int(raw.get("steps")) or 0,
            calories_burned=active_kcal or 0.0,
            active_minutes=parse_duration_minutes(raw.get("active_duration")),
            bmr=bmr,
            distance=round(distance_m / 1000, 3) if distance_m is not None else None,
        )
