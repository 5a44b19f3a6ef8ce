"""Whoop API v1 activity source.

API base: https://api.prod.whoop.com/developer

Endpoint used:
    /v1/cycle — Physiological cycles (strain, energy, heart rate)
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from src.devices.base import DeviceTokens, DeviceType
from src.devices.sources.base import HttpActivitySource
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources.whoop")

_WHOOP_API_BASE = "https://api.prod.whoop.com/developer"
_KJ_PER_KCAL = 4.184


class WhoopSource(HttpActivitySource):
    """Whoop cycle energy and heart rate.

    Whoop has no step counter; steps and active minutes are reported as 0.
    Cycle energy is total expenditure in kilojoules.
    """

    DEVICE_TYPE = DeviceType.WHOOP
    DISPLAY_NAME = "Whoop"
    TOKEN_URL = "https://api.prod.whoop.com/oauth/oauth2/token"

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        data = await self._get(
            f"{_WHOOP_API_BASE}/v1/cycle",
            params={"start": start.isoformat(), "end": end.isoformat(), "limit": 1},
            tokens=tokens,
        )
        return self.normalize(day, data)

    def normalize(self, day: date, raw: dict) -> ActivityPayload:
        records = raw.get("records", []) or []
        score = (records[0].get("score") or {}) if records else {}
        kilojoules = self._safe_float(score.get("kilojoule"))
        if kilojoules is None:
            # No cycle, or a cycle Whoop has not scored yet
            raise self._no_data(day)

        active_kcal = max(kilojoules / _KJ_PER_KCAL - self._default_bmr, 0.0)

        return self._payload(
            day,
            calories_burned=round(active_kcal, 1),
            heart_rate=self._safe_float(score.get("average_heart_rate")),
        )
