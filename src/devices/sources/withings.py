"""Withings Public API activity source.

API base: https://wbsapi.withings.net

Endpoints used:
    /v2/measure?action=getactivity — Daily activity aggregates
    /v2/oauth2?action=requesttoken — Token refresh

Withings wraps every response in ``{"status": int, "body": {...}}`` and
reports API errors through a non-zero ``status`` on an HTTP 200.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from src.devices.base import DeviceTokens, DeviceType, utc_now
from src.devices.sources.base import HttpActivitySource
from src.errors import UpstreamError
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources.withings")

_WITHINGS_API_BASE = "https://wbsapi.withings.net"


class WithingsSource(HttpActivitySource):
    """Withings daily activity (steps, calories, heart rate, distance)."""

    DEVICE_TYPE = DeviceType.WITHINGS
    DISPLAY_NAME = "Withings"
    TOKEN_URL = f"{_WITHINGS_API_BASE}/v2/oauth2"

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        date_str = day.isoformat()
        data = await self._request(
            "POST",
            f"{_WITHINGS_API_BASE}/v2/measure",
            data={
                "action": "getactivity",
                "startdateymd": date_str,
                "enddateymd": date_str,
            },
            headers=self._headers(tokens),
        )
        return self.normalize(day, self._body(data))

    async def refresh(self, tokens: DeviceTokens) -> DeviceTokens:
        if not tokens.refresh_token:
            raise UpstreamError(f"{self.DISPLAY_NAME}: no refresh token stored")
        if not self._client_id:
            raise UpstreamError(f"{self.DISPLAY_NAME}: OAuth client not configured")

        logger.info("%s: refreshing access token", self.DISPLAY_NAME)
        data = self._body(
            await self._request(
                "POST",
                self.TOKEN_URL,
                data={
                    "action": "requesttoken",
                    "grant_type": "refresh_token",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": tokens.refresh_token,
                },
            )
        )
        if not data.get("access_token"):
            raise UpstreamError(f"{self.DISPLAY_NAME}: token response had no access_token")

        expires_in = self._safe_int(data.get("expires_in")) or 10800
        return DeviceTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", tokens.refresh_token),
            expires_at=utc_now() + timedelta(seconds=expires_in),
        )

    def normalize(self, day: date, raw: dict) -> ActivityPayload:
        activities = raw.get("activities", []) or []
        act = next((a for a in activities if a.get("date") == day.isoformat()), None)
        if act is None:
            raise self._no_data(day)

        active_seconds = sum(
            self._safe_int(act.get(key)) or 0 for key in ("moderate", "intense")
        )
        active_kcal = self._safe_float(act.get("calories"))
        total_kcal = self._safe_float(act.get("totalcalories"))
        bmr = None
        if total_kcal is not None and active_kcal is not None and total_kcal >= active_kcal:
            bmr = total_kcal - active_kcal
        distance_m = self._safe_float(act.get("distance"))

        return self._payload(
            day,
            steps=self._safe_int(act.get("steps")) or 0,
            calories_burned=active_kcal or 0.0,
            active_minutes=active_seconds // 60,
            bmr=bmr,
            heart_rate=self._safe_float(act.get("hr_average")),
            distance=round(distance_m / 1000, 3) if distance_m is not None else None,
        )

    def _body(self, data: dict) -> dict:
        status = data.get("status")
        if status != 0:
            raise UpstreamError(f"{self.DISPLAY_NAME} API returned status {status}")
        return data.get("body", {}) or {}
