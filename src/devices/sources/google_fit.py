"""Google Fit REST API activity source.

API base: https://www.googleapis.com/fitness/v1

Endpoint used:
    /users/me/dataset:aggregate — one-day buckets of step, calorie,
                                  move-minute, distance and heart-rate data
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from src.devices.base import DeviceTokens, DeviceType
from src.devices.sources.base import HttpActivitySource
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources.google_fit")

_GOOGLE_FIT_API_BASE = "https://www.googleapis.com/fitness/v1"

_DATA_TYPES = {
    "com.google.step_count.delta": "steps",
    "com.google.calories.expended": "calories",
    "com.google.active_minutes": "active_minutes",
    "com.google.distance.delta": "distance_m",
    "com.google.heart_rate.bpm": "heart_rate",
}


class GoogleFitSource(HttpActivitySource):
    """Google Fit aggregate for one UTC day.

    ``calories.expended`` is total expenditure; the configured BMR is
    subtracted to get active calories.
    """

    DEVICE_TYPE = DeviceType.GOOGLE_FIT
    DISPLAY_NAME = "Google Fit"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        body = {
            "aggregateBy": [{"dataTypeName": name} for name in _DATA_TYPES],
            "bucketByTime": {"durationMillis": 86_400_000},
            "startTimeMillis": int(start.timestamp() * 1000),
            "endTimeMillis": int(end.timestamp() * 1000),
        }
        data = await self._post_json(
            f"{_GOOGLE_FIT_API_BASE}/users/me/dataset:aggregate", body, tokens
        )
        return self.normalize(day, data)

    def normalize(self, day: date, raw: dict) -> ActivityPayload:
        totals: dict[str, float] = {}
        heart_rates: list[float] = []

        for bucket in raw.get("bucket", []) or []:
            for dataset in bucket.get("dataset", []) or []:
                metric = self._metric_for(dataset.get("dataSourceId", ""))
                if metric is None:
                    continue
                for point in dataset.get("point", []) or []:
                    values = point.get("value", []) or []
                    if not values:
                        continue
                    first = values[0]
                    number = first.get("intVal", first.get("fpVal"))
                    number = self._safe_float(number)
                    if number is None:
                        continue
                    if metric == "heart_rate":
                        heart_rates.append(number)
                    else:
                        totals[metric] = totals.get(metric, 0.0) + number

        if not totals and not heart_rates:
            raise self._no_data(day)

        total_kcal = totals.get("calories")
        active_kcal = max(total_kcal - self._default_bmr, 0.0) if total_kcal is not None else 0.0
        distance_m = totals.get("distance_m")

        return self._payload(
            day,
            steps=int(totals.get("steps", 0)),
            calories_burned=round(active_kcal, 1),
            active_minutes=int(totals.get("active_minutes", 0)),
            heart_rate=round(sum(heart_rates) / len(heart_rates)) if heart_rates else None,
            distance=round(distance_m / 1000, 3) if distance_m is not None else None,
        )

    @staticmethod
    def _metric_for(data_source_id: str) -> str | None:
        # e.g. "derived:com.google.step_count.delta:com.google.android.gms:aggregated"
        for type_name, metric in _DATA_TYPES.items():
            if type_name in data_source_id:
                return metric
        return None
