"""Per-device activity analytics: window averages and trend direction.

Trend rule (applied per metric over the date-ascending series):

    split at floor(n / 2) → first half, second half
    diff = mean(second) − mean(first)
    diff >  threshold × mean(first)  → increasing
    diff < −threshold × mean(first)  → decreasing
    otherwise (or n < 2)             → stable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Sequence
from uuid import UUID

from src.devices.base import ActivityRecord, Trend, round_half_up, utc_today
from src.devices.config_loader import AnalyticsConfig
from src.devices.repository import ActivityRepository
from src.errors import NotFoundError, ValidationError

logger = logging.getLogger("kalori.devices.analytics")


def calculate_trend(values: Sequence[float], threshold_pct: float = 0.10) -> Trend:
    if len(values) < 2:
        return Trend.STABLE

    mid = len(values) // 2
    first, second = values[:mid], values[mid:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)

    difference = second_avg - first_avg
    threshold = first_avg * threshold_pct
    if difference > threshold:
        return Trend.INCREASING
    if difference < -threshold:
        return Trend.DECREASING
    return Trend.STABLE


def _average(values: Sequence[float]) -> int:
    return round_half_up(sum(values) / len(values)) if values else 0


@dataclass
class DeviceAnalytics:
    """Window summary for one device.

    Attributes:
        device_id:     Device analysed.
        period_days:   Window length requested.
        total_records: Ledger rows in the window.
        averages:      steps / calories_burned / active_minutes, whole numbers.
        trends:        steps_trend / calories_trend / active_minutes_trend.
        daily_data:    The rows, date ascending.
    """

    device_id: UUID
    period_days: int
    total_records: int
    averages: dict[str, int] = field(default_factory=dict)
    trends: dict[str, Trend] = field(default_factory=dict)
    daily_data: list[ActivityRecord] = field(default_factory=list)


class AnalyticsAggregator:
    def __init__(
        self,
        repository: ActivityRepository,
        config: AnalyticsConfig | None = None,
    ) -> None:
        self._repo = repository
        self._config = config or AnalyticsConfig()

    async def analyze(
        self, user_id: UUID, device_id: UUID, window_days: int | None = None
    ) -> DeviceAnalytics:
        """Summarize the device's rows dated [today − window_days, today].

        Raises:
            NotFoundError:   The device does not belong to ``user_id``.
            ValidationError: ``window_days`` outside 1..max_window_days.
        """
        days = self._config.default_window_days if window_days is None else window_days
        if not 1 <= days <= self._config.max_window_days:
            raise ValidationError(
                f"days must be between 1 and {self._config.max_window_days}"
            )

        if await self._repo.find_device(user_id, device_id) is None:
            raise NotFoundError("Device not found")

        end = utc_today()
        start = end - timedelta(days=days)
        rows = await self._repo.find_activity_records_in_range(
            user_id, start, end, device_id
        )
        rows.sort(key=lambda r: r.date)

        steps = [r.steps or 0 for r in rows]
        calories = [r.calories_burned or 0 for r in rows]
        minutes = [r.active_minutes or 0 for r in rows]
        threshold = self._config.trend_threshold_pct

        logger.debug("Analytics for device %s: %d rows over %d days", device_id, len(rows), days)
        return DeviceAnalytics(
            device_id=device_id,
            period_days=days,
            total_records=len(rows),
            averages={
                "steps": _average(steps),
                "calories_burned": _average(calories),
                "active_minutes": _average(minutes),
            },
            trends={
                "steps_trend": calculate_trend(steps, threshold),
                "calories_trend": calculate_trend(calories, threshold),
                "active_minutes_trend": calculate_trend(minutes, threshold),
            },
            daily_data=rows,
        )
