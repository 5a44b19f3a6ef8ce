"""Health platform interface (HealthKit, Health Connect, ...) and the day shape it yields."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Protocol


class HealthPlatform(Protocol):
    """Native health store on the user's phone.

    Each getter covers the half-open window [start, end) and raises on
    failure; the agent decides what a failure means.
    """

    async def request_authorization(self) -> None:
        """Ask the user for read access.  Raises if denied or unavailable."""

    async def get_steps(self, start: datetime, end: datetime) -> float: ...

    async def get_active_calories(self, start: datetime, end: datetime) -> float: ...

    async def get_heart_rate_samples(self, start: datetime, end: datetime) -> list[float]: ...

    async def get_distance(self, start: datetime, end: datetime) -> float:
        """Walking + running distance in metres."""

    async def get_latest_weight(self, start: datetime, end: datetime) -> float | None: ...


@dataclass
class HealthData:
    """One day read from the platform.

    Attributes:
        date:            Calendar day.
        steps:           Step count.
        calories_burned: Active energy (kcal).
        heart_rate:      Mean of the day's samples, 0 when none.
        distance:        Kilometres.
        active_minutes:  Estimated as steps // 100.
        weight:          Latest weight (kg), if any.
    """

    date: date
    steps: int = 0
    calories_burned: float = 0.0
    heart_rate: float = 0.0
    distance: float = 0.0
    active_minutes: int = 0
    weight: float | None = None

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> HealthData:
        return cls(
            date=date.fromisoformat(data["date"]),
            steps=int(data.get("steps", 0)),
            calories_burned=float(data.get("calories_burned", 0.0)),
            heart_rate=float(data.get("heart_rate", 0.0)),
            distance=float(data.get("distance", 0.0)),
            active_minutes=int(data.get("active_minutes", 0)),
            weight=data.get("weight"),
        )
