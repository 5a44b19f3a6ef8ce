"""Activity insights: a short recommendation for one user-day.

The day's ledger row and energy balance are rendered into a prompt; the
text generator is asked for a JSON object::

    {"summary": str, "calorie_adjustment": int, "suggestions": [str, ...]}

Anything else (backend failure, prose, malformed JSON) falls back to a
deterministic recommendation derived from the balance status.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

from src.devices.balance import BalanceCalculator
from src.devices.base import ActivityRecord, BalanceStatus, DailyBalance
from src.devices.repository import ActivityRepository
from src.services.text_generation import TextGenerator

logger = logging.getLogger("kalori.devices.insights")

_MAX_TOKENS = 600
_MAX_SUGGESTIONS = 5

_PROMPT = """You are a nutrition and fitness coach.  Given one day of a user's
tracked activity and energy balance, write a short recommendation.

Activity:
{activity}

Energy balance:
{balance}

Return ONLY a JSON object with these keys:
  "summary": one or two sentences about the day,
  "calorie_adjustment": integer kcal to add (positive) or remove (negative) from tomorrow's intake,
  "suggestions": a list of at most {max_suggestions} short, concrete suggestions.
"""


@dataclass
class Recommendation:
    date: date
    summary: str
    calorie_adjustment: int = 0
    suggestions: list[str] = field(default_factory=list)
    generated_by: str = "fallback"


def fallback_recommendation(
    day: date,
    balance: DailyBalance | None,
    record: ActivityRecord | None = None,
) -> Recommendation:
    """Rule-based recommendation used whenever generation is unavailable."""
    if balance is None:
        return Recommendation(
            date=day,
            summary="No activity data was recorded for this day.",
            suggestions=[
                "Sync a connected device to track energy out.",
                "Log your meals to track energy in.",
            ],
        )

    # Aim to close half of a significant gap the next day.
    if balance.balance_status == BalanceStatus.BALANCED:
        summary = "Intake and expenditure were well matched."
        adjustment = 0
        suggestions = ["Keep your current routine."]
    elif balance.balance > 0:
        summary = f"You ate about {balance.balance} kcal more than you burned."
        adjustment = (
            -balance.balance // 2
            if balance.balance_status == BalanceStatus.SIGNIFICANT_IMBALANCE
            else 0
        )
        suggestions = [
            "Add a short walk or workout tomorrow.",
            "Favour vegetables and lean protein at your next meal.",
        ]
    else:
        summary = f"You burned about {-balance.balance} kcal more than you ate."
        adjustment = (
            -balance.balance // 2
            if balance.balance_status == BalanceStatus.SIGNIFICANT_IMBALANCE
            else 0
        )
        suggestions = [
            "Add a nutrient-dense snack to refuel.",
            "Make sure recovery days include enough protein.",
        ]

    if record is not None and record.steps < 5000:
        suggestions.append("Try to reach at least 5,000 steps.")

    return Recommendation(
        date=day,
        summary=summary,
        calorie_adjustment=adjustment,
        suggestions=suggestions[:_MAX_SUGGESTIONS],
    )


def parse_recommendation(raw: str, day: date, generated_by: str) -> Recommendation | None:
    """Extract a Recommendation from generator output; None if it is unusable."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw, re.DOTALL)
        if not match:
            return None
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError:
            return None

    if not isinstance(data, dict):
        return None
    summary = str(data.get("summary", "")).strip()
    if not summary:
        return None

    try:
        adjustment = int(data.get("calorie_adjustment", 0) or 0)
    except (TypeError, ValueError):
        adjustment = 0

    suggestions = data.get("suggestions") or []
    if not isinstance(suggestions, list):
        suggestions = [suggestions]

    return Recommendation(
        date=day,
        summary=summary,
        calorie_adjustment=adjustment,
        suggestions=[str(s).strip() for s in suggestions if str(s).strip()][:_MAX_SUGGESTIONS],
        generated_by=generated_by,
    )


def _describe_activity(record: ActivityRecord | None) -> str:
    if record is None:
        return "  (no activity recorded)"
    lines: list[tuple[str, Any]] = [
        ("steps", record.steps),
        ("active calories (kcal)", record.calories_burned),
        ("active minutes", record.active_minutes),
        ("BMR estimate (kcal)", record.bmr_estimate),
        ("average heart rate (bpm)", record.heart_rate_avg),
        ("sleep (h)", record.sleep_hours),
        ("distance (km)", record.distance_km),
    ]
    return "\n".join(f"  {label}: {value}" for label, value in lines if value is not None)


def _describe_balance(balance: DailyBalance | None) -> str:
    if balance is None:
        return "  (no balance available)"
    return (
        f"  calories in: {balance.calories_in}\n"
        f"  calories out: {balance.calories_out}\n"
        f"  balance: {balance.balance}\n"
        f"  status: {balance.balance_status.value}"
    )


class ActivityInsights:
    def __init__(
        self,
        repository: ActivityRepository,
        calculator: BalanceCalculator,
        generator: TextGenerator,
    ) -> None:
        self._repo = repository
        self._calculator = calculator
        self._generator = generator

    async def recommend(self, user_id: UUID, day: date) -> Recommendation:
        """Build the day's recommendation.  Generation failures never propagate."""
        record = await self._repo.find_latest_activity_record(user_id, day)
        balance = await self._calculator.compute_balance(user_id, day)
        if record is None:
            return fallback_recommendation(day, balance, record)

        prompt = _PROMPT.format(
            activity=_describe_activity(record),
            balance=_describe_balance(balance),
            max_suggestions=_MAX_SUGGESTIONS,
        )
        try:
            raw = await self._generator.generate_text(prompt, _MAX_TOKENS)
        except Exception as exc:
            logger.warning("Recommendation generation failed for %s on %s: %s", user_id, day, exc)
            return fallback_recommendation(day, balance, record)

        parsed = parse_recommendation(raw, day, self._generator.name)
        if parsed is None:
            logger.info("Generator returned no usable recommendation; using fallback")
            return fallback_recommendation(day, balance, record)
        return parsed
