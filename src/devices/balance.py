"""Daily energy balance: intake (energy in) against ledger burn (energy out).

    calories_out   = calories_burned + bmr_estimate   (latest-synced ledger row)
    balance        = calories_in − calories_out
    balance_pct    = |balance| / calories_out

    balance_pct ≤ balanced_max_pct          → balanced
    balance_pct ≤ slight_imbalance_max_pct  → slight_imbalance
    otherwise                               → significant_imbalance

Both thresholds are inclusive and come from engine_config.yaml.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from src.devices.base import BalanceStatus, DailyBalance, round_half_up
from src.devices.config_loader import BalanceThresholds
from src.devices.repository import ActivityRepository

logger = logging.getLogger("kalori.devices.balance")


def classify_balance(
    calories_in: float,
    calories_out: float,
    thresholds: BalanceThresholds | None = None,
) -> BalanceStatus | None:
    """Classify a day's balance.  Returns None when there is no burn to compare against."""
    if calories_out <= 0:
        return None
    limits = thresholds or BalanceThresholds()
    pct = abs(calories_in - calories_out) / calories_out
    if pct <= limits.balanced_max_pct:
        return BalanceStatus.BALANCED
    if pct <= limits.slight_imbalance_max_pct:
        return BalanceStatus.SLIGHT_IMBALANCE
    return BalanceStatus.SIGNIFICANT_IMBALANCE


def build_daily_balance(
    day: date,
    calories_in: float,
    calories_out: float,
    thresholds: BalanceThresholds | None = None,
) -> DailyBalance | None:
    """Assemble a DailyBalance with whole-kcal values, or None without burn data."""
    status = classify_balance(calories_in, calories_out, thresholds)
    if status is None:
        return None
    return DailyBalance(
        date=day,
        calories_in=round_half_up(calories_in),
        calories_out=round_half_up(calories_out),
        balance=round_half_up(calories_in - calories_out),
        balance_status=status,
    )


class BalanceCalculator:
    """Join the ledger with nutrition intake for one user-day."""

    def __init__(
        self,
        repository: ActivityRepository,
        thresholds: BalanceThresholds | None = None,
    ) -> None:
        self._repo = repository
        self._thresholds = thresholds or BalanceThresholds()

    async def compute_balance(self, user_id: UUID, day: date) -> DailyBalance | None:
        """Return the day's balance, or None when no usable activity record exists.

        Intake is summed over [day 00:00 UTC, next day 00:00 UTC).  When
        several devices reported the day, the most recently synced row wins.
        """
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)

        intake = await self._repo.find_intake_records_in_range(user_id, start, end)
        calories_in = sum(row.calories or 0 for row in intake)

        record = await self._repo.find_latest_activity_record(user_id, day)
        if record is None:
            logger.info("No activity data for user %s on %s", user_id, day)
            return None

        calories_out = (record.calories_burned or 0) + (record.bmr_estimate or 0)
        balance = build_daily_balance(day, calories_in, calories_out, self._thresholds)
        if balance is None:
            logger.info("Zero energy out for user %s on %s; no balance", user_id, day)
            return None

        logger.debug(
            "Balance for %s on %s: in=%d out=%d → %s",
            user_id, day, balance.calories_in, balance.calories_out,
            balance.balance_status.value,
        )
        return balance
