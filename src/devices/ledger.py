"""Activity ledger: idempotent per-day merge of device activity.

The ledger key is (user_id, device_id, calendar date).  Merging a payload for
an existing key overwrites every value column with the payload's values
(last-write-wins, never averaged or summed), so replaying a payload any
number of times leaves the same stored state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping
from uuid import UUID

import pydantic

from src.devices.base import ActivityRecord, Device, as_calendar_date, utc_now, utc_today
from src.devices.repository import ActivityRepository
from src.errors import ValidationError
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.ledger")


@dataclass
class BulkSyncResult:
    """Outcome of a multi-day merge.

    Attributes:
        records:  Rows merged successfully, in input order.
        failures: One message per payload that could not be merged.
    """

    records: list[ActivityRecord] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def parse_payload(payload: ActivityPayload | Mapping[str, Any]) -> ActivityPayload:
    """Validate a raw mapping into an ActivityPayload.

    Raises:
        ValidationError: The payload is malformed.
    """
    if isinstance(payload, ActivityPayload):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError(f"Activity payload must be an object, got {type(payload).__name__}")
    try:
        return ActivityPayload.model_validate(payload)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"Malformed activity payload: {problems}") from exc


def build_record(
    device: Device, payload: ActivityPayload, day: date
) -> ActivityRecord:
    """Map a payload onto a fresh ledger row for (device, day)."""
    now = utc_now()
    return ActivityRecord(
        user_id=device.user_id,
        device_id=device.device_id,
        date=as_calendar_date(day),
        steps=payload.steps,
        calories_burned=payload.calories_burned,
        active_minutes=payload.active_minutes,
        bmr_estimate=payload.bmr,
        heart_rate_avg=payload.heart_rate,
        weight_kg=payload.weight,
        body_fat_pct=payload.body_fat,
        sleep_hours=payload.sleep_hours,
        distance_km=payload.distance,
        source_device=device.device_name,
        sync_timestamp=now,
        raw_data=payload.snapshot(),
        created_at=now,
        updated_at=now,
    )


class ActivityLedger:
    """Merge activity payloads into the per-day ledger."""

    def __init__(self, repository: ActivityRepository) -> None:
        self._repo = repository

    async def merge(
        self,
        device: Device,
        payload: ActivityPayload | Mapping[str, Any],
        day: date | None = None,
    ) -> ActivityRecord:
        """Upsert one day's payload for ``device``.

        The target date is ``day`` if given, else the payload's own date,
        else today.

        Raises:
            ValidationError:  Malformed payload.
            PersistenceError: The repository write failed.
        """
        parsed = parse_payload(payload)
        target = as_calendar_date(day or parsed.day or utc_today())
        record = await self._repo.upsert_activity_record(build_record(device, parsed, target))
        logger.debug(
            "Merged activity for %s/%s on %s (steps=%d)",
            device.user_id, device.device_id, target, record.steps,
        )
        return record

    async def merge_bulk(
        self,
        device: Device,
        payloads: Iterable[ActivityPayload | Mapping[str, Any]],
    ) -> BulkSyncResult:
        """Merge many dated payloads, skipping (and logging) the ones that fail.

        Every payload must carry its own date.  Payloads are applied in the
        order given; one failure never stops the rest.
        """
        result = BulkSyncResult()
        for index, payload in enumerate(payloads):
            try:
                parsed = parse_payload(payload)
                if parsed.day is None:
                    raise ValidationError("Bulk activity payload is missing its date")
                result.records.append(await self.merge(device, parsed))
            except Exception as exc:
                logger.warning(
                    "Bulk merge failed for %s/%s at item %d: %s",
                    device.user_id, device.device_id, index, exc,
                )
                result.failures.append(f"item {index}: {exc}")
        return result

    async def records_in_range(
        self,
        user_id: UUID,
        start: date,
        end: date,
        device_id: UUID | None = None,
    ) -> list[ActivityRecord]:
        if start > end:
            raise ValidationError("startDate must not be after endDate")
        return await self._repo.find_activity_records_in_range(user_id, start, end, device_id)
