"""Sync orchestration: single-shot, bulk, backfill, sync-all and connection tests.

Every write goes through the ActivityLedger; the orchestrator only decides
which device, which day and which payload.  Fan-out operations (backfill,
sync-all) isolate failures: one bad day or one bad device is logged and
counted, never raised.

Usage::

    orchestrator = SyncOrchestrator(registry, ledger, sources, engine_config, settings)
    registry.set_connect_hook(orchestrator.initial_backfill)
    result = await orchestrator.sync_all(user_id)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable, Mapping
from uuid import UUID

from src.config import Settings
from src.devices.base import (
    ActivityRecord,
    ConnectionStatus,
    Device,
    DeviceTokens,
    DeviceType,
    utc_today,
)
from src.devices.config_loader import EngineConfig
from src.devices.ledger import ActivityLedger, BulkSyncResult
from src.devices.registry import DeviceRegistry
from src.devices.sources import ActivitySource, SourceRegistry
from src.devices.vault import CredentialVault
from src.errors import NoActivityDataError, UpstreamError
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sync")


@dataclass
class BackfillReport:
    """Outcome of the post-connect backfill.

    Attributes:
        device_id:   Device that was backfilled.
        synced_days: Dates merged successfully, oldest first.
        failed_days: Dates whose fetch or merge failed.
        errors:      One message per failed day.
    """

    device_id: UUID
    synced_days: list[date] = field(default_factory=list)
    failed_days: list[date] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class SyncAllResult:
    total_devices: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    skipped_syncs: int = 0


class SyncOrchestrator:
    """Coordinate device fetches and ledger merges for one deployment."""

    def __init__(
        self,
        registry: DeviceRegistry,
        ledger: ActivityLedger,
        sources: SourceRegistry,
        config: EngineConfig,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._sources = sources
        self._config = config
        self._concurrency = max(1, settings.sync_all_concurrency)

    # ------------------------------------------------------------------
    # Client pushes
    # ------------------------------------------------------------------

    async def sync_one(
        self,
        user_id: UUID,
        device_id: UUID,
        payload: ActivityPayload | Mapping[str, Any],
        day: date | None = None,
    ) -> ActivityRecord:
        """Merge one day of activity for a device the user owns.

        Raises:
            NotFoundError:    The device does not belong to ``user_id``.
            ValidationError:  Malformed payload.
            PersistenceError: The write failed.
        """
        device = await self._registry.get(user_id, device_id)
        record = await self._ledger.merge(device, payload, day)
        await self._registry.mark_synced(user_id, device_id)
        logger.info(
            "Synced %s for device %s (user %s)", record.date, device_id, user_id
        )
        return record

    async def sync_bulk(
        self,
        user_id: UUID,
        device_id: UUID,
        payloads: Iterable[ActivityPayload | Mapping[str, Any]],
    ) -> BulkSyncResult:
        """Merge many dated payloads; failures are skipped and reported.

        Raises:
            NotFoundError: The device does not belong to ``user_id``.
        """
        device = await self._registry.get(user_id, device_id)
        result = await self._ledger.merge_bulk(device, payloads)
        if result.records:
            await self._registry.mark_synced(user_id, device_id)
        logger.info(
            "Bulk sync for device %s: %d merged, %d failed",
            device_id, len(result.records), result.failed_count,
        )
        return result

    # ------------------------------------------------------------------
    # Vendor pulls
    # ------------------------------------------------------------------

    async def initial_backfill(
        self, user_id: UUID, device_id: UUID, device_type: DeviceType
    ) -> BackfillReport:
        """Pull the trailing ``backfill_days`` (today inclusive) for a new connection.

        Never raises: a failed day is logged, counted and skipped.
        """
        today = utc_today()
        days = [
            today - timedelta(days=offset)
            for offset in range(self._config.backfill_days - 1, -1, -1)
        ]
        report = BackfillReport(device_id=device_id)
        source = self._sources.get(device_type)

        if not source.supports_pull:
            message = f"{source.DISPLAY_NAME} data is pushed by the client app"
            logger.info(
                "Backfill skipped for %s/%s: %s", user_id, device_id, message
            )
            report.failed_days.extend(days)
            report.errors.extend(f"{d}: {message}" for d in days)
            return report

        try:
            device = await self._registry.get(user_id, device_id)
            tokens = await self._fresh_tokens(device, source)
        except Exception as exc:
            logger.warning("Backfill aborted for %s/%s: %s", user_id, device_id, exc)
            report.failed_days.extend(days)
            report.errors.extend(f"{d}: {exc}" for d in days)
            return report

        for day in days:
            try:
                payload = await source.fetch_activity(day, tokens)
                await self._ledger.merge(device, payload, day)
                report.synced_days.append(day)
            except Exception as exc:
                logger.warning(
                    "Backfill failed for %s/%s on %s: %s", user_id, device_id, day, exc
                )
                report.failed_days.append(day)
                report.errors.append(f"{day}: {exc}")

        if report.synced_days:
            try:
                await self._registry.mark_synced(user_id, device_id)
            except Exception as exc:
                logger.warning("Could not stamp sync time for %s: %s", device_id, exc)

        logger.info(
            "Backfill complete for %s/%s: %d synced, %d failed",
            user_id, device_id, len(report.synced_days), len(report.failed_days),
        )
        return report

    async def sync_all(self, user_id: UUID) -> SyncAllResult:
        """Pull today's activity for every CONNECTED device of the user.

        Devices run concurrently (capped by ``sync_all_concurrency``) and in
        no particular order.  Push-only devices are counted as skipped.
        """
        devices = await self._registry.connected_devices(user_id)
        result = SyncAllResult(total_devices=len(devices))
        if not devices:
            return result

        semaphore = asyncio.Semaphore(self._concurrency)
        outcomes = await asyncio.gather(
            *(self._sync_device(device, semaphore) for device in devices),
            return_exceptions=True,
        )

        for device, outcome in zip(devices, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Sync failed for device %s (%s): %s",
                    device.device_id, device.device_name, outcome,
                )
                result.failed_syncs += 1
            elif outcome is None:
                result.skipped_syncs += 1
            else:
                result.successful_syncs += 1

        logger.info(
            "Sync-all for user %s: %d devices, %d ok, %d failed, %d skipped",
            user_id, result.total_devices, result.successful_syncs,
            result.failed_syncs, result.skipped_syncs,
        )
        return result

    async def test_connection(self, user_id: UUID, device_id: UUID) -> Device:
        """Check that the device's source answers, without writing to the ledger.

        Raises:
            NotFoundError: The device does not belong to ``user_id``.
            UpstreamError: The source failed; the device is marked ERROR.
        """
        device = await self._registry.get(user_id, device_id)
        source = self._sources.get(device.device_type)

        try:
            if source.supports_pull:
                tokens = await self._fresh_tokens(device, source)
                try:
                    await source.fetch_activity(utc_today(), tokens)
                except NoActivityDataError:
                    # Authenticated and answering; nothing recorded yet today
                    logger.info("%s reachable but has no activity today", device_id)
            elif device.connection_status == ConnectionStatus.DISCONNECTED:
                raise UpstreamError(f"{device.device_name} is disconnected")
        except Exception as exc:
            logger.warning("Connection test failed for %s: %s", device_id, exc)
            await self._registry.mark_status(user_id, device_id, ConnectionStatus.ERROR)
            raise UpstreamError("Device connection test failed") from exc

        updated = await self._registry.mark_status(
            user_id, device_id, ConnectionStatus.CONNECTED
        )
        logger.info("Connection test passed for %s", device_id)
        return updated or device

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _sync_device(
        self, device: Device, semaphore: asyncio.Semaphore
    ) -> ActivityRecord | None:
        """Fetch and merge today for one device; None when it is push-only."""
        source = self._sources.get(device.device_type)
        if not source.supports_pull:
            return None

        async with semaphore:
            tokens = await self._fresh_tokens(device, source)
            today = utc_today()
            payload = await source.fetch_activity(today, tokens)
            return await self.sync_one(device.user_id, device.device_id, payload, today)

    async def _fresh_tokens(self, device: Device, source: ActivitySource) -> DeviceTokens:
        """Return the device's tokens, refreshing them first if they are about to expire.

        A failed refresh is logged and the stored tokens are used as-is.
        """
        tokens = self._registry.tokens_for(device)
        if not tokens.refresh_token or not CredentialVault.is_expired(
            tokens.expires_at, self._config.token_refresh_buffer_seconds
        ):
            return tokens

        try:
            refreshed = await source.refresh(tokens)
        except Exception as exc:
            logger.warning(
                "Token refresh failed for %s: %s. Using existing token.", device.device_id, exc
            )
            return tokens

        await self._registry.update_tokens(
            device.user_id,
            device.device_id,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            expires_at=refreshed.expires_at,
        )
        logger.info("Refreshed token for %s", device.device_id)
        return refreshed
