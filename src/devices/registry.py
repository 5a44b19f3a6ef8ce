"""Device registry: connection lifecycle and credential storage.

One Device exists per (user, device_type).  Reconnecting updates that row in
place; disconnecting only flips its status and drops its credentials, so
the device's ledger history stays intact.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import UUID

from src.devices.base import (
    ConnectionStatus,
    Device,
    DeviceTokens,
    DeviceType,
    utc_now,
)
from src.devices.repository import ActivityRepository
from src.devices.vault import CredentialVault
from src.errors import NotFoundError

logger = logging.getLogger("kalori.devices.registry")

#: Async callback(user_id, device_id, device_type) run after every connect.
ConnectHook = Callable[[UUID, UUID, DeviceType], Awaitable[Any]]


class DeviceRegistry:
    """Owns the set of devices connected to each user."""

    def __init__(
        self,
        repository: ActivityRepository,
        vault: CredentialVault,
        on_connected: ConnectHook | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            repository:   Persistence layer.
            vault:        Token encryption.
            on_connected: Hook fired after connect (the initial backfill).
                          Its failures are logged, never raised.
        """
        self._repo = repository
        self._vault = vault
        self._on_connected = on_connected

    def set_connect_hook(self, hook: ConnectHook | None) -> None:
        self._on_connected = hook

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self,
        user_id: UUID,
        device_type: str | DeviceType,
        device_name: str,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> Device:
        """Connect a device, creating it or reviving the existing row.

        Raises:
            ValidationError: Unknown device type.
        """
        dtype = DeviceType.parse(device_type)
        now = utc_now()
        credentials = self._sealed_credentials(access_token, refresh_token, now)

        existing = await self._repo.find_device_by_type(user_id, dtype)
        if existing is not None:
            device = await self._repo.update_device(
                user_id,
                existing.device_id,
                device_name=device_name,
                connection_status=ConnectionStatus.CONNECTED,
                last_sync_at=now,
                **credentials,
            )
            logger.info("Reconnected %s device %s for user %s", dtype.value, existing.device_id, user_id)
        else:
            is_first = not await self._repo.find_devices(user_id)
            device = await self._repo.insert_device(
                Device(
                    user_id=user_id,
                    device_type=dtype,
                    device_name=device_name,
                    connection_status=ConnectionStatus.CONNECTED,
                    is_primary=is_first,
                    last_sync_at=now,
                    created_at=now,
                    updated_at=now,
                    **credentials,
                )
            )
            logger.info(
                "Connected new %s device %s for user %s (primary=%s)",
                dtype.value, device.device_id, user_id, is_first,
            )

        if device is None:  # row vanished between lookup and update
            raise NotFoundError("Device not found")

        if self._on_connected is not None:
            try:
                await self._on_connected(user_id, device.device_id, dtype)
            except Exception as exc:
                logger.warning(
                    "Post-connect sync failed for %s/%s: %s", user_id, device.device_id, exc
                )
            refreshed = await self._repo.find_device(user_id, device.device_id)
            device = refreshed or device

        return device

    async def disconnect(self, user_id: UUID, device_id: UUID) -> Device:
        """Soft-deactivate a device and clear its credentials.

        Raises:
            NotFoundError: The device does not belong to ``user_id``.
        """
        device = await self._repo.update_device(
            user_id,
            device_id,
            connection_status=ConnectionStatus.DISCONNECTED,
            access_token_enc=None,
            refresh_token_enc=None,
            token_expires_at=None,
        )
        if device is None:
            raise NotFoundError("Device not found")
        logger.info("Disconnected device %s for user %s", device_id, user_id)
        return device

    async def list_devices(self, user_id: UUID) -> list[Device]:
        devices = await self._repo.find_devices(user_id)
        logger.debug("Found %d devices for user %s", len(devices), user_id)
        return devices

    async def connected_devices(self, user_id: UUID) -> list[Device]:
        return await self._repo.find_devices(user_id, status=ConnectionStatus.CONNECTED)

    async def get(self, user_id: UUID, device_id: UUID) -> Device:
        device = await self._repo.find_device(user_id, device_id)
        if device is None:
            raise NotFoundError("Device not found")
        return device

    async def mark_status(
        self, user_id: UUID, device_id: UUID, status: ConnectionStatus
    ) -> Device | None:
        return await self._repo.update_device(user_id, device_id, connection_status=status)

    async def mark_synced(self, user_id: UUID, device_id: UUID) -> Device | None:
        """Stamp a successful sync: last_sync_at = now, status CONNECTED."""
        return await self._repo.update_device(
            user_id,
            device_id,
            last_sync_at=utc_now(),
            connection_status=ConnectionStatus.CONNECTED,
        )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_tokens(self, user_id: UUID, device_id: UUID) -> DeviceTokens:
        """Return decrypted tokens; an unknown device yields empty tokens."""
        device = await self._repo.find_device(user_id, device_id)
        if device is None:
            return DeviceTokens()
        return self.tokens_for(device)

    def tokens_for(self, device: Device) -> DeviceTokens:
        return DeviceTokens(
            access_token=(
                self._vault.decode(device.access_token_enc) if device.access_token_enc else None
            ),
            refresh_token=(
                self._vault.decode(device.refresh_token_enc) if device.refresh_token_enc else None
            ),
            expires_at=device.token_expires_at,
        )

    async def update_tokens(
        self,
        user_id: UUID,
        device_id: UUID,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
    ) -> Device | None:
        """Replace only the tokens supplied.  Unknown devices are ignored."""
        changes: dict[str, Any] = {}
        if access_token:
            changes["access_token_enc"] = self._vault.encode(access_token)
            changes["token_expires_at"] = expires_at or self._vault.expiry_for()
        if refresh_token:
            changes["refresh_token_enc"] = self._vault.encode(refresh_token)
        if not changes:
            return await self._repo.find_device(user_id, device_id)

        device = await self._repo.update_device(user_id, device_id, **changes)
        if device is None:
            logger.debug("update_tokens: device %s not found for user %s", device_id, user_id)
        else:
            logger.info("Updated tokens for device %s", device_id)
        return device

    def _sealed_credentials(
        self, access_token: str | None, refresh_token: str | None, now: datetime
    ) -> dict[str, Any]:
        return {
            "access_token_enc": self._vault.encode(access_token) if access_token else None,
            "refresh_token_enc": self._vault.encode(refresh_token) if refresh_token else None,
            "token_expires_at": self._vault.expiry_for(now) if access_token else None,
        }
