"""Activity source interface: one normalized daily fetch per device type.

Every vendor adapter turns the vendor's daily summary into the same
``ActivityPayload`` shape the client app pushes, so the ledger never sees a
vendor-specific format.  Vendor failures (HTTP errors, timeouts, unexpected
JSON) surface as UpstreamError, which every fan-out point absorbs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Any

import httpx
import pydantic

from src.devices.base import DeviceTokens, DeviceType, utc_now
from src.errors import NoActivityDataError, UpstreamError
from src.models.devices import ActivityPayload

logger = logging.getLogger("kalori.devices.sources")


class ActivitySource(ABC):
    """Abstract base class for activity sources.

    Subclasses must implement ``fetch_activity``.  Sources whose vendor
    supports OAuth2 refresh override ``refresh``.
    """

    #: Device type this source serves.
    DEVICE_TYPE: DeviceType

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Source"

    #: False when the server cannot pull data (the client app pushes it).
    supports_pull: bool = True

    @abstractmethod
    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        """Fetch one calendar day of activity.

        Args:
            day:    Date to fetch (user's local date).
            tokens: Decrypted device credentials.

        Returns:
            ActivityPayload dated ``day``.

        Raises:
            UpstreamError: The vendor call failed or returned unusable data.
        """

    async def refresh(self, tokens: DeviceTokens) -> DeviceTokens:
        """Exchange the refresh token for new credentials."""
        raise UpstreamError(f"{self.DISPLAY_NAME} does not support token refresh")


class PushOnlySource(ActivitySource):
    """Placeholder for platforms whose data only arrives through client pushes.

    Apple Health, Samsung Health and Huawei Health expose no server-side API;
    vendors without an adapter yet are treated the same way.
    """

    supports_pull = False

    def __init__(self, device_type: DeviceType) -> None:
        self.DEVICE_TYPE = device_type
        self.DISPLAY_NAME = device_type.value.replace("_", " ").title()

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        raise UpstreamError(
            f"{self.DISPLAY_NAME} data is pushed by the client app and cannot be pulled"
        )


class HttpActivitySource(ActivitySource):
    """Shared HTTP plumbing for OAuth2 vendor APIs."""

    #: OAuth2 token endpoint used by ``refresh``.
    TOKEN_URL: str = ""

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = 30.0,
        default_bmr_kcal: float = 1800.0,
    ) -> None:
        """Initialize the source.

        Args:
            client_id:        OAuth2 client ID (refresh only).
            client_secret:    OAuth2 client secret (refresh only).
            http_client:      Optional pre-configured httpx client (for testing).
            timeout_s:        Per-request timeout.
            default_bmr_kcal: BMR reported when the vendor has none.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client
        self._timeout = timeout_s
        self._default_bmr = default_bmr_kcal

    # ------------------------------------------------------------------
    # OAuth2 refresh
    # ------------------------------------------------------------------

    async def refresh(self, tokens: DeviceTokens) -> DeviceTokens:
        if not tokens.refresh_token:
            raise UpstreamError(f"{self.DISPLAY_NAME}: no refresh token stored")
        if not self._client_id:
            raise UpstreamError(f"{self.DISPLAY_NAME}: OAuth client not configured")

        logger.info("%s: refreshing access token", self.DISPLAY_NAME)
        data = await self._request(
            "POST",
            self.TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens.refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )
        try:
            access_token = data["access_token"]
        except KeyError:
            raise UpstreamError(f"{self.DISPLAY_NAME}: token response had no access_token") from None

        expires_in = self._safe_int(data.get("expires_in")) or 3600
        return DeviceTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token", tokens.refresh_token),
            expires_at=utc_now() + timedelta(seconds=expires_in),
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _headers(self, tokens: DeviceTokens) -> dict[str, str]:
        if not tokens.access_token:
            raise UpstreamError(f"{self.DISPLAY_NAME}: no access token stored")
        return {"Authorization": f"Bearer {tokens.access_token}"}

    async def _get(self, url: str, params: dict, tokens: DeviceTokens) -> dict:
        return await self._request("GET", url, params=params, headers=self._headers(tokens))

    async def _post_json(self, url: str, body: dict, tokens: DeviceTokens) -> dict:
        return await self._request("POST", url, json=body, headers=self._headers(tokens))

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        """Send a request and return its JSON body.

        Raises:
            UpstreamError: Transport error, timeout, non-2xx or non-JSON body.
        """
        try:
            if self._http_client:
                response = await self._http_client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"{self.DISPLAY_NAME} API returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{self.DISPLAY_NAME} API request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"{self.DISPLAY_NAME} API returned invalid JSON") from exc

    # ------------------------------------------------------------------
    # Coercion helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def _no_data(self, day: date) -> NoActivityDataError:
        return NoActivityDataError(f"{self.DISPLAY_NAME} has no activity for {day}")

    def _payload(self, day: date, **values: Any) -> ActivityPayload:
        """Build a dated payload, clamping negative vendor counters to zero."""
        for key in ("steps", "calories_burned", "active_minutes"):
            if values.get(key) is not None and values[key] < 0:
                values[key] = 0
        if values.get("bmr") is None:
            values["bmr"] = self._default_bmr
        try:
            return ActivityPayload(day=day, **values)
        except pydantic.ValidationError as exc:
            raise UpstreamError(
                f"{self.DISPLAY_NAME} returned out-of-range activity data"
            ) from exc
