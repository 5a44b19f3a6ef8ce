"""httpx client for the Kalori device endpoints.

Every call unwraps the ``{success, data, error}`` envelope and raises
UpstreamError when the server is unreachable, times out, or reports
``success: false``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

import httpx

from src.errors import UpstreamError
from src.middleware.identity import USER_ID_HEADER

logger = logging.getLogger("kalori.client.api")

DEFAULT_TIMEOUT_S = 30.0


class DeviceApiClient:
    def __init__(
        self,
        base_url: str,
        user_id: uuid.UUID | str,
        auth_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:    Server API root, e.g. ``https://api.kalori.app/api/v1``.
            user_id:     Signed-in user, sent in the identity header the server reads.
            auth_token:  Optional bearer token for a gateway in front of the server.
            http_client: Optional pre-configured httpx client (for testing).
            timeout_s:   Per-request timeout.
        """
        self._base_url = base_url.rstrip("/")
        self._user_id = str(user_id)
        self._auth_token = auth_token
        self._http_client = http_client
        self._timeout = timeout_s

    # ---------- Endpoints ----------

    async def list_devices(self) -> list[dict[str, Any]]:
        return await self._call("GET", "/devices") or []

    async def connect_device(
        self,
        device_type: str,
        device_name: str,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"deviceType": device_type, "deviceName": device_name}
        if access_token:
            body["accessToken"] = access_token
        if refresh_token:
            body["refreshToken"] = refresh_token
        return await self._call("POST", "/devices/connect", json=body)

    async def disconnect_device(self, device_id: str) -> None:
        await self._call("DELETE", f"/devices/{device_id}")

    async def sync_device(self, device_id: str, activity_data: dict[str, Any]) -> dict[str, Any]:
        return await self._call(
            "POST", f"/devices/{device_id}/sync", json={"activityData": activity_data}
        )

    async def get_activity(self, start: date, end: date) -> list[dict[str, Any]]:
        return await self._call(
            "GET", f"/devices/activity/{start.isoformat()}/{end.isoformat()}"
        ) or []

    async def get_daily_balance(self, day: date) -> dict[str, Any] | None:
        return await self._call("GET", f"/devices/balance/{day.isoformat()}")

    # ---------- Transport ----------

    def _headers(self) -> dict[str, str]:
        headers = {USER_ID_HEADER: self._user_id}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, headers=self._headers(), **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, headers=self._headers(), **kwargs
                    )
            body = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Server request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError("Server returned invalid JSON") from exc

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise UpstreamError(error or f"Server returned {response.status_code}")
        return body.get("data")
