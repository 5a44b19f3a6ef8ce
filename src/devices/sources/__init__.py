"""Activity sources for Kalori.

Each source implements the ActivitySource ABC and turns one vendor's daily
summary into a normalized ActivityPayload:

    FitbitSource     — Fitbit Web API (OAuth2)
    OuraSource       — Oura API v2 (OAuth2)
    GoogleFitSource  — Google Fit REST API (OAuth2)
    WhoopSource      — Whoop API v1 (OAuth2)
    PolarSource      — Polar AccessLink v3 (OAuth2)
    WithingsSource   — Withings Public API (OAuth2)

Apple Health, Samsung Health and Huawei Health only reach the server through
client pushes; they (and vendors without an adapter) resolve to a
PushOnlySource.
"""

from __future__ import annotations

import logging

import httpx

from src.config import Settings
from src.devices.base import DeviceType
from src.devices.config_loader import EngineConfig
from src.devices.sources.base import ActivitySource, HttpActivitySource, PushOnlySource
from src.devices.sources.fitbit import FitbitSource
from src.devices.sources.google_fit import GoogleFitSource
from src.devices.sources.oura import OuraSource
from src.devices.sources.polar import PolarSource
from src.devices.sources.whoop import WhoopSource
from src.devices.sources.withings import WithingsSource

logger = logging.getLogger("kalori.devices.sources")

__all__ = [
    "ActivitySource",
    "HttpActivitySource",
    "PushOnlySource",
    "FitbitSource",
    "GoogleFitSource",
    "OuraSource",
    "PolarSource",
    "WhoopSource",
    "WithingsSource",
    "SOURCE_REGISTRY",
    "SourceRegistry",
]

# Registry: device type → (source class, settings prefix of its OAuth client)
SOURCE_REGISTRY: dict[DeviceType, tuple[type[HttpActivitySource], str]] = {
    DeviceType.FITBIT: (FitbitSource, "fitbit"),
    DeviceType.OURA: (OuraSource, "oura"),
    DeviceType.GOOGLE_FIT: (GoogleFitSource, "google_fit"),
    DeviceType.WHOOP: (WhoopSource, "whoop"),
    DeviceType.POLAR: (PolarSource, "polar"),
    DeviceType.WITHINGS: (WithingsSource, "withings"),
}


class SourceRegistry:
    """Build and cache one ActivitySource per device type.

    Usage::

        sources = SourceRegistry(settings, engine_config)
        payload = await sources.get(DeviceType.OURA).fetch_activity(day, tokens)
    """

    def __init__(
        self,
        settings: Settings,
        engine_config: EngineConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            settings:      Supplies OAuth clients and the vendor timeout.
            engine_config: Supplies the default BMR.
            http_client:   Optional shared httpx client (for testing).
        """
        self._settings = settings
        self._engine_config = engine_config
        self._http_client = http_client
        self._sources: dict[DeviceType, ActivitySource] = {}

    def get(self, device_type: DeviceType) -> ActivitySource:
        """Return the source for ``device_type``; push-only when none is registered."""
        if device_type not in self._sources:
            self._sources[device_type] = self._build(device_type)
        return self._sources[device_type]

    def register(self, device_type: DeviceType, source: ActivitySource) -> None:
        """Install a source explicitly, replacing any cached one."""
        self._sources[device_type] = source

    def _build(self, device_type: DeviceType) -> ActivitySource:
        entry = SOURCE_REGISTRY.get(device_type)
        if entry is None:
            logger.debug("No pull adapter for %s; treating as push-only", device_type.value)
            return PushOnlySource(device_type)

        source_cls, vendor = entry
        client_id, client_secret = self._settings.oauth_client(vendor)
        return source_cls(
            client_id=client_id,
            client_secret=client_secret,
            http_client=self._http_client,
            timeout_s=self._settings.vendor_http_timeout_s,
            default_bmr_kcal=self._engine_config.default_bmr_kcal,
        )
