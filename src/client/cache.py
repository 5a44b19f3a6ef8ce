"""JSON-file local cache for the client agent.

Layout under the cache directory::

    health_data_<YYYY-MM-DD>.json   one fetched day (HealthData.to_json)
    connected_devices.json          the locally known device list

Cache failures are logged and reported as a miss; they never break a sync.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

from src.client.platform import HealthData

logger = logging.getLogger("kalori.client.cache")

_DEVICES_FILE = "connected_devices.json"


class LocalCache:
    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)

    def _health_path(self, day: date) -> Path:
        return self._dir / f"health_data_{day.isoformat()}.json"

    # ---------- Health data ----------

    def store_health_data(self, data: HealthData) -> None:
        self._write(self._health_path(data.date), data.to_json())

    def load_health_data(self, day: date) -> HealthData | None:
        raw = self._read(self._health_path(day))
        if not isinstance(raw, dict):
            return None
        try:
            return HealthData.from_json(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding corrupt cached health data for %s: %s", day, exc)
            return None

    # ---------- Devices ----------

    def load_devices(self) -> list[dict[str, Any]]:
        raw = self._read(self._dir / _DEVICES_FILE)
        return raw if isinstance(raw, list) else []

    def store_device(self, device: dict[str, Any]) -> None:
        """Insert or replace a device entry, keyed by ``id``."""
        devices = [d for d in self.load_devices() if d.get("id") != device.get("id")]
        devices.append(device)
        self._write(self._dir / _DEVICES_FILE, devices)

    def remove_device(self, device_id: str) -> None:
        devices = [d for d in self.load_devices() if d.get("id") != device_id]
        self._write(self._dir / _DEVICES_FILE, devices)

    def replace_devices(self, devices: list[dict[str, Any]]) -> None:
        self._write(self._dir / _DEVICES_FILE, devices)

    # ---------- File helpers ----------

    def _read(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Error reading cache file %s: %s", path.name, exc)
            return None

    def _write(self, path: Path, value: Any) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value), encoding="utf-8")
        except OSError as exc:
            logger.warning("Error writing cache file %s: %s", path.name, exc)
