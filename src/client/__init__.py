"""Kalori client sync agent.

The on-device half of device ingestion: reads the phone's health platform,
keeps a local cache for offline use, and pushes days to the server through
the same ``POST /devices/{id}/sync`` contract every vendor uses.

Modules:
    platform — HealthPlatform protocol and the HealthData day shape
    cache    — JSON-file cache of fetched days and the local device list
    api      — httpx client for the /api/v1/devices endpoints
    agent    — ClientSyncAgent, with server-first / local-fallback reads
"""

from src.client.agent import ClientSyncAgent
from src.client.api import DeviceApiClient
from src.client.cache import LocalCache
from src.client.platform import HealthData, HealthPlatform

__all__ = [
    "ClientSyncAgent",
    "DeviceApiClient",
    "HealthData",
    "HealthPlatform",
    "LocalCache",
]
