"""Shared fixtures for device engine tests: in-memory repository, vault, fake sources."""

from __future__ import annotations

import random
from datetime import date
from uuid import UUID

import pytest
from cryptography.fernet import Fernet

from src.config import Settings
from src.devices.base import DeviceTokens, DeviceType
from src.devices.config_loader import EngineConfig, load_engine_config
from src.devices.ledger import ActivityLedger
from src.devices.registry import DeviceRegistry
from src.devices.repository import InMemoryRepository
from src.devices.sources import SourceRegistry
from src.devices.sources.base import ActivitySource
from src.devices.sync import SyncOrchestrator
from src.devices.vault import CredentialVault
from src.errors import UpstreamError
from src.models.devices import ActivityPayload

# Canonical test identities
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_DATE = date(2026, 2, 23)
TEST_KEY = Fernet.generate_key().decode()


# ---------------------------------------------------------------------------
# Fake activity sources
# ---------------------------------------------------------------------------


class SampleSource(ActivitySource):
    """Pull source that returns seeded random activity and records every call."""

    DISPLAY_NAME = "Sample"

    def __init__(
        self,
        device_type: DeviceType = DeviceType.FITBIT,
        seed: int = 42,
        failing_days: set[date] | None = None,
    ) -> None:
        self.DEVICE_TYPE = device_type
        self._rng = random.Random(seed)
        self.failing_days = failing_days or set()
        self.calls: list[tuple[date, DeviceTokens]] = []
        self.refresh_calls = 0

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        self.calls.append((day, tokens))
        if day in self.failing_days:
            raise UpstreamError(f"Sample vendor unavailable on {day}")
        return ActivityPayload(
            day=day,
            steps=self._rng.randint(5000, 10000),
            calories_burned=self._rng.randint(200, 500),
            active_minutes=self._rng.randint(30, 90),
            bmr=1800,
        )

    async def refresh(self, tokens: DeviceTokens) -> DeviceTokens:
        self.refresh_calls += 1
        return DeviceTokens(
            access_token=f"refreshed-{self.refresh_calls}",
            refresh_token=tokens.refresh_token,
        )


class BrokenSource(ActivitySource):
    DISPLAY_NAME = "Broken"

    def __init__(self, device_type: DeviceType) -> None:
        self.DEVICE_TYPE = device_type

    async def fetch_activity(self, day: date, tokens: DeviceTokens) -> ActivityPayload:
        raise UpstreamError("vendor down")


# ---------------------------------------------------------------------------
# Config / collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def engine_config() -> EngineConfig:
    """Load the real engine config for tests."""
    return load_engine_config()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        token_encryption_key=TEST_KEY,
        anthropic_api_key="",
        sync_all_concurrency=2,
        _env_file=None,
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_KEY, token_ttl_seconds=3600)


@pytest.fixture
def sample_source() -> SampleSource:
    return SampleSource(DeviceType.FITBIT)


@pytest.fixture
def sources(
    settings: Settings, engine_config: EngineConfig, sample_source: SampleSource
) -> SourceRegistry:
    registry = SourceRegistry(settings, engine_config)
    registry.register(DeviceType.FITBIT, sample_source)
    return registry


@pytest.fixture
def ledger(repository: InMemoryRepository) -> ActivityLedger:
    return ActivityLedger(repository)


@pytest.fixture
def registry(repository: InMemoryRepository, vault: CredentialVault) -> DeviceRegistry:
    """Registry without the post-connect backfill hook."""
    return DeviceRegistry(repository, vault)


@pytest.fixture
def orchestrator(
    registry: DeviceRegistry,
    ledger: ActivityLedger,
    sources: SourceRegistry,
    engine_config: EngineConfig,
    settings: Settings,
) -> SyncOrchestrator:
    return SyncOrchestrator(registry, ledger, sources, engine_config, settings)
