"""Shared FastAPI dependencies injected into route handlers.

Long-lived collaborators (repository, vault, activity sources, text
generator) are created in the app lifespan and stored on ``app.state``; the
per-request services are assembled from them here.  Tests override the
``get_*`` providers with in-memory doubles.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from src.config import Settings, get_settings
from src.devices.analytics import AnalyticsAggregator
from src.devices.balance import BalanceCalculator
from src.devices.config_loader import EngineConfig, get_engine_config
from src.devices.insights import ActivityInsights
from src.devices.ledger import ActivityLedger
from src.devices.registry import DeviceRegistry
from src.devices.repository import ActivityRepository
from src.devices.sources import SourceRegistry
from src.devices.sync import SyncOrchestrator
from src.devices.vault import CredentialVault
from src.errors import AuthenticationError
from src.services.text_generation import TextGenerator


@dataclass(frozen=True)
class AuthContext:
    """Identity of the calling user, resolved upstream."""

    user_id: uuid.UUID


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The identity middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise AuthenticationError("Not authenticated")
    return auth


# ---------- Long-lived collaborators ----------


def get_repository(request: Request) -> ActivityRepository:
    return request.app.state.repository


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_sources(request: Request) -> SourceRegistry:
    return request.app.state.sources


def get_text_generator(request: Request) -> TextGenerator:
    return request.app.state.text_generator


# ---------- Per-request services ----------


@dataclass
class DeviceServices:
    registry: DeviceRegistry
    ledger: ActivityLedger
    orchestrator: SyncOrchestrator
    balance: BalanceCalculator
    analytics: AnalyticsAggregator
    insights: ActivityInsights


def get_services(
    repository: Annotated[ActivityRepository, Depends(get_repository)],
    vault: Annotated[CredentialVault, Depends(get_vault)],
    sources: Annotated[SourceRegistry, Depends(get_sources)],
    generator: Annotated[TextGenerator, Depends(get_text_generator)],
    config: Annotated[EngineConfig, Depends(get_engine_config)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> DeviceServices:
    registry = DeviceRegistry(repository, vault)
    ledger = ActivityLedger(repository)
    orchestrator = SyncOrchestrator(registry, ledger, sources, config, settings)
    registry.set_connect_hook(orchestrator.initial_backfill)
    balance = BalanceCalculator(repository, config.balance)
    return DeviceServices(
        registry=registry,
        ledger=ledger,
        orchestrator=orchestrator,
        balance=balance,
        analytics=AnalyticsAggregator(repository, config.analytics),
        insights=ActivityInsights(repository, balance, generator),
    )


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Services = Annotated[DeviceServices, Depends(get_services)]
