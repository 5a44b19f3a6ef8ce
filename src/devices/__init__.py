"""Kalori device activity ingestion and energy-balance engine.

Connects fitness devices, merges their daily activity into a per-user,
per-device, per-day ledger and reconciles it with nutrition intake.

Subpackages:
    sources/ — Vendor activity sources (Fitbit, Oura, Google Fit, Whoop, ...)

Core modules:
    base          — Enumerations and canonical dataclasses
    config_loader — Load/validate engine_config.yaml
    repository    — Persistence interface + in-memory implementation
    postgres      — asyncpg-backed repository
    vault         — Credential encryption (Fernet)
    registry      — Device registry (connect / disconnect / tokens)
    ledger        — Idempotent per-day activity merge
    sync          — Sync orchestrator (one / bulk / backfill / all)
    balance       — Daily energy-balance calculator
    analytics     — Rolling averages and trend detection
    insights      — Text-generation backed recommendations
"""

from src.devices.base import (
    ActivityRecord,
    BalanceStatus,
    ConnectionStatus,
    DailyBalance,
    Device,
    DeviceTokens,
    DeviceType,
    IntakeRecord,
    Trend,
)
from src.devices.config_loader import EngineConfig, get_engine_config

__all__ = [
    "ActivityRecord",
    "BalanceStatus",
    "ConnectionStatus",
    "DailyBalance",
    "Device",
    "DeviceTokens",
    "DeviceType",
    "IntakeRecord",
    "Trend",
    "EngineConfig",
    "get_engine_config",
]
