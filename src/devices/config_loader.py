"""Load, validate, and hot-reload the device engine configuration.

The config lives in ``engine_config.yaml`` alongside this module.  It is
loaded once and cached; ``reload_engine_config()`` re-reads it from disk.

Usage::

    from src.devices.config_loader import get_engine_config

    config = get_engine_config()
    config.backfill_days            # 7
    config.balance.slight_imbalance_max_pct  # 0.25
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("kalori.devices.config")

_CONFIG_PATH = Path(__file__).parent / "engine_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class BalanceThresholds:
    """Inclusive upper bounds of |balance| / calories_out for each status."""

    balanced_max_pct: float = 0.10
    slight_imbalance_max_pct: float = 0.25


@dataclass
class AnalyticsConfig:
    default_window_days: int = 30
    max_window_days: int = 365
    trend_threshold_pct: float = 0.10


@dataclass
class EngineConfig:
    """Validated in-memory form of engine_config.yaml."""

    version: str = "1.0"
    backfill_days: int = 7
    default_bmr_kcal: float = 1800.0
    balance: BalanceThresholds = field(default_factory=BalanceThresholds)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    token_refresh_buffer_seconds: int = 300


class ConfigValidationError(ValueError):
    """Raised when engine_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> EngineConfig:
    """Build an EngineConfig from the parsed YAML, collecting every problem."""
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, name: str) -> float:
        value = section.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default

    bf_raw = raw.get("backfill") or {}
    backfill_days = int(_number(bf_raw, "days", 7, "backfill"))
    if backfill_days < 1:
        errors.append(f"backfill.days must be >= 1, got {backfill_days}")

    ledger_raw = raw.get("ledger") or {}
    default_bmr = _number(ledger_raw, "default_bmr_kcal", 1800, "ledger")

    bal_raw = raw.get("balance") or {}
    balance = BalanceThresholds(
        balanced_max_pct=_number(bal_raw, "balanced_max_pct", 0.10, "balance"),
        slight_imbalance_max_pct=_number(
            bal_raw, "slight_imbalance_max_pct", 0.25, "balance"
        ),
    )
    if not 0.0 <= balance.balanced_max_pct <= balance.slight_imbalance_max_pct:
        errors.append(
            "balance thresholds must satisfy 0 <= balanced_max_pct <= slight_imbalance_max_pct"
        )

    an_raw = raw.get("analytics") or {}
    analytics = AnalyticsConfig(
        default_window_days=int(_number(an_raw, "default_window_days", 30, "analytics")),
        max_window_days=int(_number(an_raw, "max_window_days", 365, "analytics")),
        trend_threshold_pct=_number(an_raw, "trend_threshold_pct", 0.10, "analytics"),
    )
    if analytics.default_window_days > analytics.max_window_days:
        errors.append("analytics.default_window_days exceeds max_window_days")

    tok_raw = raw.get("tokens") or {}
    refresh_buffer = int(_number(tok_raw, "refresh_buffer_seconds", 300, "tokens"))

    if errors:
        raise ConfigValidationError(
            f"engine_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return EngineConfig(
        version=str(raw.get("version", "1.0")),
        backfill_days=backfill_days,
        default_bmr_kcal=default_bmr,
        balance=balance,
        analytics=analytics,
        token_refresh_buffer_seconds=refresh_buffer,
    )


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load and validate the engine config from disk."""
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded engine config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: EngineConfig | None = None
_config_lock = threading.Lock()


def get_engine_config() -> EngineConfig:
    """Return the global EngineConfig, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_engine_config()
    return _config


def reload_engine_config(path: Path | None = None) -> EngineConfig:
    """Re-read the config and swap the singleton.  The old config survives a failed load."""
    global _config
    new_config = load_engine_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded engine config: %s → %s", old_version, new_config.version)
    return new_config
