# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Centralized configuration loader for DealFlow.

Loads config.yaml from the repository root and provides typed access to settings.
Falls back to sensible defaults if config.yaml is missing or incomplete.
Environment variables override config.yaml values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

_CONFIG_CACHE: Optional["DealFlowConfig"] = None

VALID_PAYMENT_TYPES = ("wire", "check", "ach", "other")
VALID_PERCENTAGE_VALIDATION = ("strict", "warn", "off")


def _repo_root() -> Path:
    """Return the repository root."""
    # dealflow/core/config.py -> repo root
    return Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class TimingConfig:
    """Capital call timing: due date offset, grace period, reminder lead times."""
    default_due_days: int = 30
    payment_grace_days: int = 7
    reminder_schedule: Tuple[int, ...] = (7, 3, 1)  # days before due date


@dataclass(frozen=True)
class PaymentsConfig:
    """Payment recording defaults."""
    default_payment_type: str = "wire"
    require_payment_notes: bool = False


@dataclass(frozen=True)
class DateHandlingConfig:
    """Calendar date canonicalization.

    time_zone is the zone in which naive datetimes are read; every stored date
    carries default_hour_utc as its UTC time of day.
    """
    time_zone: str = "UTC"
    default_hour_utc: int = 12


@dataclass(frozen=True)
class ScheduleConfig:
    """Schedule expansion policy."""
    percentage_validation: str = "warn"  # strict | warn | off
    minor_units: int = 2


@dataclass(frozen=True)
class PerformanceConfig:
    """Performance ratio settings."""
    min_age_years: Decimal = Decimal("0.5")
    multiple_precision: int = 2
    irr_precision: int = 4


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite location."""
    path: str = "out/dealflow.db"


@dataclass(frozen=True)
class DealFlowConfig:
    """Root configuration object."""
    timing: TimingConfig = field(default_factory=TimingConfig)
    payments: PaymentsConfig = field(default_factory=PaymentsConfig)
    date_handling: DateHandlingConfig = field(default_factory=DateHandlingConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    debug: bool = False


def _load_yaml_config() -> dict:
    """Load config.yaml from repo root. Returns empty dict if not found."""
    config_path = _repo_root() / "config.yaml"
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("[CONFIG] Failed to read %s, using defaults: %s", config_path, e)
        return {}


def _env_bool(name: str, fallback: bool) -> bool:
    raw = os.getenv(name, "")
    if raw.lower() in ("true", "1", "yes"):
        return True
    if raw.lower() in ("false", "0", "no"):
        return False
    return bool(fallback)


def load_config(*, reload: bool = False) -> DealFlowConfig:
    """Load and return the DealFlow configuration.

    Priority order (highest to lowest):
    1. Environment variables (CAPITAL_CALL_DUE_DAYS, CAPITAL_CALL_GRACE_DAYS, DEALFLOW_DB_PATH, etc.)
    2. config.yaml values
    3. Built-in defaults

    Parameters
    ----------
    reload : bool
        If True, force reload from disk. Otherwise use cached config.

    Returns
    -------
    DealFlowConfig
        The loaded configuration.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE is not None and not reload:
        return _CONFIG_CACHE

    raw = _load_yaml_config()

    # Timing
    timing_raw = raw.get("timing", {}) or {}
    due_days = int(os.getenv(
        "CAPITAL_CALL_DUE_DAYS",
        str(timing_raw.get("default_due_days", 30))
    ))
    grace_days = int(os.getenv(
        "CAPITAL_CALL_GRACE_DAYS",
        str(timing_raw.get("payment_grace_days", 7))
    ))
    reminders = tuple(int(d) for d in (timing_raw.get("reminder_schedule") or (7, 3, 1)))
    if due_days < 1:
        raise ValueError(f"timing.default_due_days must be >= 1, got {due_days}")

    timing = TimingConfig(
        default_due_days=due_days,
        payment_grace_days=grace_days,
        reminder_schedule=reminders,
    )

    # Payments
    pay_raw = raw.get("payments", {}) or {}
    payment_type = os.getenv(
        "CAPITAL_CALL_DEFAULT_PAYMENT_TYPE",
        pay_raw.get("default_payment_type", "wire")
    ).lower()
    if payment_type not in VALID_PAYMENT_TYPES:
        logger.warning("[CONFIG] Unknown default payment type %r, using 'wire'", payment_type)
        payment_type = "wire"
    payments = PaymentsConfig(
        default_payment_type=payment_type,
        require_payment_notes=_env_bool(
            "CAPITAL_CALL_REQUIRE_PAYMENT_NOTES", pay_raw.get("require_payment_notes", False)
        ),
    )

    # Date handling
    dates_raw = raw.get("date_handling", {}) or {}
    hour = int(os.getenv(
        "CAPITAL_CALL_DEFAULT_HOUR_UTC",
        str(dates_raw.get("default_hour_utc", 12))
    ))
    if not 0 <= hour <= 23:
        raise ValueError(f"date_handling.default_hour_utc must be 0-23, got {hour}")
    date_handling = DateHandlingConfig(
        time_zone=os.getenv("CAPITAL_CALL_TIMEZONE", dates_raw.get("time_zone", "UTC")),
        default_hour_utc=hour,
    )

    # Schedule
    sched_raw = raw.get("schedule", {}) or {}
    validation = os.getenv(
        "CAPITAL_CALL_PERCENTAGE_VALIDATION",
        sched_raw.get("percentage_validation", "warn")
    ).lower()
    if validation not in VALID_PERCENTAGE_VALIDATION:
        logger.warning("[CONFIG] Unknown percentage_validation %r, using 'warn'", validation)
        validation = "warn"
    schedule = ScheduleConfig(
        percentage_validation=validation,
        minor_units=int(sched_raw.get("minor_units", 2)),
    )

    # Performance
    perf_raw = raw.get("performance", {}) or {}
    performance = PerformanceConfig(
        min_age_years=Decimal(str(perf_raw.get("min_age_years", "0.5"))),
        multiple_precision=int(perf_raw.get("multiple_precision", 2)),
        irr_precision=int(perf_raw.get("irr_precision", 4)),
    )

    # Database
    db_raw = raw.get("database", {}) or {}
    database = DatabaseConfig(
        path=os.getenv("DEALFLOW_DB_PATH", db_raw.get("path", "out/dealflow.db")),
    )

    app_raw = raw.get("app", {}) or {}

    config = DealFlowConfig(
        timing=timing,
        payments=payments,
        date_handling=date_handling,
        schedule=schedule,
        performance=performance,
        database=database,
        debug=_env_bool("DEALFLOW_DEBUG", app_raw.get("debug", False)),
    )

    _CONFIG_CACHE = config
    return config


def get_db_path() -> Path:
    """Convenience: return the SQLite path, resolved against the repo root when relative."""
    path = Path(load_config().database.path)
    if not path.is_absolute():
        path = _repo_root() / path
    return path


__all__ = [
    "DealFlowConfig",
    "TimingConfig",
    "PaymentsConfig",
    "DateHandlingConfig",
    "ScheduleConfig",
    "PerformanceConfig",
    "DatabaseConfig",
    "VALID_PAYMENT_TYPES",
    "VALID_PERCENTAGE_VALIDATION",
    "load_config",
    "get_db_path",
]
