# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Tests for config loading: defaults, config.yaml values, environment overrides."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

import pytest

from dealflow.core import config as config_module
from dealflow.core.config import load_config

_ENV_VARS = (
    "CAPITAL_CALL_DUE_DAYS",
    "CAPITAL_CALL_GRACE_DAYS",
    "CAPITAL_CALL_DEFAULT_PAYMENT_TYPE",
    "CAPITAL_CALL_REQUIRE_PAYMENT_NOTES",
    "CAPITAL_CALL_DEFAULT_HOUR_UTC",
    "CAPITAL_CALL_TIMEZONE",
    "CAPITAL_CALL_PERCENTAGE_VALIDATION",
    "DEALFLOW_DB_PATH",
    "DEALFLOW_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "_CONFIG_CACHE", None)
    yield
    config_module._CONFIG_CACHE = None


def test_defaults_without_yaml() -> None:
    with patch.object(config_module, "_load_yaml_config", return_value={}):
        cfg = load_config(reload=True)
    assert cfg.timing.default_due_days == 30
    assert cfg.timing.payment_grace_days == 7
    assert cfg.timing.reminder_schedule == (7, 3, 1)
    assert cfg.payments.default_payment_type == "wire"
    assert cfg.payments.require_payment_notes is False
    assert cfg.date_handling.default_hour_utc == 12
    assert cfg.date_handling.time_zone == "UTC"
    assert cfg.schedule.percentage_validation == "warn"
    assert cfg.performance.min_age_years == Decimal("0.5")


def test_yaml_values() -> None:
    raw = {
        "timing": {"default_due_days": 45, "reminder_schedule": [10, 5]},
        "payments": {"default_payment_type": "ACH", "require_payment_notes": True},
        "date_handling": {"time_zone": "America/New_York"},
        "schedule": {"percentage_validation": "strict"},
        "performance": {"min_age_years": "1", "irr_precision": 6},
    }
    with patch.object(config_module, "_load_yaml_config", return_value=raw):
        cfg = load_config(reload=True)
    assert cfg.timing.default_due_days == 45
    assert cfg.timing.reminder_schedule == (10, 5)
    assert cfg.payments.default_payment_type == "ach"
    assert cfg.payments.require_payment_notes is True
    assert cfg.date_handling.time_zone == "America/New_York"
    assert cfg.schedule.percentage_validation == "strict"
    assert cfg.performance.min_age_years == Decimal("1")
    assert cfg.performance.irr_precision == 6


def test_env_overrides_yaml(monkeypatch) -> None:
    monkeypatch.setenv("CAPITAL_CALL_DUE_DAYS", "15")
    monkeypatch.setenv("CAPITAL_CALL_GRACE_DAYS", "3")
    monkeypatch.setenv("CAPITAL_CALL_REQUIRE_PAYMENT_NOTES", "yes")
    monkeypatch.setenv("DEALFLOW_DB_PATH", "/tmp/other.db")
    raw = {"timing": {"default_due_days": 45}, "payments": {"require_payment_notes": False}}
    with patch.object(config_module, "_load_yaml_config", return_value=raw):
        cfg = load_config(reload=True)
    assert cfg.timing.default_due_days == 15
    assert cfg.timing.payment_grace_days == 3
    assert cfg.payments.require_payment_notes is True
    assert cfg.database.path == "/tmp/other.db"


def test_unknown_choices_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("CAPITAL_CALL_PERCENTAGE_VALIDATION", "sometimes")
    monkeypatch.setenv("CAPITAL_CALL_DEFAULT_PAYMENT_TYPE", "cash")
    with patch.object(config_module, "_load_yaml_config", return_value={}):
        cfg = load_config(reload=True)
    assert cfg.schedule.percentage_validation == "warn"
    assert cfg.payments.default_payment_type == "wire"


def test_invalid_values_raise(monkeypatch) -> None:
    with patch.object(config_module, "_load_yaml_config", return_value={}):
        monkeypatch.setenv("CAPITAL_CALL_DEFAULT_HOUR_UTC", "25")
        with pytest.raises(ValueError):
            load_config(reload=True)
        monkeypatch.delenv("CAPITAL_CALL_DEFAULT_HOUR_UTC")
        monkeypatch.setenv("CAPITAL_CALL_DUE_DAYS", "0")
        with pytest.raises(ValueError):
            load_config(reload=True)


def test_config_is_cached() -> None:
    with patch.object(config_module, "_load_yaml_config", return_value={}) as loader:
        first = load_config()
        second = load_config()
    assert first is second
    assert loader.call_count == 1
