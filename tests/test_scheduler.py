# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Tests for capital call schedule expansion."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from dealflow.core.capital_calls.models import AmountType, CustomScheduleEntry, ScheduleKind, ScheduleSpec
from dealflow.core.capital_calls.scheduler import CapitalCallScheduler
from dealflow.core.config import DateHandlingConfig, ScheduleConfig, TimingConfig
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import ValidationError


def _noon(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, 12, tzinfo=timezone.utc)


def _scheduler(validation: str = "warn") -> CapitalCallScheduler:
    dates = DateNormalizer(DateHandlingConfig(), TimingConfig())
    return CapitalCallScheduler(dates, ScheduleConfig(percentage_validation=validation))


@pytest.fixture
def scheduler() -> CapitalCallScheduler:
    return _scheduler()


def test_quarterly_percentage_schedule(scheduler):
    """$1M, 4 quarterly calls of 25% from 2025-01-15."""
    spec = ScheduleSpec(
        kind=ScheduleKind.QUARTERLY,
        first_call_date="2025-01-15",
        call_count=4,
        call_percentage=25,
    )
    result = scheduler.expand(Decimal("1000000"), spec)

    assert [c.call_date for c in result.calls] == [
        _noon(2025, 1, 15), _noon(2025, 4, 15), _noon(2025, 7, 15), _noon(2025, 10, 15),
    ]
    assert [c.due_date for c in result.calls] == [
        _noon(2025, 2, 14), _noon(2025, 5, 15), _noon(2025, 8, 14), _noon(2025, 11, 14),
    ]
    assert all(c.call_amount == Decimal("250000.00") for c in result.calls)
    assert all(c.amount_type == AmountType.PERCENTAGE for c in result.calls)
    assert all(c.source_value == Decimal("25") for c in result.calls)
    assert result.total_percentage == Decimal("100")
    assert result.warnings == []
    assert [c.notes for c in result.calls][0] == "Scheduled payment 1 of 4"
    assert [c.sequence for c in result.calls] == [1, 2, 3, 4]


def test_monthly_dates_do_not_drift(scheduler):
    """Each date is offset from the first, so Jan 31 -> Feb 28 -> Mar 31."""
    spec = ScheduleSpec(kind=ScheduleKind.MONTHLY, first_call_date="2025-01-31", call_count=3, call_percentage=10)
    result = scheduler.expand(1000, spec)
    assert [c.call_date for c in result.calls] == [_noon(2025, 1, 31), _noon(2025, 2, 28), _noon(2025, 3, 31)]


def test_annual_and_biannual_periods(scheduler):
    annual = scheduler.expand(1000, ScheduleSpec(
        kind=ScheduleKind.ANNUAL, first_call_date="2025-03-01", call_count=2, call_percentage=50,
    ))
    assert [c.call_date for c in annual.calls] == [_noon(2025, 3, 1), _noon(2026, 3, 1)]
    biannual = scheduler.expand(1000, ScheduleSpec(
        kind=ScheduleKind.BIANNUAL, first_call_date="2025-03-01", call_count=2, call_percentage=50,
    ))
    assert [c.call_date for c in biannual.calls] == [_noon(2025, 3, 1), _noon(2025, 9, 1)]


def test_single_schedule_calls_full_commitment(scheduler):
    result = scheduler.expand(Decimal("500000"), ScheduleSpec(kind=ScheduleKind.SINGLE, first_call_date="2025-05-01"))
    assert len(result.calls) == 1
    call = result.calls[0]
    assert call.call_amount == Decimal("500000.00")
    assert call.source_value == Decimal("100")
    assert call.notes == "Single payment call"


def test_percentage_rounds_half_up(scheduler):
    spec = ScheduleSpec(kind=ScheduleKind.SINGLE, first_call_date="2025-05-01")
    result = scheduler.expand(Decimal("100.01"), ScheduleSpec(
        kind=ScheduleKind.CUSTOM,
        custom_entries=[CustomScheduleEntry(date="2025-05-01", percentage=50)],
    ))
    assert result.calls[0].call_amount == Decimal("50.01")
    assert scheduler.expand(Decimal("100.01"), spec).calls[0].call_amount == Decimal("100.01")


def test_dollar_schedule_warns_on_partial_total(scheduler):
    spec = ScheduleSpec(kind=ScheduleKind.QUARTERLY, first_call_date="2025-01-15", call_count=3, call_amount=100000)
    result = scheduler.expand(Decimal("1000000"), spec)
    assert all(c.call_amount == Decimal("100000.00") for c in result.calls)
    assert all(c.amount_type == AmountType.DOLLAR for c in result.calls)
    assert result.total_percentage == Decimal("30")
    assert len(result.warnings) == 1
    assert "30%" in result.warnings[0]


def test_strict_validation_rejects_partial_total():
    spec = ScheduleSpec(kind=ScheduleKind.QUARTERLY, first_call_date="2025-01-15", call_count=3, call_percentage=25)
    with pytest.raises(ValidationError) as exc:
        _scheduler("strict").expand(1000000, spec)
    assert "schedule" in exc.value.errors


def test_validation_off_returns_no_warnings():
    spec = ScheduleSpec(kind=ScheduleKind.QUARTERLY, first_call_date="2025-01-15", call_count=3, call_percentage=25)
    assert _scheduler("off").expand(1000000, spec).warnings == []


def test_custom_entries_sorted_by_date(scheduler):
    spec = ScheduleSpec(kind=ScheduleKind.CUSTOM, custom_entries=[
        CustomScheduleEntry(date="2025-09-01", percentage=40),
        CustomScheduleEntry(date="2025-03-01", amount="600000"),
    ])
    result = scheduler.expand(Decimal("1000000"), spec)
    assert [c.call_date for c in result.calls] == [_noon(2025, 3, 1), _noon(2025, 9, 1)]
    assert result.calls[0].amount_type == AmountType.DOLLAR
    assert result.calls[1].call_amount == Decimal("400000.00")
    assert result.total_percentage == Decimal("100")
    assert result.calls[0].notes == "Custom call 1 of 2"


def test_custom_duplicate_dates_rejected(scheduler):
    spec = ScheduleSpec(kind=ScheduleKind.CUSTOM, custom_entries=[
        CustomScheduleEntry(date="2025-03-01", percentage=50),
        CustomScheduleEntry(date="2025-03-01", percentage=50),
    ])
    with pytest.raises(ValidationError) as exc:
        scheduler.expand(1000, spec)
    assert "custom_entries" in exc.value.errors


def test_custom_entry_needs_exactly_one_magnitude(scheduler):
    spec = ScheduleSpec(kind=ScheduleKind.CUSTOM, custom_entries=[
        CustomScheduleEntry(date="2025-03-01", percentage=50, amount=500),
        CustomScheduleEntry(date=None, percentage=50),
    ])
    with pytest.raises(ValidationError) as exc:
        scheduler.expand(1000, spec)
    assert "custom_entries[0]" in exc.value.errors
    assert "custom_entries[1].date" in exc.value.errors


def test_custom_entry_bad_date_names_field(scheduler):
    spec = ScheduleSpec(kind=ScheduleKind.CUSTOM, custom_entries=[CustomScheduleEntry(date="2025-13-01", percentage=50)])
    with pytest.raises(ValidationError) as exc:
        scheduler.expand(1000, spec)
    assert "custom_entries[0].date" in exc.value.errors


@pytest.mark.parametrize("kwargs,field_name", [
    ({"call_count": 0, "call_percentage": 25}, "call_count"),
    ({"call_count": 4}, "call_percentage"),
    ({"call_count": 4, "call_percentage": 25, "call_amount": 100}, "call_amount"),
    ({"call_count": 4, "call_percentage": 0}, "call_percentage"),
    ({"call_count": 4, "call_percentage": 101}, "call_percentage"),
    ({"call_count": 4, "call_amount": -5}, "call_amount"),
])
def test_periodic_input_errors(scheduler, kwargs, field_name):
    spec = ScheduleSpec(kind=ScheduleKind.QUARTERLY, first_call_date="2025-01-15", **kwargs)
    with pytest.raises(ValidationError) as exc:
        scheduler.expand(1000, spec)
    assert field_name in exc.value.errors


def test_missing_first_call_date(scheduler):
    with pytest.raises(ValidationError) as exc:
        scheduler.expand(1000, ScheduleSpec(kind=ScheduleKind.MONTHLY, call_count=2, call_percentage=50))
    assert "first_call_date" in exc.value.errors


def test_commitment_must_be_positive(scheduler):
    with pytest.raises(ValidationError):
        scheduler.expand(0, ScheduleSpec(kind=ScheduleKind.SINGLE, first_call_date="2025-01-15"))


def test_schedule_spec_from_dict_aliases():
    spec = ScheduleSpec.from_dict({
        "schedule": "custom",
        "custom_schedule": [{"date": "2025-01-15", "percentage": 100}],
    })
    assert spec.kind == ScheduleKind.CUSTOM
    assert spec.custom_entries[0].percentage == 100


def test_schedule_spec_from_dict_rejects_unknown_kind():
    with pytest.raises(ValidationError) as exc:
        ScheduleSpec.from_dict({"kind": "weekly"})
    assert "kind" in exc.value.errors


def test_periodic_schedule_requires_call_count(scheduler):
    spec = ScheduleSpec.from_dict({"kind": "quarterly", "first_call_date": "2025-01-15", "call_percentage": "25"})
    assert spec.call_count is None
    with pytest.raises(ValidationError) as exc:
        scheduler.expand(Decimal("1000000"), spec)
    assert exc.value.errors["call_count"] == "is required"


@pytest.mark.parametrize("raw", [3.9, "3.5", "three", True])
def test_schedule_spec_from_dict_rejects_non_integral_call_count(raw):
    with pytest.raises(ValidationError) as exc:
        ScheduleSpec.from_dict({"kind": "quarterly", "first_call_date": "2025-01-15", "call_count": raw})
    assert "call_count" in exc.value.errors


@pytest.mark.parametrize("raw", [4, "4", 4.0])
def test_schedule_spec_from_dict_accepts_whole_call_count(raw):
    spec = ScheduleSpec.from_dict({"kind": "quarterly", "first_call_date": "2025-01-15", "call_count": raw})
    assert spec.call_count == 4
