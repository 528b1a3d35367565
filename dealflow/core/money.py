# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Decimal helpers for currency amounts and percentages."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from dealflow.core.errors import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce int/str/Decimal/float input to Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, bool) or value is None:
        raise ValidationError.single(field_name, "must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError.single(field_name, f"must be a number, got {value!r}")
    if not result.is_finite():
        raise ValidationError.single(field_name, "must be a finite number")
    return result


def quantize_money(value: Decimal, minor_units: int = 2) -> Decimal:
    """Round to the currency minor unit, half-up."""
    exponent = Decimal(1).scaleb(-minor_units)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def percentage_of(percentage: Decimal, base: Decimal, minor_units: int = 2) -> Decimal:
    """``percentage/100 * base`` rounded to the minor unit."""
    return quantize_money(percentage * base / HUNDRED, minor_units)


def positive_amount(value: Any, field_name: str = "amount", minor_units: int = 2) -> Decimal:
    """Parse, require > 0 and round to the minor unit."""
    amount = to_decimal(value, field_name)
    if amount <= ZERO:
        raise ValidationError.single(field_name, "must be greater than 0")
    rounded = quantize_money(amount, minor_units)
    if rounded <= ZERO:
        raise ValidationError.single(field_name, "rounds to zero at currency precision")
    return rounded


__all__ = ["ZERO", "HUNDRED", "to_decimal", "quantize_money", "percentage_of", "positive_amount"]
