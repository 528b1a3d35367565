# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Capital call schedule expansion.

Turns a commitment amount plus a ScheduleSpec into an ordered list of CallSpec
values. Percentages are resolved against the commitment once, here; the
resulting absolute amounts never change if the commitment is edited later.
Expansion is pure: no storage access.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from dealflow.core.capital_calls.models import (
    PERIOD_MONTHS,
    AmountType,
    CallSpec,
    ScheduleExpansion,
    ScheduleKind,
    ScheduleSpec,
)
from dealflow.core.config import ScheduleConfig, load_config
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import InvalidDateError, ValidationError
from dealflow.core.money import HUNDRED, ZERO, percentage_of, positive_amount, to_decimal

logger = logging.getLogger(__name__)

MAX_CALL_COUNT = 480
_PCT_EXPONENT = Decimal("0.0001")

# (call date input, magnitude kind, raw magnitude, field prefix)
_RawCall = Tuple[Any, AmountType, Any, str]


class CapitalCallScheduler:
    """Expands a commitment into dated capital call specs."""

    def __init__(
        self,
        normalizer: Optional[DateNormalizer] = None,
        schedule_config: Optional[ScheduleConfig] = None,
    ) -> None:
        self.normalizer = normalizer or DateNormalizer()
        self.config = schedule_config or load_config().schedule

    def expand(self, commitment_amount: Any, spec: ScheduleSpec) -> ScheduleExpansion:
        """Resolve ``spec`` against ``commitment_amount``.

        Raises
        ------
        ValidationError
            Missing dates, non-positive magnitudes, bad counts, or (strict mode)
            a percentage total other than 100%.
        """
        commitment = positive_amount(commitment_amount, "commitment_amount", self.config.minor_units)

        if spec.kind == ScheduleKind.SINGLE:
            raw = [(spec.first_call_date, AmountType.PERCENTAGE, HUNDRED, "first_call_date")]
            labels = ["Single payment call"]
        elif spec.kind in PERIOD_MONTHS:
            raw = self._periodic(spec)
            labels = [f"Scheduled payment {i + 1} of {len(raw)}" for i in range(len(raw))]
        elif spec.kind == ScheduleKind.CUSTOM:
            raw = self._custom(spec)
            labels = [f"Custom call {i + 1} of {len(raw)}" for i in range(len(raw))]
        else:
            raise ValidationError.single("kind", f"unsupported schedule kind: {spec.kind}")

        resolved = []
        for date_value, amount_type, magnitude, prefix in raw:
            call_date = self._date(date_value, _date_field(prefix))
            amount, source = self._resolve(amount_type, magnitude, commitment, prefix)
            resolved.append((call_date, amount, amount_type, source))

        if spec.kind == ScheduleKind.CUSTOM:
            resolved.sort(key=lambda r: r[0])
            seen = set()
            for call_date, *_ in resolved:
                if call_date in seen:
                    raise ValidationError.single(
                        "custom_entries", f"duplicate call date {call_date.date().isoformat()}"
                    )
                seen.add(call_date)

        calls: List[CallSpec] = []
        for i, (call_date, amount, amount_type, source) in enumerate(resolved):
            calls.append(CallSpec(
                sequence=i + 1,
                call_date=call_date,
                due_date=self.normalizer.due_date_from(call_date),
                call_amount=amount,
                amount_type=amount_type,
                source_value=source,
                notes=labels[i],
            ))

        total = self._total_percentage(calls, commitment)
        warnings = self._check_total(total)
        logger.info(
            "[SCHEDULE] Expanded %s schedule: %d call(s), %s%% of %s",
            spec.kind.value, len(calls), total, commitment,
        )
        return ScheduleExpansion(calls=calls, total_percentage=total, warnings=warnings)

    # ------------------------------------------------------------------ #
    # Spec readers
    # ------------------------------------------------------------------ #
    def _periodic(self, spec: ScheduleSpec) -> List[_RawCall]:
        count = spec.call_count
        if count is None:
            raise ValidationError.single("call_count", "is required")
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError.single("call_count", "must be a positive integer")
        if count > MAX_CALL_COUNT:
            raise ValidationError.single("call_count", f"must be at most {MAX_CALL_COUNT}")
        has_pct = spec.call_percentage is not None
        has_amt = spec.call_amount is not None
        if has_pct == has_amt:
            raise ValidationError({
                "call_percentage": "exactly one of call_percentage or call_amount is required",
                "call_amount": "exactly one of call_percentage or call_amount is required",
            })
        if spec.first_call_date is None:
            raise ValidationError.single("first_call_date", "is required")

        first = self._date(spec.first_call_date, "first_call_date")
        step = PERIOD_MONTHS[spec.kind]
        amount_type = AmountType.PERCENTAGE if has_pct else AmountType.DOLLAR
        magnitude = spec.call_percentage if has_pct else spec.call_amount
        field_name = "call_percentage" if has_pct else "call_amount"
        # Each date is computed from the first date so month-end clamping never accumulates.
        return [
            (self.normalizer.add_months(first, i * step), amount_type, magnitude, field_name)
            for i in range(count)
        ]

    def _custom(self, spec: ScheduleSpec) -> List[_RawCall]:
        if not spec.custom_entries:
            raise ValidationError.single("custom_entries", "at least one entry is required")
        raw: List[_RawCall] = []
        errors = {}
        for i, entry in enumerate(spec.custom_entries):
            prefix = f"custom_entries[{i}]"
            if entry.date is None or entry.date == "":
                errors[f"{prefix}.date"] = "is required"
            has_pct = entry.percentage is not None
            has_amt = entry.amount is not None
            if has_pct == has_amt:
                errors[prefix] = "exactly one of percentage or amount is required"
                continue
            if has_pct:
                raw.append((entry.date, AmountType.PERCENTAGE, entry.percentage, f"{prefix}.percentage"))
            else:
                raw.append((entry.date, AmountType.DOLLAR, entry.amount, f"{prefix}.amount"))
        if errors:
            raise ValidationError(errors)
        return raw

    # ------------------------------------------------------------------ #
    # Resolution
    # ------------------------------------------------------------------ #
    def _date(self, value: Any, field_name: str):
        if value is None:
            raise ValidationError.single(field_name, "is required")
        try:
            return self.normalizer.normalize(value)
        except InvalidDateError:
            raise InvalidDateError(value, field_name)

    def _resolve(
        self,
        amount_type: AmountType,
        magnitude: Any,
        commitment: Decimal,
        field_name: str,
    ) -> Tuple[Decimal, Decimal]:
        """Return (absolute amount, source value)."""
        minor = self.config.minor_units
        if amount_type == AmountType.PERCENTAGE:
            pct = to_decimal(magnitude, field_name)
            if pct <= ZERO or pct > HUNDRED:
                raise ValidationError.single(field_name, "percentage must be > 0 and <= 100")
            amount = percentage_of(pct, commitment, minor)
            if amount <= ZERO:
                raise ValidationError.single(field_name, "resolves to zero at currency precision")
            return amount, pct
        amount = positive_amount(magnitude, field_name, minor)
        return amount, amount

    @staticmethod
    def _total_percentage(calls: List[CallSpec], commitment: Decimal) -> Decimal:
        total = ZERO
        for c in calls:
            if c.amount_type == AmountType.PERCENTAGE:
                total += c.source_value
            else:
                total += c.call_amount * HUNDRED / commitment
        return total.quantize(_PCT_EXPONENT)

    def _check_total(self, total: Decimal) -> List[str]:
        mode = self.config.percentage_validation
        if mode == "off" or total == HUNDRED:
            return []
        message = f"call percentages total {total.normalize():f}% of the commitment, expected 100%"
        if mode == "strict":
            raise ValidationError.single("schedule", message)
        logger.warning("[SCHEDULE] %s", message)
        return [message]


def _date_field(prefix: str) -> str:
    """Field name for the date belonging to a magnitude field."""
    if prefix.startswith("custom_entries["):
        return prefix.rsplit(".", 1)[0] + ".date"
    return "first_call_date"


__all__ = ["CapitalCallScheduler", "MAX_CALL_COUNT"]
