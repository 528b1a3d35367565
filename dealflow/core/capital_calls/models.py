# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Capital call data models: Allocation, CapitalCall, CapitalCallPayment, schedule specs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from dealflow.core.errors import ValidationError
from dealflow.core.money import ZERO


class CallStatus(str, Enum):
    """Lifecycle status of a capital call."""

    SCHEDULED = "scheduled"
    CALLED = "called"
    PARTIAL = "partial"
    PAID = "paid"
    DEFAULTED = "defaulted"


class AmountType(str, Enum):
    """How a call magnitude was originally expressed. Provenance only."""

    PERCENTAGE = "percentage"
    DOLLAR = "dollar"


class PaymentMethod(str, Enum):
    WIRE = "wire"
    CHECK = "check"
    ACH = "ach"
    OTHER = "other"


class ScheduleKind(str, Enum):
    SINGLE = "single"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    BIANNUAL = "biannual"
    ANNUAL = "annual"
    CUSTOM = "custom"


# Months between consecutive calls for periodic schedules
PERIOD_MONTHS: Dict[ScheduleKind, int] = {
    ScheduleKind.MONTHLY: 1,
    ScheduleKind.QUARTERLY: 3,
    ScheduleKind.BIANNUAL: 6,
    ScheduleKind.ANNUAL: 12,
}


class AllocationStatus(str, Enum):
    """Funding status of a commitment."""

    COMMITTED = "committed"
    FUNDED = "funded"
    PARTIALLY_PAID = "partially_paid"
    UNFUNDED = "unfunded"


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Allocation:
    """A fund's capital commitment to a deal, plus its performance inputs."""
    id: str
    fund_id: str
    deal_id: str
    amount: Decimal
    commitment_date: datetime
    status: AllocationStatus = AllocationStatus.COMMITTED
    distributions: Decimal = ZERO
    market_value: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fund_id": self.fund_id,
            "deal_id": self.deal_id,
            "amount": str(self.amount),
            "commitment_date": _dt(self.commitment_date),
            "status": self.status.value,
            "distributions": str(self.distributions),
            "market_value": str(self.market_value),
        }


@dataclass
class CapitalCall:
    """One scheduled draw against an allocation.

    call_amount is always absolute; amount_type and source_value record how it
    was expressed when created. ``deleted`` is a removal tombstone and is
    independent of ``status``.
    """
    id: str
    allocation_id: str
    call_amount: Decimal
    amount_type: AmountType
    call_date: datetime
    due_date: datetime
    status: CallStatus = CallStatus.SCHEDULED
    paid_amount: Decimal = ZERO
    source_value: Optional[Decimal] = None
    notes: Optional[str] = None
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.call_amount - self.paid_amount

    @property
    def is_terminal(self) -> bool:
        return self.status in (CallStatus.PAID, CallStatus.DEFAULTED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "allocation_id": self.allocation_id,
            "call_amount": str(self.call_amount),
            "amount_type": self.amount_type.value,
            "source_value": str(self.source_value) if self.source_value is not None else None,
            "call_date": _dt(self.call_date),
            "due_date": _dt(self.due_date),
            "status": self.status.value,
            "paid_amount": str(self.paid_amount),
            "outstanding_amount": str(self.outstanding_amount),
            "notes": self.notes,
            "deleted": self.deleted,
            "deleted_at": _dt(self.deleted_at),
            "created_at": _dt(self.created_at),
            "updated_at": _dt(self.updated_at),
        }


@dataclass(frozen=True)
class CapitalCallPayment:
    """Immutable payment event against a capital call."""
    id: str
    capital_call_id: str
    amount: Decimal
    payment_date: datetime
    payment_method: PaymentMethod = PaymentMethod.WIRE
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "capital_call_id": self.capital_call_id,
            "amount": str(self.amount),
            "payment_date": _dt(self.payment_date),
            "payment_method": self.payment_method.value,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": _dt(self.created_at),
        }


@dataclass(frozen=True)
class CustomScheduleEntry:
    """One entry of a custom schedule: a date and exactly one of percentage / amount."""
    date: Any
    percentage: Optional[Any] = None
    amount: Optional[Any] = None


def _parse_call_count(value: Any) -> Optional[int]:
    """Whole-number call count from JSON input; None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError.single("call_count", "must be an integer")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError.single("call_count", "must be an integer")
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError.single("call_count", f"must be a whole number, got {value!r}")
    return int(number)


@dataclass
class ScheduleSpec:
    """Ephemeral description of how to expand a commitment into calls."""
    kind: ScheduleKind
    first_call_date: Any = None
    call_count: Optional[int] = None
    call_percentage: Optional[Any] = None
    call_amount: Optional[Any] = None
    custom_entries: List[CustomScheduleEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ScheduleSpec":
        entries = [
            CustomScheduleEntry(
                date=e.get("date"),
                percentage=e.get("percentage"),
                amount=e.get("amount"),
            )
            for e in (d.get("custom_entries") or d.get("custom_schedule") or [])
        ]
        raw_kind = str(d.get("kind") or d.get("schedule") or "").lower()
        try:
            kind = ScheduleKind(raw_kind)
        except ValueError:
            raise ValidationError.single(
                "kind", f"must be one of {[k.value for k in ScheduleKind]}, got {raw_kind!r}"
            )
        call_count = _parse_call_count(d.get("call_count"))
        return cls(
            kind=kind,
            first_call_date=d.get("first_call_date"),
            call_count=call_count,
            call_percentage=d.get("call_percentage"),
            call_amount=d.get("call_amount"),
            custom_entries=entries,
        )


@dataclass(frozen=True)
class CallSpec:
    """A resolved call produced by the scheduler, not yet persisted."""
    sequence: int
    call_date: datetime
    due_date: datetime
    call_amount: Decimal
    amount_type: AmountType
    source_value: Decimal
    notes: str


@dataclass
class ScheduleExpansion:
    calls: List[CallSpec]
    total_percentage: Decimal
    warnings: List[str] = field(default_factory=list)


@dataclass
class ScheduleResult:
    """Persisted calls from one schedule expansion."""
    calls: List[CapitalCall]
    total_percentage: Decimal
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capital_calls": [c.to_dict() for c in self.calls],
            "total_percentage": str(self.total_percentage),
            "warnings": list(self.warnings),
        }


@dataclass
class PaymentResult:
    """Outcome of a recorded payment: the updated call, all its payments, non-fatal warnings."""
    call: CapitalCall
    payments: List[CapitalCallPayment]
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capital_call": self.call.to_dict(),
            "payments": [p.to_dict() for p in self.payments],
            "warnings": list(self.warnings),
        }


__all__ = [
    "CallStatus",
    "AmountType",
    "PaymentMethod",
    "ScheduleKind",
    "PERIOD_MONTHS",
    "AllocationStatus",
    "generate_id",
    "Allocation",
    "CapitalCall",
    "CapitalCallPayment",
    "CustomScheduleEntry",
    "ScheduleSpec",
    "CallSpec",
    "ScheduleExpansion",
    "ScheduleResult",
    "PaymentResult",
]
