# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Error taxonomy for the capital-call engine.

ValidationError and NotFoundError are caller-fixable and returned immediately.
InvalidTransitionError and the payment rejections are business-rule refusals;
they are never corrected silently. InternalError wraps storage failures and
carries no storage detail in its message.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, Optional


class DealFlowError(Exception):
    """Base class for all engine errors."""

    code = "error"

    def to_dict(self) -> Dict[str, object]:
        return {"error": self.code, "message": str(self)}


class ValidationError(DealFlowError):
    """Malformed or out-of-range input. ``errors`` maps field name -> message."""

    code = "validation_error"

    def __init__(self, errors: Dict[str, str]) -> None:
        self.errors = dict(errors)
        detail = "; ".join(f"{k}: {v}" for k, v in self.errors.items())
        super().__init__(f"Validation failed ({detail})")

    @classmethod
    def single(cls, field_name: str, message: str) -> "ValidationError":
        return cls({field_name: message})

    def to_dict(self) -> Dict[str, object]:
        d = super().to_dict()
        d["fields"] = dict(self.errors)
        return d


class InvalidDateError(ValidationError):
    """Input could not be read as a calendar date."""

    code = "invalid_date"

    def __init__(self, value: object, field_name: str = "date") -> None:
        self.value = value
        super().__init__({field_name: f"invalid date: {value!r}"})


class NotFoundError(DealFlowError):
    """Unknown allocation, capital call or payment id."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransitionError(DealFlowError):
    """Raised when a status change is not permitted from the current status."""

    code = "invalid_transition"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        call_id: object = None,
        allowed: Optional[Iterable[str]] = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.call_id = call_id
        allowed_list = sorted(allowed or [])
        allowed_str = ", ".join(allowed_list) if allowed_list else "none (terminal state)"
        super().__init__(
            f"Invalid transition for capital call {call_id}: "
            f"{from_status} -> {to_status}. "
            f"Allowed transitions from {from_status}: {allowed_str}"
        )


class PaymentRejectedError(DealFlowError):
    """A payment was refused by a business rule."""

    code = "payment_rejected"


class CallClosedError(PaymentRejectedError):
    """Payment against a call that is already paid or defaulted."""

    code = "call_closed"

    def __init__(self, call_id: object, status: str) -> None:
        self.call_id = call_id
        self.status = status
        super().__init__(f"Capital call {call_id} is {status}; no further payments accepted")


class OverpaymentRejectedError(PaymentRejectedError):
    """Payment would push paid_amount above call_amount."""

    code = "overpayment_rejected"

    def __init__(self, call_id: object, attempted: Decimal, remaining: Decimal) -> None:
        self.call_id = call_id
        self.attempted = attempted
        self.remaining = remaining
        super().__init__(
            f"Payment of {attempted} would exceed the call amount for capital call {call_id}. "
            f"The maximum allowed payment is {remaining}"
        )


class InternalError(DealFlowError):
    """Storage or transport failure."""

    code = "internal_error"

    def __init__(self, operation: str, message: str = "internal storage failure") -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


__all__ = [
    "DealFlowError",
    "ValidationError",
    "InvalidDateError",
    "NotFoundError",
    "InvalidTransitionError",
    "PaymentRejectedError",
    "CallClosedError",
    "OverpaymentRejectedError",
    "InternalError",
]
