# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Capital call state machine.

This module implements the lifecycle of a single capital call:

    scheduled -> called -> partial -> paid
                    \\-------------> paid
    scheduled | called | partial -> defaulted

A payment against a still-scheduled call implies it was issued and moves it
straight to partial or paid. ``paid`` and ``defaulted`` are terminal.
The functions here are pure; persistence happens in the reconciler and service.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Set, Union

from dealflow.core.capital_calls.models import CallStatus, CapitalCall
from dealflow.core.errors import InvalidTransitionError, ValidationError
from dealflow.core.money import ZERO

logger = logging.getLogger(__name__)


# Define allowed transitions: from_status -> set of allowed to_statuses
ALLOWED_TRANSITIONS: Dict[CallStatus, Set[CallStatus]] = {
    CallStatus.SCHEDULED: {CallStatus.CALLED, CallStatus.PARTIAL, CallStatus.PAID, CallStatus.DEFAULTED},
    CallStatus.CALLED: {CallStatus.PARTIAL, CallStatus.PAID, CallStatus.DEFAULTED},
    CallStatus.PARTIAL: {CallStatus.PAID, CallStatus.DEFAULTED},
    CallStatus.PAID: set(),  # Terminal state
    CallStatus.DEFAULTED: set(),  # Terminal state
}

TERMINAL_STATUSES = frozenset(s for s, allowed in ALLOWED_TRANSITIONS.items() if not allowed)


def as_status(value: Union[str, CallStatus]) -> CallStatus:
    """Coerce a string to CallStatus, raising ValidationError for unknown values."""
    if isinstance(value, CallStatus):
        return value
    try:
        return CallStatus(str(value).lower())
    except ValueError:
        raise ValidationError.single(
            "status", f"must be one of {[s.value for s in CallStatus]}, got {value!r}"
        )


def get_allowed_transitions(current: CallStatus) -> Set[CallStatus]:
    """Get all statuses reachable in one step from ``current``."""
    return ALLOWED_TRANSITIONS.get(current, set()).copy()


def validate_transition(current: CallStatus, new: CallStatus, call_id: object = None) -> None:
    """Raise InvalidTransitionError unless ``current -> new`` is allowed."""
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new not in allowed:
        error = InvalidTransitionError(
            current.value, new.value, call_id, [s.value for s in allowed]
        )
        logger.warning("[CAPITAL_CALLS] Rejected transition: %s", error)
        raise error


def next_status(current: CallStatus, paid_amount: Decimal, call_amount: Decimal) -> CallStatus:
    """Status a call should hold once ``paid_amount`` has been received.

    Parameters
    ----------
    current:
        Status before the payment.
    paid_amount:
        Cumulative amount paid, including the new payment.
    call_amount:
        Absolute amount of the call.

    Returns
    -------
    CallStatus
        ``paid`` on an exact match, ``partial`` for 0 < paid < call, else ``current``.

    Raises
    ------
    InvalidTransitionError
        ``current`` is terminal.
    ValidationError
        paid_amount is negative or above call_amount; overpayment is refused
        before reaching this point and is never absorbed here.
    """
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(current.value, "payment", None, [])
    if paid_amount < ZERO:
        raise ValidationError.single("paid_amount", "must not be negative")
    if paid_amount > call_amount:
        raise ValidationError.single("paid_amount", "must not exceed call_amount")
    if paid_amount == ZERO:
        return current
    if paid_amount == call_amount:
        return CallStatus.PAID
    return CallStatus.PARTIAL


def transition_call(
    call: CapitalCall,
    new_status: CallStatus,
    reason: str,
    source: str = "system",
) -> CapitalCall:
    """Return a copy of ``call`` moved to ``new_status``, enforcing valid transitions.

    Staying in the same non-terminal status returns ``call`` unchanged.
    """
    if call.status == new_status and new_status not in TERMINAL_STATUSES:
        return call
    validate_transition(call.status, new_status, call.id)
    updated = dataclasses.replace(call, status=new_status, updated_at=datetime.now(timezone.utc))
    logger.info(
        "[CAPITAL_CALLS] Call %s transitioned: %s -> %s (%s: %s)",
        call.id, call.status.value, new_status.value, source, reason,
    )
    return updated


__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "as_status",
    "get_allowed_transitions",
    "validate_transition",
    "next_status",
    "transition_call",
]
