# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Allocation funding status derived from its capital calls."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from dealflow.core.capital_calls.ledger import TERMINAL_STATUSES, next_status
from dealflow.core.capital_calls.models import (
    Allocation,
    AllocationStatus,
    CallStatus,
    CapitalCall,
    CapitalCallPayment,
)
from dealflow.core.money import HUNDRED, ZERO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationFunding:
    """Called / paid totals for one allocation. Deleted calls are excluded."""
    committed: Decimal
    called: Decimal
    paid: Decimal
    defaulted: Decimal
    call_count: int

    @property
    def outstanding(self) -> Decimal:
        # Unpaid balance of defaulted calls is written off, not outstanding.
        return self.called - self.paid - self.defaulted

    @property
    def uncalled(self) -> Decimal:
        return max(ZERO, self.committed - self.called)

    @property
    def called_ratio(self) -> Decimal:
        """Share of the commitment called so far, as a percentage."""
        if self.committed == ZERO:
            return ZERO
        return (self.called * HUNDRED / self.committed).quantize(Decimal("0.01"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "committed": str(self.committed),
            "called": str(self.called),
            "paid": str(self.paid),
            "outstanding": str(self.outstanding),
            "defaulted_unpaid": str(self.defaulted),
            "uncalled": str(self.uncalled),
            "called_ratio_pct": str(self.called_ratio),
            "call_count": self.call_count,
        }


def summarize_funding(allocation: Allocation, calls: Iterable[CapitalCall]) -> AllocationFunding:
    called = paid = defaulted = ZERO
    count = 0
    for call in calls:
        if call.deleted:
            continue
        count += 1
        called += call.call_amount
        paid += call.paid_amount
        if call.status == CallStatus.DEFAULTED:
            defaulted += call.outstanding_amount
    return AllocationFunding(
        committed=allocation.amount,
        called=called,
        paid=paid,
        defaulted=defaulted,
        call_count=count,
    )


def derive_allocation_status(allocation: Allocation, calls: Iterable[CapitalCall]) -> AllocationStatus:
    """Funding status from payments received.

    - ``unfunded`` is an explicit administrative status and is preserved.
    - Paid >= committed -> funded; some payment -> partially_paid; none -> committed.
    """
    if allocation.status == AllocationStatus.UNFUNDED:
        return AllocationStatus.UNFUNDED
    funding = summarize_funding(allocation, calls)
    if funding.paid > ZERO and funding.paid >= funding.committed:
        return AllocationStatus.FUNDED
    if funding.paid > ZERO:
        return AllocationStatus.PARTIALLY_PAID
    return AllocationStatus.COMMITTED


def refresh_allocation_status(txn: Any, allocation: Allocation) -> Allocation:
    """Re-derive and persist the allocation status inside an open store transaction."""
    calls = txn.list_calls_by_allocation(allocation.id)
    status = derive_allocation_status(allocation, calls)
    if status == allocation.status:
        return allocation
    updated = dataclasses.replace(allocation, status=status)
    txn.update_allocation(updated)
    logger.info(
        "[CAPITAL_CALLS] Allocation %s status: %s -> %s",
        allocation.id, allocation.status.value, status.value,
    )
    return updated


# ---------------------------------------------------------------------------
# Integrity verification
# ---------------------------------------------------------------------------


@dataclass
class IntegrityReport:
    """Drift between an allocation's cached fields and its recorded payments.

    ``corrected_calls`` and ``expected_status`` hold what a repair would write;
    ``unrepairable`` lists issues a repair leaves for an operator.
    """
    allocation_id: str
    current_status: AllocationStatus
    expected_status: AllocationStatus
    issues: List[str] = field(default_factory=list)
    unrepairable: List[str] = field(default_factory=list)
    corrected_calls: List[CapitalCall] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allocation_id": self.allocation_id,
            "is_valid": self.is_valid,
            "status": self.current_status.value,
            "expected_status": self.expected_status.value,
            "issues": list(self.issues),
            "unrepairable": list(self.unrepairable),
        }


def expected_call_status(call: CapitalCall, paid: Decimal) -> CallStatus:
    """Status a call should hold given ``paid`` recorded against it (paid <= call_amount)."""
    if call.status == CallStatus.DEFAULTED:
        return CallStatus.DEFAULTED
    if call.status == CallStatus.PAID:
        if paid == call.call_amount:
            return CallStatus.PAID
        return CallStatus.PARTIAL if paid > ZERO else CallStatus.CALLED
    if paid == ZERO and call.status == CallStatus.PARTIAL:
        return CallStatus.CALLED
    return next_status(call.status, paid, call.call_amount)


def check_allocation_integrity(
    allocation: Allocation,
    calls: Iterable[CapitalCall],
    payments_for: Callable[[str], List[CapitalCallPayment]],
    now: Optional[datetime] = None,
) -> IntegrityReport:
    """Compare cached paid amounts and statuses with the payment records.

    Parameters
    ----------
    allocation:
        The allocation as stored.
    calls:
        Its non-deleted capital calls.
    payments_for:
        Returns the recorded payments of a call id.

    Returns
    -------
    IntegrityReport
        Issues found. Terminal call statuses are never rewritten; a mismatch
        there, or payments above the call amount, is reported as unrepairable.
    """
    now = now or datetime.now(timezone.utc)
    issues: List[str] = []
    unrepairable: List[str] = []
    corrected: List[CapitalCall] = []
    effective: List[CapitalCall] = []

    if allocation.amount <= ZERO:
        message = f"committed amount {allocation.amount} is not positive"
        issues.append(message)
        unrepairable.append(message)

    for call in calls:
        paid = sum((p.amount for p in payments_for(call.id)), ZERO)
        fixed = call
        if paid != call.paid_amount:
            issues.append(f"call {call.id}: paid_amount {call.paid_amount} != payments total {paid}")
            fixed = dataclasses.replace(fixed, paid_amount=paid)

        if paid > call.call_amount:
            message = f"call {call.id}: payments total {paid} exceeds call_amount {call.call_amount}"
            issues.append(message)
            unrepairable.append(message)
        else:
            expected = expected_call_status(call, paid)
            if expected != call.status:
                message = f"call {call.id}: status {call.status.value}, payments imply {expected.value}"
                issues.append(message)
                if call.status in TERMINAL_STATUSES:
                    unrepairable.append(message)
                else:
                    fixed = dataclasses.replace(fixed, status=expected)

        if fixed is not call:
            fixed = dataclasses.replace(fixed, updated_at=now)
            corrected.append(fixed)
        effective.append(fixed)

    expected_status = derive_allocation_status(allocation, effective)
    if expected_status != allocation.status:
        issues.append(
            f"allocation status {allocation.status.value}, should be {expected_status.value}"
        )

    return IntegrityReport(
        allocation_id=allocation.id,
        current_status=allocation.status,
        expected_status=expected_status,
        issues=issues,
        unrepairable=unrepairable,
        corrected_calls=corrected,
    )


__all__ = [
    "AllocationFunding",
    "IntegrityReport",
    "summarize_funding",
    "derive_allocation_status",
    "refresh_allocation_status",
    "expected_call_status",
    "check_allocation_integrity",
]
