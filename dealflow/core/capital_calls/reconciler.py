# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Payment reconciliation for capital calls.

Every payment is an immutable record; a call's ``paid_amount`` is always the
sum of its payments and is recomputed from them inside the same write
transaction that inserts the new payment. Overpayment is rejected, never
clamped.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Tuple

from dealflow.core.capital_calls.allocations import refresh_allocation_status
from dealflow.core.capital_calls.ledger import as_status, get_allowed_transitions, next_status, transition_call
from dealflow.core.capital_calls.models import (
    Allocation,
    CallStatus,
    CapitalCall,
    CapitalCallPayment,
    PaymentMethod,
    PaymentResult,
    generate_id,
)
from dealflow.core.capital_calls.store import CapitalCallStore, StoreTransaction
from dealflow.core.config import PaymentsConfig, load_config
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import (
    CallClosedError,
    InternalError,
    InvalidDateError,
    InvalidTransitionError,
    NotFoundError,
    OverpaymentRejectedError,
    ValidationError,
)
from dealflow.core.money import ZERO, positive_amount, quantize_money, to_decimal
from dealflow.core.timeline import TimelineSink, record_activity

logger = logging.getLogger(__name__)

SETTLEMENT_NOTE = "Balancing payment recorded by status update"


class PaymentReconciler:
    """Records payments and keeps call status and allocation status in step."""

    def __init__(
        self,
        store: CapitalCallStore,
        normalizer: Optional[DateNormalizer] = None,
        timeline: Optional[TimelineSink] = None,
        payments_config: Optional[PaymentsConfig] = None,
        minor_units: Optional[int] = None,
    ) -> None:
        cfg = load_config() if payments_config is None or minor_units is None else None
        self.store = store
        self.dates = normalizer or DateNormalizer()
        self.timeline = timeline
        self.config = payments_config or cfg.payments
        self.minor_units = minor_units if minor_units is not None else cfg.schedule.minor_units

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def add_payment(
        self,
        call_id: str,
        amount: Any,
        payment_date: Any,
        method: Any = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PaymentResult:
        """Record one payment against a capital call.

        Parameters
        ----------
        call_id:
            Capital call to pay.
        amount:
            Positive amount; rounded to the currency minor unit.
        payment_date:
            Date the money was received.
        method:
            wire / check / ach / other. Defaults to ``payments.default_payment_type``.
        notes, created_by:
            Free text and the acting user, kept on the payment record.

        Returns
        -------
        PaymentResult
            Updated call, all of its payments, and timeline warnings.

        Raises
        ------
        ValidationError
            Bad amount, date, method, or missing notes when notes are required.
        NotFoundError
            Unknown or deleted call.
        CallClosedError
            The call is already paid or defaulted.
        OverpaymentRejectedError
            The payment would take paid_amount above call_amount.
        """
        value = positive_amount(amount, "amount", self.minor_units)
        paid_on = self._date(payment_date, "payment_date")
        pay_method = self._method(method)
        if self.config.require_payment_notes and not (notes or "").strip():
            raise ValidationError.single("notes", "are required for every payment")

        with self.store.transaction() as txn:
            call, allocation = self._load(txn, call_id)
            if call.is_terminal:
                logger.warning("[PAYMENTS] Rejected payment on %s call %s", call.status.value, call.id)
                raise CallClosedError(call.id, call.status.value)
            current = self._paid_total(txn, call.id)
            call, payment = self._apply(txn, call, current, value, paid_on, pay_method, notes, created_by)
            payments = txn.list_payments(call.id)
            refresh_allocation_status(txn, allocation)

        logger.info(
            "[PAYMENTS] Recorded %s on call %s: paid %s of %s (%s)",
            value, call.id, call.paid_amount, call.call_amount, call.status.value,
        )
        warnings = record_activity(
            self.timeline,
            allocation.deal_id,
            "capital_call_payment",
            {
                "capital_call_id": call.id,
                "payment_id": payment.id,
                "amount": str(value),
                "paid_amount": str(call.paid_amount),
                "status": call.status.value,
            },
            user_id=created_by,
        )
        return PaymentResult(call=call, payments=payments, warnings=warnings)

    def settle_to(
        self,
        call_id: str,
        target_paid: Any = None,
        status: Any = None,
        payment_date: Any = None,
        method: Any = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PaymentResult:
        """Bring a call to ``target_paid`` and optionally ``status`` in one transaction.

        The gap between the recorded payments and ``target_paid`` is recorded as
        one balancing payment, so paid_amount keeps matching the payment history.
        Payments are never removed: a target below the amount already paid is
        rejected. With ``status="paid"`` and no target, the remainder is settled.
        """
        wanted = as_status(status) if status is not None else None
        target = None
        if target_paid is not None:
            target = quantize_money(to_decimal(target_paid, "paid_amount"), self.minor_units)
            if target < ZERO:
                raise ValidationError.single("paid_amount", "must not be negative")
        paid_on = self._date(payment_date, "payment_date") if payment_date is not None else self.dates.today()
        pay_method = self._method(method)

        with self.store.transaction() as txn:
            call, allocation = self._load(txn, call_id)
            if call.is_terminal:
                raise InvalidTransitionError(
                    call.status.value, (wanted or call.status).value, call.id, []
                )
            current = self._paid_total(txn, call.id)
            if target is None:
                target = call.call_amount if wanted == CallStatus.PAID else current
            if target < current:
                raise ValidationError.single(
                    "paid_amount", f"cannot be lower than the {current} already paid"
                )
            if target > call.call_amount:
                raise OverpaymentRejectedError(call.id, target - current, call.call_amount - current)

            delta = target - current
            payment = None
            if delta > ZERO:
                call, payment = self._apply(
                    txn, call, current, delta, paid_on, pay_method, notes or SETTLEMENT_NOTE, created_by
                )
            if wanted is not None:
                _check_status_amount(call, wanted)
                if wanted != call.status:
                    call = transition_call(call, wanted, "manual status update", source=created_by or "user")
                    txn.update_call(call)
            payments = txn.list_payments(call.id)
            refresh_allocation_status(txn, allocation)

        details = {
            "capital_call_id": call.id,
            "paid_amount": str(call.paid_amount),
            "status": call.status.value,
        }
        if payment is not None:
            details["payment_id"] = payment.id
            details["amount"] = str(payment.amount)
        warnings = record_activity(
            self.timeline, allocation.deal_id, "capital_call_status_updated", details, user_id=created_by
        )
        return PaymentResult(call=call, payments=payments, warnings=warnings)

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _load(self, txn: StoreTransaction, call_id: str) -> Tuple[CapitalCall, Allocation]:
        call = txn.get_call(call_id)
        if call is None or call.deleted:
            raise NotFoundError("capital call", call_id)
        allocation = txn.get_allocation(call.allocation_id)
        if allocation is None:
            logger.error("[PAYMENTS] Call %s references missing allocation %s", call.id, call.allocation_id)
            raise InternalError("load allocation")
        return call, allocation

    @staticmethod
    def _paid_total(txn: StoreTransaction, call_id: str) -> Decimal:
        return sum((p.amount for p in txn.list_payments(call_id)), ZERO)

    def _apply(
        self,
        txn: StoreTransaction,
        call: CapitalCall,
        current: Decimal,
        amount: Decimal,
        paid_on: datetime,
        method: PaymentMethod,
        notes: Optional[str],
        created_by: Optional[str],
    ) -> Tuple[CapitalCall, CapitalCallPayment]:
        new_paid = current + amount
        if new_paid > call.call_amount:
            logger.warning(
                "[PAYMENTS] Rejected overpayment of %s on call %s (remaining %s)",
                amount, call.id, call.call_amount - current,
            )
            raise OverpaymentRejectedError(call.id, amount, call.call_amount - current)

        status = next_status(call.status, new_paid, call.call_amount)
        updated = transition_call(call, status, f"payment of {amount}", source="payment")
        updated = dataclasses.replace(updated, paid_amount=new_paid, updated_at=datetime.now(timezone.utc))

        payment = CapitalCallPayment(
            id=generate_id("pay"),
            capital_call_id=call.id,
            amount=amount,
            payment_date=paid_on,
            payment_method=method,
            notes=notes,
            created_by=created_by,
        )
        txn.insert_payment(payment)
        txn.update_call(updated)
        return updated, payment

    def _date(self, value: Any, field_name: str) -> datetime:
        if value is None or value == "":
            raise ValidationError.single(field_name, "is required")
        try:
            return self.dates.normalize(value)
        except InvalidDateError:
            raise InvalidDateError(value, field_name)

    def _method(self, value: Any) -> PaymentMethod:
        raw = value if value not in (None, "") else self.config.default_payment_type
        if isinstance(raw, PaymentMethod):
            return raw
        try:
            return PaymentMethod(str(raw).lower())
        except ValueError:
            raise ValidationError.single(
                "payment_method", f"must be one of {[m.value for m in PaymentMethod]}, got {raw!r}"
            )


def _check_status_amount(call: CapitalCall, status: CallStatus) -> None:
    """A manual status must agree with the amount paid."""
    if status == CallStatus.PAID and call.paid_amount != call.call_amount:
        raise ValidationError.single("paid_amount", "must equal call_amount for a paid call")
    if status == CallStatus.PARTIAL and not (ZERO < call.paid_amount < call.call_amount):
        raise ValidationError.single("paid_amount", "must be between 0 and call_amount for a partial call")
    if status in (CallStatus.SCHEDULED, CallStatus.CALLED) and call.paid_amount > ZERO:
        raise InvalidTransitionError(
            call.status.value, status.value, call.id, [s.value for s in get_allowed_transitions(call.status)]
        )


__all__ = ["PaymentReconciler", "SETTLEMENT_NOTE"]
