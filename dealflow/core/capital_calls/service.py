# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Capital call service: allocations, calls, schedules, payments and queries.

Single entry point used by the HTTP layer. Every write runs inside one store
transaction; the activity timeline is appended after commit.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from dealflow.core.capital_calls.allocations import (
    AllocationFunding,
    IntegrityReport,
    check_allocation_integrity,
    refresh_allocation_status,
    summarize_funding,
)
from dealflow.core.capital_calls.ledger import TERMINAL_STATUSES, as_status
from dealflow.core.capital_calls.models import (
    Allocation,
    AllocationStatus,
    AmountType,
    CallStatus,
    CapitalCall,
    CapitalCallPayment,
    PaymentResult,
    ScheduleResult,
    ScheduleSpec,
    generate_id,
)
from dealflow.core.capital_calls.reconciler import PaymentReconciler
from dealflow.core.capital_calls.scheduler import CapitalCallScheduler
from dealflow.core.capital_calls.store import CapitalCallStore
from dealflow.core.config import DealFlowConfig, load_config
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import InvalidDateError, InvalidTransitionError, NotFoundError, ValidationError
from dealflow.core.money import HUNDRED, ZERO, percentage_of, positive_amount, quantize_money, to_decimal
from dealflow.core.timeline import TimelineSink, record_activity

logger = logging.getLogger(__name__)

# Statuses a call may be created in; later statuses only come from payments.
CREATABLE_STATUSES = (CallStatus.SCHEDULED, CallStatus.CALLED)
# Statuses whose dates may still be edited.
RESCHEDULABLE_STATUSES = (CallStatus.SCHEDULED, CallStatus.CALLED)


def validate_allocation_data(data: Dict[str, Any]) -> Dict[str, str]:
    """Required-field check for allocation payloads. Returns field -> message."""
    errors = {}
    for key in ("fund_id", "deal_id", "amount", "commitment_date"):
        value = data.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors[key] = "is required"
    return errors


class CapitalCallService:
    """Boundary operations over an injected CapitalCallStore."""

    def __init__(
        self,
        store: CapitalCallStore,
        timeline: Optional[TimelineSink] = None,
        config: Optional[DealFlowConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store
        self.timeline = timeline
        self.dates = DateNormalizer(self.config.date_handling, self.config.timing)
        self.scheduler = CapitalCallScheduler(self.dates, self.config.schedule)
        self.reconciler = PaymentReconciler(
            store,
            self.dates,
            timeline,
            self.config.payments,
            self.config.schedule.minor_units,
        )

    @property
    def minor_units(self) -> int:
        return self.config.schedule.minor_units

    # ------------------------------------------------------------------ #
    # Allocations
    # ------------------------------------------------------------------ #
    def create_allocation(
        self,
        fund_id: str,
        deal_id: str,
        amount: Any,
        commitment_date: Any,
        status: Union[str, AllocationStatus] = AllocationStatus.COMMITTED,
        distributions: Any = 0,
        market_value: Any = 0,
        created_by: Optional[str] = None,
    ) -> Allocation:
        errors = validate_allocation_data({
            "fund_id": fund_id,
            "deal_id": deal_id,
            "amount": amount,
            "commitment_date": commitment_date,
        })
        if errors:
            raise ValidationError(errors)
        try:
            alloc_status = AllocationStatus(status.value if isinstance(status, AllocationStatus) else str(status).lower())
        except ValueError:
            raise ValidationError.single(
                "status", f"must be one of {[s.value for s in AllocationStatus]}, got {status!r}"
            )
        allocation = Allocation(
            id=generate_id("alloc"),
            fund_id=str(fund_id),
            deal_id=str(deal_id),
            amount=positive_amount(amount, "amount", self.minor_units),
            commitment_date=self._date(commitment_date, "commitment_date"),
            status=alloc_status,
            distributions=self._non_negative(distributions, "distributions"),
            market_value=self._non_negative(market_value, "market_value"),
        )
        with self.store.transaction() as txn:
            txn.insert_allocation(allocation)
        logger.info(
            "[CAPITAL_CALLS] Created allocation %s: fund %s -> deal %s, %s",
            allocation.id, allocation.fund_id, allocation.deal_id, allocation.amount,
        )
        record_activity(
            self.timeline,
            allocation.deal_id,
            "allocation_created",
            {"allocation_id": allocation.id, "fund_id": allocation.fund_id, "amount": str(allocation.amount)},
            user_id=created_by,
        )
        return allocation

    def get_allocation(self, allocation_id: str) -> Allocation:
        allocation = self.store.get_allocation(allocation_id)
        if allocation is None:
            raise NotFoundError("allocation", allocation_id)
        return allocation

    def update_allocation_performance(
        self,
        allocation_id: str,
        distributions: Any = None,
        market_value: Any = None,
        created_by: Optional[str] = None,
    ) -> Allocation:
        """Set cumulative distributions and/or current market value."""
        if distributions is None and market_value is None:
            raise ValidationError({
                "distributions": "at least one of distributions or market_value is required",
                "market_value": "at least one of distributions or market_value is required",
            })
        changes = {}
        if distributions is not None:
            changes["distributions"] = self._non_negative(distributions, "distributions")
        if market_value is not None:
            changes["market_value"] = self._non_negative(market_value, "market_value")

        with self.store.transaction() as txn:
            allocation = txn.get_allocation(allocation_id)
            if allocation is None:
                raise NotFoundError("allocation", allocation_id)
            updated = dataclasses.replace(allocation, **changes)
            txn.update_allocation(updated)
        logger.info("[CAPITAL_CALLS] Updated performance inputs for allocation %s", allocation_id)
        record_activity(
            self.timeline,
            updated.deal_id,
            "allocation_performance_updated",
            {"allocation_id": updated.id, **{k: str(v) for k, v in changes.items()}},
            user_id=created_by,
        )
        return updated

    def allocation_summary(self, allocation_id: str, now: Any = None) -> Dict[str, Any]:
        """Called / paid / outstanding totals, called-capital ratio and overdue amount."""
        allocation = self.get_allocation(allocation_id)
        calls = self.store.list_calls_by_allocation(allocation_id)
        funding: AllocationFunding = summarize_funding(allocation, calls)
        pending = sum(
            (c.outstanding_amount for c in calls if c.status in (CallStatus.CALLED, CallStatus.PARTIAL)),
            ZERO,
        )
        overdue = sum(
            (c.outstanding_amount for c in calls
             if c.status not in TERMINAL_STATUSES and self.dates.is_overdue(c.due_date, now)),
            ZERO,
        )
        summary = funding.to_dict()
        summary.update({
            "allocation_id": allocation.id,
            "status": allocation.status.value,
            "pending": str(pending),
            "overdue": str(overdue),
        })
        return summary

    # ------------------------------------------------------------------ #
    # Capital calls
    # ------------------------------------------------------------------ #
    def create_capital_call(
        self,
        allocation_id: str,
        call_amount: Any,
        amount_type: Union[str, AmountType] = AmountType.DOLLAR,
        call_date: Any = None,
        due_date: Any = None,
        status: Union[str, CallStatus] = CallStatus.SCHEDULED,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> CapitalCall:
        """Create one capital call.

        A ``percentage`` amount_type resolves ``call_amount`` against the
        allocation's commitment now; the absolute amount is stored.
        ``due_date`` defaults to call_date plus the configured due days.
        """
        if not allocation_id:
            raise ValidationError.single("allocation_id", "is required")
        kind = self._amount_type(amount_type)
        initial = as_status(status)
        if initial not in CREATABLE_STATUSES:
            raise ValidationError.single(
                "status", f"new calls must be one of {[s.value for s in CREATABLE_STATUSES]}"
            )
        called_on = self._date(call_date, "call_date")
        due_on = self._date(due_date, "due_date") if due_date not in (None, "") else self.dates.due_date_from(called_on)
        if due_on <= called_on:
            raise ValidationError.single("due_date", "must be after call_date")

        with self.store.transaction() as txn:
            allocation = txn.get_allocation(allocation_id)
            if allocation is None:
                raise NotFoundError("allocation", allocation_id)
            if kind == AmountType.PERCENTAGE:
                source = to_decimal(call_amount, "call_amount")
                if source <= ZERO or source > HUNDRED:
                    raise ValidationError.single("call_amount", "percentage must be > 0 and <= 100")
                amount = percentage_of(source, allocation.amount, self.minor_units)
                if amount <= ZERO:
                    raise ValidationError.single("call_amount", "resolves to zero at currency precision")
            else:
                amount = positive_amount(call_amount, "call_amount", self.minor_units)
                source = amount
            call = CapitalCall(
                id=generate_id("call"),
                allocation_id=allocation.id,
                call_amount=amount,
                amount_type=kind,
                source_value=source,
                call_date=called_on,
                due_date=due_on,
                status=initial,
                notes=notes,
            )
            txn.insert_calls([call])

        logger.info(
            "[CAPITAL_CALLS] Created call %s on allocation %s: %s due %s",
            call.id, allocation.id, call.call_amount, call.due_date.date().isoformat(),
        )
        record_activity(
            self.timeline,
            allocation.deal_id,
            "capital_call_created",
            {"capital_call_id": call.id, "call_amount": str(call.call_amount), "status": call.status.value},
            user_id=created_by,
        )
        return call

    def create_schedule(
        self,
        allocation_id: str,
        spec: Union[ScheduleSpec, Dict[str, Any]],
        created_by: Optional[str] = None,
    ) -> ScheduleResult:
        """Expand ``spec`` against the allocation's commitment and persist every call, all or nothing."""
        if isinstance(spec, dict):
            spec = ScheduleSpec.from_dict(spec)
        allocation = self.get_allocation(allocation_id)
        expansion = self.scheduler.expand(allocation.amount, spec)

        calls = [
            CapitalCall(
                id=generate_id("call"),
                allocation_id=allocation.id,
                call_amount=c.call_amount,
                amount_type=c.amount_type,
                source_value=c.source_value,
                call_date=c.call_date,
                due_date=c.due_date,
                notes=c.notes,
            )
            for c in expansion.calls
        ]
        with self.store.transaction() as txn:
            if txn.get_allocation(allocation.id) is None:
                raise NotFoundError("allocation", allocation.id)
            txn.insert_calls(calls)

        logger.info(
            "[CAPITAL_CALLS] Created %d call(s) for allocation %s from %s schedule",
            len(calls), allocation.id, spec.kind.value,
        )
        warnings = list(expansion.warnings)
        warnings += record_activity(
            self.timeline,
            allocation.deal_id,
            "capital_calls_scheduled",
            {
                "allocation_id": allocation.id,
                "schedule": spec.kind.value,
                "count": len(calls),
                "total_percentage": str(expansion.total_percentage),
            },
            user_id=created_by,
        )
        return ScheduleResult(calls=calls, total_percentage=expansion.total_percentage, warnings=warnings)

    def get_capital_call(self, call_id: str) -> CapitalCall:
        call = self.store.get_call(call_id)
        if call is None or call.deleted:
            raise NotFoundError("capital call", call_id)
        return call

    def list_payments(self, call_id: str) -> List[CapitalCallPayment]:
        self.get_capital_call(call_id)
        return self.store.list_payments(call_id)

    def update_capital_call_status(
        self,
        call_id: str,
        status: Union[str, CallStatus],
        paid_amount: Any = None,
        created_by: Optional[str] = None,
    ) -> PaymentResult:
        """Manual status change.

        ``paid`` settles the remaining balance unless paid_amount says otherwise;
        ``partial`` needs a paid_amount between 0 and the call amount. Any
        increase in paid_amount is recorded as a balancing payment.
        """
        wanted = as_status(status)
        if wanted == CallStatus.PARTIAL and paid_amount is None:
            current = self.get_capital_call(call_id)
            if not (ZERO < current.paid_amount < current.call_amount):
                raise ValidationError.single("paid_amount", "is required for a partial call")
        return self.reconciler.settle_to(call_id, paid_amount, wanted, created_by=created_by)

    def update_capital_call_dates(
        self,
        call_id: str,
        call_date: Any = None,
        due_date: Any = None,
        created_by: Optional[str] = None,
    ) -> CapitalCall:
        """Move a call that has not received money yet."""
        if call_date in (None, "") and due_date in (None, ""):
            raise ValidationError.single("call_date", "call_date or due_date is required")
        new_call_date = self._date(call_date, "call_date") if call_date not in (None, "") else None
        new_due_date = self._date(due_date, "due_date") if due_date not in (None, "") else None

        with self.store.transaction() as txn:
            call = txn.get_call(call_id)
            if call is None or call.deleted:
                raise NotFoundError("capital call", call_id)
            if call.status not in RESCHEDULABLE_STATUSES:
                raise InvalidTransitionError(
                    call.status.value, "reschedule", call.id, [s.value for s in RESCHEDULABLE_STATUSES]
                )
            updated = dataclasses.replace(
                call,
                call_date=new_call_date or call.call_date,
                due_date=new_due_date or call.due_date,
                updated_at=datetime.now(timezone.utc),
            )
            if updated.due_date <= updated.call_date:
                raise ValidationError.single("due_date", "must be after call_date")
            txn.update_call(updated)
            allocation = txn.get_allocation(call.allocation_id)

        logger.info(
            "[CAPITAL_CALLS] Rescheduled call %s: call %s, due %s",
            call.id, updated.call_date.date().isoformat(), updated.due_date.date().isoformat(),
        )
        if allocation is not None:
            record_activity(
                self.timeline,
                allocation.deal_id,
                "capital_call_rescheduled",
                {
                    "capital_call_id": call.id,
                    "call_date": updated.call_date.isoformat(),
                    "due_date": updated.due_date.isoformat(),
                },
                user_id=created_by,
            )
        return updated

    def add_payment(
        self,
        call_id: str,
        amount: Any,
        payment_date: Any,
        payment_method: Any = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PaymentResult:
        return self.reconciler.add_payment(call_id, amount, payment_date, payment_method, notes, created_by)

    def delete_capital_call(self, call_id: str, created_by: Optional[str] = None) -> CapitalCall:
        """Tombstone a call. Calls with recorded payments cannot be deleted."""
        with self.store.transaction() as txn:
            call = txn.get_call(call_id)
            if call is None or call.deleted:
                raise NotFoundError("capital call", call_id)
            if call.paid_amount > ZERO:
                raise ValidationError.single(
                    "capital_call", "has recorded payments and cannot be deleted"
                )
            now = datetime.now(timezone.utc)
            updated = dataclasses.replace(call, deleted=True, deleted_at=now, updated_at=now)
            txn.update_call(updated)
            allocation = txn.get_allocation(call.allocation_id)
            if allocation is not None:
                refresh_allocation_status(txn, allocation)

        logger.info("[CAPITAL_CALLS] Deleted call %s", call.id)
        if allocation is not None:
            record_activity(
                self.timeline,
                allocation.deal_id,
                "capital_call_deleted",
                {"capital_call_id": call.id},
                user_id=created_by,
            )
        return updated

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def list_calendar(self, start: Any, end: Any) -> List[CapitalCall]:
        """Calls whose call date or due date falls in [start, end]."""
        lo = self._date(start, "start")
        hi = self._date(end, "end")
        if lo > hi:
            raise ValidationError.single("end", "must not be before start")
        return self.store.list_calls_in_range(lo, hi)

    def list_by_allocation(self, allocation_id: str) -> List[CapitalCall]:
        self.get_allocation(allocation_id)
        return self.store.list_calls_by_allocation(allocation_id)

    def list_by_deal(self, deal_id: str) -> List[CapitalCall]:
        return self.store.list_calls_by_deal(deal_id)

    def list_overdue(self, now: Any = None) -> List[CapitalCall]:
        """Open calls past due date plus grace period."""
        return [c for c in self.store.list_open_calls() if self.dates.is_overdue(c.due_date, now)]

    def reminders_due(self, on_date: Any = None) -> List[CapitalCall]:
        """Open calls with a reminder date falling on ``on_date`` (default today)."""
        day = self._date(on_date, "on_date") if on_date not in (None, "") else self.dates.today()
        return [
            c for c in self.store.list_open_calls()
            if day in self.dates.reminder_dates(c.due_date)
        ]

    # ------------------------------------------------------------------ #
    # Integrity
    # ------------------------------------------------------------------ #
    def verify_allocation_integrity(self, allocation_id: str) -> IntegrityReport:
        """Check one allocation's cached paid amounts and statuses against its payments."""
        with self.store.snapshot() as txn:
            allocation = txn.get_allocation(allocation_id)
            if allocation is None:
                raise NotFoundError("allocation", allocation_id)
            return check_allocation_integrity(
                allocation, txn.list_calls_by_allocation(allocation_id), txn.list_payments
            )

    def verify_all_allocations_integrity(self, fund_id: Optional[str] = None) -> Dict[str, Any]:
        """Check every allocation, or every allocation of ``fund_id``."""
        with self.store.snapshot() as txn:
            allocations = self._allocations_to_check(txn, fund_id)
            reports = [
                check_allocation_integrity(a, txn.list_calls_by_allocation(a.id), txn.list_payments)
                for a in allocations
            ]
        invalid = [r for r in reports if not r.is_valid]
        if invalid:
            logger.warning(
                "[INTEGRITY] %d of %d allocation(s) inconsistent", len(invalid), len(reports)
            )
        return {
            "fund_id": fund_id,
            "total_allocations": len(reports),
            "valid_allocations": len(reports) - len(invalid),
            "invalid_allocations": [r.to_dict() for r in invalid],
        }

    def repair_allocation_statuses(
        self,
        fund_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Rewrite drifted call paid amounts, call statuses and allocation statuses.

        Runs in one store transaction. Terminal call statuses and overpaid calls
        are left alone and returned under ``unrepaired``.
        """
        repaired: List[Allocation] = []
        repaired_calls = 0
        unrepaired: List[Dict[str, Any]] = []
        with self.store.transaction() as txn:
            allocations = self._allocations_to_check(txn, fund_id)
            for allocation in allocations:
                report = check_allocation_integrity(
                    allocation, txn.list_calls_by_allocation(allocation.id), txn.list_payments
                )
                if report.is_valid:
                    continue
                for call in report.corrected_calls:
                    txn.update_call(call)
                repaired_calls += len(report.corrected_calls)
                if report.expected_status != allocation.status:
                    txn.update_allocation(dataclasses.replace(allocation, status=report.expected_status))
                if report.corrected_calls or report.expected_status != allocation.status:
                    repaired.append(allocation)
                    logger.info(
                        "[INTEGRITY] Repaired allocation %s: %s -> %s, %d call(s) corrected",
                        allocation.id, allocation.status.value, report.expected_status.value,
                        len(report.corrected_calls),
                    )
                if report.unrepairable:
                    unrepaired.append({"allocation_id": allocation.id, "issues": report.unrepairable})

        for entry in unrepaired:
            logger.warning(
                "[INTEGRITY] Allocation %s needs manual review: %s",
                entry["allocation_id"], "; ".join(entry["issues"]),
            )
        warnings: List[str] = []
        for allocation in repaired:
            warnings.extend(record_activity(
                self.timeline,
                allocation.deal_id,
                "allocation_repaired",
                {"allocation_id": allocation.id},
                user_id=created_by,
            ))
        return {
            "fund_id": fund_id,
            "checked": len(allocations),
            "repaired_allocations": [a.id for a in repaired],
            "repaired_calls": repaired_calls,
            "unrepaired": unrepaired,
            "warnings": warnings,
        }

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _date(self, value: Any, field_name: str) -> datetime:
        if value is None or value == "":
            raise ValidationError.single(field_name, "is required")
        try:
            return self.dates.normalize(value)
        except InvalidDateError:
            raise InvalidDateError(value, field_name)

    @staticmethod
    def _allocations_to_check(txn: Any, fund_id: Optional[str]) -> List[Allocation]:
        if fund_id is None:
            return txn.list_allocations()
        allocations = txn.list_allocations_by_fund(fund_id)
        if not allocations:
            raise NotFoundError("fund", fund_id)
        return allocations

    def _non_negative(self, value: Any, field_name: str):
        amount = quantize_money(to_decimal(value, field_name), self.minor_units)
        if amount < ZERO:
            raise ValidationError.single(field_name, "must not be negative")
        return amount

    @staticmethod
    def _amount_type(value: Union[str, AmountType]) -> AmountType:
        if isinstance(value, AmountType):
            return value
        try:
            return AmountType(str(value).lower())
        except ValueError:
            raise ValidationError.single(
                "amount_type", f"must be one of {[t.value for t in AmountType]}, got {value!r}"
            )


__all__ = ["CapitalCallService", "validate_allocation_data", "CREATABLE_STATUSES", "RESCHEDULABLE_STATUSES"]
