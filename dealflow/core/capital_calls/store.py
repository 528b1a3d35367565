# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Repository interface for allocations, capital calls and payments.

Components receive a CapitalCallStore instance; nothing in the engine reaches
for a global storage object. Writes happen inside ``store.transaction()``,
which is all-or-nothing and serialized, so a read-sum-write of a call's
payments cannot interleave with another writer. ``store.snapshot()`` gives a
consistent read-only view.

InMemoryCapitalCallStore is a complete implementation for tests and
single-process use; SQLiteCapitalCallStore lives in ``sqlite_store``.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import ContextManager, Dict, Iterator, List, Optional

from dealflow.core.capital_calls.ledger import TERMINAL_STATUSES
from dealflow.core.capital_calls.models import Allocation, CapitalCall, CapitalCallPayment


class StoreTransaction(ABC):
    """Operations available inside one unit of work."""

    # Allocations
    @abstractmethod
    def get_allocation(self, allocation_id: str) -> Optional[Allocation]: ...

    @abstractmethod
    def insert_allocation(self, allocation: Allocation) -> None: ...

    @abstractmethod
    def update_allocation(self, allocation: Allocation) -> None: ...

    @abstractmethod
    def list_allocations_by_fund(self, fund_id: str) -> List[Allocation]: ...

    @abstractmethod
    def list_allocations(self) -> List[Allocation]: ...

    # Capital calls
    @abstractmethod
    def get_call(self, call_id: str) -> Optional[CapitalCall]: ...

    @abstractmethod
    def insert_calls(self, calls: List[CapitalCall]) -> None: ...

    @abstractmethod
    def update_call(self, call: CapitalCall) -> None: ...

    @abstractmethod
    def list_calls_by_allocation(self, allocation_id: str, include_deleted: bool = False) -> List[CapitalCall]: ...

    @abstractmethod
    def list_calls_by_deal(self, deal_id: str) -> List[CapitalCall]: ...

    @abstractmethod
    def list_calls_in_range(self, start: datetime, end: datetime) -> List[CapitalCall]: ...

    @abstractmethod
    def list_open_calls(self) -> List[CapitalCall]: ...

    # Payments
    @abstractmethod
    def list_payments(self, call_id: str) -> List[CapitalCallPayment]: ...

    @abstractmethod
    def insert_payment(self, payment: CapitalCallPayment) -> None: ...


class CapitalCallStore(ABC):
    """Persistence boundary for the capital-call engine."""

    @abstractmethod
    def transaction(self) -> ContextManager[StoreTransaction]:
        """Serialized, all-or-nothing write unit of work."""

    @abstractmethod
    def snapshot(self) -> ContextManager[StoreTransaction]:
        """Read-only consistent view."""

    # Convenience readers -------------------------------------------------
    def get_allocation(self, allocation_id: str) -> Optional[Allocation]:
        with self.snapshot() as txn:
            return txn.get_allocation(allocation_id)

    def list_allocations_by_fund(self, fund_id: str) -> List[Allocation]:
        with self.snapshot() as txn:
            return txn.list_allocations_by_fund(fund_id)

    def list_allocations(self) -> List[Allocation]:
        with self.snapshot() as txn:
            return txn.list_allocations()

    def get_call(self, call_id: str) -> Optional[CapitalCall]:
        with self.snapshot() as txn:
            return txn.get_call(call_id)

    def list_calls_by_allocation(self, allocation_id: str, include_deleted: bool = False) -> List[CapitalCall]:
        with self.snapshot() as txn:
            return txn.list_calls_by_allocation(allocation_id, include_deleted)

    def list_calls_by_deal(self, deal_id: str) -> List[CapitalCall]:
        with self.snapshot() as txn:
            return txn.list_calls_by_deal(deal_id)

    def list_calls_in_range(self, start: datetime, end: datetime) -> List[CapitalCall]:
        with self.snapshot() as txn:
            return txn.list_calls_in_range(start, end)

    def list_open_calls(self) -> List[CapitalCall]:
        with self.snapshot() as txn:
            return txn.list_open_calls()

    def list_payments(self, call_id: str) -> List[CapitalCallPayment]:
        with self.snapshot() as txn:
            return txn.list_payments(call_id)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class _State:
    allocations: Dict[str, Allocation] = field(default_factory=dict)
    calls: Dict[str, CapitalCall] = field(default_factory=dict)
    payments: Dict[str, List[CapitalCallPayment]] = field(default_factory=dict)


def _by_call_date(calls: List[CapitalCall]) -> List[CapitalCall]:
    return sorted(calls, key=lambda c: (c.call_date, c.created_at, c.id))


class _InMemoryTransaction(StoreTransaction):
    def __init__(self, state: _State) -> None:
        self._s = state

    def get_allocation(self, allocation_id: str) -> Optional[Allocation]:
        a = self._s.allocations.get(allocation_id)
        return copy.deepcopy(a) if a is not None else None

    def insert_allocation(self, allocation: Allocation) -> None:
        if allocation.id in self._s.allocations:
            raise ValueError(f"Duplicate allocation id {allocation.id}")
        self._s.allocations[allocation.id] = copy.deepcopy(allocation)

    def update_allocation(self, allocation: Allocation) -> None:
        self._s.allocations[allocation.id] = copy.deepcopy(allocation)

    def list_allocations_by_fund(self, fund_id: str) -> List[Allocation]:
        return [copy.deepcopy(a) for a in self._s.allocations.values() if a.fund_id == fund_id]

    def list_allocations(self) -> List[Allocation]:
        return sorted(
            (copy.deepcopy(a) for a in self._s.allocations.values()),
            key=lambda a: (a.commitment_date, a.id),
        )

    def get_call(self, call_id: str) -> Optional[CapitalCall]:
        c = self._s.calls.get(call_id)
        return copy.deepcopy(c) if c is not None else None

    def insert_calls(self, calls: List[CapitalCall]) -> None:
        for c in calls:
            if c.id in self._s.calls:
                raise ValueError(f"Duplicate capital call id {c.id}")
            self._s.calls[c.id] = copy.deepcopy(c)

    def update_call(self, call: CapitalCall) -> None:
        self._s.calls[call.id] = copy.deepcopy(call)

    def list_calls_by_allocation(self, allocation_id: str, include_deleted: bool = False) -> List[CapitalCall]:
        return _by_call_date([
            copy.deepcopy(c) for c in self._s.calls.values()
            if c.allocation_id == allocation_id and (include_deleted or not c.deleted)
        ])

    def list_calls_by_deal(self, deal_id: str) -> List[CapitalCall]:
        allocation_ids = {a.id for a in self._s.allocations.values() if a.deal_id == deal_id}
        return _by_call_date([
            copy.deepcopy(c) for c in self._s.calls.values()
            if c.allocation_id in allocation_ids and not c.deleted
        ])

    def list_calls_in_range(self, start: datetime, end: datetime) -> List[CapitalCall]:
        return _by_call_date([
            copy.deepcopy(c) for c in self._s.calls.values()
            if not c.deleted and (start <= c.call_date <= end or start <= c.due_date <= end)
        ])

    def list_open_calls(self) -> List[CapitalCall]:
        return _by_call_date([
            copy.deepcopy(c) for c in self._s.calls.values()
            if not c.deleted and c.status not in TERMINAL_STATUSES
        ])

    def list_payments(self, call_id: str) -> List[CapitalCallPayment]:
        return sorted(self._s.payments.get(call_id, []), key=lambda p: (p.payment_date, p.created_at))

    def insert_payment(self, payment: CapitalCallPayment) -> None:
        self._s.payments.setdefault(payment.capital_call_id, []).append(payment)


class InMemoryCapitalCallStore(CapitalCallStore):
    """Thread-safe in-process store. Transactions work on a copy that replaces state on success."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state = _State()

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self._lock:
            staged = copy.deepcopy(self._state)
            yield _InMemoryTransaction(staged)
            self._state = staged

    @contextmanager
    def snapshot(self) -> Iterator[StoreTransaction]:
        with self._lock:
            yield _InMemoryTransaction(copy.deepcopy(self._state))


__all__ = ["StoreTransaction", "CapitalCallStore", "InMemoryCapitalCallStore"]
