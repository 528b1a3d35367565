# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Tests for SQLite persistence: exact Decimal/date round-trips, atomic writes, cross-connection payments."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from dealflow.core.capital_calls.models import AmountType, CallStatus, CapitalCall
from dealflow.core.capital_calls.service import CapitalCallService
from dealflow.core.capital_calls.sqlite_store import SQLiteCapitalCallStore
from dealflow.core.config import DateHandlingConfig, DealFlowConfig, TimingConfig
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import InternalError, OverpaymentRejectedError
from dealflow.core.timeline import SQLiteTimeline


def _noon(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, 12, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "dealflow_test.db"


@pytest.fixture
def store(db_path) -> SQLiteCapitalCallStore:
    return SQLiteCapitalCallStore(db_path, DateNormalizer(DateHandlingConfig(), TimingConfig()))


@pytest.fixture
def service(store, db_path) -> CapitalCallService:
    return CapitalCallService(store, SQLiteTimeline(db_path), DealFlowConfig())


def test_init_creates_tables(db_path, store) -> None:
    conn = sqlite3.connect(str(db_path))
    try:
        names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert {"allocations", "capital_calls", "capital_call_payments", "deal_activity"} <= names


def test_round_trip_keeps_decimals_and_dates(service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000000.10", "2025-01-31")
    call = service.create_capital_call(
        allocation.id, "33.333", amount_type="percentage", call_date="2025-01-31", notes="first draw",
    )

    loaded = service.get_capital_call(call.id)
    assert loaded.call_amount == Decimal("333330.03")
    assert str(loaded.call_amount) == "333330.03"
    assert loaded.source_value == Decimal("33.333")
    assert loaded.amount_type == AmountType.PERCENTAGE
    assert loaded.call_date == _noon(2025, 1, 31)
    assert loaded.due_date == _noon(2025, 3, 2)
    assert loaded.notes == "first draw"
    assert loaded.created_at == call.created_at

    stored_alloc = service.get_allocation(allocation.id)
    assert stored_alloc.amount == Decimal("1000000.10")
    assert stored_alloc.commitment_date == _noon(2025, 1, 31)


def test_payment_round_trip_and_status(service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000000", "2025-01-01")
    call = service.create_capital_call(allocation.id, "100000", call_date="2025-01-15", status="called")
    service.add_payment(call.id, "40000.25", "2025-01-20", payment_method="ach", notes="n1", created_by="u1")

    payments = service.list_payments(call.id)
    assert len(payments) == 1
    assert payments[0].amount == Decimal("40000.25")
    assert payments[0].payment_method.value == "ach"
    assert payments[0].payment_date == _noon(2025, 1, 20)
    assert payments[0].created_by == "u1"

    loaded = service.get_capital_call(call.id)
    assert loaded.status == CallStatus.PARTIAL
    assert loaded.paid_amount == Decimal("40000.25")
    assert service.get_allocation(allocation.id).status.value == "partially_paid"


def test_failed_insert_rolls_back_whole_batch(store, service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000", "2025-01-01")

    def _call(call_id: str) -> CapitalCall:
        return CapitalCall(
            id=call_id,
            allocation_id=allocation.id,
            call_amount=Decimal("10.00"),
            amount_type=AmountType.DOLLAR,
            call_date=_noon(2025, 2, 1),
            due_date=_noon(2025, 3, 3),
        )

    with pytest.raises(InternalError):
        with store.transaction() as txn:
            txn.insert_calls([_call("call_a"), _call("call_b"), _call("call_a")])
    assert store.list_calls_by_allocation(allocation.id) == []


def test_domain_error_rolls_back(store, service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000", "2025-01-01")
    with pytest.raises(OverpaymentRejectedError):
        with store.transaction() as txn:
            a = txn.get_allocation(allocation.id)
            a.amount = Decimal("5")
            txn.update_allocation(a)
            raise OverpaymentRejectedError("call_x", Decimal("1"), Decimal("0"))
    assert store.get_allocation(allocation.id).amount == Decimal("1000.00")


def test_queries(service) -> None:
    a1 = service.create_allocation("fund_1", "deal_1", "1000", "2025-01-01")
    a2 = service.create_allocation("fund_2", "deal_1", "1000", "2025-01-01")
    a3 = service.create_allocation("fund_1", "deal_2", "1000", "2025-01-01")
    c1 = service.create_capital_call(a1.id, "100", call_date="2025-01-15")  # due 02-14
    c2 = service.create_capital_call(a2.id, "100", call_date="2025-01-10")  # due 02-09
    c3 = service.create_capital_call(a3.id, "100", call_date="2025-05-01")
    gone = service.create_capital_call(a1.id, "100", call_date="2025-02-01")
    service.delete_capital_call(gone.id)

    assert [c.id for c in service.list_by_deal("deal_1")] == [c2.id, c1.id]
    assert [c.id for c in service.list_calendar("2025-02-10", "2025-02-28")] == [c1.id]
    assert [c.id for c in service.list_calendar("2025-04-01", "2025-05-31")] == [c3.id]
    assert {a.id for a in service.store.list_allocations_by_fund("fund_1")} == {a1.id, a3.id}
    assert [c.id for c in service.list_overdue(now="2025-03-01")] == [c2.id, c1.id]


def test_concurrent_payments_across_connections(db_path, service) -> None:
    """Each thread gets its own store and connection; BEGIN IMMEDIATE serializes the read-sum-write."""
    allocation = service.create_allocation("fund_1", "deal_1", "1000000", "2025-01-01")
    call = service.create_capital_call(allocation.id, "100000", call_date="2025-01-15", status="called")
    barrier = threading.Barrier(11)
    outcomes = []
    lock = threading.Lock()

    def pay() -> None:
        worker = CapitalCallService(
            SQLiteCapitalCallStore(db_path, DateNormalizer(DateHandlingConfig(), TimingConfig())),
            None,
            DealFlowConfig(),
        )
        barrier.wait()
        try:
            worker.add_payment(call.id, "10000", "2025-01-20")
            outcome = "ok"
        except Exception as e:
            outcome = type(e).__name__
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=pay) for _ in range(11)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 10
    assert len(outcomes) == 11
    assert set(outcomes) - {"ok"} <= {"OverpaymentRejectedError", "CallClosedError"}
    loaded = service.get_capital_call(call.id)
    assert loaded.paid_amount == Decimal("100000.00")
    assert loaded.status == CallStatus.PAID
    assert sum(p.amount for p in service.list_payments(call.id)) == Decimal("100000.00")


def test_sqlite_timeline(db_path, service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000", "2025-01-01", created_by="u1")
    call = service.create_capital_call(allocation.id, "100", call_date="2025-01-15", created_by="u1")
    service.add_payment(call.id, "100", "2025-01-20", created_by="u2")

    entries = service.timeline.list_for_deal("deal_1")
    assert [e.action for e in entries] == ["capital_call_payment", "capital_call_created", "allocation_created"]
    assert entries[0].user_id == "u2"
    assert entries[0].details["status"] == "paid"
    assert SQLiteTimeline(db_path).list_for_deal("deal_1", limit=1)[0].action == "capital_call_payment"


def test_calendar_range_survives_hour_change(db_path, service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000", "2025-01-01")
    call = service.create_capital_call(allocation.id, "100", call_date="2025-01-15")  # due 02-14

    morning = DateNormalizer(DateHandlingConfig(default_hour_utc=9), TimingConfig())
    reopened = CapitalCallService(
        SQLiteCapitalCallStore(db_path, morning),
        None,
        DealFlowConfig(date_handling=DateHandlingConfig(default_hour_utc=9)),
    )
    assert [c.id for c in reopened.list_calendar("2025-01-01", "2025-01-15")] == [call.id]
    assert [c.id for c in reopened.list_calendar("2025-02-14", "2025-02-20")] == [call.id]
    assert reopened.list_calendar("2025-01-16", "2025-02-13") == []


def test_repair_drift_in_sqlite(db_path, service) -> None:
    allocation = service.create_allocation("fund_1", "deal_1", "1000", "2025-01-01")
    call = service.create_capital_call(allocation.id, "100", call_date="2025-01-15", status="called")
    service.add_payment(call.id, "100", "2025-01-20")

    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("UPDATE capital_calls SET paid_amount = '0', status = 'called' WHERE id = ?", (call.id,))
        conn.execute("UPDATE allocations SET status = 'committed' WHERE id = ?", (allocation.id,))
        conn.commit()
    finally:
        conn.close()

    assert not service.verify_allocation_integrity(allocation.id).is_valid
    result = service.repair_allocation_statuses()
    assert result["repaired_allocations"] == [allocation.id]

    loaded = service.get_capital_call(call.id)
    assert loaded.paid_amount == Decimal("100.00")
    assert loaded.status == CallStatus.PAID
    assert service.get_allocation(allocation.id).status.value == "partially_paid"
    assert service.verify_all_allocations_integrity()["valid_allocations"] == 1
