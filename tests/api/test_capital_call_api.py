# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""API tests for /api/allocations, /api/capital-calls, /api/deals, /api/funds and /api/integrity."""

from __future__ import annotations

import dataclasses

import pytest

from dealflow.core.capital_calls.models import CallStatus
from dealflow.core.capital_calls.service import CapitalCallService
from dealflow.core.capital_calls.store import InMemoryCapitalCallStore
from dealflow.core.config import DealFlowConfig
from dealflow.core.performance.service import PerformanceService
from dealflow.core.timeline import InMemoryTimeline


@pytest.fixture
def timeline() -> InMemoryTimeline:
    return InMemoryTimeline()


@pytest.fixture
def service(timeline) -> CapitalCallService:
    return CapitalCallService(InMemoryCapitalCallStore(), timeline, DealFlowConfig())


@pytest.fixture
def client(service):
    """TestClient backed by an in-memory store instead of the configured SQLite file."""
    pytest.importorskip("fastapi")
    from fastapi.testclient import TestClient
    from dealflow.api.capital_call_routes import get_performance_service, get_service
    from dealflow.api.server import app

    performance = PerformanceService(service.store, service.config)
    app.dependency_overrides[get_service] = lambda: service
    app.dependency_overrides[get_performance_service] = lambda: performance
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _allocation(client, amount: str = "1000000") -> dict:
    r = client.post("/api/allocations", json={
        "fund_id": "fund_1", "deal_id": "deal_1", "amount": amount, "commitment_date": "2025-01-01",
    })
    assert r.status_code == 201
    return r.json()


def _call(client, allocation_id: str, **overrides) -> dict:
    body = {"allocation_id": allocation_id, "call_amount": "100000", "call_date": "2025-01-15", "status": "called"}
    body.update(overrides)
    r = client.post("/api/capital-calls", json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


# -----------------------------------------------------------------------------
# Allocations
# -----------------------------------------------------------------------------


def test_create_allocation(client, timeline):
    r = client.post(
        "/api/allocations",
        json={"fund_id": "fund_1", "deal_id": "deal_1", "amount": 500000, "commitment_date": "2025-01-01"},
        headers={"X-User-Id": "user_42"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["amount"] == "500000.00"
    assert body["status"] == "committed"
    assert body["commitment_date"] == "2025-01-01T12:00:00+00:00"
    assert timeline.list_for_deal("deal_1")[0].user_id == "user_42"


def test_create_allocation_validation_error(client):
    r = client.post("/api/allocations", json={"fund_id": "fund_1"})
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["error"] == "validation_error"
    assert set(detail["fields"]) == {"deal_id", "amount", "commitment_date"}


def test_body_must_be_json_object(client):
    r = client.post("/api/allocations", json=[1, 2])
    assert r.status_code == 422
    assert "body" in r.json()["detail"]["fields"]
    r = client.post("/api/allocations", content="{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 422


def test_allocation_summary_and_performance(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])
    client.post(f"/api/capital-calls/{call['id']}/payments", json={"amount": "40000", "payment_date": "2025-01-20"})

    r = client.get(f"/api/allocations/{alloc['id']}/summary")
    assert r.status_code == 200
    summary = r.json()
    assert summary["paid"] == "40000.00"
    assert summary["status"] == "partially_paid"

    r = client.patch(f"/api/allocations/{alloc['id']}/performance", json={"market_value": "1100000"})
    assert r.status_code == 200
    assert r.json()["market_value"] == "1100000.00"

    r = client.get(f"/api/allocations/{alloc['id']}/performance", params={"as_of": "2026-01-01"})
    assert r.status_code == 200
    assert r.json()["moic"] == "1.10"

    r = client.get("/api/funds/fund_1/performance", params={"as_of": "2026-01-01"})
    assert r.status_code == 200
    assert r.json()["allocations"][0]["portfolio_weight"] == "1.0000"


def test_unknown_allocation_is_404(client):
    r = client.get("/api/allocations/alloc_missing/summary")
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "not_found"
    assert client.get("/api/funds/fund_missing/performance").status_code == 404


# -----------------------------------------------------------------------------
# Schedules and listing
# -----------------------------------------------------------------------------


def test_create_schedule(client):
    alloc = _allocation(client)
    r = client.post(f"/api/allocations/{alloc['id']}/capital-calls/schedule", json={
        "kind": "quarterly", "first_call_date": "2025-01-15", "call_count": 4, "call_percentage": 25,
    })
    assert r.status_code == 201
    body = r.json()
    assert [c["call_amount"] for c in body["capital_calls"]] == ["250000.00"] * 4
    assert body["warnings"] == []

    r = client.get(f"/api/allocations/{alloc['id']}/capital-calls")
    assert len(r.json()["capital_calls"]) == 4
    r = client.get("/api/deals/deal_1/capital-calls")
    assert len(r.json()["capital_calls"]) == 4


def test_create_schedule_with_warning(client):
    alloc = _allocation(client)
    r = client.post(f"/api/allocations/{alloc['id']}/capital-calls/schedule", json={
        "schedule": "custom",
        "custom_schedule": [{"date": "2025-03-01", "amount": "100000"}],
    })
    assert r.status_code == 201
    assert len(r.json()["warnings"]) == 1


def test_create_schedule_requires_whole_call_count(client):
    alloc = _allocation(client)
    url = f"/api/allocations/{alloc['id']}/capital-calls/schedule"

    r = client.post(url, json={"kind": "quarterly", "first_call_date": "2025-01-15", "call_percentage": 25})
    assert r.status_code == 422
    assert r.json()["detail"]["fields"]["call_count"] == "is required"

    r = client.post(url, json={
        "kind": "quarterly", "first_call_date": "2025-01-15", "call_count": 3.9, "call_percentage": 25,
    })
    assert r.status_code == 422
    assert "call_count" in r.json()["detail"]["fields"]
    assert client.get(f"/api/allocations/{alloc['id']}/capital-calls").json()["capital_calls"] == []


def test_create_schedule_bad_kind(client):
    alloc = _allocation(client)
    r = client.post(f"/api/allocations/{alloc['id']}/capital-calls/schedule", json={"kind": "weekly"})
    assert r.status_code == 422
    assert "kind" in r.json()["detail"]["fields"]


def test_calendar_overdue_and_reminders(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])  # due 2025-02-14

    r = client.get("/api/capital-calls/calendar", params={"start": "2025-02-01", "end": "2025-02-28"})
    assert r.status_code == 200
    assert [c["id"] for c in r.json()["capital_calls"]] == [call["id"]]

    r = client.get("/api/capital-calls/calendar", params={"start": "2025-03-01", "end": "2025-02-01"})
    assert r.status_code == 422

    r = client.get("/api/capital-calls/overdue", params={"now": "2025-03-01"})
    assert [c["id"] for c in r.json()["capital_calls"]] == [call["id"]]

    r = client.get("/api/capital-calls/reminders", params={"on": "2025-02-11"})
    assert [c["id"] for c in r.json()["capital_calls"]] == [call["id"]]


# -----------------------------------------------------------------------------
# Capital call lifecycle
# -----------------------------------------------------------------------------


def test_payment_flow_and_overpayment_conflict(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])

    r = client.post(
        f"/api/capital-calls/{call['id']}/payments",
        json={"amount": "40000", "payment_date": "2025-01-20", "payment_method": "check"},
        headers={"X-User-Id": "user_9"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["capital_call"]["status"] == "partial"
    assert body["payments"][0]["created_by"] == "user_9"
    assert body["payments"][0]["payment_method"] == "check"

    r = client.post(f"/api/capital-calls/{call['id']}/payments", json={"amount": "70000", "payment_date": "2025-01-21"})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["error"] == "overpayment_rejected"
    assert "60000.00" in detail["message"]

    r = client.get(f"/api/capital-calls/{call['id']}/payments")
    assert len(r.json()["payments"]) == 1


def test_status_update(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])

    r = client.patch(f"/api/capital-calls/{call['id']}/status", json={})
    assert r.status_code == 422

    r = client.patch(f"/api/capital-calls/{call['id']}/status", json={"status": "paid"})
    assert r.status_code == 200
    assert r.json()["capital_call"]["status"] == "paid"
    assert r.json()["capital_call"]["outstanding_amount"] == "0.00"

    r = client.patch(f"/api/capital-calls/{call['id']}/status", json={"status": "called"})
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "invalid_transition"

    r = client.post(f"/api/capital-calls/{call['id']}/payments", json={"amount": "1", "payment_date": "2025-02-01"})
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "call_closed"


def test_dates_update(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])
    r = client.patch(f"/api/capital-calls/{call['id']}/dates", json={"due_date": "2025-04-01"})
    assert r.status_code == 200
    assert r.json()["due_date"] == "2025-04-01T12:00:00+00:00"

    r = client.patch(f"/api/capital-calls/{call['id']}/dates", json={"due_date": "2025-01-01"})
    assert r.status_code == 422


def test_get_and_delete(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])

    r = client.get(f"/api/capital-calls/{call['id']}")
    assert r.status_code == 200
    assert r.json()["call_amount"] == "100000.00"

    r = client.delete(f"/api/capital-calls/{call['id']}")
    assert r.status_code == 200
    assert r.json() == {"deleted": True, "capital_call_id": call["id"]}

    assert client.get(f"/api/capital-calls/{call['id']}").status_code == 404
    assert client.get("/api/capital-calls/call_missing/payments").status_code == 404


def test_percentage_call_via_api(client):
    alloc = _allocation(client)
    call = _call(client, alloc["id"], call_amount="15", amount_type="percentage")
    assert call["call_amount"] == "150000.00"
    assert call["amount_type"] == "percentage"
    assert call["source_value"] == "15"


# -----------------------------------------------------------------------------
# Integrity
# -----------------------------------------------------------------------------


def test_integrity_verify_and_repair(client, service):
    alloc = _allocation(client)
    call = _call(client, alloc["id"])
    client.post(f"/api/capital-calls/{call['id']}/payments", json={"amount": "40000", "payment_date": "2025-01-20"})

    r = client.get(f"/api/allocations/{alloc['id']}/integrity")
    assert r.status_code == 200
    assert r.json()["is_valid"] is True

    with service.store.transaction() as txn:
        stored = txn.get_call(call["id"])
        txn.update_call(dataclasses.replace(stored, status=CallStatus.CALLED))

    r = client.get("/api/integrity/allocations", params={"fund_id": "fund_1"})
    assert r.status_code == 200
    body = r.json()
    assert body["total_allocations"] == 1
    assert body["invalid_allocations"][0]["allocation_id"] == alloc["id"]

    r = client.post("/api/integrity/allocations/repair", headers={"X-User-Id": "ops"})
    assert r.status_code == 200
    assert r.json()["repaired_calls"] == 1
    assert client.get(f"/api/capital-calls/{call['id']}").json()["status"] == "partial"
    assert client.get(f"/api/allocations/{alloc['id']}/integrity").json()["is_valid"] is True

    assert client.get("/api/allocations/alloc_missing/integrity").status_code == 404
    assert client.get("/api/integrity/allocations", params={"fund_id": "fund_missing"}).status_code == 404


def test_handlers_run_in_threadpool():
    pytest.importorskip("fastapi")
    import inspect

    from dealflow.api.capital_call_routes import router

    for route in router.routes:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path
