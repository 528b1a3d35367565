# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Capital call API: /api/allocations, /api/capital-calls, /api/deals, /api/funds, /api/integrity.

Handlers are plain functions that take the JSON body as a dict and delegate
to CapitalCallService, so FastAPI runs store work in its threadpool.
Domain errors propagate to the handlers registered in ``dealflow.api.server``.
The acting user comes from the X-User-Id header and is kept for audit.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from dealflow.core.capital_calls.service import CapitalCallService
from dealflow.core.capital_calls.sqlite_store import SQLiteCapitalCallStore
from dealflow.core.config import get_db_path, load_config
from dealflow.core.errors import ValidationError
from dealflow.core.performance.service import PerformanceService
from dealflow.core.timeline import SQLiteTimeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["capital-calls"])

_services: Dict[str, Any] = {}
_services_lock = threading.Lock()


def _build_services() -> Dict[str, Any]:
    with _services_lock:
        if not _services:
            config = load_config()
            db_path = get_db_path()
            store = SQLiteCapitalCallStore(db_path)
            _services["capital_calls"] = CapitalCallService(store, SQLiteTimeline(db_path), config)
            _services["performance"] = PerformanceService(store, config)
            logger.info("[DB] Capital call services using %s", db_path)
        return _services


def get_service() -> CapitalCallService:
    return _build_services()["capital_calls"]


def get_performance_service() -> PerformanceService:
    return _build_services()["performance"]


async def json_body(request: Request) -> Dict[str, Any]:
    """Request body as a JSON object."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError.single("body", "must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError.single("body", "must be a JSON object")
    return body


def _calls(calls) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in calls]


# ============================================================================
# Allocations
# ============================================================================


@router.post("/allocations", status_code=201)
def api_create_allocation(
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    """Create a fund's commitment to a deal."""
    allocation = service.create_allocation(
        fund_id=body.get("fund_id"),
        deal_id=body.get("deal_id"),
        amount=body.get("amount"),
        commitment_date=body.get("commitment_date"),
        status=body.get("status") or "committed",
        distributions=body.get("distributions", 0),
        market_value=body.get("market_value", 0),
        created_by=x_user_id,
    )
    return allocation.to_dict()


@router.patch("/allocations/{allocation_id}/performance")
def api_update_allocation_performance(
    allocation_id: str,
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    allocation = service.update_allocation_performance(
        allocation_id,
        distributions=body.get("distributions"),
        market_value=body.get("market_value"),
        created_by=x_user_id,
    )
    return allocation.to_dict()


@router.get("/allocations/{allocation_id}/summary")
def api_allocation_summary(
    allocation_id: str,
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    return service.allocation_summary(allocation_id)


@router.get("/allocations/{allocation_id}/performance")
def api_allocation_performance(
    allocation_id: str,
    as_of: Optional[str] = Query(None),
    performance: PerformanceService = Depends(get_performance_service),
) -> Dict[str, Any]:
    """Deal-level MOIC / TVPI / DPI / RVPI / IRR."""
    return performance.allocation_performance(allocation_id, as_of)


@router.get("/funds/{fund_id}/performance")
def api_fund_performance(
    fund_id: str,
    as_of: Optional[str] = Query(None),
    performance: PerformanceService = Depends(get_performance_service),
) -> Dict[str, Any]:
    """Fund-level aggregate with per-allocation portfolio weights."""
    return performance.fund_performance(fund_id, as_of)


@router.post("/allocations/{allocation_id}/capital-calls/schedule", status_code=201)
def api_create_schedule(
    allocation_id: str,
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    """Expand a schedule (single / monthly / quarterly / biannual / annual / custom) into calls."""
    return service.create_schedule(allocation_id, body, created_by=x_user_id).to_dict()


@router.get("/allocations/{allocation_id}/integrity")
def api_allocation_integrity(
    allocation_id: str,
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    """Cached paid amounts and statuses checked against recorded payments."""
    return service.verify_allocation_integrity(allocation_id).to_dict()


@router.get("/allocations/{allocation_id}/capital-calls")
def api_list_allocation_calls(
    allocation_id: str,
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    calls = service.list_by_allocation(allocation_id)
    return {"allocation_id": allocation_id, "capital_calls": _calls(calls)}


@router.get("/deals/{deal_id}/capital-calls")
def api_list_deal_calls(
    deal_id: str,
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    calls = service.list_by_deal(deal_id)
    return {"deal_id": deal_id, "capital_calls": _calls(calls)}


# ============================================================================
# Capital calls
# ============================================================================


@router.get("/capital-calls/calendar")
def api_capital_call_calendar(
    start: str = Query(...),
    end: str = Query(...),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    """Calls whose call date or due date falls in [start, end]."""
    calls = service.list_calendar(start, end)
    return {"start": start, "end": end, "capital_calls": _calls(calls)}


@router.get("/capital-calls/overdue")
def api_overdue_capital_calls(
    now: Optional[str] = Query(None),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    return {"capital_calls": _calls(service.list_overdue(now))}


@router.get("/capital-calls/reminders")
def api_capital_call_reminders(
    on: Optional[str] = Query(None),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    return {"capital_calls": _calls(service.reminders_due(on))}


@router.post("/capital-calls", status_code=201)
def api_create_capital_call(
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    call = service.create_capital_call(
        allocation_id=body.get("allocation_id"),
        call_amount=body.get("call_amount"),
        amount_type=body.get("amount_type") or "dollar",
        call_date=body.get("call_date"),
        due_date=body.get("due_date"),
        status=body.get("status") or "scheduled",
        notes=body.get("notes"),
        created_by=x_user_id,
    )
    return call.to_dict()


@router.get("/capital-calls/{call_id}")
def api_get_capital_call(
    call_id: str,
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    return service.get_capital_call(call_id).to_dict()


@router.delete("/capital-calls/{call_id}")
def api_delete_capital_call(
    call_id: str,
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    call = service.delete_capital_call(call_id, created_by=x_user_id)
    return {"deleted": True, "capital_call_id": call.id}


@router.patch("/capital-calls/{call_id}/status")
def api_update_capital_call_status(
    call_id: str,
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    if not body.get("status"):
        raise ValidationError.single("status", "is required")
    result = service.update_capital_call_status(
        call_id, body["status"], body.get("paid_amount"), created_by=x_user_id
    )
    return result.to_dict()


@router.patch("/capital-calls/{call_id}/dates")
def api_update_capital_call_dates(
    call_id: str,
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    call = service.update_capital_call_dates(
        call_id, body.get("call_date"), body.get("due_date"), created_by=x_user_id
    )
    return call.to_dict()


@router.post("/capital-calls/{call_id}/payments", status_code=201)
def api_add_payment(
    call_id: str,
    body: Dict[str, Any] = Depends(json_body),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    """Record a payment; the response carries the updated call and all its payments."""
    result = service.add_payment(
        call_id,
        amount=body.get("amount"),
        payment_date=body.get("payment_date"),
        payment_method=body.get("payment_method"),
        notes=body.get("notes"),
        created_by=x_user_id,
    )
    return result.to_dict()


@router.get("/capital-calls/{call_id}/payments")
def api_list_payments(
    call_id: str,
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    payments = service.list_payments(call_id)
    return {"capital_call_id": call_id, "payments": [p.to_dict() for p in payments]}


# ============================================================================
# Integrity
# ============================================================================


@router.get("/integrity/allocations")
def api_verify_allocations(
    fund_id: Optional[str] = Query(None),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    return service.verify_all_allocations_integrity(fund_id)


@router.post("/integrity/allocations/repair")
def api_repair_allocations(
    fund_id: Optional[str] = Query(None),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    service: CapitalCallService = Depends(get_service),
) -> Dict[str, Any]:
    """Rewrite drifted paid amounts and statuses; terminal calls are reported, not changed."""
    return service.repair_allocation_statuses(fund_id, created_by=x_user_id)
