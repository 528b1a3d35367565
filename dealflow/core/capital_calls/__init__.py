# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Capital call lifecycle: scheduling, status transitions, payments and storage."""

from dealflow.core.capital_calls.models import (
    Allocation,
    AllocationStatus,
    AmountType,
    CallStatus,
    CapitalCall,
    CapitalCallPayment,
    PaymentMethod,
    PaymentResult,
    ScheduleKind,
    ScheduleResult,
    ScheduleSpec,
)
from dealflow.core.capital_calls.service import CapitalCallService
from dealflow.core.capital_calls.sqlite_store import SQLiteCapitalCallStore
from dealflow.core.capital_calls.store import CapitalCallStore, InMemoryCapitalCallStore

__all__ = [
    "Allocation",
    "AllocationStatus",
    "AmountType",
    "CallStatus",
    "CapitalCall",
    "CapitalCallPayment",
    "PaymentMethod",
    "PaymentResult",
    "ScheduleKind",
    "ScheduleResult",
    "ScheduleSpec",
    "CapitalCallService",
    "CapitalCallStore",
    "InMemoryCapitalCallStore",
    "SQLiteCapitalCallStore",
]
