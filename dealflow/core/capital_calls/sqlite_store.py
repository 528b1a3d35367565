# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""SQLite-backed storage for allocations, capital calls and payments.

Amounts are stored as TEXT so Decimal values survive the round-trip exactly.
Dates are stored as ISO strings pinned to the configured UTC hour.

Each write transaction opens its own connection and starts with
``BEGIN IMMEDIATE``, which takes the database write lock up front. Two
processes recording payments against the same call therefore serialize on the
lock instead of both reading the same paid total.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional, Union

from dealflow.core.capital_calls.ledger import TERMINAL_STATUSES
from dealflow.core.capital_calls.models import (
    Allocation,
    AllocationStatus,
    AmountType,
    CallStatus,
    CapitalCall,
    CapitalCallPayment,
    PaymentMethod,
)
from dealflow.core.capital_calls.store import CapitalCallStore, StoreTransaction
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import InternalError
from dealflow.db.database import get_connection, get_db_path, init_db

logger = logging.getLogger(__name__)

_CALL_COLUMNS = (
    "id, allocation_id, call_amount, amount_type, source_value, call_date, due_date, "
    "status, paid_amount, notes, deleted, deleted_at, created_at, updated_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class _SQLiteTransaction(StoreTransaction):
    """Row mapping over one open connection."""

    def __init__(self, conn: sqlite3.Connection, normalizer: DateNormalizer) -> None:
        self.conn = conn
        self.dates = normalizer

    # ------------------------------------------------------------------ #
    # Row mapping
    # ------------------------------------------------------------------ #
    def _row_to_allocation(self, row: sqlite3.Row) -> Allocation:
        return Allocation(
            id=row["id"],
            fund_id=row["fund_id"],
            deal_id=row["deal_id"],
            amount=Decimal(row["amount"]),
            commitment_date=self.dates.from_storage(row["commitment_date"]),
            status=AllocationStatus(row["status"]),
            distributions=Decimal(row["distributions"]),
            market_value=Decimal(row["market_value"]),
        )

    def _row_to_call(self, row: sqlite3.Row) -> CapitalCall:
        return CapitalCall(
            id=row["id"],
            allocation_id=row["allocation_id"],
            call_amount=Decimal(row["call_amount"]),
            amount_type=AmountType(row["amount_type"]),
            source_value=Decimal(row["source_value"]) if row["source_value"] is not None else None,
            call_date=self.dates.from_storage(row["call_date"]),
            due_date=self.dates.from_storage(row["due_date"]),
            status=CallStatus(row["status"]),
            paid_amount=Decimal(row["paid_amount"]),
            notes=row["notes"],
            deleted=bool(row["deleted"]),
            deleted_at=_parse_ts(row["deleted_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def _row_to_payment(self, row: sqlite3.Row) -> CapitalCallPayment:
        return CapitalCallPayment(
            id=row["id"],
            capital_call_id=row["capital_call_id"],
            amount=Decimal(row["amount"]),
            payment_date=self.dates.from_storage(row["payment_date"]),
            payment_method=PaymentMethod(row["payment_method"]),
            notes=row["notes"],
            created_by=row["created_by"],
            created_at=_parse_ts(row["created_at"]),
        )

    def _call_params(self, c: CapitalCall) -> tuple:
        return (
            c.id,
            c.allocation_id,
            str(c.call_amount),
            c.amount_type.value,
            str(c.source_value) if c.source_value is not None else None,
            self.dates.to_storage(c.call_date),
            self.dates.to_storage(c.due_date),
            c.status.value,
            str(c.paid_amount),
            c.notes,
            1 if c.deleted else 0,
            _ts(c.deleted_at),
            _ts(c.created_at),
            _ts(c.updated_at),
        )

    def _calls(self, sql: str, params: tuple = ()) -> List[CapitalCall]:
        rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_call(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Allocations
    # ------------------------------------------------------------------ #
    def get_allocation(self, allocation_id: str) -> Optional[Allocation]:
        row = self.conn.execute("SELECT * FROM allocations WHERE id = ?", (allocation_id,)).fetchone()
        return self._row_to_allocation(row) if row else None

    def insert_allocation(self, allocation: Allocation) -> None:
        self.conn.execute(
            """
            INSERT INTO allocations (id, fund_id, deal_id, amount, commitment_date, status,
                                     distributions, market_value)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                allocation.id,
                allocation.fund_id,
                allocation.deal_id,
                str(allocation.amount),
                self.dates.to_storage(allocation.commitment_date),
                allocation.status.value,
                str(allocation.distributions),
                str(allocation.market_value),
            ),
        )

    def update_allocation(self, allocation: Allocation) -> None:
        self.conn.execute(
            """
            UPDATE allocations
            SET amount = ?, status = ?, distributions = ?, market_value = ?
            WHERE id = ?
            """,
            (
                str(allocation.amount),
                allocation.status.value,
                str(allocation.distributions),
                str(allocation.market_value),
                allocation.id,
            ),
        )

    def list_allocations_by_fund(self, fund_id: str) -> List[Allocation]:
        rows = self.conn.execute(
            "SELECT * FROM allocations WHERE fund_id = ? ORDER BY commitment_date, id", (fund_id,)
        ).fetchall()
        return [self._row_to_allocation(r) for r in rows]

    def list_allocations(self) -> List[Allocation]:
        rows = self.conn.execute("SELECT * FROM allocations ORDER BY commitment_date, id").fetchall()
        return [self._row_to_allocation(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Capital calls
    # ------------------------------------------------------------------ #
    def get_call(self, call_id: str) -> Optional[CapitalCall]:
        row = self.conn.execute(
            f"SELECT {_CALL_COLUMNS} FROM capital_calls WHERE id = ?", (call_id,)
        ).fetchone()
        return self._row_to_call(row) if row else None

    def insert_calls(self, calls: List[CapitalCall]) -> None:
        self.conn.executemany(
            f"INSERT INTO capital_calls ({_CALL_COLUMNS}) VALUES ({', '.join('?' * 14)})",
            [self._call_params(c) for c in calls],
        )

    def update_call(self, call: CapitalCall) -> None:
        self.conn.execute(
            """
            UPDATE capital_calls
            SET call_date = ?, due_date = ?, status = ?, paid_amount = ?, notes = ?,
                deleted = ?, deleted_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                self.dates.to_storage(call.call_date),
                self.dates.to_storage(call.due_date),
                call.status.value,
                str(call.paid_amount),
                call.notes,
                1 if call.deleted else 0,
                _ts(call.deleted_at),
                _ts(call.updated_at),
                call.id,
            ),
        )

    def list_calls_by_allocation(self, allocation_id: str, include_deleted: bool = False) -> List[CapitalCall]:
        sql = f"SELECT {_CALL_COLUMNS} FROM capital_calls WHERE allocation_id = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        return self._calls(sql + " ORDER BY call_date, created_at, id", (allocation_id,))

    def list_calls_by_deal(self, deal_id: str) -> List[CapitalCall]:
        return self._calls(
            f"""
            SELECT {', '.join('c.' + col.strip() for col in _CALL_COLUMNS.split(','))}
            FROM capital_calls c JOIN allocations a ON a.id = c.allocation_id
            WHERE a.deal_id = ? AND c.deleted = 0
            ORDER BY c.call_date, c.created_at, c.id
            """,
            (deal_id,),
        )

    def list_calls_in_range(self, start: datetime, end: datetime) -> List[CapitalCall]:
        # Compare on the YYYY-MM-DD prefix so rows written under another pinned hour still match.
        lo = self.dates.to_storage(start)[:10]
        hi = self.dates.to_storage(end)[:10]
        return self._calls(
            f"""
            SELECT {_CALL_COLUMNS} FROM capital_calls
            WHERE deleted = 0
              AND ((substr(call_date, 1, 10) BETWEEN ? AND ?) OR (substr(due_date, 1, 10) BETWEEN ? AND ?))
            ORDER BY call_date, created_at, id
            """,
            (lo, hi, lo, hi),
        )

    def list_open_calls(self) -> List[CapitalCall]:
        terminal = tuple(s.value for s in TERMINAL_STATUSES)
        return self._calls(
            f"""
            SELECT {_CALL_COLUMNS} FROM capital_calls
            WHERE deleted = 0 AND status NOT IN ({', '.join('?' * len(terminal))})
            ORDER BY call_date, created_at, id
            """,
            terminal,
        )

    # ------------------------------------------------------------------ #
    # Payments
    # ------------------------------------------------------------------ #
    def list_payments(self, call_id: str) -> List[CapitalCallPayment]:
        rows = self.conn.execute(
            """
            SELECT * FROM capital_call_payments
            WHERE capital_call_id = ?
            ORDER BY payment_date, created_at
            """,
            (call_id,),
        ).fetchall()
        return [self._row_to_payment(r) for r in rows]

    def insert_payment(self, payment: CapitalCallPayment) -> None:
        self.conn.execute(
            """
            INSERT INTO capital_call_payments (id, capital_call_id, amount, payment_date,
                                               payment_method, notes, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.id,
                payment.capital_call_id,
                str(payment.amount),
                self.dates.to_storage(payment.payment_date),
                payment.payment_method.value,
                payment.notes,
                payment.created_by,
                _ts(payment.created_at),
            ),
        )


class SQLiteCapitalCallStore(CapitalCallStore):
    """Persistence layer for the capital-call engine using SQLite."""

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        normalizer: Optional[DateNormalizer] = None,
    ) -> None:
        """Create a new ``SQLiteCapitalCallStore``.

        Parameters
        ----------
        db_path:
            Path to the SQLite database file. If omitted, uses the configured
            database path (DEALFLOW_DB_PATH or config.yaml).
        normalizer:
            Date normalizer used to write and read stored dates.
        """
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self.dates = normalizer or DateNormalizer()
        init_db(self.db_path)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        conn = self._connect("transaction")
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                logger.exception("[STORE] Could not begin transaction on %s", self.db_path)
                raise InternalError("transaction") from e
            try:
                yield _SQLiteTransaction(conn, self.dates)
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                logger.exception("[STORE] Transaction failed, rolled back")
                raise InternalError("transaction") from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                logger.exception("[STORE] Commit failed on %s", self.db_path)
                raise InternalError("commit") from e
        finally:
            conn.close()

    @contextmanager
    def snapshot(self) -> Iterator[StoreTransaction]:
        conn = self._connect("read")
        try:
            conn.execute("BEGIN")
            try:
                yield _SQLiteTransaction(conn, self.dates)
            except sqlite3.Error as e:
                logger.exception("[STORE] Read failed")
                raise InternalError("read") from e
            finally:
                conn.execute("ROLLBACK")
        finally:
            conn.close()

    def _connect(self, operation: str) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path)
        except sqlite3.Error as e:
            logger.exception("[STORE] Could not open %s", self.db_path)
            raise InternalError(operation) from e


__all__ = ["SQLiteCapitalCallStore"]
