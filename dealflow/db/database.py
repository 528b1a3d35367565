# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""SQLite schema and connections for DealFlow."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Union

from dealflow.core.config import get_db_path as _config_db_path

# Seconds a writer waits for the database lock before sqlite3 raises.
BUSY_TIMEOUT_SECONDS = 30.0


def get_db_path() -> Path:
    """Get path to SQLite database.

    Returns the configured path (DEALFLOW_DB_PATH or config.yaml database.path).
    """
    return _config_db_path()


def get_connection(db_path: Optional[Union[str, Path]] = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; callers issue BEGIN IMMEDIATE for writes."""
    path = Path(db_path) if db_path is not None else get_db_path()
    conn = sqlite3.connect(
        str(path),
        timeout=BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Optional[Union[str, Path]] = None) -> None:
    """Initialize database with required tables."""
    path = Path(db_path) if db_path is not None else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(path)
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")

        # Create allocations table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS allocations (
                id TEXT PRIMARY KEY,
                fund_id TEXT NOT NULL,
                deal_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                commitment_date TEXT NOT NULL,
                status TEXT NOT NULL,
                distributions TEXT NOT NULL DEFAULT '0',
                market_value TEXT NOT NULL DEFAULT '0'
            )
        """)

        # Create capital_calls table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS capital_calls (
                id TEXT PRIMARY KEY,
                allocation_id TEXT NOT NULL REFERENCES allocations(id),
                call_amount TEXT NOT NULL,
                amount_type TEXT NOT NULL,
                source_value TEXT,
                call_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                status TEXT NOT NULL,
                paid_amount TEXT NOT NULL DEFAULT '0',
                notes TEXT,
                deleted INTEGER NOT NULL DEFAULT 0,
                deleted_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Create capital_call_payments table (append-only)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS capital_call_payments (
                id TEXT PRIMARY KEY,
                capital_call_id TEXT NOT NULL REFERENCES capital_calls(id),
                amount TEXT NOT NULL,
                payment_date TEXT NOT NULL,
                payment_method TEXT NOT NULL,
                notes TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL
            )
        """)

        # Create deal_activity table (timeline)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS deal_activity (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                deal_id TEXT NOT NULL,
                user_id TEXT,
                action TEXT NOT NULL,
                details TEXT,
                created_at TEXT NOT NULL
            )
        """)

        # Create indexes
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_allocations_fund ON allocations(fund_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_allocations_deal ON allocations(deal_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_calls_allocation ON capital_calls(allocation_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_calls_call_date ON capital_calls(call_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_calls_due_date ON capital_calls(due_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_payments_call ON capital_call_payments(capital_call_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_activity_deal ON deal_activity(deal_id, created_at DESC)")
    finally:
        conn.close()


__all__ = ["BUSY_TIMEOUT_SECONDS", "get_db_path", "get_connection", "init_db"]
