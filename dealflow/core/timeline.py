# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Deal activity timeline.

Capital-call writes append one entry per committed change. The timeline is a
collaborator, not part of the write transaction: callers catch and report
append failures without undoing the change itself.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dealflow.db.database import get_connection, get_db_path, init_db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityEntry:
    deal_id: str
    action: str
    details: Dict[str, Any]
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "action": self.action,
            "details": dict(self.details),
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
        }


class TimelineSink(ABC):
    """Destination for deal activity entries."""

    @abstractmethod
    def append(
        self,
        deal_id: str,
        action: str,
        details: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> ActivityEntry:
        """Record one entry. Raises on failure."""

    @abstractmethod
    def list_for_deal(self, deal_id: str, limit: int = 100) -> List[ActivityEntry]:
        """Entries for a deal, newest first."""


class InMemoryTimeline(TimelineSink):
    def __init__(self) -> None:
        self._entries: List[ActivityEntry] = []
        self._lock = threading.Lock()

    def append(self, deal_id, action, details, user_id=None) -> ActivityEntry:
        entry = ActivityEntry(deal_id=deal_id, action=action, details=dict(details), user_id=user_id)
        with self._lock:
            self._entries.append(entry)
        return entry

    def list_for_deal(self, deal_id: str, limit: int = 100) -> List[ActivityEntry]:
        with self._lock:
            matches = [e for e in self._entries if e.deal_id == deal_id]
        return list(reversed(matches))[:limit]


class SQLiteTimeline(TimelineSink):
    """Timeline stored in the ``deal_activity`` table."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        init_db(self.db_path)

    def append(self, deal_id, action, details, user_id=None) -> ActivityEntry:
        entry = ActivityEntry(deal_id=deal_id, action=action, details=dict(details), user_id=user_id)
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO deal_activity (deal_id, user_id, action, details, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (deal_id, user_id, action, json.dumps(entry.details, default=str), entry.created_at.isoformat()),
            )
        finally:
            conn.close()
        logger.debug("[TIMELINE] %s %s", deal_id, action)
        return entry

    def list_for_deal(self, deal_id: str, limit: int = 100) -> List[ActivityEntry]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT deal_id, user_id, action, details, created_at FROM deal_activity
                WHERE deal_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (deal_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [
            ActivityEntry(
                deal_id=r["deal_id"],
                action=r["action"],
                details=json.loads(r["details"]) if r["details"] else {},
                user_id=r["user_id"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]


def record_activity(
    timeline: Optional[TimelineSink],
    deal_id: str,
    action: str,
    details: Dict[str, Any],
    user_id: Optional[str] = None,
) -> List[str]:
    """Append to ``timeline`` after a committed write. Returns warnings instead of raising."""
    if timeline is None:
        return []
    try:
        timeline.append(deal_id, action, details, user_id=user_id)
    except Exception as e:
        logger.warning("[TIMELINE] Failed to record %s for deal %s: %s", action, deal_id, e)
        return [f"activity timeline not updated: {e}"]
    return []


__all__ = ["ActivityEntry", "TimelineSink", "InMemoryTimeline", "SQLiteTimeline", "record_activity"]
