# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Calendar date normalization for capital calls.

Every date in the capital-call engine is a calendar date. To keep storage
round-trips and naive arithmetic from shifting a date by one day, each date is
pinned to a single configured UTC time of day (noon by default). Naive inputs
are read in the configured calendar time zone.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional

import pytz
from dateutil.relativedelta import relativedelta

from dealflow.core.config import DateHandlingConfig, TimingConfig, load_config
from dealflow.core.errors import InvalidDateError

logger = logging.getLogger(__name__)


class DateNormalizer:
    """Canonicalizes dates and computes due, reminder and overdue dates."""

    def __init__(
        self,
        date_handling: Optional[DateHandlingConfig] = None,
        timing: Optional[TimingConfig] = None,
    ) -> None:
        if date_handling is None or timing is None:
            cfg = load_config()
            date_handling = date_handling or cfg.date_handling
            timing = timing or cfg.timing
        self.hour = date_handling.default_hour_utc
        try:
            self.tz = pytz.timezone(date_handling.time_zone)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown calendar time zone: {date_handling.time_zone}")
        self.due_days = timing.default_due_days
        self.grace_days = timing.payment_grace_days
        self.reminder_schedule = tuple(timing.reminder_schedule)

    # ------------------------------------------------------------------ #
    # Parsing
    # ------------------------------------------------------------------ #
    def _parse(self, text: str) -> Any:
        raw = text.strip()
        if not raw:
            raise InvalidDateError(text)
        try:
            if len(raw) == 10:
                return date.fromisoformat(raw)
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidDateError(text)

    def calendar_date(self, value: Any) -> date:
        """Return the calendar date a value denotes."""
        if isinstance(value, str):
            value = self._parse(value)
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.date()
            # Already-normalized values keep their UTC date whatever the calendar zone.
            if value.utcoffset() == timedelta(0) and value.time() == time(self.hour):
                return value.date()
            return value.astimezone(self.tz).date()
        if isinstance(value, date):
            return value
        raise InvalidDateError(value)

    # ------------------------------------------------------------------ #
    # Normalization
    # ------------------------------------------------------------------ #
    def normalize(self, value: Any) -> datetime:
        """Pin ``value`` to the configured UTC hour. Idempotent."""
        d = self.calendar_date(value)
        return datetime(d.year, d.month, d.day, self.hour, 0, 0, tzinfo=timezone.utc)

    def today(self) -> datetime:
        return self.normalize(datetime.now(self.tz))

    def to_storage(self, value: Any) -> str:
        return self.normalize(value).isoformat()

    def from_storage(self, text: str) -> datetime:
        return self.normalize(text)

    # ------------------------------------------------------------------ #
    # Arithmetic
    # ------------------------------------------------------------------ #
    def add_days(self, value: Any, days: int) -> datetime:
        return self.normalize(self.normalize(value) + timedelta(days=days))

    def add_months(self, value: Any, months: int) -> datetime:
        """Calendar month arithmetic; the 31st clamps to the last day of shorter months."""
        return self.normalize(self.calendar_date(value) + relativedelta(months=months))

    def due_date_from(self, call_date: Any) -> datetime:
        """call_date + configured due days."""
        return self.add_days(call_date, self.due_days)

    def reminder_dates(self, due_date: Any) -> List[datetime]:
        """Reminder dates ahead of ``due_date``, one per configured lead time, in configured order."""
        return [self.add_days(due_date, -days) for days in self.reminder_schedule]

    def is_overdue(self, due_date: Any, now: Optional[Any] = None) -> bool:
        """True strictly after due_date + grace period."""
        deadline = self.normalize(due_date) + timedelta(days=self.grace_days)
        return self._instant(now) > deadline

    def business_days_between(self, start: Any, end: Any) -> int:
        """Weekdays (Mon-Fri) in [start, end], both ends inclusive. 0 when start > end."""
        current = self.calendar_date(start)
        last = self.calendar_date(end)
        if current > last:
            return 0
        n = 0
        while current <= last:
            if current.weekday() < 5:  # Saturday=5, Sunday=6
                n += 1
            current += timedelta(days=1)
        return n

    def next_business_day(self, value: Any) -> datetime:
        """First weekday strictly after ``value``."""
        d = self.calendar_date(value) + timedelta(days=1)
        while d.weekday() >= 5:
            d += timedelta(days=1)
        return self.normalize(d)

    def _instant(self, now: Optional[Any]) -> datetime:
        """Aware instant for comparisons; naive datetimes are read in the calendar zone."""
        if now is None:
            return datetime.now(timezone.utc)
        if isinstance(now, str):
            now = self._parse(now)
        if isinstance(now, datetime):
            if now.tzinfo is None:
                return self.tz.localize(now)
            return now
        if isinstance(now, date):
            return self.normalize(now)
        raise InvalidDateError(now, "now")


__all__ = ["DateNormalizer"]
