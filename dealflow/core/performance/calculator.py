# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Private-investment performance ratios.

All functions are pure, take and return Decimal, and return 0 when the
denominator is zero. Rounding for display happens in the caller.

Definitions (total_allocated is the committed amount being measured):
    MOIC = (distributions + market_value) / committed
    TVPI = total_value / total_allocated
    DPI  = distributions / total_allocated
    RVPI = residual_value / total_allocated
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Iterable, List, Optional, Tuple

from dealflow.core.money import ZERO

logger = logging.getLogger(__name__)

ONE = Decimal("1")
DAYS_PER_YEAR = Decimal("365")
DEFAULT_MIN_AGE_YEARS = Decimal("0.5")


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == ZERO:
        return ZERO
    return numerator / denominator


def moic(committed: Decimal, distributions: Decimal, market_value: Decimal) -> Decimal:
    """Multiple on invested capital against the commitment."""
    return _ratio(distributions + market_value, committed)


def tvpi(total_value: Decimal, total_allocated: Decimal) -> Decimal:
    return _ratio(total_value, total_allocated)


def dpi(distributions: Decimal, total_allocated: Decimal) -> Decimal:
    return _ratio(distributions, total_allocated)


def rvpi(residual_value: Decimal, total_allocated: Decimal) -> Decimal:
    return _ratio(residual_value, total_allocated)


def portfolio_weight(allocation_amount: Decimal, total_fund_allocated: Decimal) -> Decimal:
    """Share of the fund's total allocations, as a fraction."""
    return _ratio(allocation_amount, total_fund_allocated)


def age_in_years(start: Any, as_of: Any) -> Decimal:
    """Elapsed time in years on an actual/365 basis; 0 when as_of precedes start."""
    days = (_as_date(as_of) - _as_date(start)).days
    if days <= 0:
        return ZERO
    return Decimal(days) / DAYS_PER_YEAR


def irr_approx(
    total_value: Decimal,
    total_allocated: Decimal,
    age_years: Decimal,
    min_age_years: Decimal = DEFAULT_MIN_AGE_YEARS,
) -> Decimal:
    """Annualized multiple, ``(TV / allocated) ** (1 / max(age, min_age)) - 1``.

    An approximation that ignores cash-flow timing; see ``xirr`` for the
    dated-cash-flow rate. Returns 0 for zero allocation and -1 (total loss)
    when nothing of value remains.
    """
    if total_allocated == ZERO:
        return ZERO
    if total_value <= ZERO:
        return -ONE
    years = max(Decimal(age_years), Decimal(min_age_years))
    if years <= ZERO:
        return ZERO
    with localcontext() as ctx:
        ctx.prec = 28
        return (total_value / total_allocated) ** (ONE / years) - ONE


def xirr(
    cash_flows: Iterable[Tuple[Any, Decimal]],
    guess: Decimal = Decimal("0.1"),
    tol: Decimal = Decimal("1e-9"),
    max_iter: int = 100,
) -> Optional[Decimal]:
    """Annual internal rate of return of dated cash flows.

    Parameters
    ----------
    cash_flows:
        (date, amount) pairs in investor sign: contributions negative,
        distributions and terminal value positive. Same-day flows are summed.
    guess, tol, max_iter:
        Newton-Raphson start point, NPV tolerance and iteration cap.

    Returns
    -------
    Decimal or None
        None when there are fewer than two dates, no sign change, or no convergence.
    """
    merged = {}
    for when, amount in cash_flows:
        d = _as_date(when)
        merged[d] = merged.get(d, ZERO) + Decimal(amount)
    flows = sorted(merged.items())
    if len(flows) < 2:
        return None
    if all(cf >= ZERO for _, cf in flows) or all(cf <= ZERO for _, cf in flows):
        return None

    start = flows[0][0]
    periods = [(Decimal((d - start).days) / DAYS_PER_YEAR, cf) for d, cf in flows]

    with localcontext() as ctx:
        ctx.prec = 28
        rate = Decimal(guess)
        for _ in range(max_iter):
            if rate <= -ONE:
                logger.debug("[PERFORMANCE] xirr left the domain at rate %s", rate)
                return None
            try:
                npv = _npv(rate, periods)
                if abs(npv) < tol:
                    return rate
                derivative = _npv_derivative(rate, periods)
            except (InvalidOperation, OverflowError):
                return None
            if derivative == ZERO:
                return None
            rate = rate - npv / derivative
    logger.debug("[PERFORMANCE] xirr did not converge in %d iterations", max_iter)
    return None


def _npv(rate: Decimal, periods: List[Tuple[Decimal, Decimal]]) -> Decimal:
    base = ONE + rate
    return sum((cf / base ** t for t, cf in periods), ZERO)


def _npv_derivative(rate: Decimal, periods: List[Tuple[Decimal, Decimal]]) -> Decimal:
    base = ONE + rate
    total = ZERO
    for t, cf in periods:
        if t == ZERO:
            continue
        total -= cf * t / base ** (t + ONE)
    return total


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"expected a date, got {type(value).__name__}")


__all__ = [
    "moic",
    "tvpi",
    "dpi",
    "rvpi",
    "irr_approx",
    "portfolio_weight",
    "age_in_years",
    "xirr",
]
