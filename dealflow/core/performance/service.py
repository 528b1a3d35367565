# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Deal- and fund-level performance read model.

Figures are computed on demand from allocations and their capital calls;
nothing here is stored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from dealflow.core.capital_calls.models import Allocation
from dealflow.core.capital_calls.store import CapitalCallStore
from dealflow.core.config import DealFlowConfig, load_config
from dealflow.core.dates import DateNormalizer
from dealflow.core.errors import InvalidDateError, NotFoundError
from dealflow.core.money import ZERO
from dealflow.core.performance import calculator

logger = logging.getLogger(__name__)


def _fmt(value: Optional[Decimal], places: int) -> Optional[str]:
    if value is None:
        return None
    return str(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


class PerformanceService:
    """MOIC / TVPI / DPI / RVPI / IRR for one allocation or a whole fund."""

    def __init__(
        self,
        store: CapitalCallStore,
        config: Optional[DealFlowConfig] = None,
        normalizer: Optional[DateNormalizer] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store
        self.dates = normalizer or DateNormalizer(self.config.date_handling, self.config.timing)

    def allocation_performance(self, allocation_id: str, as_of: Any = None) -> Dict[str, Any]:
        allocation = self.store.get_allocation(allocation_id)
        if allocation is None:
            raise NotFoundError("allocation", allocation_id)
        when = self._as_of(as_of)
        paid_in, flows = self._paid_in(allocation)
        result = self._metrics(
            committed=allocation.amount,
            paid_in=paid_in,
            distributions=allocation.distributions,
            market_value=allocation.market_value,
            start=allocation.commitment_date,
            as_of=when,
            flows=flows,
        )
        result.update({
            "allocation_id": allocation.id,
            "fund_id": allocation.fund_id,
            "deal_id": allocation.deal_id,
        })
        return result

    def fund_performance(self, fund_id: str, as_of: Any = None) -> Dict[str, Any]:
        """Aggregate across a fund's allocations plus each allocation's portfolio weight."""
        allocations = self.store.list_allocations_by_fund(fund_id)
        if not allocations:
            raise NotFoundError("fund", fund_id)
        when = self._as_of(as_of)
        places = self.config.performance.multiple_precision

        committed = sum((a.amount for a in allocations), ZERO)
        distributions = sum((a.distributions for a in allocations), ZERO)
        market_value = sum((a.market_value for a in allocations), ZERO)
        paid_in = ZERO
        flows: List[Tuple[datetime, Decimal]] = []
        per_allocation = []
        for a in allocations:
            a_paid, a_flows = self._paid_in(a)
            paid_in += a_paid
            flows.extend(a_flows)
            per_allocation.append({
                "allocation_id": a.id,
                "deal_id": a.deal_id,
                "committed": str(a.amount),
                "portfolio_weight": _fmt(calculator.portfolio_weight(a.amount, committed), places + 2),
                "moic": _fmt(calculator.moic(a.amount, a.distributions, a.market_value), places),
            })

        result = self._metrics(
            committed=committed,
            paid_in=paid_in,
            distributions=distributions,
            market_value=market_value,
            start=min(a.commitment_date for a in allocations),
            as_of=when,
            flows=flows,
        )
        result.update({"fund_id": fund_id, "allocations": per_allocation})
        logger.debug("[PERFORMANCE] Fund %s: %d allocation(s)", fund_id, len(allocations))
        return result

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _paid_in(self, allocation: Allocation) -> Tuple[Decimal, List[Tuple[datetime, Decimal]]]:
        """Total paid against the allocation's calls and the contributions as dated outflows."""
        total = ZERO
        flows = []
        for call in self.store.list_calls_by_allocation(allocation.id):
            for p in self.store.list_payments(call.id):
                total += p.amount
                flows.append((p.payment_date, -p.amount))
        return total, flows

    def _metrics(
        self,
        committed: Decimal,
        paid_in: Decimal,
        distributions: Decimal,
        market_value: Decimal,
        start: datetime,
        as_of: datetime,
        flows: List[Tuple[datetime, Decimal]],
    ) -> Dict[str, Any]:
        perf = self.config.performance
        places = perf.multiple_precision
        total_value = distributions + market_value
        age = calculator.age_in_years(start, as_of)
        irr = calculator.irr_approx(total_value, committed, age, perf.min_age_years)

        # Distributions carry no dates; they are counted with the terminal value.
        xirr = None
        if flows and total_value > ZERO:
            xirr = calculator.xirr(flows + [(as_of, total_value)])

        return {
            "as_of": as_of.isoformat(),
            "committed": str(committed),
            "paid_in": str(paid_in),
            "distributions": str(distributions),
            "market_value": str(market_value),
            "total_value": str(total_value),
            "age_years": _fmt(age, 4),
            "moic": _fmt(calculator.moic(committed, distributions, market_value), places),
            "tvpi": _fmt(calculator.tvpi(total_value, committed), places),
            "dpi": _fmt(calculator.dpi(distributions, committed), places),
            "rvpi": _fmt(calculator.rvpi(market_value, committed), places),
            "irr_approx": _fmt(irr, perf.irr_precision),
            "xirr": _fmt(xirr, perf.irr_precision),
        }

    def _as_of(self, value: Any) -> datetime:
        if value in (None, ""):
            return self.dates.today()
        try:
            return self.dates.normalize(value)
        except InvalidDateError:
            raise InvalidDateError(value, "as_of")


__all__ = ["PerformanceService"]
