"""
Valuation Projection Engine.

Projects investment values to a report date by compounding each position's
stated IRR from its acquisition date, and derives the portfolio-level figures
shown on reports: AUM, weighted average IRR, invested capital, unrealized
gains, portfolio multiple and an approximate portfolio IRR.

Amounts are rounded to whole currency units, IRRs to 1 decimal and the
multiple to 2 decimals, rounding halves up.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence
import logging
import math

import numpy as np

from ..config import DAYS_PER_YEAR
from ..models import Investment

logger = logging.getLogger(__name__)


# ==============================================================================
# HELPERS
# ==============================================================================

def round_half_up(value: float, decimals: int = 0) -> float:
    """Round halves upward (2.5 -> 3, -2.5 -> -2)."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def years_between(start: date, end: date) -> float:
    """Fractional years between two dates (365.25-day years, may be negative)."""
    return (end - start).days / DAYS_PER_YEAR


def select_investments(
    investments: Iterable[Investment],
    included_ids: Optional[Iterable[str]] = None
) -> List[Investment]:
    """
    Keep the investments whose id is in ``included_ids``.

    Order follows the investment list, not the id list. ``None`` keeps all.
    """
    if included_ids is None:
        return list(investments)
    wanted = set(included_ids)
    return [inv for inv in investments if inv.id in wanted]


# ==============================================================================
# SINGLE INVESTMENT
# ==============================================================================

def calculate_value_at_date(investment: Investment, target_date: date) -> float:
    """
    Value an investment at a date using IRR compound growth.

    Value = Principal x (1 + IRR)^years, rounded to a whole unit. At the
    acquisition date the value is the principal.
    """
    principal = investment.total_invested
    growth = 1 + investment.irr / 100
    years = years_between(investment.acquisition_date, target_date)

    if years == 0:
        return round_half_up(principal)

    if growth <= 0:
        logger.warning(f"Investment {investment.id} has IRR {investment.irr}%, valued at 0")
        return 0.0

    return round_half_up(principal * growth ** years)


# ==============================================================================
# PORTFOLIO FIGURES
# ==============================================================================

def calculate_total_aum(investments: Sequence[Investment], target_date: date) -> float:
    """Sum of projected values at the target date."""
    return round_half_up(sum(calculate_value_at_date(inv, target_date) for inv in investments))


def calculate_weighted_avg_irr(investments: Sequence[Investment], target_date: date) -> float:
    """Value-weighted average of stated IRRs at the target date (1 dp)."""
    if not investments:
        return 0.0

    values = np.array([calculate_value_at_date(inv, target_date) for inv in investments])
    irrs = np.array([inv.irr for inv in investments])

    if values.sum() <= 0:
        return 0.0

    return round_half_up(float(np.average(irrs, weights=values)), 1)


def calculate_total_invested(investments: Sequence[Investment]) -> float:
    """Sum of principal invested."""
    return round_half_up(sum(inv.total_invested for inv in investments))


def calculate_total_unrealized_gains(investments: Sequence[Investment], target_date: date) -> float:
    """Sum of projected value minus principal."""
    gains = sum(
        calculate_value_at_date(inv, target_date) - inv.total_invested for inv in investments
    )
    return round_half_up(gains)


def calculate_portfolio_multiple(investments: Sequence[Investment], target_date: date) -> float:
    """Total projected value / total invested (2 dp); 0 when nothing is invested."""
    total_aum = calculate_total_aum(investments, target_date)
    total_invested = calculate_total_invested(investments)

    if total_invested <= 0:
        return 0.0

    return round_half_up(total_aum / total_invested, 2)


def calculate_portfolio_irr(investments: Sequence[Investment], target_date: date) -> float:
    """
    Approximate portfolio IRR.

    IRR ~= Multiple^(1 / years) - 1, where years is the value-weighted holding
    period. This is an approximation; an exact figure needs the dated cash
    flows and ``calculate_irr``.

    Returns:
        IRR as a percentage (1 dp); 0 for an empty portfolio or zero holding
        period
    """
    if not investments:
        return 0.0

    values = np.array([calculate_value_at_date(inv, target_date) for inv in investments])
    periods = np.array([years_between(inv.acquisition_date, target_date) for inv in investments])

    avg_years = float(np.average(periods, weights=values)) if values.sum() > 0 else 0.0
    multiple = calculate_portfolio_multiple(investments, target_date)

    if avg_years <= 0 or multiple <= 0:
        return 0.0

    return round_half_up((multiple ** (1 / avg_years) - 1) * 100, 1)


def adjust_aum_for_transactions(
    base_aum: float,
    capital_calls: float = 0,
    distributions: float = 0
) -> float:
    """
    Adjust AUM for cash that left the fund.

    AUM = Base AUM - Distributions. Capital calls are accepted but ignored:
    called capital is already reflected in the projected investment values.
    """
    return round_half_up(base_aum - distributions)


# ==============================================================================
# PROJECTION
# ==============================================================================

@dataclass(frozen=True)
class PortfolioProjection:
    """Portfolio figures for a set of investments at one date."""
    target_date: date
    investment_count: int
    total_aum: float
    weighted_avg_irr: float
    total_invested: float
    total_unrealized_gains: float
    portfolio_multiple: float
    portfolio_irr: float
    values: Dict[str, float] = field(default_factory=dict)


def project_portfolio(
    investments: Iterable[Investment],
    included_ids: Optional[Iterable[str]],
    target_date: date
) -> PortfolioProjection:
    """
    Project the selected investments to ``target_date``.

    Args:
        investments: All candidate investments
        included_ids: Ids to include (None for all)
        target_date: Valuation date, typically a report's period end

    Returns:
        PortfolioProjection
    """
    selected = select_investments(investments, included_ids)

    projection = PortfolioProjection(
        target_date=target_date,
        investment_count=len(selected),
        total_aum=calculate_total_aum(selected, target_date),
        weighted_avg_irr=calculate_weighted_avg_irr(selected, target_date),
        total_invested=calculate_total_invested(selected),
        total_unrealized_gains=calculate_total_unrealized_gains(selected, target_date),
        portfolio_multiple=calculate_portfolio_multiple(selected, target_date),
        portfolio_irr=calculate_portfolio_irr(selected, target_date),
        values={inv.id: calculate_value_at_date(inv, target_date) for inv in selected},
    )

    logger.debug(
        f"Projected {projection.investment_count} investments to {target_date}: "
        f"AUM={projection.total_aum:,.0f}"
    )
    return projection
