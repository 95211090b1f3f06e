"""
Net Asset Value Engine.

NAV components (investments plus cash and other assets, less liabilities),
NAV per share, each holding's share of NAV, and period returns (MTD, QTD,
YTD, since inception) read off a NAV history.

Percentage changes against a zero base return 0 instead of raising.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

import pandas as pd

from ..models import Investment

logger = logging.getLogger(__name__)


# ==============================================================================
# DATA STRUCTURES
# ==============================================================================

@dataclass(frozen=True)
class NAVComponents:
    total_assets: float
    total_liabilities: float
    net_asset_value: float
    cash: float
    investments: float
    other_assets: float


@dataclass(frozen=True)
class NAVPoint:
    """One observation in a NAV history."""
    date: date
    nav: float
    nav_per_share: Optional[float] = None


@dataclass(frozen=True)
class NAVReturns:
    mtd_return: float
    qtd_return: float
    ytd_return: float
    inception_return: float


# ==============================================================================
# NAV COMPONENTS
# ==============================================================================

def calculate_total_assets(
    investments: Sequence[Investment],
    cash: float = 0.0,
    other_assets: float = 0.0
) -> float:
    """Investments at current value plus cash and other assets."""
    return sum(inv.current_value for inv in investments) + cash + other_assets


def calculate_total_liabilities(debt_outstanding: float = 0.0, other_liabilities: float = 0.0) -> float:
    return debt_outstanding + other_liabilities


def calculate_nav_components(
    investments: Sequence[Investment],
    cash: float = 0.0,
    other_assets: float = 0.0,
    debt_outstanding: float = 0.0,
    other_liabilities: float = 0.0
) -> NAVComponents:
    """
    Break NAV down into its asset and liability parts.

    NAV = Total Assets - Total Liabilities

    Args:
        investments: Holdings valued at their current value
        cash: Cash held by the fund
        other_assets: Receivables and other non-investment assets
        debt_outstanding: Fund-level borrowing
        other_liabilities: Payables, accrued fees and the like

    Returns:
        NAVComponents
    """
    investment_value = sum(inv.current_value for inv in investments)
    total_assets = calculate_total_assets(investments, cash, other_assets)
    total_liabilities = calculate_total_liabilities(debt_outstanding, other_liabilities)

    return NAVComponents(
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        net_asset_value=total_assets - total_liabilities,
        cash=cash,
        investments=investment_value,
        other_assets=other_assets,
    )


def calculate_nav_per_share(nav: float, shares_outstanding: float) -> float:
    """NAV / shares outstanding; 0 when no shares are outstanding."""
    if shares_outstanding <= 0:
        logger.debug("No shares outstanding, NAV per share defaults to 0")
        return 0.0
    return nav / shares_outstanding


def calculate_percent_of_nav(value: float, nav: float) -> float:
    if nav == 0:
        return 0.0
    return (value / nav) * 100


def calculate_valuation_by_asset(
    investments: Sequence[Investment],
    nav: float
) -> List[Dict[str, Any]]:
    """Per-holding current value, unrealized gain and percent of NAV."""
    return [
        {
            "id": inv.id,
            "name": inv.name,
            "cost_basis": inv.total_invested,
            "current_value": inv.current_value,
            "unrealized_gain": inv.current_value - inv.total_invested,
            "percent_of_nav": calculate_percent_of_nav(inv.current_value, nav),
        }
        for inv in investments
    ]


# ==============================================================================
# RETURNS OVER A NAV HISTORY
# ==============================================================================

def calculate_percentage_change(current: float, previous: float) -> float:
    """(current - previous) / previous * 100; 0 against a zero base."""
    if previous == 0:
        return 0.0
    return ((current - previous) / previous) * 100


def _return_since(
    history: Sequence[NAVPoint],
    in_period: Callable[[date, date], bool]
) -> float:
    """
    Change from the first point inside the latest point's period to the
    latest point. 0 with fewer than two points, or when the latest point is
    the only one in its period.
    """
    if len(history) < 2:
        return 0.0

    points = sorted(history, key=lambda p: p.date)
    current = points[-1]
    start_index = next(i for i, p in enumerate(points) if in_period(p.date, current.date))

    if start_index == len(points) - 1:
        return 0.0
    return calculate_percentage_change(current.nav, points[start_index].nav)


def calculate_mtd_return(history: Sequence[NAVPoint]) -> float:
    return _return_since(
        history, lambda d, ref: (d.year, d.month) == (ref.year, ref.month)
    )


def calculate_qtd_return(history: Sequence[NAVPoint]) -> float:
    return _return_since(
        history, lambda d, ref: (d.year, (d.month - 1) // 3) == (ref.year, (ref.month - 1) // 3)
    )


def calculate_ytd_return(history: Sequence[NAVPoint]) -> float:
    return _return_since(history, lambda d, ref: d.year == ref.year)


def calculate_inception_return(history: Sequence[NAVPoint]) -> float:
    """Change from the earliest to the latest NAV."""
    return _return_since(history, lambda d, ref: True)


def calculate_nav_returns(history: Sequence[NAVPoint]) -> NAVReturns:
    returns = NAVReturns(
        mtd_return=calculate_mtd_return(history),
        qtd_return=calculate_qtd_return(history),
        ytd_return=calculate_ytd_return(history),
        inception_return=calculate_inception_return(history),
    )
    logger.debug(f"NAV returns over {len(history)} points: {returns}")
    return returns


# ==============================================================================
# EXPORT
# ==============================================================================

def nav_history_to_frame(history: Sequence[NAVPoint]) -> pd.DataFrame:
    """Tabulate a NAV history in date order with point-to-point % change."""
    points = sorted(history, key=lambda p: p.date)
    frame = pd.DataFrame(
        [{"date": p.date, "nav": p.nav, "nav_per_share": p.nav_per_share} for p in points],
        columns=["date", "nav", "nav_per_share"]
    )
    changes = [0.0]
    for previous, current in zip(points, points[1:]):
        changes.append(calculate_percentage_change(current.nav, previous.nav))
    frame["percent_change"] = changes[:len(points)]
    return frame
