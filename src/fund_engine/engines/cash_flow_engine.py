"""
Cash Flow Processing Engine.

This module provides the dated cash-flow value object used by every solver,
plus builders that turn capital calls, distributions and investments into
cash-flow series and helpers for aggregating and filtering them.

Sign convention is the investor's: negative amounts are capital paid in,
positive amounts are capital returned.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from datetime import date
from enum import Enum
import logging

import pandas as pd

from ..models import (
    CapitalCall,
    CapitalCallStatus,
    Distribution,
    Investment,
)

logger = logging.getLogger(__name__)


# ==============================================================================
# ENUMS AND CONSTANTS
# ==============================================================================

class CashFlowType(Enum):
    """Cash flow transaction types."""
    CAPITAL_CALL = "capital_call"
    DISTRIBUTION = "distribution"
    INVESTMENT = "investment"
    VALUATION = "valuation"
    NAV = "nav"


class AggregationPeriod(Enum):
    """Time period aggregation options."""
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


# ==============================================================================
# CASH FLOW DATA STRUCTURES
# ==============================================================================

class CashFlow:
    """
    Represents a single dated, signed cash flow.
    """
    def __init__(
        self,
        date: date,
        amount: float,
        cf_type: str = "",
        description: Optional[str] = None,
        source_id: Optional[str] = None
    ):
        self.date = date
        self.amount = amount
        self.cf_type = cf_type
        self.description = description
        self.source_id = source_id

    def is_call(self) -> bool:
        """Check if this is a capital call (money out of the investor)."""
        return self.amount < 0

    def is_distribution(self) -> bool:
        """Check if this is a distribution (money back to the investor)."""
        return self.amount > 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CashFlow):
            return NotImplemented
        return (self.date, self.amount, self.cf_type) == (other.date, other.amount, other.cf_type)

    def __hash__(self) -> int:
        return hash((self.date, self.amount, self.cf_type))

    def __repr__(self) -> str:
        return f"CashFlow(date={self.date}, type={self.cf_type}, amount={self.amount})"


CashFlowLike = Union[CashFlow, Tuple[date, float]]


# ==============================================================================
# NORMALIZATION
# ==============================================================================

def normalize_cash_flows(items: Iterable[CashFlowLike]) -> List[CashFlow]:
    """
    Turn any source of (date, amount) pairs or CashFlow objects into a
    date-sorted list of CashFlow objects.

    Ties keep their insertion order.
    """
    flows = []
    for item in items:
        if isinstance(item, CashFlow):
            flows.append(item)
        else:
            flow_date, amount = item
            flows.append(CashFlow(flow_date, float(amount)))
    return sort_cash_flows(flows)


def sort_cash_flows(cash_flows: Sequence[CashFlow]) -> List[CashFlow]:
    """Sort by date; ``sorted`` is stable so same-day flows keep their order."""
    return sorted(cash_flows, key=lambda cf: cf.date)


# ==============================================================================
# BUILDERS
# ==============================================================================

def build_fund_cash_flows(
    capital_calls: Iterable[CapitalCall],
    distributions: Iterable[Distribution]
) -> List[CashFlow]:
    """
    Build the fund-to-investor cash flow series.

    Only money that actually moved is included: whatever has been paid on an
    issued call (a cancelled call keeps the payments it received) and the
    completed allocations of each distribution.

    Args:
        capital_calls: Capital calls for the fund
        distributions: Distributions for the fund

    Returns:
        Date-sorted list of CashFlow objects
    """
    flows = []

    for call in capital_calls:
        if call.status != CapitalCallStatus.DRAFT and call.total_paid_amount > 0:
            flows.append(CashFlow(
                date=call.call_date,
                amount=-call.total_paid_amount,
                cf_type=CashFlowType.CAPITAL_CALL.value,
                description=f"Capital Call #{call.call_number}",
                source_id=call.id
            ))

    for dist in distributions:
        paid_out = dist.completed_amount
        if paid_out > 0:
            flows.append(CashFlow(
                date=dist.distribution_date,
                amount=paid_out,
                cf_type=CashFlowType.DISTRIBUTION.value,
                description=f"Distribution #{dist.distribution_number}",
                source_id=dist.id
            ))

    logger.debug(f"Built {len(flows)} fund cash flows")
    return sort_cash_flows(flows)


def build_investment_cash_flows(investment: Investment) -> List[CashFlow]:
    """
    Build the two-point series for a single investment: the principal paid at
    acquisition and the current value as if realized at the last valuation.
    """
    return [
        CashFlow(
            date=investment.acquisition_date,
            amount=-investment.total_invested,
            cf_type=CashFlowType.INVESTMENT.value,
            description=f"Investment in {investment.name or investment.id}",
            source_id=investment.id
        ),
        CashFlow(
            date=investment.last_valuation_date,
            amount=investment.current_value,
            cf_type=CashFlowType.VALUATION.value,
            description="Current valuation",
            source_id=investment.id
        ),
    ]


# ==============================================================================
# CASH FLOW PROCESSING FUNCTIONS
# ==============================================================================

def aggregate_by_period(
    cash_flows: List[CashFlow],
    period: AggregationPeriod
) -> Dict[str, float]:
    """
    Aggregate cash flows by time period.

    Args:
        cash_flows: List of CashFlow objects
        period: Aggregation period (quarterly, yearly, monthly, all_time)

    Returns:
        Dictionary mapping period keys to total cash flow amounts
    """
    aggregated: Dict[str, float] = {}

    for cf in cash_flows:
        if period == AggregationPeriod.YEARLY:
            key = str(cf.date.year)
        elif period == AggregationPeriod.QUARTERLY:
            quarter = (cf.date.month - 1) // 3 + 1
            key = f"{cf.date.year}-Q{quarter}"
        elif period == AggregationPeriod.MONTHLY:
            key = f"{cf.date.year}-{cf.date.month:02d}"
        else:  # ALL_TIME
            key = "all_time"

        aggregated[key] = aggregated.get(key, 0) + cf.amount

    logger.debug(f"Aggregated {len(cash_flows)} cash flows into {len(aggregated)} periods")
    return aggregated


def calculate_cumulative_cash_flows(
    cash_flows: List[CashFlow]
) -> List[Tuple[date, float]]:
    """
    Calculate cumulative cash flows over time.

    Returns:
        List of (date, cumulative_amount) tuples in date order
    """
    cumulative = 0
    cumulative_series = []

    for cf in sort_cash_flows(cash_flows):
        cumulative += cf.amount
        cumulative_series.append((cf.date, cumulative))

    return cumulative_series


def separate_calls_and_distributions(
    cash_flows: List[CashFlow]
) -> Tuple[List[CashFlow], List[CashFlow]]:
    """
    Separate cash flows into calls and distributions.

    Args:
        cash_flows: List of CashFlow objects

    Returns:
        Tuple of (calls, distributions) lists
    """
    calls = []
    distributions = []

    for cf in cash_flows:
        if cf.is_call():
            calls.append(cf)
        elif cf.is_distribution():
            distributions.append(cf)

    logger.debug(f"Separated into {len(calls)} calls and {len(distributions)} distributions")
    return calls, distributions


def calculate_net_cash_flow(
    calls: List[CashFlow],
    distributions: List[CashFlow]
) -> float:
    """Net cash flow (distributions - calls), positive once capital is returned."""
    total_calls = sum(abs(cf.amount) for cf in calls)
    total_distributions = sum(cf.amount for cf in distributions)

    return total_distributions - total_calls


def filter_by_date_range(
    cash_flows: List[CashFlow],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> List[CashFlow]:
    """
    Filter cash flows by date range.

    Args:
        cash_flows: List of CashFlow objects
        start_date: Start date (inclusive), None for no lower bound
        end_date: End date (inclusive), None for no upper bound

    Returns:
        Filtered list of CashFlow objects
    """
    filtered = cash_flows

    if start_date:
        filtered = [cf for cf in filtered if cf.date >= start_date]

    if end_date:
        filtered = [cf for cf in filtered if cf.date <= end_date]

    logger.debug(f"Filtered to {len(filtered)} cash flows in date range")
    return filtered


# ==============================================================================
# J-CURVE ANALYSIS
# ==============================================================================

def calculate_j_curve(
    cash_flows: List[CashFlow],
    period: AggregationPeriod = AggregationPeriod.YEARLY
) -> List[Dict[str, Any]]:
    """
    Calculate J-Curve data showing cumulative net cash flows over time.

    Returns:
        List of dictionaries with period, net_flow, and cumulative_flow
    """
    aggregated = aggregate_by_period(cash_flows, period)

    j_curve_data = []
    cumulative = 0

    for period_key in sorted(aggregated.keys()):
        net_flow = aggregated[period_key]
        cumulative += net_flow

        j_curve_data.append({
            "period": period_key,
            "net_flow": net_flow,
            "cumulative_flow": cumulative
        })

    logger.debug(f"Generated J-Curve with {len(j_curve_data)} data points")
    return j_curve_data


# ==============================================================================
# EXPORT
# ==============================================================================

def cash_flows_to_frame(cash_flows: List[CashFlow]) -> pd.DataFrame:
    """Tabulate cash flows (date order) for export or charting."""
    rows = [
        {
            "date": cf.date,
            "type": cf.cf_type,
            "amount": cf.amount,
            "description": cf.description,
            "source_id": cf.source_id,
        }
        for cf in sort_cash_flows(cash_flows)
    ]
    frame = pd.DataFrame(rows, columns=["date", "type", "amount", "description", "source_id"])
    frame["cumulative"] = frame["amount"].cumsum()
    return frame
