"""
PE Metrics Computation Engine.

This module provides pure Python implementations of the Private Equity
metrics used across the platform: IRR (XIRR for irregular cash flows), TVPI,
DPI, RVPI, MoIC, Called % and Distributed %, plus fund, period and
per-investment performance views built on top of them.

All calculations are deterministic, testable, and independent of database
logic. Arithmetic guards return 0 instead of raising, and the IRR solver
always returns its best estimate.
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging
import math

from pyxirr import InvalidPaymentsError, xirr

from ..config import (
    DAYS_PER_YEAR,
    IRR_DERIVATIVE_EPSILON,
    IRR_INITIAL_GUESS,
    IRR_MAX_ITERATIONS,
    IRR_MAX_RATE,
    IRR_MIN_RATE,
    IRR_REVIEW_TOLERANCE,
    IRR_TOLERANCE,
)
from ..models import (
    CapitalCall,
    CapitalCallStatus,
    Distribution,
    Fund,
    Investment,
    PerformanceMetrics,
)
from .cash_flow_engine import (
    CashFlow,
    CashFlowLike,
    CashFlowType,
    build_fund_cash_flows,
    build_investment_cash_flows,
    filter_by_date_range,
    normalize_cash_flows,
)
from .methodology_engine import (
    CalculationLevel,
    PerformanceMethodology,
    calculate_fund_age_years,
    calculate_fund_level_performance,
    determine_methodology,
    split_capital_calls,
)

logger = logging.getLogger(__name__)


# ==============================================================================
# IRR CALCULATION (XIRR for irregular cash flows)
# ==============================================================================

def _to_percent(rate: float, decimals: Optional[int]) -> float:
    percent = rate * 100
    return round(percent, decimals) if decimals is not None else percent


def calculate_irr(
    cash_flows: Iterable[CashFlowLike],
    decimals: Optional[int] = None,
    initial_guess: float = IRR_INITIAL_GUESS,
    max_iterations: int = IRR_MAX_ITERATIONS,
    tolerance: float = IRR_TOLERANCE
) -> float:
    """
    Calculate the annualized IRR for irregular cash flows using Newton-Raphson.

    Time is measured in 365.25-day years from the earliest flow. The rate is
    clamped to [-99%, 1000%] after every update; a vanishing derivative, an
    overflow or running out of iterations all return the last estimate.

    Args:
        cash_flows: CashFlow objects or (date, amount) pairs, in any order
            (negative for capital in, positive for capital out)
        decimals: Round the result to this many decimals (no rounding if None)
        initial_guess: Starting rate as a decimal (default: 0.1 or 10%)
        max_iterations: Maximum number of Newton-Raphson iterations
        tolerance: Convergence tolerance on |NPV|

    Returns:
        IRR as a percentage (e.g., 15.0 for 15%); 0.0 when there are fewer
        than two flows or all flows fall on the same date

    Example:
        >>> flows = [(date(2020, 1, 1), -1000), (date(2022, 1, 1), 1322.5)]
        >>> round(calculate_irr(flows), 1)
        15.0
    """
    flows = normalize_cash_flows(cash_flows)

    if len(flows) < 2:
        logger.warning("Insufficient cash flows for IRR calculation")
        return 0.0

    # Convert dates to years from start date
    start_date = flows[0].date
    years = [(cf.date - start_date).days / DAYS_PER_YEAR for cf in flows]
    amounts = [cf.amount for cf in flows]

    if all(t == 0 for t in years):
        logger.warning("All cash flows share one date, IRR is undefined")
        return 0.0

    rate = initial_guess

    for iteration in range(max_iterations):
        try:
            npv = 0.0
            dnpv = 0.0
            for amount, t in zip(amounts, years):
                discount = (1 + rate) ** t
                npv += amount / discount
                dnpv -= t * amount / (discount * (1 + rate))
        except (ZeroDivisionError, OverflowError) as e:
            logger.warning(f"IRR evaluation overflowed at rate={rate:.6f}: {e}")
            break

        # Check for convergence
        if abs(npv) < tolerance:
            logger.debug(f"IRR converged in {iteration + 1} iterations: {rate:.6f}")
            return _to_percent(rate, decimals)

        if abs(dnpv) < IRR_DERIVATIVE_EPSILON:
            logger.warning(f"Derivative too small at rate={rate:.6f}, returning last estimate")
            break

        # Newton-Raphson update, clamped
        rate = rate - npv / dnpv
        rate = max(IRR_MIN_RATE, min(IRR_MAX_RATE, rate))
    else:
        logger.warning(f"IRR did not converge after {max_iterations} iterations (rate={rate:.6f})")

    return _to_percent(rate, decimals)


def irr_at_clamp_bound(irr_percent: float) -> bool:
    """True when an IRR estimate sits on the solver's clamp range."""
    return (
        math.isclose(irr_percent, IRR_MIN_RATE * 100, abs_tol=1e-9)
        or math.isclose(irr_percent, IRR_MAX_RATE * 100, abs_tol=1e-9)
    )


@dataclass(frozen=True)
class IRRReview:
    """Solver estimate side by side with the reference XIRR."""
    solver_irr: float
    reference_irr: Optional[float]
    difference: Optional[float]
    at_clamp_bound: bool
    needs_review: bool


def review_irr(
    cash_flows: Iterable[CashFlowLike],
    tolerance: float = IRR_REVIEW_TOLERANCE
) -> IRRReview:
    """
    Cross-check ``calculate_irr`` against the pyxirr XIRR implementation.

    Flags the result for review when the solver is pinned to a clamp bound,
    when no reference value exists, or when the two disagree by more than
    ``tolerance`` percentage points.
    """
    flows = normalize_cash_flows(cash_flows)
    solver_irr = calculate_irr(flows)
    at_bound = irr_at_clamp_bound(solver_irr)

    reference_irr = None
    try:
        reference = xirr([cf.date for cf in flows], [cf.amount for cf in flows])
        if reference is not None and math.isfinite(reference):
            reference_irr = reference * 100
    except InvalidPaymentsError as e:
        logger.warning(f"Reference XIRR unavailable: {e}")

    difference = None
    if reference_irr is not None:
        difference = abs(solver_irr - reference_irr)

    needs_review = at_bound or difference is None or difference > tolerance
    if needs_review:
        logger.info(
            f"IRR flagged for review: solver={solver_irr:.4f}% reference={reference_irr} "
            f"at_bound={at_bound}"
        )

    return IRRReview(
        solver_irr=solver_irr,
        reference_irr=reference_irr,
        difference=difference,
        at_clamp_bound=at_bound,
        needs_review=needs_review,
    )


# ==============================================================================
# BASIC PE METRICS
# ==============================================================================

def calculate_dpi(total_distributed: float, paid_in: float) -> float:
    """
    Calculate Distributions to Paid-In (DPI) multiple.

    DPI = Total Distributions / Paid-In Capital

    Args:
        total_distributed: Total distributions to investors
        paid_in: Total capital paid in

    Returns:
        DPI multiple, or 0 if paid_in is not positive
    """
    if paid_in <= 0:
        logger.debug("Paid-In capital is zero, DPI defaults to 0")
        return 0.0

    return total_distributed / paid_in


def calculate_rvpi(nav: float, paid_in: float) -> float:
    """
    Calculate Residual Value to Paid-In (RVPI) multiple.

    RVPI = Current NAV / Paid-In Capital
    """
    if paid_in <= 0:
        logger.debug("Paid-In capital is zero, RVPI defaults to 0")
        return 0.0

    return nav / paid_in


def calculate_tvpi(total_distributed: float, nav: float, paid_in: float) -> float:
    """
    Calculate Total Value to Paid-In (TVPI) multiple.

    TVPI = DPI + RVPI, i.e. (Distributions + NAV) / Paid-In Capital. It is
    computed as the sum so the identity holds exactly.
    """
    return calculate_dpi(total_distributed, paid_in) + calculate_rvpi(nav, paid_in)


def calculate_moic(total_distributed: float, nav: float, invested_capital: float) -> float:
    """
    Calculate Multiple on Invested Capital (MoIC).

    MoIC = (Distributions + NAV) / Invested Capital
    """
    return calculate_tvpi(total_distributed, nav, invested_capital)


def calculate_called_percent(paid_in: float, commitment: float) -> float:
    """
    Calculate the percentage of committed capital that has been called.

    Called % = (Paid-In Capital / Total Commitment) * 100
    """
    if commitment <= 0:
        logger.debug("Commitment is zero, Called % defaults to 0")
        return 0.0

    return (paid_in / commitment) * 100


def calculate_distributed_percent(distributions: float, commitment: float) -> float:
    """
    Calculate the percentage of committed capital that has been distributed.

    Distributed % = (Total Distributions / Total Commitment) * 100
    """
    if commitment <= 0:
        logger.debug("Commitment is zero, Distributed % defaults to 0")
        return 0.0

    return (distributions / commitment) * 100


# ==============================================================================
# FUND PERFORMANCE
# ==============================================================================

def _called_calls(capital_calls: Sequence[CapitalCall]) -> List[CapitalCall]:
    """
    Calls that brought capital into the fund.

    Issued calls count in full. A cancelled call is frozen at what it had
    received, with any itemized fee scaled to the paid share.
    """
    called = []
    for call in capital_calls:
        if call.is_counted:
            called.append(call)
        elif call.status == CapitalCallStatus.CANCELLED and call.total_paid_amount > 0:
            share = call.total_paid_amount / call.total_call_amount
            fee = call.management_fee_amount
            called.append(replace(
                call,
                total_call_amount=call.total_paid_amount,
                total_outstanding_amount=0.0,
                management_fee_amount=None if fee is None else fee * share,
            ))
    return called


def _fund_totals(
    called_calls: Sequence[CapitalCall],
    distributions: Sequence[Distribution],
    investments: Sequence[Investment]
) -> Dict[str, float]:
    total_paid = sum(call.total_paid_amount for call in called_calls)
    total_distributed = sum(dist.completed_amount for dist in distributions)
    return {
        "total_capital_called": sum(call.total_call_amount for call in called_calls),
        "total_paid": total_paid,
        "total_distributed": total_distributed,
        "total_invested": sum(inv.total_invested for inv in investments),
        "current_nav": sum(inv.current_value for inv in investments),
        "unrealized_gain": sum(inv.unrealized_gain for inv in investments),
        # Realized gain is what came back beyond the capital paid in
        "realized_gain": total_distributed - min(total_distributed, total_paid),
    }


def calculate_fund_performance(
    fund: Fund,
    capital_calls: Sequence[CapitalCall],
    distributions: Sequence[Distribution],
    investments: Sequence[Investment],
    as_of: date,
    average_aum: Optional[float] = None,
    methodology: Optional[PerformanceMethodology] = None
) -> PerformanceMetrics:
    """
    Calculate fund-to-investor performance as of a date.

    IRR uses the actual paid capital and completed distributions plus the
    current NAV as a terminal flow at ``as_of``. Multiples are on paid-in
    capital. Gross and net figures come from the methodology engine: Granular
    when the fund itemizes its calls, Gross-Up otherwise.

    Args:
        fund: Fund settings (fee percent, inception, call itemization)
        capital_calls: The fund's capital calls
        distributions: The fund's distributions
        investments: The fund's investments (NAV = sum of current values)
        as_of: Valuation date for the NAV terminal flow and fund age
        average_aum: Average AUM for the Gross-Up fee estimate (NAV if None)
        methodology: Override the methodology chosen from fund settings

    Returns:
        PerformanceMetrics

    Raises:
        InputError: when the selected methodology lacks its inputs
    """
    called_calls = _called_calls(capital_calls)
    totals = _fund_totals(called_calls, distributions, investments)
    total_paid = totals["total_paid"]
    total_distributed = totals["total_distributed"]
    current_nav = totals["current_nav"]

    flows = build_fund_cash_flows(capital_calls, distributions)
    flows.append(CashFlow(as_of, current_nav, CashFlowType.NAV.value, "Current NAV"))
    irr = calculate_irr(flows)

    dpi = calculate_dpi(total_distributed, total_paid)
    rvpi = calculate_rvpi(current_nav, total_paid)
    tvpi = dpi + rvpi

    if methodology is None:
        methodology = determine_methodology(CalculationLevel.FUND, fund.detailed_capital_calls)

    if methodology == PerformanceMethodology.GRANULAR:
        investment_calls, fee_calls = split_capital_calls(called_calls)
        result = calculate_fund_level_performance(
            methodology,
            total_capital_calls=totals["total_capital_called"],
            total_distributions=total_distributed,
            current_nav=current_nav,
            management_fee_calls=fee_calls,
            investment_calls=investment_calls,
        )
    else:
        result = calculate_fund_level_performance(
            methodology,
            total_capital_calls=totals["total_capital_called"],
            total_distributions=total_distributed,
            current_nav=current_nav,
            management_fee_percent=fund.management_fee_percent,
            fund_age_years=calculate_fund_age_years(fund.inception_date, as_of),
            average_aum=average_aum,
        )

    metrics = PerformanceMetrics(
        irr=irr,
        tvpi=tvpi,
        dpi=dpi,
        rvpi=rvpi,
        moic=tvpi,
        gross_performance_percent=result.gross_performance_percent,
        gross_multiple=result.gross_multiple,
        net_performance_percent=result.net_performance_percent,
        net_multiple=result.net_multiple,
        total_capital_called=totals["total_capital_called"],
        total_distributed=total_distributed,
        total_invested=totals["total_invested"],
        current_nav=current_nav,
        total_value=current_nav + total_distributed,
        gross_irr=irr,
        net_irr=irr,
        unrealized_gain=totals["unrealized_gain"],
        realized_gain=totals["realized_gain"],
        total_gain=totals["unrealized_gain"] + totals["realized_gain"],
        methodology=methodology.value,
    )

    logger.info(
        f"Fund {fund.id} performance as of {as_of}: IRR={irr:.2f}% TVPI={tvpi:.2f}x "
        f"({methodology.value})"
    )
    return metrics


def calculate_period_performance(
    fund: Fund,
    capital_calls: Sequence[CapitalCall],
    distributions: Sequence[Distribution],
    investments: Sequence[Investment],
    start_date: date,
    end_date: date
) -> PerformanceMetrics:
    """
    Performance restricted to the flows inside [start_date, end_date].

    The current NAV is used as the terminal value at ``end_date``. Gross and
    net figures equal the period TVPI since no fee attribution is made for a
    partial window.
    """
    flows = filter_by_date_range(
        build_fund_cash_flows(capital_calls, distributions), start_date, end_date
    )
    period_called = sum(-cf.amount for cf in flows if cf.is_call())
    period_distributed = sum(cf.amount for cf in flows if cf.is_distribution())
    current_nav = sum(inv.current_value for inv in investments)

    flows.append(CashFlow(end_date, current_nav, CashFlowType.NAV.value, "Period-end NAV"))
    irr = calculate_irr(flows)

    dpi = calculate_dpi(period_distributed, period_called)
    rvpi = calculate_rvpi(current_nav, period_called)
    tvpi = dpi + rvpi
    performance_percent = (tvpi - 1) * 100 if period_called > 0 else 0.0

    logger.debug(f"Fund {fund.id} period {start_date}..{end_date}: {len(flows)} flows")

    return PerformanceMetrics(
        irr=irr,
        tvpi=tvpi,
        dpi=dpi,
        rvpi=rvpi,
        moic=tvpi,
        gross_performance_percent=performance_percent,
        gross_multiple=tvpi,
        net_performance_percent=performance_percent,
        net_multiple=tvpi,
        total_capital_called=period_called,
        total_distributed=period_distributed,
        total_invested=sum(inv.total_invested for inv in investments),
        current_nav=current_nav,
        total_value=current_nav + period_distributed,
        gross_irr=irr,
        net_irr=irr,
    )


# ==============================================================================
# INVESTMENT PERFORMANCE
# ==============================================================================

@dataclass(frozen=True)
class InvestmentPerformance:
    investment_id: str
    irr: float
    moic: float
    total_invested: float
    current_value: float
    unrealized_gain: float


def calculate_investment_performance(investment: Investment) -> InvestmentPerformance:
    """Fund-to-investment IRR and MoIC from principal and current valuation."""
    flows = build_investment_cash_flows(investment)
    return InvestmentPerformance(
        investment_id=investment.id,
        irr=calculate_irr(flows),
        moic=calculate_moic(0.0, investment.current_value, investment.total_invested),
        total_invested=investment.total_invested,
        current_value=investment.current_value,
        unrealized_gain=investment.unrealized_gain,
    )


# ==============================================================================
# AGGREGATE METRICS (for hierarchy levels)
# ==============================================================================

def aggregate_metrics(fund_metrics_list: List[PerformanceMetrics]) -> Dict[str, Any]:
    """
    Aggregate metrics across multiple funds for portfolio-level reporting.

    Args:
        fund_metrics_list: PerformanceMetrics from individual funds

    Returns:
        Aggregated metrics dictionary (empty for an empty list)

    Note:
        Multiples are recomputed from summed totals. IRR is not aggregated;
        it requires the combined cash flows of all funds.
    """
    if not fund_metrics_list:
        logger.warning("No fund metrics provided for aggregation")
        return {}

    total_called = sum(m.total_capital_called for m in fund_metrics_list)
    total_distributions = sum(m.total_distributed for m in fund_metrics_list)
    total_nav = sum(m.current_nav for m in fund_metrics_list)
    total_invested = sum(m.total_invested for m in fund_metrics_list)

    dpi = calculate_dpi(total_distributions, total_called)
    rvpi = calculate_rvpi(total_nav, total_called)

    aggregated = {
        "total_capital_called": total_called,
        "total_distributed": total_distributions,
        "current_nav": total_nav,
        "total_invested": total_invested,
        "total_value": total_distributions + total_nav,
        "dpi": dpi,
        "rvpi": rvpi,
        "tvpi": dpi + rvpi,
        "moic": calculate_moic(total_distributions, total_nav, total_invested),
        "unrealized_gain": sum(m.unrealized_gain for m in fund_metrics_list),
        "realized_gain": sum(m.realized_gain for m in fund_metrics_list),
        "fund_count": len(fund_metrics_list),
    }

    logger.debug(f"Aggregated metrics for {len(fund_metrics_list)} funds")
    return aggregated
