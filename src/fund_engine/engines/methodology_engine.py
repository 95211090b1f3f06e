"""
Performance Methodology Engine.

Implements the two ILPA-style approaches for attributing management fees
when computing gross and net fund performance:

- Granular: capital calls are itemized into investment and fee purposes, so
  invested capital is the investment-purpose calls only.
- Gross-Up: calls are not itemized, so lifetime fees are estimated from AUM,
  the annual fee rate and the fund's age, and added back to called capital.

Portfolio-level (fund-to-investment) performance always uses Gross-Up.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple
import logging

from ..config import DAYS_PER_YEAR, GRANULAR_SPLIT_TOLERANCE
from ..exceptions import InputError
from ..models import CapitalCall

logger = logging.getLogger(__name__)


class PerformanceMethodology(Enum):
    GRANULAR = "granular"
    GROSS_UP = "grossup"


class CalculationLevel(Enum):
    FUND = "fund-level"
    PORTFOLIO = "portfolio-level"


@dataclass(frozen=True)
class MethodologyResult:
    """Gross and net performance under one methodology, with an audit breakdown."""
    methodology: PerformanceMethodology
    calculation_level: CalculationLevel
    invested_capital: float
    management_fees: float
    gross_gain: float
    gross_performance_percent: float
    gross_multiple: float
    net_invested_capital: float = 0.0
    net_gain: float = 0.0
    net_performance_percent: float = 0.0
    net_multiple: float = 0.0
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "methodology": self.methodology.value,
            "calculationLevel": self.calculation_level.value,
            "investedCapital": self.invested_capital,
            "managementFees": self.management_fees,
            "grossGain": self.gross_gain,
            "grossPerformancePercent": self.gross_performance_percent,
            "grossMultiple": self.gross_multiple,
            "netInvestedCapital": self.net_invested_capital,
            "netGain": self.net_gain,
            "netPerformancePercent": self.net_performance_percent,
            "netMultiple": self.net_multiple,
            "breakdown": dict(self.breakdown),
        }


# ==============================================================================
# HELPERS
# ==============================================================================

def _gain_metrics(total_value: float, invested: float) -> Tuple[float, float, float]:
    """Return (gain, performance %, multiple) with a zero-capital guard."""
    gain = total_value - invested
    if invested <= 0:
        return gain, 0.0, 0.0
    return gain, (gain / invested) * 100, total_value / invested


def calculate_fund_age_years(inception_date: date, as_of: date) -> float:
    """Years since fund inception (365.25-day years)."""
    return (as_of - inception_date).days / DAYS_PER_YEAR


def estimate_management_fees(
    management_fee_percent: float,
    fund_age_years: float,
    current_value: float,
    average_aum: Optional[float] = None
) -> float:
    """Lifetime fee estimate: AUM x annual fee rate x fund age."""
    # A missing or zero average falls back to the current value
    estimated_aum = average_aum or current_value
    return estimated_aum * (management_fee_percent / 100) * fund_age_years


def determine_methodology(
    calculation_level: CalculationLevel,
    detailed_capital_calls: bool
) -> PerformanceMethodology:
    """Portfolio level is always Gross-Up; fund level depends on call itemization."""
    if calculation_level == CalculationLevel.PORTFOLIO:
        return PerformanceMethodology.GROSS_UP
    return PerformanceMethodology.GRANULAR if detailed_capital_calls else PerformanceMethodology.GROSS_UP


def split_capital_calls(capital_calls: Iterable[CapitalCall]) -> Tuple[float, float]:
    """
    Split itemized capital calls into (investment_calls, fee_calls).

    Raises:
        InputError: if a call says it includes fees but carries no fee amount
    """
    investment_calls = 0.0
    fee_calls = 0.0

    for call in capital_calls:
        if call.management_fee_included:
            if call.management_fee_amount is None:
                raise InputError(
                    f"Capital call {call.id} includes management fees but has no "
                    f"managementFeeAmount; it cannot be used with the granular methodology"
                )
            fee = float(call.management_fee_amount)
            if fee < 0 or fee > call.total_call_amount:
                raise InputError(
                    f"Capital call {call.id} fee amount {fee} is outside 0..{call.total_call_amount}"
                )
        else:
            fee = 0.0
        fee_calls += fee
        investment_calls += call.total_call_amount - fee

    return investment_calls, fee_calls


# ==============================================================================
# METHODOLOGIES
# ==============================================================================

def calculate_granular_performance(
    total_capital_calls: float,
    management_fee_calls: float,
    investment_calls: float,
    total_distributions: float,
    current_nav: float
) -> MethodologyResult:
    """
    Granular methodology.

    Gross = (Distributions + NAV - Investment Calls) / Investment Calls
    Net uses all capital calls (investment + fees) as the denominator.
    """
    total_value = total_distributions + current_nav

    gross_gain, gross_pct, gross_multiple = _gain_metrics(total_value, investment_calls)
    net_gain, net_pct, net_multiple = _gain_metrics(total_value, total_capital_calls)

    return MethodologyResult(
        methodology=PerformanceMethodology.GRANULAR,
        calculation_level=CalculationLevel.FUND,
        invested_capital=investment_calls,
        management_fees=management_fee_calls,
        gross_gain=gross_gain,
        gross_performance_percent=gross_pct,
        gross_multiple=gross_multiple,
        net_invested_capital=total_capital_calls,
        net_gain=net_gain,
        net_performance_percent=net_pct,
        net_multiple=net_multiple,
        breakdown={
            "investmentCapital": investment_calls,
            "managementFees": management_fee_calls,
            "distributions": total_distributions,
            "unrealizedValue": current_nav,
        },
    )


def calculate_gross_up_performance(
    total_capital_calls: float,
    total_distributions: float,
    current_nav: float,
    management_fee_percent: float,
    fund_age_years: float,
    average_aum: Optional[float] = None
) -> MethodologyResult:
    """
    Gross-Up methodology.

    Gross uses called capital plus estimated lifetime fees as the denominator;
    net (as reported to LPs) uses called capital alone.
    """
    estimated_fees = estimate_management_fees(
        management_fee_percent, fund_age_years, current_nav, average_aum
    )
    grossed_up_capital = total_capital_calls + estimated_fees
    total_value = total_distributions + current_nav

    gross_gain, gross_pct, gross_multiple = _gain_metrics(total_value, grossed_up_capital)
    net_gain, net_pct, net_multiple = _gain_metrics(total_value, total_capital_calls)

    return MethodologyResult(
        methodology=PerformanceMethodology.GROSS_UP,
        calculation_level=CalculationLevel.FUND,
        invested_capital=grossed_up_capital,
        management_fees=estimated_fees,
        gross_gain=gross_gain,
        gross_performance_percent=gross_pct,
        gross_multiple=gross_multiple,
        net_invested_capital=total_capital_calls,
        net_gain=net_gain,
        net_performance_percent=net_pct,
        net_multiple=net_multiple,
        breakdown={
            "calledCapital": total_capital_calls,
            "estimatedFees": estimated_fees,
            "distributions": total_distributions,
            "unrealizedValue": current_nav,
        },
    )


def calculate_portfolio_level_performance(
    total_invested_in_portfolio: float,
    total_returns_from_portfolio: float,
    current_portfolio_value: float,
    management_fee_percent: float,
    fund_age_years: float,
    average_aum: Optional[float] = None
) -> MethodologyResult:
    """
    Fund-to-investment performance. Always Gross-Up and gross only, since
    net figures only exist between the fund and its investors.
    """
    estimated_fees = estimate_management_fees(
        management_fee_percent, fund_age_years, current_portfolio_value, average_aum
    )
    grossed_up_capital = total_invested_in_portfolio + estimated_fees
    total_value = total_returns_from_portfolio + current_portfolio_value

    gross_gain, gross_pct, gross_multiple = _gain_metrics(total_value, grossed_up_capital)

    return MethodologyResult(
        methodology=PerformanceMethodology.GROSS_UP,
        calculation_level=CalculationLevel.PORTFOLIO,
        invested_capital=grossed_up_capital,
        management_fees=estimated_fees,
        gross_gain=gross_gain,
        gross_performance_percent=gross_pct,
        gross_multiple=gross_multiple,
        breakdown={
            "portfolioInvestment": total_invested_in_portfolio,
            "estimatedFees": estimated_fees,
            "portfolioReturns": total_returns_from_portfolio,
            "unrealizedValue": current_portfolio_value,
        },
    )


def calculate_fund_level_performance(
    methodology: PerformanceMethodology,
    total_capital_calls: float,
    total_distributions: float,
    current_nav: float,
    management_fee_calls: Optional[float] = None,
    investment_calls: Optional[float] = None,
    management_fee_percent: Optional[float] = None,
    fund_age_years: Optional[float] = None,
    average_aum: Optional[float] = None
) -> MethodologyResult:
    """
    Fund-to-investor performance under the selected methodology.

    Missing inputs for the selected methodology are an error; the engine never
    substitutes the other methodology.

    Raises:
        InputError: when the inputs required by ``methodology`` are missing or
            the granular split does not reconcile to total calls
    """
    logger.debug(f"Fund-level performance using {methodology.value} methodology")

    if methodology == PerformanceMethodology.GRANULAR:
        if management_fee_calls is None or investment_calls is None:
            raise InputError(
                "Granular methodology requires management_fee_calls and investment_calls"
            )
        split_total = management_fee_calls + investment_calls
        if abs(split_total - total_capital_calls) > GRANULAR_SPLIT_TOLERANCE:
            raise InputError(
                f"Granular split {split_total:,.2f} does not match total capital calls "
                f"{total_capital_calls:,.2f}"
            )
        return calculate_granular_performance(
            total_capital_calls=total_capital_calls,
            management_fee_calls=management_fee_calls,
            investment_calls=investment_calls,
            total_distributions=total_distributions,
            current_nav=current_nav,
        )

    if management_fee_percent is None or fund_age_years is None:
        raise InputError("Gross Up methodology requires management_fee_percent and fund_age_years")

    return calculate_gross_up_performance(
        total_capital_calls=total_capital_calls,
        total_distributions=total_distributions,
        current_nav=current_nav,
        management_fee_percent=management_fee_percent,
        fund_age_years=fund_age_years,
        average_aum=average_aum,
    )
