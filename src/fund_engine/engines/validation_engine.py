"""
Report Metrics Validation Engine.

Recomputes a report's headline metrics (AUM, average IRR, total
distributions) from the investments and investors it declares, and compares
them with the stored figures. Differences inside the tolerance band are
warnings; larger ones are errors that block publishing.

Validation never mutates a report. ``apply_calculated_metrics`` returns a
corrected copy for callers that choose to overwrite.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging

from ..config import VALIDATION_AMOUNT_TOLERANCE, VALIDATION_IRR_TOLERANCE
from ..exceptions import InputError
from ..models import (
    Distribution,
    DistributionStatus,
    Investment,
    Investor,
    Report,
    ReportMetrics,
)
from .valuation_engine import adjust_aum_for_transactions, project_portfolio, select_investments

logger = logging.getLogger(__name__)


class AUMBasis(Enum):
    """How AUM and average IRR are recomputed."""
    CURRENT_VALUE = "current_value"
    PROJECTED = "projected"


@dataclass(frozen=True)
class ValidationResult:
    report_id: str
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    calculated_metrics: Optional[ReportMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "calculatedMetrics": self.calculated_metrics.to_dict() if self.calculated_metrics else None,
        }


# ==============================================================================
# RECOMPUTATION
# ==============================================================================

def _select_investors(investors: Iterable[Investor], included_ids: Sequence[str]) -> List[Investor]:
    wanted = set(included_ids)
    return [investor for investor in investors if investor.id in wanted]


def calculate_report_distributions(
    report: Report,
    investors: Sequence[Investor],
    distributions: Optional[Iterable[Distribution]] = None
) -> float:
    """
    Total distributed to the report's investors.

    With distribution records, sums the Completed allocations of the included
    investors dated inside the report period; otherwise sums each included
    investor's stored total distributed.
    """
    selected = _select_investors(investors, report.included_investor_ids)

    if distributions is None:
        return sum(investor.total_distributed for investor in selected)

    investor_ids = {investor.id for investor in selected}
    total = 0.0
    for dist in distributions:
        if report.fund_id and dist.fund_id != report.fund_id:
            continue
        if dist.distribution_date > report.period_end:
            continue
        if report.period_start and dist.distribution_date < report.period_start:
            continue
        total += sum(
            allocation.amount for allocation in dist.investor_allocations
            if allocation.investor_id in investor_ids
            and allocation.status == DistributionStatus.COMPLETED
        )
    return total


def calculate_report_metrics(
    report: Report,
    investments: Sequence[Investment],
    investors: Sequence[Investor],
    distributions: Optional[Iterable[Distribution]] = None,
    basis: AUMBasis = AUMBasis.CURRENT_VALUE
) -> ReportMetrics:
    """
    Recompute a report's metrics over its declared subset.

    Args:
        report: The report (its included ids and period drive the subset)
        investments: All candidate investments
        investors: All candidate investors
        distributions: Distribution records; None falls back to investor totals
        basis: CURRENT_VALUE sums current values with a simple IRR mean;
            PROJECTED values investments at the period end with a
            value-weighted IRR and subtracts the distributions from AUM

    Returns:
        ReportMetrics
    """
    selected = select_investments(investments, report.included_investment_ids)
    total_distributions = calculate_report_distributions(report, investors, distributions)

    if basis == AUMBasis.PROJECTED:
        projection = project_portfolio(selected, None, report.period_end)
        total_aum = adjust_aum_for_transactions(projection.total_aum, distributions=total_distributions)
        avg_irr = projection.weighted_avg_irr
    else:
        total_aum = sum(inv.current_value for inv in selected)
        avg_irr = sum(inv.irr for inv in selected) / len(selected) if selected else 0.0

    return ReportMetrics(
        total_aum=total_aum,
        avg_irr=avg_irr,
        total_distributions=total_distributions,
    )


# ==============================================================================
# VALIDATION
# ==============================================================================

def _compare_amount(
    label: str,
    reported: float,
    calculated: float,
    errors: List[str],
    warnings: List[str],
    tolerance: float
) -> None:
    diff = abs(reported - calculated)
    if diff > tolerance:
        title = label[:1].upper() + label[1:]
        errors.append(
            f"{title} mismatch: reported ${reported:,.2f}, calculated ${calculated:,.2f} "
            f"(diff: ${diff:,.2f})"
        )
    elif diff > 0:
        warnings.append(f"Minor {label} difference: ${diff:,.2f} (within tolerance)")


def validate_report_metrics(
    report: Report,
    investments: Sequence[Investment],
    investors: Sequence[Investor],
    distributions: Optional[Iterable[Distribution]] = None,
    basis: AUMBasis = AUMBasis.CURRENT_VALUE,
    amount_tolerance: float = VALIDATION_AMOUNT_TOLERANCE,
    irr_tolerance: float = VALIDATION_IRR_TOLERANCE
) -> ValidationResult:
    """
    Compare a report's stored metrics with recomputed ones.

    AUM and distribution differences above ``amount_tolerance`` are errors,
    smaller non-zero ones warnings. IRR differences above ``irr_tolerance``
    percentage points are errors.
    """
    calculated = calculate_report_metrics(report, investments, investors, distributions, basis)
    stored = report.metrics
    errors: List[str] = []
    warnings: List[str] = []

    _compare_amount("AUM", stored.total_aum, calculated.total_aum, errors, warnings, amount_tolerance)

    irr_diff = abs(stored.avg_irr - calculated.avg_irr)
    if irr_diff > irr_tolerance:
        errors.append(
            f"IRR mismatch: reported {stored.avg_irr:.1f}%, calculated {calculated.avg_irr:.1f}% "
            f"(diff: {irr_diff:.1f}%)"
        )

    _compare_amount(
        "distributions", stored.total_distributions, calculated.total_distributions,
        errors, warnings, amount_tolerance
    )

    result = ValidationResult(
        report_id=report.id,
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        calculated_metrics=calculated,
    )

    if errors:
        logger.warning(f"Report {report.id} failed validation with {len(errors)} error(s)")
    else:
        logger.debug(f"Report {report.id} validated ({len(warnings)} warning(s))")
    return result


def apply_calculated_metrics(report: Report, result: ValidationResult) -> Report:
    """Return a copy of the report carrying the recomputed metrics."""
    if result.report_id != report.id:
        raise InputError(f"Validation result for {result.report_id} does not belong to report {report.id}")
    return replace(report, metrics=result.calculated_metrics)


def validate_reports(
    reports: Iterable[Report],
    investments: Sequence[Investment],
    investors: Sequence[Investor],
    distributions: Optional[Sequence[Distribution]] = None,
    basis: AUMBasis = AUMBasis.CURRENT_VALUE
) -> Dict[str, ValidationResult]:
    """Validate several reports; results are keyed by report id in input order."""
    results = {
        report.id: validate_report_metrics(report, investments, investors, distributions, basis)
        for report in reports
    }
    invalid = sum(1 for r in results.values() if not r.is_valid)
    logger.info(f"Validated {len(results)} reports: {len(results) - invalid} valid, {invalid} invalid")
    return results


# ==============================================================================
# FUND-WIDE METRICS
# ==============================================================================

def generate_report_metrics(
    investments: Sequence[Investment],
    investors: Sequence[Investor],
    fund_id: Optional[str] = None
) -> Dict[str, float]:
    """
    Headline metrics for a whole fund, used to seed or correct reports.

    The weighted IRR is weighted by invested capital. Commitment and called
    capital come from the investors' ownership in ``fund_id`` (all funds when
    None).
    """
    total_invested = sum(inv.total_invested for inv in investments)
    ownerships = [
        ownership
        for investor in investors
        for ownership in investor.fund_ownerships
        if fund_id is None or ownership.fund_id == fund_id
    ]

    return {
        "total_aum": sum(inv.current_value for inv in investments),
        "avg_irr": sum(inv.irr for inv in investments) / len(investments) if investments else 0.0,
        "weighted_avg_irr": (
            sum(inv.irr * inv.total_invested for inv in investments) / total_invested
            if total_invested > 0 else 0.0
        ),
        "total_invested": total_invested,
        "unrealized_gain": sum(inv.unrealized_gain for inv in investments),
        "total_distributions": sum(investor.total_distributed for investor in investors),
        "total_commitment": sum(o.commitment for o in ownerships),
        "total_called_capital": sum(o.called_capital for o in ownerships),
    }
