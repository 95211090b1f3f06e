"""
Service functions wiring a data source into the engines.

Each function loads what it needs through the injected source, calls the pure
engines and, for updates, persists the whole new record through the store's
version-checked save.
"""

from datetime import date
from typing import List, Optional
import logging

from ..engines.allocation_engine import update_investor_distribution, update_investor_payment
from ..engines.capital_account_engine import build_capital_account_history
from ..engines.pe_metrics_engine import calculate_fund_performance
from ..exceptions import RecordNotFoundError
from ..models import (
    CapitalAccountEvent,
    CapitalCall,
    Distribution,
    DistributionStatus,
    PerformanceMetrics,
)
from .data_source import FundDataSource, FundRecordStore

logger = logging.getLogger(__name__)


def calculate_fund_metrics(
    source: FundDataSource,
    fund_id: str,
    as_of: date,
    average_aum: Optional[float] = None
) -> PerformanceMetrics:
    """
    Calculate fund performance from the records held by ``source``.

    Args:
        source: Data source to read the fund's records from
        fund_id: Fund to calculate
        as_of: Valuation date
        average_aum: Average AUM for the Gross-Up fee estimate

    Returns:
        PerformanceMetrics for the fund
    """
    fund = source.get_fund(fund_id)
    return calculate_fund_performance(
        fund,
        source.get_capital_calls(fund_id),
        source.get_distributions(fund_id),
        source.get_investments(fund_id),
        as_of,
        average_aum=average_aum,
    )


def build_investor_ledger(
    source: FundDataSource,
    fund_id: str,
    investor_id: str
) -> List[CapitalAccountEvent]:
    """Rebuild an investor's capital account history for a fund."""
    investor = next((i for i in source.get_investors(fund_id) if i.id == investor_id), None)
    if investor is None:
        raise RecordNotFoundError(f"Investor {investor_id} holds no position in fund {fund_id}")

    return build_capital_account_history(
        investor,
        fund_id,
        source.get_capital_calls(fund_id),
        source.get_distributions(fund_id),
    )


def record_investor_payment(
    store: FundRecordStore,
    call_id: str,
    investor_id: str,
    payment: float,
    paid_on: Optional[date] = None,
    payment_method: Optional[str] = None,
    transaction_reference: Optional[str] = None
) -> CapitalCall:
    """Read-modify-write of a capital call payment. Returns the stored call."""
    call = store.get_capital_call(call_id)
    updated = update_investor_payment(
        call, investor_id, payment,
        paid_on=paid_on,
        payment_method=payment_method,
        transaction_reference=transaction_reference,
    )
    return store.save_capital_call(updated)


def record_distribution_status(
    store: FundRecordStore,
    distribution_id: str,
    investor_id: str,
    status: DistributionStatus,
    processed_on: Optional[date] = None
) -> Distribution:
    """Read-modify-write of a distribution allocation status. Returns the stored distribution."""
    distribution = store.get_distribution(distribution_id)
    updated = update_investor_distribution(distribution, investor_id, status, processed_on=processed_on)
    if updated is distribution:
        logger.debug(f"Distribution {distribution_id} already {status.value} for {investor_id}")
        return distribution
    return store.save_distribution(updated)
