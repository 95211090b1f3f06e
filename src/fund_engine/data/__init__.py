"""
Data Layer Package.

This package handles record storage and the service functions that feed
stored records into the computation engines.
"""

from .data_source import (
    FundDataSource,
    FundRecordStore,
    InMemoryFundDataSource
)

from .db_adapter import SqlFundDataSource

from .services import (
    calculate_fund_metrics,
    build_investor_ledger,
    record_investor_payment,
    record_distribution_status
)

__all__ = [
    "FundDataSource",
    "FundRecordStore",
    "InMemoryFundDataSource",
    "SqlFundDataSource",
    "calculate_fund_metrics",
    "build_investor_ledger",
    "record_investor_payment",
    "record_distribution_status"
]
