"""
Computation Engines Package.

This package contains all pure Python computation modules for fund
performance and capital allocation. These modules are independent of any
storage: they receive records and return new records or values.
"""

from .cash_flow_engine import (
    CashFlow,
    CashFlowType,
    AggregationPeriod,
    normalize_cash_flows,
    sort_cash_flows,
    build_fund_cash_flows,
    build_investment_cash_flows,
    aggregate_by_period,
    calculate_cumulative_cash_flows,
    separate_calls_and_distributions,
    calculate_net_cash_flow,
    filter_by_date_range,
    calculate_j_curve,
    cash_flows_to_frame
)

from .pe_metrics_engine import (
    IRRReview,
    InvestmentPerformance,
    calculate_irr,
    irr_at_clamp_bound,
    review_irr,
    calculate_tvpi,
    calculate_dpi,
    calculate_rvpi,
    calculate_moic,
    calculate_called_percent,
    calculate_distributed_percent,
    calculate_fund_performance,
    calculate_period_performance,
    calculate_investment_performance,
    aggregate_metrics
)

from .valuation_engine import (
    PortfolioProjection,
    years_between,
    select_investments,
    calculate_value_at_date,
    calculate_total_aum,
    calculate_weighted_avg_irr,
    calculate_total_invested,
    calculate_total_unrealized_gains,
    calculate_portfolio_multiple,
    calculate_portfolio_irr,
    adjust_aum_for_transactions,
    project_portfolio
)

from .nav_engine import (
    NAVComponents,
    NAVPoint,
    NAVReturns,
    calculate_total_assets,
    calculate_total_liabilities,
    calculate_nav_components,
    calculate_nav_per_share,
    calculate_percent_of_nav,
    calculate_valuation_by_asset,
    calculate_percentage_change,
    calculate_mtd_return,
    calculate_qtd_return,
    calculate_ytd_return,
    calculate_inception_return,
    calculate_nav_returns,
    nav_history_to_frame
)

from .methodology_engine import (
    PerformanceMethodology,
    CalculationLevel,
    MethodologyResult,
    determine_methodology,
    split_capital_calls,
    calculate_fund_age_years,
    estimate_management_fees,
    calculate_granular_performance,
    calculate_gross_up_performance,
    calculate_portfolio_level_performance,
    calculate_fund_level_performance
)

from .allocation_engine import (
    ProRataShare,
    calculate_investor_allocation,
    allocate_pro_rata,
    check_conservation,
    next_call_number,
    next_distribution_number,
    create_capital_call,
    create_distribution,
    derive_capital_call_status,
    update_investor_payment,
    mark_capital_call_sent,
    cancel_capital_call,
    derive_distribution_status,
    update_investor_distribution,
    overdue_capital_calls,
    capital_call_summary,
    upcoming_distributions,
    distribution_summary,
    allocations_to_frame
)

from .capital_account_engine import (
    build_capital_account_history,
    recompute_running_balances,
    sort_capital_account_events,
    summarize_capital_account,
    reconcile_called_capital,
    ledger_to_frame
)

from .validation_engine import (
    AUMBasis,
    ValidationResult,
    calculate_report_distributions,
    calculate_report_metrics,
    validate_report_metrics,
    apply_calculated_metrics,
    validate_reports,
    generate_report_metrics
)

__all__ = [
    # Cash Flow
    "CashFlow",
    "CashFlowType",
    "AggregationPeriod",
    "normalize_cash_flows",
    "sort_cash_flows",
    "build_fund_cash_flows",
    "build_investment_cash_flows",
    "aggregate_by_period",
    "calculate_cumulative_cash_flows",
    "separate_calls_and_distributions",
    "calculate_net_cash_flow",
    "filter_by_date_range",
    "calculate_j_curve",
    "cash_flows_to_frame",

    # PE Metrics
    "IRRReview",
    "InvestmentPerformance",
    "calculate_irr",
    "irr_at_clamp_bound",
    "review_irr",
    "calculate_tvpi",
    "calculate_dpi",
    "calculate_rvpi",
    "calculate_moic",
    "calculate_called_percent",
    "calculate_distributed_percent",
    "calculate_fund_performance",
    "calculate_period_performance",
    "calculate_investment_performance",
    "aggregate_metrics",

    # Valuation
    "PortfolioProjection",
    "years_between",
    "select_investments",
    "calculate_value_at_date",
    "calculate_total_aum",
    "calculate_weighted_avg_irr",
    "calculate_total_invested",
    "calculate_total_unrealized_gains",
    "calculate_portfolio_multiple",
    "calculate_portfolio_irr",
    "adjust_aum_for_transactions",
    "project_portfolio",

    # NAV
    "NAVComponents",
    "NAVPoint",
    "NAVReturns",
    "calculate_total_assets",
    "calculate_total_liabilities",
    "calculate_nav_components",
    "calculate_nav_per_share",
    "calculate_percent_of_nav",
    "calculate_valuation_by_asset",
    "calculate_percentage_change",
    "calculate_mtd_return",
    "calculate_qtd_return",
    "calculate_ytd_return",
    "calculate_inception_return",
    "calculate_nav_returns",
    "nav_history_to_frame",

    # Methodology
    "PerformanceMethodology",
    "CalculationLevel",
    "MethodologyResult",
    "determine_methodology",
    "split_capital_calls",
    "calculate_fund_age_years",
    "estimate_management_fees",
    "calculate_granular_performance",
    "calculate_gross_up_performance",
    "calculate_portfolio_level_performance",
    "calculate_fund_level_performance",

    # Allocation
    "ProRataShare",
    "calculate_investor_allocation",
    "allocate_pro_rata",
    "check_conservation",
    "next_call_number",
    "next_distribution_number",
    "create_capital_call",
    "create_distribution",
    "derive_capital_call_status",
    "update_investor_payment",
    "mark_capital_call_sent",
    "cancel_capital_call",
    "derive_distribution_status",
    "update_investor_distribution",
    "overdue_capital_calls",
    "capital_call_summary",
    "upcoming_distributions",
    "distribution_summary",
    "allocations_to_frame",

    # Capital Account
    "build_capital_account_history",
    "recompute_running_balances",
    "sort_capital_account_events",
    "summarize_capital_account",
    "reconcile_called_capital",
    "ledger_to_frame",

    # Validation
    "AUMBasis",
    "ValidationResult",
    "calculate_report_distributions",
    "calculate_report_metrics",
    "validate_report_metrics",
    "apply_calculated_metrics",
    "validate_reports",
    "generate_report_metrics"
]
