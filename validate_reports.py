#!/usr/bin/env python3
"""
Validate stored report metrics against the investment and investor data.

Usage:
    python validate_reports.py data.json [--basis projected] [--output results.json]

The input is a JSON export with ``investments``, ``investors`` and ``reports``
lists, and optionally ``distributions``. Exits with status 1 when any report
has errors.
"""

import argparse
import json
import logging
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src'))

from fund_engine.config import configure_logging
from fund_engine.engines.validation_engine import AUMBasis, generate_report_metrics, validate_reports
from fund_engine.models import Distribution, Investment, Investor, Report, records_from_dicts

logger = logging.getLogger("validate_reports")


def load_export(path):
    """Read the JSON export and build records."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    distributions = data.get("distributions")
    return {
        "investments": records_from_dicts(Investment, data.get("investments", [])),
        "investors": records_from_dicts(Investor, data.get("investors", [])),
        "reports": records_from_dicts(Report, data.get("reports", [])),
        "distributions": records_from_dicts(Distribution, distributions) if distributions is not None else None,
    }


def print_fund_overview(investments, investors):
    metrics = generate_report_metrics(investments, investors)

    print("=" * 70)
    print("OVERALL FUND METRICS")
    print("=" * 70)
    print(f"Total Fund NAV:          ${metrics['total_aum']:,.2f}")
    print(f"Total Invested:          ${metrics['total_invested']:,.2f}")
    print(f"Unrealized Gain:         ${metrics['unrealized_gain']:,.2f}")
    print(f"Average IRR:             {metrics['avg_irr']:.2f}%")
    print(f"Weighted Avg IRR:        {metrics['weighted_avg_irr']:.2f}%")
    print(f"Total Commitment:        ${metrics['total_commitment']:,.2f}")
    print(f"Total Called Capital:    ${metrics['total_called_capital']:,.2f}")
    print(f"Total Distributions:     ${metrics['total_distributions']:,.2f}")
    print()


def print_report_result(index, report, result):
    stored = report.metrics
    calculated = result.calculated_metrics

    print("=" * 70)
    print(f"REPORT {index}: {report.title}")
    print("=" * 70)
    print(f"ID: {report.id}  Type: {report.report_type}  Period end: {report.period_end}")
    print(f"Includes: {len(report.included_investment_ids)} investments, "
          f"{len(report.included_investor_ids)} investors")
    print()
    print(f"{'':22}{'Reported':>16}{'Calculated':>16}")
    print(f"{'Total AUM':22}{stored.total_aum:>16,.2f}{calculated.total_aum:>16,.2f}")
    print(f"{'Average IRR (%)':22}{stored.avg_irr:>16.2f}{calculated.avg_irr:>16.2f}")
    print(f"{'Total Distributions':22}{stored.total_distributions:>16,.2f}"
          f"{calculated.total_distributions:>16,.2f}")
    print()

    if result.is_valid:
        print("✅ VALID")
    else:
        print("❌ INVALID")
    for error in result.errors:
        print(f"  ERROR:   {error}")
    for warning in result.warnings:
        print(f"  WARNING: {warning}")
    print()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Validate report metrics against source data.")
    parser.add_argument("data", help="JSON export with investments, investors and reports")
    parser.add_argument(
        "--basis",
        choices=[b.value for b in AUMBasis],
        default=AUMBasis.CURRENT_VALUE.value,
        help="How AUM and average IRR are recomputed",
    )
    parser.add_argument("--output", help="Write per-report results to this JSON file")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    records = load_export(args.data)
    print_fund_overview(records["investments"], records["investors"])

    results = validate_reports(
        records["reports"],
        records["investments"],
        records["investors"],
        records["distributions"],
        basis=AUMBasis(args.basis),
    )

    for index, report in enumerate(records["reports"], start=1):
        print_report_result(index, report, results[report.id])

    invalid = [report_id for report_id, result in results.items() if not result.is_valid]

    print("=" * 70)
    print("VALIDATION SUMMARY")
    print("=" * 70)
    print(f"Reports: {len(results)}  Valid: {len(results) - len(invalid)}  Invalid: {len(invalid)}")

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump({report_id: result.to_dict() for report_id, result in results.items()}, f, indent=2)
        logger.info(f"Wrote results to {args.output}")

    return 1 if invalid else 0


if __name__ == "__main__":
    sys.exit(main())
