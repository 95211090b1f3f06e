"""
Unit tests for Valuation Engine.

Tests IRR compound-growth projection and portfolio figures.
"""

import unittest
from datetime import date
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fund_engine.engines.valuation_engine import (
    round_half_up,
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
from fund_engine.models import Investment


def make_investment(investment_id, invested, irr, acquired=date(2020, 1, 1)):
    return Investment(
        id=investment_id,
        total_invested=invested,
        current_value=invested,
        irr=irr,
        multiple=1.0,
        acquisition_date=acquired,
        last_valuation_date=acquired
    )


# Four 365.25-day years, so growth is exact
FOUR_YEARS_LATER = date(2024, 1, 1)


class TestRounding(unittest.TestCase):
    """Test half-up rounding."""

    def test_halves_round_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(3.5), 4)
        self.assertEqual(round_half_up(-2.5), -2)

    def test_decimals(self):
        self.assertEqual(round_half_up(0.125, 2), 0.13)
        self.assertEqual(round_half_up(5.94, 1), 5.9)

    def test_years_between(self):
        self.assertEqual(years_between(date(2020, 1, 1), FOUR_YEARS_LATER), 4.0)
        self.assertLess(years_between(FOUR_YEARS_LATER, date(2020, 1, 1)), 0)


class TestValueAtDate(unittest.TestCase):
    """Test single-investment projection."""

    def test_value_at_acquisition_is_principal(self):
        investment = make_investment('inv-1', 1000000, 10.0)

        self.assertEqual(calculate_value_at_date(investment, date(2020, 1, 1)), 1000000)

    def test_compound_growth(self):
        investment = make_investment('inv-1', 1000000, 10.0)

        self.assertEqual(calculate_value_at_date(investment, FOUR_YEARS_LATER), 1464100)

    def test_total_loss_irr(self):
        """An IRR of -100% or below values the position at zero."""
        investment = make_investment('inv-1', 1000000, -100.0)

        self.assertEqual(calculate_value_at_date(investment, FOUR_YEARS_LATER), 0.0)

    def test_total_loss_irr_at_acquisition(self):
        """Before any time passes the position is still worth its principal."""
        investment = make_investment('inv-1', 1000, -100.0)

        self.assertEqual(calculate_value_at_date(investment, date(2020, 1, 1)), 1000.0)


class TestPortfolioFigures(unittest.TestCase):
    """Test portfolio aggregation."""

    def setUp(self):
        self.investments = [
            make_investment('inv-1', 1000000, 10.0),
            make_investment('inv-2', 1000000, 0.0)
        ]

    def test_total_aum(self):
        self.assertEqual(calculate_total_aum(self.investments, FOUR_YEARS_LATER), 2464100)

    def test_weighted_avg_irr(self):
        """Weights are projected values, not principal."""
        self.assertEqual(calculate_weighted_avg_irr(self.investments, FOUR_YEARS_LATER), 5.9)

    def test_totals(self):
        self.assertEqual(calculate_total_invested(self.investments), 2000000)
        self.assertEqual(calculate_total_unrealized_gains(self.investments, FOUR_YEARS_LATER), 464100)

    def test_portfolio_multiple(self):
        self.assertEqual(calculate_portfolio_multiple(self.investments, FOUR_YEARS_LATER), 1.23)

    def test_portfolio_irr(self):
        self.assertEqual(calculate_portfolio_irr(self.investments, FOUR_YEARS_LATER), 5.3)

    def test_empty_portfolio(self):
        self.assertEqual(calculate_total_aum([], FOUR_YEARS_LATER), 0)
        self.assertEqual(calculate_weighted_avg_irr([], FOUR_YEARS_LATER), 0.0)
        self.assertEqual(calculate_portfolio_multiple([], FOUR_YEARS_LATER), 0.0)
        self.assertEqual(calculate_portfolio_irr([], FOUR_YEARS_LATER), 0.0)

    def test_zero_holding_period(self):
        self.assertEqual(calculate_portfolio_irr(self.investments, date(2020, 1, 1)), 0.0)


class TestAUMAdjustment(unittest.TestCase):
    """Test AUM adjustment for transactions."""

    def test_distributions_reduce_aum(self):
        self.assertEqual(adjust_aum_for_transactions(1000000, 50000, 100000), 900000)

    def test_capital_calls_ignored(self):
        self.assertEqual(adjust_aum_for_transactions(1000000, capital_calls=250000), 1000000)


class TestProjection(unittest.TestCase):
    """Test portfolio projection for a subset of investments."""

    def setUp(self):
        self.investments = [
            make_investment('inv-1', 1000000, 10.0),
            make_investment('inv-2', 1000000, 0.0),
            make_investment('inv-3', 500000, 25.0)
        ]

    def test_select_keeps_list_order(self):
        selected = select_investments(self.investments, ['inv-3', 'inv-1'])

        self.assertEqual([inv.id for inv in selected], ['inv-1', 'inv-3'])
        self.assertEqual(len(select_investments(self.investments, None)), 3)

    def test_project_subset(self):
        projection = project_portfolio(self.investments, ['inv-1', 'inv-2'], FOUR_YEARS_LATER)

        self.assertEqual(projection.investment_count, 2)
        self.assertEqual(projection.total_aum, 2464100)
        self.assertEqual(projection.weighted_avg_irr, 5.9)
        self.assertEqual(projection.values, {'inv-1': 1464100, 'inv-2': 1000000})

    def test_project_unknown_ids(self):
        projection = project_portfolio(self.investments, ['missing'], FOUR_YEARS_LATER)

        self.assertEqual(projection.investment_count, 0)
        self.assertEqual(projection.total_aum, 0)


if __name__ == '__main__':
    unittest.main()
