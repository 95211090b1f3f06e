"""
Unit tests for Allocation Engine.

Tests pro-rata allocation, capital call payments and distribution processing.
"""

import unittest
from dataclasses import replace
from datetime import date
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fund_engine.engines.allocation_engine import (
    allocate_pro_rata,
    calculate_investor_allocation,
    check_conservation,
    next_call_number,
    next_distribution_number,
    create_capital_call,
    create_distribution,
    update_investor_payment,
    mark_capital_call_sent,
    cancel_capital_call,
    update_investor_distribution,
    overdue_capital_calls,
    capital_call_summary,
    upcoming_distributions,
    distribution_summary,
    allocations_to_frame
)
from fund_engine.exceptions import InputError, StateTransitionError
from fund_engine.models import (
    CapitalCall,
    CapitalCallStatus,
    Distribution,
    DistributionStatus,
    FundOwnership,
    Investor,
    PaymentStatus
)


def make_investor(investor_id, percent, fund_id='fund-1', commitment=None):
    return Investor(
        id=investor_id,
        name=f"Investor {investor_id}",
        fund_ownerships=(
            FundOwnership(
                investor_id=investor_id,
                fund_id=fund_id,
                commitment=commitment if commitment is not None else percent * 10000,
                ownership_percent=percent
            ),
        )
    )


class TestProRata(unittest.TestCase):
    """Test pro-rata splits."""

    def test_investor_allocation(self):
        self.assertEqual(calculate_investor_allocation(25.0, 1000000), 250000)

    def test_exact_split(self):
        shares = allocate_pro_rata(1000000, [make_investor('a', 60.0), make_investor('b', 40.0)], 'fund-1')

        self.assertEqual([s.amount for s in shares], [600000, 400000])
        self.assertEqual(shares[0].investor.id, 'a')

    def test_residual_goes_to_largest_holder(self):
        investors = [
            make_investor('a', 33.333),
            make_investor('b', 33.333),
            make_investor('c', 33.334)
        ]

        shares = allocate_pro_rata(100, investors, 'fund-1')

        self.assertEqual([s.amount for s in shares], [33.33, 33.33, 33.34])
        self.assertAlmostEqual(sum(s.amount for s in shares), 100, places=2)

    def test_non_holders_skipped(self):
        investors = [
            make_investor('a', 100.0),
            make_investor('x', 100.0, fund_id='fund-2')
        ]

        shares = allocate_pro_rata(5000, investors, 'fund-1')

        self.assertEqual(len(shares), 1)
        self.assertEqual(shares[0].amount, 5000)

    def test_invalid_inputs(self):
        with self.assertRaises(InputError):
            allocate_pro_rata(-1, [make_investor('a', 100.0)], 'fund-1')
        with self.assertRaises(InputError):
            allocate_pro_rata(100, [make_investor('x', 100.0, fund_id='fund-2')], 'fund-1')
        with self.assertRaises(InputError):
            allocate_pro_rata(100, [make_investor('a', 60.0), make_investor('b', 30.0)], 'fund-1')
        with self.assertRaises(InputError):
            allocate_pro_rata(100, [make_investor('a', 110.0), make_investor('b', -10.0)], 'fund-1')


class TestNumbering(unittest.TestCase):
    """Test per-fund numbering."""

    def test_next_numbers(self):
        calls = [
            CapitalCall('cc-1', 'fund-1', 1, 100, date(2020, 1, 1), date(2020, 1, 31)),
            CapitalCall('cc-3', 'fund-1', 3, 100, date(2020, 6, 1), date(2020, 6, 30)),
            CapitalCall('cc-9', 'fund-2', 9, 100, date(2020, 6, 1), date(2020, 6, 30))
        ]
        distributions = [
            Distribution('d-1', 'fund-2', 4, 100, date(2020, 1, 1))
        ]

        self.assertEqual(next_call_number(calls, 'fund-1'), 4)
        self.assertEqual(next_call_number([], 'fund-1'), 1)
        self.assertEqual(next_distribution_number(distributions, 'fund-1'), 1)
        self.assertEqual(next_distribution_number(distributions, 'fund-2'), 5)


class TestCapitalCallLifecycle(unittest.TestCase):
    """Test capital call creation, payment and cancellation."""

    def setUp(self):
        self.investors = [make_investor('a', 60.0), make_investor('b', 40.0)]
        self.call = create_capital_call(
            'fund-1', 1000000, date(2021, 1, 1), date(2021, 1, 31), self.investors,
            call_id='cc-1', purpose='Acquisition'
        )

    def test_create(self):
        self.assertEqual(self.call.status, CapitalCallStatus.DRAFT)
        self.assertEqual(self.call.call_number, 1)
        self.assertEqual(self.call.total_outstanding_amount, 1000000)
        self.assertEqual([a.call_amount for a in self.call.investor_allocations], [600000, 400000])
        self.assertTrue(all(a.status == PaymentStatus.PENDING for a in self.call.investor_allocations))
        self.assertTrue(check_conservation(self.call))

    def test_generated_id(self):
        call = create_capital_call('fund-1', 1000, date(2021, 1, 1), date(2021, 1, 31), self.investors)

        self.assertTrue(call.id.startswith('cc-'))

    def test_create_rejects_bad_input(self):
        with self.assertRaises(InputError):
            create_capital_call('fund-1', 0, date(2021, 1, 1), date(2021, 1, 31), self.investors)
        with self.assertRaises(InputError):
            create_capital_call('fund-1', 1000, date(2021, 1, 31), date(2021, 1, 1), self.investors)
        with self.assertRaises(InputError):
            create_capital_call('fund-1', 1000, date(2021, 1, 1), date(2021, 1, 31), self.investors,
                                management_fee_included=True, management_fee_amount=2000)

    def test_payments_drive_status(self):
        call = mark_capital_call_sent(self.call, date(2021, 1, 2))
        self.assertEqual(call.status, CapitalCallStatus.SENT)

        call = update_investor_payment(call, 'a', 600000, paid_on=date(2021, 1, 20))
        self.assertEqual(call.status, CapitalCallStatus.PARTIALLY_PAID)
        self.assertEqual(call.allocation_for('a').status, PaymentStatus.PAID)
        self.assertEqual(call.allocation_for('a').paid_date, date(2021, 1, 20))
        self.assertEqual(call.total_paid_amount, 600000)

        call = update_investor_payment(call, 'b', 100000)
        self.assertEqual(call.allocation_for('b').status, PaymentStatus.PARTIAL)
        self.assertEqual(call.status, CapitalCallStatus.PARTIALLY_PAID)

        call = update_investor_payment(call, 'b', 300000, paid_on=date(2021, 1, 30))
        self.assertEqual(call.status, CapitalCallStatus.FULLY_PAID)
        self.assertEqual(call.total_paid_amount, 1000000)
        self.assertEqual(call.total_outstanding_amount, 0)

    def test_zero_payment_keeps_paid(self):
        call = update_investor_payment(self.call, 'a', 600000)
        call = update_investor_payment(call, 'a', 0)

        self.assertEqual(call.allocation_for('a').status, PaymentStatus.PAID)
        self.assertEqual(call.allocation_for('a').amount_paid, 600000)

    def test_invalid_payments(self):
        with self.assertRaises(InputError):
            update_investor_payment(self.call, 'a', -1)
        with self.assertRaises(InputError):
            update_investor_payment(self.call, 'missing', 100)
        with self.assertRaises(InputError):
            update_investor_payment(self.call, 'a', 600000.01)

    def test_update_does_not_mutate_input(self):
        update_investor_payment(self.call, 'a', 1000)

        self.assertEqual(self.call.allocation_for('a').amount_paid, 0)

    def test_send_only_from_draft(self):
        sent = mark_capital_call_sent(self.call, date(2021, 1, 2))

        with self.assertRaises(StateTransitionError):
            mark_capital_call_sent(sent, date(2021, 1, 3))

    def test_cancel(self):
        cancelled = cancel_capital_call(self.call, 'Deal fell through', date(2021, 1, 5))

        self.assertEqual(cancelled.status, CapitalCallStatus.CANCELLED)
        self.assertEqual(cancelled.cancelled_reason, 'Deal fell through')
        with self.assertRaises(StateTransitionError):
            update_investor_payment(cancelled, 'a', 100)
        with self.assertRaises(StateTransitionError):
            cancel_capital_call(cancelled, 'again', date(2021, 1, 6))

    def test_cannot_cancel_fully_paid(self):
        call = update_investor_payment(self.call, 'a', 600000)
        call = update_investor_payment(call, 'b', 400000)

        with self.assertRaises(StateTransitionError):
            cancel_capital_call(call, 'late', date(2021, 2, 1))

    def test_allocations_to_frame(self):
        frame = allocations_to_frame(self.call)

        self.assertEqual(list(frame['investor_id']), ['a', 'b'])
        self.assertEqual(list(frame['amount']), [600000, 400000])


class TestCapitalCallQueries(unittest.TestCase):
    """Test overdue detection and summaries."""

    def setUp(self):
        self.calls = [
            CapitalCall('cc-1', 'fund-1', 1, 1000, date(2021, 1, 1), date(2021, 1, 31),
                        status=CapitalCallStatus.SENT),
            CapitalCall('cc-2', 'fund-1', 2, 2000, date(2021, 1, 1), date(2021, 1, 31),
                        status=CapitalCallStatus.DRAFT),
            CapitalCall('cc-3', 'fund-1', 3, 3000, date(2021, 1, 1), date(2021, 2, 1),
                        status=CapitalCallStatus.PARTIALLY_PAID, total_paid_amount=1000),
            CapitalCall('cc-4', 'fund-1', 4, 4000, date(2021, 1, 1), date(2021, 1, 15),
                        status=CapitalCallStatus.CANCELLED)
        ]

    def test_overdue(self):
        overdue = overdue_capital_calls(self.calls, date(2021, 2, 1))

        self.assertEqual([call.id for call in overdue], ['cc-1'])

    def test_summary(self):
        summary = capital_call_summary(self.calls, date(2021, 2, 1))

        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['draft'], 1)
        self.assertEqual(summary['cancelled'], 1)
        self.assertEqual(summary['overdue'], 1)
        self.assertEqual(summary['total_call_amount'], 6000)
        self.assertEqual(summary['total_paid_amount'], 1000)
        self.assertEqual(summary['total_outstanding_amount'], 5000)


class TestDistributionLifecycle(unittest.TestCase):
    """Test distribution creation and processing."""

    def setUp(self):
        self.investors = [make_investor('a', 60.0), make_investor('b', 40.0)]
        self.distribution = create_distribution(
            'fund-1', 100000, date(2021, 6, 30), self.investors,
            distribution_id='d-1', source='Exit', return_of_capital_amount=60000, income_amount=40000
        )

    def test_create(self):
        self.assertEqual(self.distribution.status, DistributionStatus.PENDING)
        self.assertEqual([a.amount for a in self.distribution.investor_allocations], [60000, 40000])
        self.assertTrue(check_conservation(self.distribution))

    def test_components_cannot_exceed_total(self):
        with self.assertRaises(InputError):
            create_distribution('fund-1', 100000, date(2021, 6, 30), self.investors,
                                return_of_capital_amount=60000, income_amount=50000)
        with self.assertRaises(InputError):
            create_distribution('fund-1', 100000, date(2021, 6, 30), self.investors,
                                income_amount=-1)

    def test_processing_to_completed(self):
        dist = update_investor_distribution(self.distribution, 'a', DistributionStatus.PROCESSING)
        self.assertEqual(dist.status, DistributionStatus.PROCESSING)

        dist = update_investor_distribution(dist, 'a', DistributionStatus.COMPLETED, date(2021, 7, 1))
        self.assertEqual(dist.status, DistributionStatus.PENDING)
        self.assertEqual(dist.allocation_for('a').processed_date, date(2021, 7, 1))

        dist = update_investor_distribution(dist, 'b', DistributionStatus.PROCESSING)
        dist = update_investor_distribution(dist, 'b', DistributionStatus.COMPLETED, date(2021, 7, 2))
        self.assertEqual(dist.status, DistributionStatus.COMPLETED)
        self.assertEqual(dist.processed_date, date(2021, 7, 2))

    def test_failed_once_all_terminal(self):
        dist = update_investor_distribution(self.distribution, 'a', DistributionStatus.FAILED)
        self.assertEqual(dist.status, DistributionStatus.PENDING)

        dist = update_investor_distribution(dist, 'b', DistributionStatus.PROCESSING)
        dist = update_investor_distribution(dist, 'b', DistributionStatus.COMPLETED)
        self.assertEqual(dist.status, DistributionStatus.FAILED)

    def test_same_status_is_noop(self):
        dist = update_investor_distribution(self.distribution, 'a', DistributionStatus.PENDING)

        self.assertIs(dist, self.distribution)

    def test_illegal_transitions(self):
        with self.assertRaises(StateTransitionError):
            update_investor_distribution(self.distribution, 'a', DistributionStatus.COMPLETED)

        dist = update_investor_distribution(self.distribution, 'a', DistributionStatus.PROCESSING)
        dist = update_investor_distribution(dist, 'a', DistributionStatus.COMPLETED)
        with self.assertRaises(StateTransitionError):
            update_investor_distribution(dist, 'a', DistributionStatus.PENDING)

        with self.assertRaises(InputError):
            update_investor_distribution(dist, 'missing', DistributionStatus.PROCESSING)

    def test_conservation_detects_mismatch(self):
        allocations = self.distribution.investor_allocations
        broken = replace(
            self.distribution,
            investor_allocations=(replace(allocations[0], amount=50000), allocations[1])
        )

        self.assertFalse(check_conservation(broken))


class TestDistributionQueries(unittest.TestCase):
    """Test upcoming distributions and summaries."""

    def setUp(self):
        self.distributions = [
            Distribution('d-1', 'fund-1', 1, 1000, date(2021, 6, 15)),
            Distribution('d-2', 'fund-1', 2, 2000, date(2021, 7, 15)),
            Distribution('d-3', 'fund-1', 3, 3000, date(2021, 6, 10),
                         status=DistributionStatus.COMPLETED, income_amount=3000),
            Distribution('d-4', 'fund-1', 4, 4000, date(2021, 6, 5),
                         status=DistributionStatus.PROCESSING, return_of_capital_amount=4000)
        ]

    def test_upcoming(self):
        upcoming = upcoming_distributions(self.distributions, date(2021, 6, 1))

        self.assertEqual([d.id for d in upcoming], ['d-4', 'd-1'])

    def test_summary(self):
        summary = distribution_summary(self.distributions, date(2021, 6, 1))

        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['pending'], 2)
        self.assertEqual(summary['completed'], 1)
        self.assertEqual(summary['upcoming'], 2)
        self.assertEqual(summary['total_distribution_amount'], 10000)
        self.assertEqual(summary['total_income'], 3000)
        self.assertEqual(summary['total_return_of_capital'], 4000)


if __name__ == '__main__':
    unittest.main()
