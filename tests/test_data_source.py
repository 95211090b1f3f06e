"""
Unit tests for the data layer.

Runs the same store checks against the in-memory store and a SQLite database,
then exercises the service functions.
"""

import unittest
from dataclasses import replace
from datetime import date
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from fund_engine.data import (
    InMemoryFundDataSource,
    SqlFundDataSource,
    calculate_fund_metrics,
    build_investor_ledger,
    record_investor_payment,
    record_distribution_status
)
from fund_engine.engines.allocation_engine import create_capital_call, create_distribution
from fund_engine.exceptions import ConcurrentUpdateError, InputError, RecordNotFoundError
from fund_engine.models import (
    CapitalAccountEventType,
    CapitalCallStatus,
    DistributionStatus,
    Fund,
    FundOwnership,
    Investment,
    Investor,
    PaymentStatus
)


FUND = Fund('fund-1', 'Growth Fund I', date(2020, 1, 1), management_fee_percent=2.0)

INVESTMENTS = [
    Investment('inv-1', 900000, 1100000, 12.0, 1.22, date(2020, 1, 15), date(2021, 12, 31),
               name='Acme Corp', fund_id='fund-1'),
    Investment('inv-2', 300000, 250000, -5.0, 0.83, date(2020, 6, 1), date(2021, 12, 31),
               name='Other Fund Co', fund_id='fund-2')
]

INVESTORS = [
    Investor('a', 'Investor a', fund_ownerships=(
        FundOwnership('a', 'fund-1', 600000, 60.0, called_capital=600000, invested_date=date(2020, 1, 1)),
    ), investor_since=date(2019, 12, 1)),
    Investor('b', 'Investor b', fund_ownerships=(
        FundOwnership('b', 'fund-1', 400000, 40.0, called_capital=400000),
    )),
    Investor('x', 'Investor x', fund_ownerships=(
        FundOwnership('x', 'fund-2', 100000, 100.0),
    ))
]


def make_call():
    return create_capital_call(
        'fund-1', 1000000, date(2020, 1, 1), date(2020, 1, 31), INVESTORS, call_id='cc-1'
    )


def make_distribution():
    return create_distribution(
        'fund-1', 200000, date(2021, 1, 1), INVESTORS, distribution_id='d-1', source='Exit'
    )


class StoreChecks:
    """Store behaviour shared by every FundRecordStore implementation."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()
        self.store.save_fund(FUND)
        for investment in INVESTMENTS:
            self.store.save_investment(investment)
        for investor in INVESTORS:
            self.store.save_investor(investor)

    def test_reads(self):
        self.assertEqual(self.store.get_fund('fund-1'), FUND)
        self.assertEqual([i.id for i in self.store.get_investments('fund-1')], ['inv-1'])
        self.assertEqual([i.id for i in self.store.get_investors('fund-1')], ['a', 'b'])
        self.assertEqual(self.store.get_investors('fund-1')[0], INVESTORS[0])

    def test_missing_records(self):
        with self.assertRaises(RecordNotFoundError):
            self.store.get_fund('missing')
        with self.assertRaises(RecordNotFoundError):
            self.store.get_capital_call('missing')
        with self.assertRaises(RecordNotFoundError):
            self.store.get_distribution('missing')

    def test_save_capital_call_bumps_version(self):
        call = make_call()

        stored = self.store.save_capital_call(call)

        self.assertEqual(stored.version, 1)
        self.assertEqual(self.store.get_capital_call('cc-1'), stored)
        self.assertEqual([c.id for c in self.store.get_capital_calls('fund-1')], ['cc-1'])

    def test_stale_capital_call_save(self):
        stored = self.store.save_capital_call(make_call())
        self.store.save_capital_call(replace(stored, purpose='First writer'))

        with self.assertRaises(ConcurrentUpdateError):
            self.store.save_capital_call(replace(stored, purpose='Second writer'))

        self.assertEqual(self.store.get_capital_call('cc-1').purpose, 'First writer')

    def test_save_distribution_round_trip(self):
        distribution = make_distribution()

        stored = self.store.save_distribution(distribution)

        self.assertEqual(stored.version, 1)
        self.assertEqual(self.store.get_distribution('d-1'), stored)
        with self.assertRaises(ConcurrentUpdateError):
            self.store.save_distribution(distribution)

    def test_purge(self):
        self.store.save_capital_call(make_call())
        self.store.save_distribution(make_distribution())

        self.store.purge_capital_call('cc-1')
        self.store.purge_distribution('d-1')

        self.assertEqual(self.store.get_capital_calls('fund-1'), [])
        self.assertEqual(self.store.get_distributions('fund-1'), [])
        with self.assertRaises(RecordNotFoundError):
            self.store.purge_capital_call('cc-1')


class TestInMemoryStore(StoreChecks, unittest.TestCase):

    def make_store(self):
        return InMemoryFundDataSource()

    def test_from_dict(self):
        source = InMemoryFundDataSource.from_dict({
            'funds': [{'id': 'fund-1', 'name': 'Growth Fund I', 'inceptionDate': '2020-01-01',
                       'managementFee': 1.5, 'detailedCapitalCalls': True}],
            'investments': [{'id': 'inv-1', 'fundId': 'fund-1', 'acquisitionDate': '2020-01-15',
                             'totalFundPosition': {'totalInvested': 900000, 'currentValue': 1100000,
                                                   'irr': 12.0, 'multiple': 1.22}}],
            'capitalCalls': [{'id': 'cc-1', 'fundId': 'fund-1', 'callNumber': 1,
                              'totalCallAmount': 1000000, 'callDate': '2020-01-01',
                              'dueDate': '2020-01-31', 'status': 'Sent'}]
        })

        fund = source.get_fund('fund-1')
        self.assertEqual(fund.management_fee_percent, 1.5)
        self.assertTrue(fund.detailed_capital_calls)
        self.assertEqual(source.get_investments('fund-1')[0].unrealized_gain, 200000)
        self.assertEqual(source.get_capital_call('cc-1').status, CapitalCallStatus.SENT)


class TestSqlStore(StoreChecks, unittest.TestCase):

    def make_store(self):
        return SqlFundDataSource('sqlite://')

    def tearDown(self):
        self.store.close()


class TestServices(unittest.TestCase):
    """Test the service functions over an in-memory store."""

    def setUp(self):
        self.store = InMemoryFundDataSource(funds=[FUND], investments=INVESTMENTS, investors=INVESTORS)
        self.store.save_capital_call(make_call())
        self.store.save_distribution(make_distribution())

    def test_record_investor_payment(self):
        call = record_investor_payment(self.store, 'cc-1', 'a', 600000, paid_on=date(2020, 1, 20))

        self.assertEqual(call.version, 2)
        self.assertEqual(call.status, CapitalCallStatus.PARTIALLY_PAID)
        self.assertEqual(self.store.get_capital_call('cc-1').allocation_for('a').status, PaymentStatus.PAID)

    def test_concurrent_payments(self):
        stale = self.store.get_capital_call('cc-1')
        record_investor_payment(self.store, 'cc-1', 'a', 600000)

        with self.assertRaises(ConcurrentUpdateError):
            self.store.save_capital_call(stale)

    def test_invalid_payment_is_not_saved(self):
        with self.assertRaises(InputError):
            record_investor_payment(self.store, 'cc-1', 'a', 700000)

        self.assertEqual(self.store.get_capital_call('cc-1').version, 1)

    def test_record_distribution_status(self):
        distribution = record_distribution_status(self.store, 'd-1', 'a', DistributionStatus.PROCESSING)

        self.assertEqual(distribution.status, DistributionStatus.PROCESSING)
        self.assertEqual(distribution.version, 2)

        unchanged = record_distribution_status(self.store, 'd-1', 'a', DistributionStatus.PROCESSING)
        self.assertEqual(unchanged.version, 2)

    def test_calculate_fund_metrics(self):
        record_investor_payment(self.store, 'cc-1', 'a', 600000)
        record_investor_payment(self.store, 'cc-1', 'b', 400000)
        for investor_id in ('a', 'b'):
            record_distribution_status(self.store, 'd-1', investor_id, DistributionStatus.PROCESSING)
            record_distribution_status(self.store, 'd-1', investor_id, DistributionStatus.COMPLETED)

        metrics = calculate_fund_metrics(self.store, 'fund-1', date(2022, 1, 1))

        self.assertEqual(metrics.total_capital_called, 1000000)
        self.assertEqual(metrics.total_distributed, 200000)
        self.assertEqual(metrics.current_nav, 1100000)
        self.assertAlmostEqual(metrics.tvpi, 1.3)
        self.assertEqual(metrics.methodology, 'grossup')

    def test_build_investor_ledger(self):
        mark_sent = replace(self.store.get_capital_call('cc-1'), status=CapitalCallStatus.SENT)
        self.store.save_capital_call(mark_sent)

        ledger = build_investor_ledger(self.store, 'fund-1', 'a')

        self.assertEqual(
            [e.event_type for e in ledger],
            [CapitalAccountEventType.CAPITAL_CALL, CapitalAccountEventType.DISTRIBUTION]
        )
        self.assertEqual(ledger[-1].running_balance, 480000)

    def test_ledger_for_unknown_investor(self):
        with self.assertRaises(RecordNotFoundError):
            build_investor_ledger(self.store, 'fund-1', 'x')


if __name__ == '__main__':
    unittest.main()
