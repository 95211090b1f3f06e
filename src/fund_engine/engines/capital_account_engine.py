"""
Capital Account Ledger Engine.

Builds an investor's capital account history for one fund from the stored
called capital and the capital calls and distributions that touch the
investor. The history is a derived view: it is rebuilt wholesale and running
balances are recomputed in a single forward pass, never patched.

Amounts are from the capital account's point of view: contributions are
positive, distributions negative.
"""

from dataclasses import replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
import logging

import pandas as pd

from ..config import ALLOCATION_DECIMALS
from ..models import (
    CapitalAccountEvent,
    CapitalAccountEventType,
    CapitalCall,
    Distribution,
    DistributionStatus,
    FundOwnership,
    Investor,
)

logger = logging.getLogger(__name__)


# Same-day ordering: seed first, then calls, then distributions
EVENT_TYPE_RANK = {
    CapitalAccountEventType.INITIAL_CONTRIBUTION: 0,
    CapitalAccountEventType.CAPITAL_CALL: 1,
    CapitalAccountEventType.DISTRIBUTION: 2,
}


def _event_sort_key(event: CapitalAccountEvent):
    return (event.date, EVENT_TYPE_RANK[event.event_type], event.source_id or "")


def sort_capital_account_events(events: Iterable[CapitalAccountEvent]) -> List[CapitalAccountEvent]:
    """Order events by (date, event type, source id)."""
    return sorted(events, key=_event_sort_key)


def recompute_running_balances(events: Iterable[CapitalAccountEvent]) -> List[CapitalAccountEvent]:
    """Single forward pass: running_balance = previous balance + amount."""
    balance = 0.0
    recomputed = []
    for event in events:
        balance = round(balance + event.amount, ALLOCATION_DECIMALS)
        recomputed.append(replace(event, running_balance=balance))
    return recomputed


def _counted_call_events(
    investor_id: str,
    fund_id: str,
    capital_calls: Iterable[CapitalCall]
) -> List[CapitalAccountEvent]:
    events = []
    for call in capital_calls:
        if call.fund_id != fund_id or not call.is_counted:
            continue
        allocation = call.allocation_for(investor_id)
        if allocation is None:
            continue
        description = f"Capital Call #{call.call_number}"
        if call.purpose:
            description += f" - {call.purpose}"
        events.append(CapitalAccountEvent(
            date=call.due_date,
            event_type=CapitalAccountEventType.CAPITAL_CALL,
            amount=allocation.call_amount,
            description=description,
            source_id=call.id,
        ))
    return events


def _distribution_events(
    investor_id: str,
    fund_id: str,
    distributions: Iterable[Distribution]
) -> List[CapitalAccountEvent]:
    events = []
    for dist in distributions:
        if dist.fund_id != fund_id:
            continue
        allocation = dist.allocation_for(investor_id)
        if allocation is None or allocation.status == DistributionStatus.FAILED:
            continue
        description = f"Distribution #{dist.distribution_number}"
        if dist.source:
            description += f" - {dist.source}"
        events.append(CapitalAccountEvent(
            date=dist.distribution_date,
            event_type=CapitalAccountEventType.DISTRIBUTION,
            amount=-allocation.amount,
            description=description,
            source_id=dist.id,
        ))
    return events


def build_capital_account_history(
    investor: Investor,
    fund_id: str,
    capital_calls: Iterable[CapitalCall],
    distributions: Iterable[Distribution]
) -> List[CapitalAccountEvent]:
    """
    Build the investor's capital account history for a fund.

    The Initial Contribution seeds the ledger with the stored called capital
    less the calls listed separately, so tracked calls are not counted twice.
    It is dated at the ownership's invested date, else the investor's start
    date, else the earliest tracked event.

    Args:
        investor: The investor (stored called capital comes from its ownership)
        fund_id: Fund whose ledger to build
        capital_calls: Capital calls; Draft and Cancelled calls are ignored
        distributions: Distributions; Failed allocations are ignored

    Returns:
        A new, chronologically ordered list of events with running balances
    """
    call_events = _counted_call_events(investor.id, fund_id, capital_calls)
    distribution_events = _distribution_events(investor.id, fund_id, distributions)
    events = call_events + distribution_events

    ownership = investor.ownership_for(fund_id)
    stored_called = ownership.called_capital if ownership else 0.0
    tracked_calls = sum(event.amount for event in call_events)
    initial_amount = round(stored_called - tracked_calls, ALLOCATION_DECIMALS)

    if initial_amount > 0:
        seed_date: Optional[date] = (ownership.invested_date if ownership else None) or investor.investor_since
        if seed_date is None and events:
            seed_date = min(event.date for event in events)
        if seed_date is None:
            logger.warning(f"No date available for the initial contribution of investor {investor.id}")
        else:
            events.append(CapitalAccountEvent(
                date=seed_date,
                event_type=CapitalAccountEventType.INITIAL_CONTRIBUTION,
                amount=initial_amount,
                description="Initial capital contribution to fund",
            ))
    elif initial_amount < 0:
        logger.warning(
            f"Stored called capital {stored_called:,.2f} for investor {investor.id} in fund "
            f"{fund_id} is below tracked calls {tracked_calls:,.2f}; called capital looks stale"
        )

    history = recompute_running_balances(sort_capital_account_events(events))
    logger.debug(f"Built {len(history)} capital account events for investor {investor.id}")
    return history


def summarize_capital_account(events: List[CapitalAccountEvent]) -> Dict[str, Any]:
    """Totals over a capital account history."""
    total_distributed = sum(
        -e.amount for e in events if e.event_type == CapitalAccountEventType.DISTRIBUTION
    )
    total_contributed = sum(
        e.amount for e in events if e.event_type != CapitalAccountEventType.DISTRIBUTION
    )
    return {
        "total_contributed": total_contributed,
        "total_distributed": total_distributed,
        "net_cash_flow": total_distributed - total_contributed,
        "ending_balance": events[-1].running_balance if events else 0.0,
        "event_count": len(events),
    }


def reconcile_called_capital(
    ownership: FundOwnership,
    capital_calls: Iterable[CapitalCall]
) -> FundOwnership:
    """
    Recompute called / uncalled capital from the tracked capital calls.

    Called capital is the larger of the stored figure (which may include
    contributions made before calls were tracked) and the tracked calls.
    The result always satisfies called + uncalled == commitment.
    """
    tracked = sum(
        allocation.call_amount
        for call in capital_calls
        if call.fund_id == ownership.fund_id and call.is_counted
        for allocation in call.investor_allocations
        if allocation.investor_id == ownership.investor_id
    )

    if tracked > ownership.called_capital:
        logger.warning(
            f"Called capital for investor {ownership.investor_id} in fund {ownership.fund_id} "
            f"was {ownership.called_capital:,.2f}, tracked calls total {tracked:,.2f}"
        )
    called = round(max(ownership.called_capital, tracked), ALLOCATION_DECIMALS)

    if called > ownership.commitment:
        logger.warning(
            f"Investor {ownership.investor_id} has been called {called:,.2f}, "
            f"above the {ownership.commitment:,.2f} commitment"
        )

    return replace(
        ownership,
        called_capital=called,
        uncalled_capital=round(ownership.commitment - called, ALLOCATION_DECIMALS),
    )


def ledger_to_frame(events: List[CapitalAccountEvent]) -> pd.DataFrame:
    """Tabulate a capital account history for export."""
    columns = ["date", "event_type", "amount", "running_balance", "description", "source_id"]
    rows = [
        {
            "date": e.date,
            "event_type": e.event_type.value,
            "amount": e.amount,
            "running_balance": e.running_balance,
            "description": e.description,
            "source_id": e.source_id,
        }
        for e in events
    ]
    return pd.DataFrame(rows, columns=columns)
