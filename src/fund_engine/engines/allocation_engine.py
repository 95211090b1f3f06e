"""
Allocation Engine.

Pro-rata allocation of capital calls and distributions across a fund's
investors, and the payment / processing state machines that track money as
it moves.

Every update returns a new record: the allocation is replaced, then the
parent status is recomputed from the allocations. Callers persist the whole
record (see ``fund_engine.data``).

Capital call allocation:   Pending -> Partial -> Paid  (Pending -> Paid allowed)
Capital call:              Draft -> Sent -> Partially Paid -> Fully Paid,
                           Cancelled from any non-terminal state
Distribution allocation:   Pending -> Processing -> Completed,
                           Pending/Processing -> Failed
"""

from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging
import uuid

import numpy as np
import pandas as pd

from ..config import (
    ALLOCATION_DECIMALS,
    CONSERVATION_TOLERANCE,
    OWNERSHIP_TOLERANCE,
    UPCOMING_DISTRIBUTION_DAYS,
)
from ..exceptions import InputError, StateTransitionError
from ..models import (
    CapitalCall,
    CapitalCallAllocation,
    CapitalCallStatus,
    Distribution,
    DistributionAllocation,
    DistributionStatus,
    FundOwnership,
    Investor,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


DISTRIBUTION_TRANSITIONS = {
    DistributionStatus.PENDING: (DistributionStatus.PROCESSING, DistributionStatus.FAILED),
    DistributionStatus.PROCESSING: (DistributionStatus.COMPLETED, DistributionStatus.FAILED),
    DistributionStatus.COMPLETED: (),
    DistributionStatus.FAILED: (),
}

TERMINAL_CALL_STATUSES = (CapitalCallStatus.FULLY_PAID, CapitalCallStatus.CANCELLED)


def _cents(amount: float) -> float:
    return round(amount, ALLOCATION_DECIMALS)


# ==============================================================================
# PRO-RATA ALLOCATION
# ==============================================================================

@dataclass(frozen=True)
class ProRataShare:
    """An investor's rounded share of a fund-level amount."""
    investor: Investor
    ownership: FundOwnership
    amount: float


def calculate_investor_allocation(ownership_percent: float, total_amount: float) -> float:
    """Investor amount = total x ownership% / 100 (unrounded)."""
    return total_amount * ownership_percent / 100


def allocate_pro_rata(
    total_amount: float,
    investors: Iterable[Investor],
    fund_id: str
) -> List[ProRataShare]:
    """
    Split ``total_amount`` across the investors holding ``fund_id``.

    Amounts are rounded to cents and the rounding residual is placed on the
    largest holder (first one on ties), so the shares always sum to the total.

    Args:
        total_amount: Amount to split (non-negative)
        investors: Candidate investors; those without ownership in the fund
            are skipped
        fund_id: Fund whose ownership percentages drive the split

    Returns:
        One ProRataShare per owning investor, in input order

    Raises:
        InputError: negative total, no owners, negative ownership, or
            ownership not summing to 100%
    """
    if total_amount < 0:
        raise InputError(f"Allocation total must not be negative (got {total_amount})")

    holders: List[Tuple[Investor, FundOwnership]] = []
    for investor in investors:
        ownership = investor.ownership_for(fund_id)
        if ownership is None:
            logger.debug(f"Investor {investor.id} holds no position in fund {fund_id}")
            continue
        if ownership.ownership_percent < 0:
            raise InputError(
                f"Investor {investor.id} has negative ownership {ownership.ownership_percent}%"
            )
        holders.append((investor, ownership))

    if not holders:
        raise InputError(f"No investors hold an ownership position in fund {fund_id}")

    total_percent = sum(ownership.ownership_percent for _, ownership in holders)
    if abs(total_percent - 100) > OWNERSHIP_TOLERANCE:
        raise InputError(
            f"Ownership in fund {fund_id} sums to {total_percent:.4f}%, expected 100%"
        )

    amounts = [
        _cents(calculate_investor_allocation(ownership.ownership_percent, total_amount))
        for _, ownership in holders
    ]

    residual = _cents(total_amount - sum(amounts))
    if residual:
        largest = max(range(len(holders)), key=lambda i: holders[i][1].ownership_percent)
        amounts[largest] = _cents(amounts[largest] + residual)
        logger.debug(f"Placed rounding residual {residual} on investor {holders[largest][0].id}")

    return [
        ProRataShare(investor=investor, ownership=ownership, amount=amount)
        for (investor, ownership), amount in zip(holders, amounts)
    ]


def check_conservation(
    record: Union[CapitalCall, Distribution],
    tolerance: float = CONSERVATION_TOLERANCE
) -> bool:
    """True when the allocations sum to the record total within ``tolerance``."""
    if isinstance(record, CapitalCall):
        total = record.total_call_amount
        allocated = sum(a.call_amount for a in record.investor_allocations)
    else:
        total = record.total_distribution_amount
        allocated = sum(a.amount for a in record.investor_allocations)

    return bool(np.isclose(allocated, total, rtol=0, atol=tolerance))


# ==============================================================================
# RECORD CREATION
# ==============================================================================

def next_call_number(capital_calls: Iterable[CapitalCall], fund_id: str) -> int:
    """Next capital call number for a fund (max + 1, starting at 1)."""
    numbers = [call.call_number for call in capital_calls if call.fund_id == fund_id]
    return max(numbers) + 1 if numbers else 1


def next_distribution_number(distributions: Iterable[Distribution], fund_id: str) -> int:
    """Next distribution number for a fund (max + 1, starting at 1)."""
    numbers = [d.distribution_number for d in distributions if d.fund_id == fund_id]
    return max(numbers) + 1 if numbers else 1


def create_capital_call(
    fund_id: str,
    total_call_amount: float,
    call_date: date,
    due_date: date,
    investors: Iterable[Investor],
    existing_calls: Iterable[CapitalCall] = (),
    call_id: Optional[str] = None,
    purpose: str = "",
    management_fee_included: bool = False,
    management_fee_amount: Optional[float] = None
) -> CapitalCall:
    """
    Build a Draft capital call with pro-rata investor allocations.

    Raises:
        InputError: non-positive amount, due date before call date, fee amount
            outside the call, or a failed pro-rata split
    """
    if total_call_amount <= 0:
        raise InputError(f"Capital call amount must be positive (got {total_call_amount})")
    if due_date < call_date:
        raise InputError(f"Due date {due_date} is before call date {call_date}")
    if management_fee_amount is not None and not 0 <= management_fee_amount <= total_call_amount:
        raise InputError(
            f"Management fee amount {management_fee_amount} is outside 0..{total_call_amount}"
        )

    shares = allocate_pro_rata(total_call_amount, investors, fund_id)
    allocations = tuple(
        CapitalCallAllocation(
            investor_id=share.investor.id,
            investor_name=share.investor.name,
            commitment=share.ownership.commitment,
            ownership_percent=share.ownership.ownership_percent,
            call_amount=share.amount,
        )
        for share in shares
    )

    call = CapitalCall(
        id=call_id or f"cc-{uuid.uuid4().hex[:12]}",
        fund_id=fund_id,
        call_number=next_call_number(existing_calls, fund_id),
        total_call_amount=total_call_amount,
        call_date=call_date,
        due_date=due_date,
        status=CapitalCallStatus.DRAFT,
        investor_allocations=allocations,
        purpose=purpose,
        management_fee_included=management_fee_included,
        management_fee_amount=management_fee_amount,
    )

    if not check_conservation(call):
        raise InputError(f"Capital call {call.id} allocations do not sum to {total_call_amount}")

    logger.info(
        f"Created capital call #{call.call_number} for fund {fund_id}: "
        f"{total_call_amount:,.2f} across {len(allocations)} investors"
    )
    return call


def create_distribution(
    fund_id: str,
    total_distribution_amount: float,
    distribution_date: date,
    investors: Iterable[Investor],
    existing_distributions: Iterable[Distribution] = (),
    distribution_id: Optional[str] = None,
    record_date: Optional[date] = None,
    payment_date: Optional[date] = None,
    source: str = "",
    return_of_capital_amount: Optional[float] = None,
    income_amount: Optional[float] = None,
    capital_gain_amount: Optional[float] = None
) -> Distribution:
    """
    Build a Pending distribution with pro-rata investor allocations.

    Raises:
        InputError: non-positive amount, a negative component, components
            exceeding the total, or a failed pro-rata split
    """
    if total_distribution_amount <= 0:
        raise InputError(
            f"Distribution amount must be positive (got {total_distribution_amount})"
        )

    components = [
        c for c in (return_of_capital_amount, income_amount, capital_gain_amount) if c is not None
    ]
    if any(c < 0 for c in components):
        raise InputError("Distribution components must not be negative")
    if sum(components) - total_distribution_amount > CONSERVATION_TOLERANCE:
        raise InputError(
            f"Distribution components sum to {sum(components):,.2f}, "
            f"above the total {total_distribution_amount:,.2f}"
        )

    shares = allocate_pro_rata(total_distribution_amount, investors, fund_id)
    allocations = tuple(
        DistributionAllocation(
            investor_id=share.investor.id,
            investor_name=share.investor.name,
            ownership_percent=share.ownership.ownership_percent,
            amount=share.amount,
        )
        for share in shares
    )

    distribution = Distribution(
        id=distribution_id or f"dist-{uuid.uuid4().hex[:12]}",
        fund_id=fund_id,
        distribution_number=next_distribution_number(existing_distributions, fund_id),
        total_distribution_amount=total_distribution_amount,
        distribution_date=distribution_date,
        record_date=record_date,
        payment_date=payment_date,
        status=DistributionStatus.PENDING,
        investor_allocations=allocations,
        source=source,
        return_of_capital_amount=return_of_capital_amount,
        income_amount=income_amount,
        capital_gain_amount=capital_gain_amount,
    )

    if not check_conservation(distribution):
        raise InputError(
            f"Distribution {distribution.id} allocations do not sum to {total_distribution_amount}"
        )

    logger.info(
        f"Created distribution #{distribution.distribution_number} for fund {fund_id}: "
        f"{total_distribution_amount:,.2f} across {len(allocations)} investors"
    )
    return distribution


# ==============================================================================
# CAPITAL CALL STATE MACHINE
# ==============================================================================

def derive_capital_call_status(
    current_status: CapitalCallStatus,
    allocations: Sequence[CapitalCallAllocation]
) -> CapitalCallStatus:
    """
    Recompute a call's status from its allocations.

    Fully Paid iff every allocation has nothing outstanding; Partially Paid
    iff anything has been paid; otherwise the call stays Draft or Sent.
    Cancelled is terminal.
    """
    if current_status == CapitalCallStatus.CANCELLED:
        return current_status

    total_outstanding = _cents(sum(a.amount_outstanding for a in allocations))
    total_paid = _cents(sum(a.amount_paid for a in allocations))

    if allocations and total_outstanding == 0:
        return CapitalCallStatus.FULLY_PAID
    if total_paid > 0:
        return CapitalCallStatus.PARTIALLY_PAID
    if current_status == CapitalCallStatus.DRAFT:
        return CapitalCallStatus.DRAFT
    return CapitalCallStatus.SENT


def update_investor_payment(
    call: CapitalCall,
    investor_id: str,
    payment: float,
    paid_on: Optional[date] = None,
    payment_method: Optional[str] = None,
    transaction_reference: Optional[str] = None
) -> CapitalCall:
    """
    Record a payment against one investor's allocation.

    Args:
        call: Current capital call
        investor_id: Investor making the payment
        payment: Additional amount paid (0 is allowed and changes nothing)
        paid_on: Date stamped on the allocation once it is fully paid
        payment_method: Optional payment method to record
        transaction_reference: Optional bank reference to record

    Returns:
        A new CapitalCall with the allocation, totals and status updated

    Raises:
        StateTransitionError: the call is cancelled
        InputError: negative payment, unknown investor, or overpayment
    """
    if call.status == CapitalCallStatus.CANCELLED:
        raise StateTransitionError(f"Capital call {call.id} is cancelled; payments are frozen")
    if payment < 0:
        raise InputError(f"Payment must not be negative (got {payment})")

    allocation = call.allocation_for(investor_id)
    if allocation is None:
        raise InputError(f"Investor {investor_id} has no allocation on capital call {call.id}")

    amount_paid = _cents(allocation.amount_paid + payment)
    amount_outstanding = _cents(allocation.call_amount - amount_paid)
    if amount_outstanding < 0:
        raise InputError(
            f"Payment of {payment:,.2f} exceeds the {allocation.amount_outstanding:,.2f} "
            f"outstanding for investor {investor_id}"
        )

    if amount_outstanding == 0:
        status = PaymentStatus.PAID
    elif amount_paid > 0:
        status = PaymentStatus.PARTIAL
    else:
        status = PaymentStatus.PENDING

    updated = replace(
        allocation,
        amount_paid=amount_paid,
        amount_outstanding=amount_outstanding,
        status=status,
        paid_date=(paid_on or allocation.paid_date) if status == PaymentStatus.PAID else allocation.paid_date,
        payment_method=payment_method or allocation.payment_method,
        transaction_reference=transaction_reference or allocation.transaction_reference,
    )
    allocations = tuple(
        updated if a.investor_id == investor_id else a for a in call.investor_allocations
    )

    total_paid = _cents(sum(a.amount_paid for a in allocations))
    new_status = derive_capital_call_status(call.status, allocations)

    if new_status != call.status:
        logger.info(f"Capital call {call.id}: {call.status.value} -> {new_status.value}")

    return replace(
        call,
        investor_allocations=allocations,
        total_paid_amount=total_paid,
        total_outstanding_amount=_cents(call.total_call_amount - total_paid),
        status=new_status,
    )


def mark_capital_call_sent(call: CapitalCall, sent_on: date) -> CapitalCall:
    """Draft -> Sent."""
    if call.status != CapitalCallStatus.DRAFT:
        raise StateTransitionError(
            f"Only a Draft capital call can be sent ({call.id} is {call.status.value})"
        )
    return replace(call, status=CapitalCallStatus.SENT, sent_date=sent_on)


def cancel_capital_call(call: CapitalCall, reason: str, cancelled_on: date) -> CapitalCall:
    """
    Cancel a call that is not yet terminal. Allocations are kept as they are
    and can no longer be paid.
    """
    if call.status in TERMINAL_CALL_STATUSES:
        raise StateTransitionError(
            f"Capital call {call.id} is {call.status.value} and cannot be cancelled"
        )
    logger.info(f"Cancelling capital call {call.id}: {reason}")
    return replace(
        call,
        status=CapitalCallStatus.CANCELLED,
        cancelled_date=cancelled_on,
        cancelled_reason=reason,
    )


# ==============================================================================
# DISTRIBUTION STATE MACHINE
# ==============================================================================

def derive_distribution_status(
    allocations: Sequence[DistributionAllocation],
    current_status: DistributionStatus = DistributionStatus.PENDING
) -> DistributionStatus:
    """
    Recompute a distribution's status from its allocations.

    Completed iff all allocations completed; Processing iff any is processing;
    Failed once every allocation is terminal and at least one failed;
    Pending otherwise.
    """
    if not allocations:
        return current_status

    statuses = [a.status for a in allocations]

    if all(s == DistributionStatus.COMPLETED for s in statuses):
        return DistributionStatus.COMPLETED
    if any(s == DistributionStatus.PROCESSING for s in statuses):
        return DistributionStatus.PROCESSING
    if all(not DISTRIBUTION_TRANSITIONS[s] for s in statuses):
        return DistributionStatus.FAILED
    return DistributionStatus.PENDING


def update_investor_distribution(
    distribution: Distribution,
    investor_id: str,
    status: DistributionStatus,
    processed_on: Optional[date] = None,
    payment_method: Optional[str] = None,
    transaction_reference: Optional[str] = None
) -> Distribution:
    """
    Move one investor's allocation to ``status`` and recompute the parent.

    Setting the status an allocation already has returns the distribution
    unchanged.

    Raises:
        InputError: unknown investor
        StateTransitionError: the transition is not allowed
    """
    allocation = distribution.allocation_for(investor_id)
    if allocation is None:
        raise InputError(
            f"Investor {investor_id} has no allocation on distribution {distribution.id}"
        )

    if allocation.status == status:
        return distribution

    if status not in DISTRIBUTION_TRANSITIONS[allocation.status]:
        raise StateTransitionError(
            f"Distribution allocation for {investor_id} cannot move from "
            f"{allocation.status.value} to {status.value}"
        )

    updated = replace(
        allocation,
        status=status,
        processed_date=processed_on if status == DistributionStatus.COMPLETED else allocation.processed_date,
        payment_method=payment_method or allocation.payment_method,
        transaction_reference=transaction_reference or allocation.transaction_reference,
    )
    allocations = tuple(
        updated if a.investor_id == investor_id else a for a in distribution.investor_allocations
    )

    new_status = derive_distribution_status(allocations, distribution.status)
    if new_status != distribution.status:
        logger.info(
            f"Distribution {distribution.id}: {distribution.status.value} -> {new_status.value}"
        )

    return replace(
        distribution,
        investor_allocations=allocations,
        status=new_status,
        processed_date=processed_on if new_status == DistributionStatus.COMPLETED else distribution.processed_date,
    )


# ==============================================================================
# QUERIES
# ==============================================================================

def overdue_capital_calls(capital_calls: Iterable[CapitalCall], as_of: date) -> List[CapitalCall]:
    """Sent or partially paid calls whose due date is before ``as_of``."""
    return [
        call for call in capital_calls
        if call.status in (CapitalCallStatus.SENT, CapitalCallStatus.PARTIALLY_PAID)
        and call.due_date < as_of
    ]


def capital_call_summary(capital_calls: Sequence[CapitalCall], as_of: date) -> Dict[str, Any]:
    """Counts by status plus amount totals over the calls that are not cancelled."""
    live = [call for call in capital_calls if call.status != CapitalCallStatus.CANCELLED]

    def count(status: CapitalCallStatus) -> int:
        return sum(1 for call in capital_calls if call.status == status)

    return {
        "total": len(capital_calls),
        "draft": count(CapitalCallStatus.DRAFT),
        "sent": count(CapitalCallStatus.SENT),
        "partially_paid": count(CapitalCallStatus.PARTIALLY_PAID),
        "fully_paid": count(CapitalCallStatus.FULLY_PAID),
        "cancelled": count(CapitalCallStatus.CANCELLED),
        "overdue": len(overdue_capital_calls(capital_calls, as_of)),
        "total_call_amount": sum(call.total_call_amount for call in live),
        "total_paid_amount": sum(call.total_paid_amount for call in live),
        "total_outstanding_amount": sum(call.total_outstanding_amount for call in live),
    }


def upcoming_distributions(
    distributions: Iterable[Distribution],
    as_of: date,
    days: int = UPCOMING_DISTRIBUTION_DAYS
) -> List[Distribution]:
    """Not-yet-completed distributions dated within ``days`` of ``as_of``, soonest first."""
    horizon = as_of + timedelta(days=days)
    upcoming = [
        d for d in distributions
        if d.status != DistributionStatus.COMPLETED and as_of <= d.distribution_date <= horizon
    ]
    return sorted(upcoming, key=lambda d: d.distribution_date)


def distribution_summary(distributions: Sequence[Distribution], as_of: date) -> Dict[str, Any]:
    """Counts by status plus amount and component totals."""

    def count(status: DistributionStatus) -> int:
        return sum(1 for d in distributions if d.status == status)

    return {
        "total": len(distributions),
        "pending": count(DistributionStatus.PENDING),
        "processing": count(DistributionStatus.PROCESSING),
        "completed": count(DistributionStatus.COMPLETED),
        "failed": count(DistributionStatus.FAILED),
        "upcoming": len(upcoming_distributions(distributions, as_of)),
        "total_distribution_amount": sum(d.total_distribution_amount for d in distributions),
        "total_return_of_capital": sum(d.return_of_capital_amount or 0 for d in distributions),
        "total_income": sum(d.income_amount or 0 for d in distributions),
        "total_capital_gain": sum(d.capital_gain_amount or 0 for d in distributions),
    }


# ==============================================================================
# EXPORT
# ==============================================================================

def allocations_to_frame(record: Union[CapitalCall, Distribution]) -> pd.DataFrame:
    """One row per investor allocation of a call or distribution."""
    if isinstance(record, CapitalCall):
        rows = [
            {
                "investor_id": a.investor_id,
                "investor_name": a.investor_name,
                "ownership_percent": a.ownership_percent,
                "amount": a.call_amount,
                "amount_paid": a.amount_paid,
                "amount_outstanding": a.amount_outstanding,
                "status": a.status.value,
            }
            for a in record.investor_allocations
        ]
    else:
        rows = [
            {
                "investor_id": a.investor_id,
                "investor_name": a.investor_name,
                "ownership_percent": a.ownership_percent,
                "amount": a.amount,
                "status": a.status.value,
                "processed_date": a.processed_date,
            }
            for a in record.investor_allocations
        ]
    return pd.DataFrame(rows)
