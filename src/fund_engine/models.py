"""
Record types for the Fund Performance Engine.

Every entity that crosses the engine boundary is an explicit, immutable
record with an exhaustive status enum. Updates are made with
``dataclasses.replace`` so a caller always persists a whole new record.

Input records can be built from the camelCase dictionaries exchanged with the
surrounding application (``from_dict``); output records serialize back to
camelCase (``to_dict``).
"""

from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from dateutil import parser as date_parser

from .config import DEFAULT_MANAGEMENT_FEE_PERCENT


# ==============================================================================
# STATUS ENUMS
# ==============================================================================

class CapitalCallStatus(Enum):
    """Lifecycle of a fund-level capital call."""
    DRAFT = "Draft"
    SENT = "Sent"
    PARTIALLY_PAID = "Partially Paid"
    FULLY_PAID = "Fully Paid"
    CANCELLED = "Cancelled"


class PaymentStatus(Enum):
    """Payment state of a single investor's capital call allocation."""
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"


class DistributionStatus(Enum):
    """Processing state of a distribution and of each investor allocation."""
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class CapitalAccountEventType(Enum):
    """Capital account event kinds, in same-day ordering rank."""
    INITIAL_CONTRIBUTION = "Initial Contribution"
    CAPITAL_CALL = "Capital Call"
    DISTRIBUTION = "Distribution"


# Calls in these states have not (or no longer) called any capital
UNCOUNTED_CALL_STATUSES = (CapitalCallStatus.DRAFT, CapitalCallStatus.CANCELLED)


# ==============================================================================
# CONVERSION HELPERS
# ==============================================================================

def parse_date(value: Any) -> Optional[date]:
    """Coerce an ISO string, datetime or date into a date (None passes through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date_parser.isoparse(str(value)).date()


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _pick_float(data: Dict[str, Any], *keys: str) -> Optional[float]:
    value = _pick(data, *keys)
    return None if value is None else float(value)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if is_dataclass(value):
        return to_camel_dict(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def to_camel_dict(record: Any) -> Dict[str, Any]:
    """Serialize a record into the camelCase shape used by the external layer."""
    return {_camel(f.name): _plain(getattr(record, f.name)) for f in fields(record)}


# ==============================================================================
# FUND / INVESTMENT / INVESTOR RECORDS
# ==============================================================================

@dataclass(frozen=True)
class Fund:
    """Fund-level settings that drive methodology selection."""
    id: str
    name: str
    inception_date: date
    management_fee_percent: float = DEFAULT_MANAGEMENT_FEE_PERCENT
    detailed_capital_calls: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fund":
        return cls(
            id=data["id"],
            name=_pick(data, "name", default=""),
            inception_date=parse_date(_pick(data, "inceptionDate", "inception_date")),
            management_fee_percent=float(_pick(
                data, "managementFeePercent", "managementFee",
                default=DEFAULT_MANAGEMENT_FEE_PERCENT
            )),
            detailed_capital_calls=bool(_pick(data, "detailedCapitalCalls", default=False)),
        )


@dataclass(frozen=True)
class Investment:
    """A fund position; ``irr`` is the stated IRR in percent."""
    id: str
    total_invested: float
    current_value: float
    irr: float
    multiple: float
    acquisition_date: date
    last_valuation_date: date
    name: str = ""
    fund_id: Optional[str] = None
    unrealized_gain: Optional[float] = None

    def __post_init__(self):
        if self.unrealized_gain is None:
            object.__setattr__(self, "unrealized_gain", self.current_value - self.total_invested)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Investment":
        # Accept both the flat contract and the nested totalFundPosition export
        position = data.get("totalFundPosition", data)
        return cls(
            id=data["id"],
            name=_pick(data, "name", default=""),
            fund_id=_pick(data, "fundId"),
            total_invested=float(_pick(position, "totalInvested", default=0)),
            current_value=float(_pick(position, "currentValue", default=0)),
            irr=float(_pick(position, "irr", default=0)),
            multiple=float(_pick(position, "multiple", default=0)),
            unrealized_gain=_pick_float(position, "unrealizedGain"),
            acquisition_date=parse_date(data["acquisitionDate"]),
            last_valuation_date=parse_date(_pick(data, "lastValuationDate", "acquisitionDate")),
        )


@dataclass(frozen=True)
class FundOwnership:
    """An investor's commitment to one fund."""
    investor_id: str
    fund_id: str
    commitment: float
    ownership_percent: float
    called_capital: float = 0.0
    uncalled_capital: Optional[float] = None
    invested_date: Optional[date] = None

    def __post_init__(self):
        if self.uncalled_capital is None:
            object.__setattr__(self, "uncalled_capital", self.commitment - self.called_capital)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], investor_id: Optional[str] = None) -> "FundOwnership":
        return cls(
            investor_id=_pick(data, "investorId", default=investor_id),
            fund_id=data["fundId"],
            commitment=float(_pick(data, "commitment", default=0)),
            ownership_percent=float(_pick(data, "ownershipPercent", default=0)),
            called_capital=float(_pick(data, "calledCapital", default=0)),
            uncalled_capital=_pick(data, "uncalledCapital"),
            invested_date=parse_date(_pick(data, "investedDate")),
        )


@dataclass(frozen=True)
class Investor:
    """A limited partner with ownership in one or more funds."""
    id: str
    name: str = ""
    fund_ownerships: Tuple[FundOwnership, ...] = ()
    investor_type: str = "Individual"
    investor_since: Optional[date] = None
    total_distributed: float = 0.0

    def ownership_for(self, fund_id: str) -> Optional[FundOwnership]:
        for ownership in self.fund_ownerships:
            if ownership.fund_id == fund_id:
                return ownership
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Investor":
        return cls(
            id=data["id"],
            name=_pick(data, "name", default=""),
            investor_type=_pick(data, "type", "investorType", default="Individual"),
            investor_since=parse_date(_pick(data, "investorSince")),
            total_distributed=float(_pick(data, "totalDistributed", default=0)),
            fund_ownerships=tuple(
                FundOwnership.from_dict(fo, investor_id=data["id"])
                for fo in data.get("fundOwnerships", [])
            ),
        )


# ==============================================================================
# CAPITAL CALLS
# ==============================================================================

@dataclass(frozen=True)
class CapitalCallAllocation:
    """One investor's share of a capital call and its payment progress."""
    investor_id: str
    call_amount: float
    ownership_percent: float
    investor_name: str = ""
    commitment: float = 0.0
    amount_paid: float = 0.0
    amount_outstanding: Optional[float] = None
    status: PaymentStatus = PaymentStatus.PENDING
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None
    transaction_reference: Optional[str] = None

    def __post_init__(self):
        if self.amount_outstanding is None:
            object.__setattr__(self, "amount_outstanding", self.call_amount - self.amount_paid)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapitalCallAllocation":
        return cls(
            investor_id=data["investorId"],
            investor_name=_pick(data, "investorName", default=""),
            commitment=float(_pick(data, "commitment", default=0)),
            ownership_percent=float(_pick(data, "ownershipPercent", default=0)),
            call_amount=float(_pick(data, "callAmount", "amount", default=0)),
            amount_paid=float(_pick(data, "amountPaid", default=0)),
            amount_outstanding=_pick_float(data, "amountOutstanding"),
            status=PaymentStatus(_pick(data, "status", default="Pending")),
            paid_date=parse_date(_pick(data, "paidDate")),
            payment_method=_pick(data, "paymentMethod"),
            transaction_reference=_pick(data, "transactionReference"),
        )


@dataclass(frozen=True)
class CapitalCall:
    """A fund's request for capital, split across investors."""
    id: str
    fund_id: str
    call_number: int
    total_call_amount: float
    call_date: date
    due_date: date
    status: CapitalCallStatus = CapitalCallStatus.DRAFT
    investor_allocations: Tuple[CapitalCallAllocation, ...] = ()
    total_paid_amount: float = 0.0
    total_outstanding_amount: Optional[float] = None
    purpose: str = ""
    management_fee_included: bool = False
    management_fee_amount: Optional[float] = None
    sent_date: Optional[date] = None
    cancelled_date: Optional[date] = None
    cancelled_reason: Optional[str] = None
    version: int = 0

    def __post_init__(self):
        if self.total_outstanding_amount is None:
            object.__setattr__(
                self, "total_outstanding_amount", self.total_call_amount - self.total_paid_amount
            )

    @property
    def is_counted(self) -> bool:
        """True once the call has been issued and not cancelled."""
        return self.status not in UNCOUNTED_CALL_STATUSES

    def allocation_for(self, investor_id: str) -> Optional[CapitalCallAllocation]:
        for allocation in self.investor_allocations:
            if allocation.investor_id == investor_id:
                return allocation
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapitalCall":
        return cls(
            id=data["id"],
            fund_id=data["fundId"],
            call_number=int(_pick(data, "callNumber", default=1)),
            total_call_amount=float(data["totalCallAmount"]),
            call_date=parse_date(data["callDate"]),
            due_date=parse_date(_pick(data, "dueDate", "callDate")),
            status=CapitalCallStatus(_pick(data, "status", default="Draft")),
            investor_allocations=tuple(
                CapitalCallAllocation.from_dict(a) for a in data.get("investorAllocations", [])
            ),
            total_paid_amount=float(_pick(data, "totalPaidAmount", default=0)),
            total_outstanding_amount=_pick_float(data, "totalOutstandingAmount"),
            purpose=_pick(data, "purpose", default=""),
            management_fee_included=bool(_pick(data, "managementFeeIncluded", default=False)),
            management_fee_amount=_pick_float(data, "managementFeeAmount"),
            sent_date=parse_date(_pick(data, "sentDate")),
            cancelled_date=parse_date(_pick(data, "cancelledDate")),
            cancelled_reason=_pick(data, "cancelledReason"),
            version=int(_pick(data, "version", default=0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)


# ==============================================================================
# DISTRIBUTIONS
# ==============================================================================

@dataclass(frozen=True)
class DistributionAllocation:
    """One investor's share of a distribution and its processing state."""
    investor_id: str
    amount: float
    ownership_percent: float
    investor_name: str = ""
    status: DistributionStatus = DistributionStatus.PENDING
    processed_date: Optional[date] = None
    payment_method: Optional[str] = None
    transaction_reference: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributionAllocation":
        return cls(
            investor_id=data["investorId"],
            investor_name=_pick(data, "investorName", default=""),
            ownership_percent=float(_pick(data, "ownershipPercent", default=0)),
            amount=float(_pick(data, "finalAllocation", "amount", "baseAllocation", default=0)),
            status=DistributionStatus(_pick(data, "status", default="Pending")),
            processed_date=parse_date(_pick(data, "processedDate")),
            payment_method=_pick(data, "paymentMethod"),
            transaction_reference=_pick(data, "transactionReference"),
        )


@dataclass(frozen=True)
class Distribution:
    """Cash or value returned from a fund to its investors."""
    id: str
    fund_id: str
    distribution_number: int
    total_distribution_amount: float
    distribution_date: date
    record_date: Optional[date] = None
    payment_date: Optional[date] = None
    status: DistributionStatus = DistributionStatus.PENDING
    investor_allocations: Tuple[DistributionAllocation, ...] = ()
    source: str = ""
    processed_date: Optional[date] = None
    return_of_capital_amount: Optional[float] = None
    income_amount: Optional[float] = None
    capital_gain_amount: Optional[float] = None
    version: int = 0

    @property
    def completed_amount(self) -> float:
        """Amount actually paid out: completed allocations, or the whole
        distribution when it carries no allocations and is Completed."""
        if self.investor_allocations:
            return sum(
                a.amount for a in self.investor_allocations
                if a.status == DistributionStatus.COMPLETED
            )
        if self.status == DistributionStatus.COMPLETED:
            return self.total_distribution_amount
        return 0.0

    def allocation_for(self, investor_id: str) -> Optional[DistributionAllocation]:
        for allocation in self.investor_allocations:
            if allocation.investor_id == investor_id:
                return allocation
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Distribution":
        return cls(
            id=data["id"],
            fund_id=data["fundId"],
            distribution_number=int(_pick(data, "distributionNumber", default=1)),
            total_distribution_amount=float(data["totalDistributionAmount"]),
            distribution_date=parse_date(data["distributionDate"]),
            record_date=parse_date(_pick(data, "recordDate")),
            payment_date=parse_date(_pick(data, "paymentDate")),
            status=DistributionStatus(_pick(data, "status", default="Pending")),
            investor_allocations=tuple(
                DistributionAllocation.from_dict(a) for a in data.get("investorAllocations", [])
            ),
            source=_pick(data, "source", default=""),
            processed_date=parse_date(_pick(data, "processedDate")),
            return_of_capital_amount=_pick_float(data, "returnOfCapitalAmount"),
            income_amount=_pick_float(data, "incomeAmount"),
            capital_gain_amount=_pick_float(data, "capitalGainAmount"),
            version=int(_pick(data, "version", default=0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)


# ==============================================================================
# DERIVED VIEWS
# ==============================================================================

@dataclass(frozen=True)
class CapitalAccountEvent:
    """A single entry in an investor's capital account history."""
    date: date
    event_type: CapitalAccountEventType
    amount: float
    running_balance: float = 0.0
    description: str = ""
    source_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)


@dataclass(frozen=True)
class PerformanceMetrics:
    """Fund performance view; recomputed on every request, never stored as truth."""
    irr: float
    tvpi: float
    dpi: float
    rvpi: float
    moic: float
    gross_performance_percent: float
    gross_multiple: float
    net_performance_percent: float
    net_multiple: float
    total_capital_called: float
    total_distributed: float
    total_invested: float
    current_nav: float
    total_value: float
    gross_irr: float = 0.0
    net_irr: float = 0.0
    unrealized_gain: float = 0.0
    realized_gain: float = 0.0
    total_gain: float = 0.0
    methodology: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = to_camel_dict(self)
        # The platform spells this one in capitals
        data["currentNAV"] = data.pop("currentNav")
        return data


# ==============================================================================
# REPORTS
# ==============================================================================

@dataclass(frozen=True)
class ReportMetrics:
    """Headline metrics stored on a report."""
    total_aum: float
    avg_irr: float
    total_distributions: float

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)


@dataclass(frozen=True)
class Report:
    """A published (or to-be-published) report over a subset of the fund."""
    id: str
    title: str
    period_end: date
    included_investment_ids: Tuple[str, ...]
    included_investor_ids: Tuple[str, ...]
    metrics: ReportMetrics
    report_type: str = "Quarterly"
    period_start: Optional[date] = None
    fund_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Report":
        metrics = data.get("metrics", {})
        return cls(
            id=data["id"],
            title=_pick(data, "title", default=""),
            report_type=_pick(data, "type", "reportType", default="Quarterly"),
            fund_id=_pick(data, "fundId"),
            period_start=parse_date(_pick(data, "periodStart")),
            period_end=parse_date(_pick(data, "periodEnd", "generatedDate")),
            included_investment_ids=tuple(_pick(data, "includesInvestments", default=[])),
            included_investor_ids=tuple(_pick(data, "includesInvestors", default=[])),
            metrics=ReportMetrics(
                total_aum=float(_pick(metrics, "totalAUM", "totalAum", default=0)),
                avg_irr=float(_pick(metrics, "avgIRR", "avgIrr", default=0)),
                total_distributions=float(_pick(metrics, "totalDistributions", default=0)),
            ),
        )


def records_from_dicts(factory, items: Iterable[Dict[str, Any]]) -> list:
    """Build a list of records with ``factory.from_dict``."""
    return [factory.from_dict(item) for item in items]
