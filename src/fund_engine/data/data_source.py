"""
Fund Data Sources.

The engines never reach into storage themselves. Callers load records through
a ``FundDataSource`` and pass them in explicitly; writers persist whole
records through a ``FundRecordStore``, which applies an optimistic version
check so concurrent read-modify-write cycles on the same capital call or
distribution cannot silently overwrite each other.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional
import logging

from ..exceptions import ConcurrentUpdateError, RecordNotFoundError
from ..models import (
    CapitalCall,
    Distribution,
    Fund,
    Investment,
    Investor,
    records_from_dicts,
)

logger = logging.getLogger(__name__)


# ==============================================================================
# INTERFACES
# ==============================================================================

class FundDataSource(ABC):
    """Read-only access to a fund's records."""

    @abstractmethod
    def get_fund(self, fund_id: str) -> Fund:
        """Return the fund or raise RecordNotFoundError."""

    @abstractmethod
    def get_investments(self, fund_id: str) -> List[Investment]:
        ...

    @abstractmethod
    def get_investors(self, fund_id: str) -> List[Investor]:
        """Investors holding an ownership position in the fund."""

    @abstractmethod
    def get_capital_calls(self, fund_id: str) -> List[CapitalCall]:
        ...

    @abstractmethod
    def get_distributions(self, fund_id: str) -> List[Distribution]:
        ...

    @abstractmethod
    def get_capital_call(self, call_id: str) -> CapitalCall:
        ...

    @abstractmethod
    def get_distribution(self, distribution_id: str) -> Distribution:
        ...


class FundRecordStore(FundDataSource):
    """
    A data source that also persists capital calls and distributions.

    ``save_*`` is a whole-record replace. The record's ``version`` must match
    the stored version (the version it was read at); the stored copy gets
    ``version + 1`` and is returned. ``purge_*`` is the administrative delete.
    """

    @abstractmethod
    def save_capital_call(self, call: CapitalCall) -> CapitalCall:
        ...

    @abstractmethod
    def save_distribution(self, distribution: Distribution) -> Distribution:
        ...

    @abstractmethod
    def purge_capital_call(self, call_id: str) -> None:
        ...

    @abstractmethod
    def purge_distribution(self, distribution_id: str) -> None:
        ...


def check_version(kind: str, record_id: str, stored_version: Optional[int], version: int) -> None:
    """Raise ConcurrentUpdateError when a write is based on a stale read."""
    if stored_version is not None and stored_version != version:
        raise ConcurrentUpdateError(
            f"{kind} {record_id} was modified concurrently "
            f"(stored version {stored_version}, update based on version {version})"
        )


# ==============================================================================
# IN-MEMORY STORE
# ==============================================================================

class InMemoryFundDataSource(FundRecordStore):
    """Dict-backed store for tests, scripts and one-off batch runs."""

    def __init__(
        self,
        funds: Iterable[Fund] = (),
        investments: Iterable[Investment] = (),
        investors: Iterable[Investor] = (),
        capital_calls: Iterable[CapitalCall] = (),
        distributions: Iterable[Distribution] = ()
    ):
        self._funds: Dict[str, Fund] = {f.id: f for f in funds}
        self._investments: Dict[str, Investment] = {i.id: i for i in investments}
        self._investors: Dict[str, Investor] = {i.id: i for i in investors}
        self._capital_calls: Dict[str, CapitalCall] = {c.id: c for c in capital_calls}
        self._distributions: Dict[str, Distribution] = {d.id: d for d in distributions}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryFundDataSource":
        """Load a camelCase JSON export with funds, investments, investors,
        capitalCalls and distributions lists (all optional)."""
        return cls(
            funds=records_from_dicts(Fund, data.get("funds", [])),
            investments=records_from_dicts(Investment, data.get("investments", [])),
            investors=records_from_dicts(Investor, data.get("investors", [])),
            capital_calls=records_from_dicts(CapitalCall, data.get("capitalCalls", [])),
            distributions=records_from_dicts(Distribution, data.get("distributions", [])),
        )

    # Reads

    def get_fund(self, fund_id: str) -> Fund:
        try:
            return self._funds[fund_id]
        except KeyError:
            raise RecordNotFoundError(f"Fund {fund_id} not found") from None

    def get_investments(self, fund_id: str) -> List[Investment]:
        return [i for i in self._investments.values() if i.fund_id == fund_id]

    def get_investors(self, fund_id: str) -> List[Investor]:
        return [i for i in self._investors.values() if i.ownership_for(fund_id) is not None]

    def get_capital_calls(self, fund_id: str) -> List[CapitalCall]:
        return [c for c in self._capital_calls.values() if c.fund_id == fund_id]

    def get_distributions(self, fund_id: str) -> List[Distribution]:
        return [d for d in self._distributions.values() if d.fund_id == fund_id]

    def get_capital_call(self, call_id: str) -> CapitalCall:
        try:
            return self._capital_calls[call_id]
        except KeyError:
            raise RecordNotFoundError(f"Capital call {call_id} not found") from None

    def get_distribution(self, distribution_id: str) -> Distribution:
        try:
            return self._distributions[distribution_id]
        except KeyError:
            raise RecordNotFoundError(f"Distribution {distribution_id} not found") from None

    # Writes

    def save_fund(self, fund: Fund) -> None:
        self._funds[fund.id] = fund

    def save_investment(self, investment: Investment) -> None:
        self._investments[investment.id] = investment

    def save_investor(self, investor: Investor) -> None:
        self._investors[investor.id] = investor

    def save_capital_call(self, call: CapitalCall) -> CapitalCall:
        existing = self._capital_calls.get(call.id)
        check_version("Capital call", call.id, existing.version if existing else None, call.version)
        stored = replace(call, version=call.version + 1)
        self._capital_calls[call.id] = stored
        logger.debug(f"Saved capital call {call.id} at version {stored.version}")
        return stored

    def save_distribution(self, distribution: Distribution) -> Distribution:
        existing = self._distributions.get(distribution.id)
        check_version(
            "Distribution", distribution.id, existing.version if existing else None, distribution.version
        )
        stored = replace(distribution, version=distribution.version + 1)
        self._distributions[distribution.id] = stored
        logger.debug(f"Saved distribution {distribution.id} at version {stored.version}")
        return stored

    def purge_capital_call(self, call_id: str) -> None:
        if self._capital_calls.pop(call_id, None) is None:
            raise RecordNotFoundError(f"Capital call {call_id} not found")
        logger.info(f"Purged capital call {call_id}")

    def purge_distribution(self, distribution_id: str) -> None:
        if self._distributions.pop(distribution_id, None) is None:
            raise RecordNotFoundError(f"Distribution {distribution_id} not found")
        logger.info(f"Purged distribution {distribution_id}")
