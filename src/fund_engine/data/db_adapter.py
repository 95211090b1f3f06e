"""
Database Adapter Layer.

SQLAlchemy-backed ``FundRecordStore``. Each record is stored as one row with
its identifying columns (id, fund, number, status, version) broken out for
querying, and the full camelCase record, allocation lists included, in a JSON
column. Rows are turned back into records with the models' ``from_dict``.

Works against SQLite or PostgreSQL depending on the URL.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Type
import logging

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import DATABASE_URL, DB_ECHO
from ..exceptions import ConcurrentUpdateError, RecordNotFoundError
from ..models import (
    CapitalCall,
    Distribution,
    Fund,
    Investment,
    Investor,
    to_camel_dict,
)
from .data_source import FundRecordStore, check_version

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==============================================================================
# DATABASE MODELS
# ==============================================================================

class FundRow(Base):
    """Fund settings."""
    __tablename__ = 'funds'

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    payload = Column(JSON, nullable=False)


class InvestmentRow(Base):
    """Fund positions."""
    __tablename__ = 'investments'

    id = Column(String(64), primary_key=True)
    fund_id = Column(String(64), index=True, nullable=True)
    payload = Column(JSON, nullable=False)


class InvestorRow(Base):
    """Investors with their fund ownerships in the payload."""
    __tablename__ = 'investors'

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    payload = Column(JSON, nullable=False)


class CapitalCallRow(Base):
    """Capital calls with investor allocations in the payload."""
    __tablename__ = 'capital_calls'

    id = Column(String(64), primary_key=True)
    fund_id = Column(String(64), nullable=False)
    call_number = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False)
    version = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_capital_calls_fund', 'fund_id', 'call_number'),
    )


class DistributionRow(Base):
    """Distributions with investor allocations in the payload."""
    __tablename__ = 'distributions'

    id = Column(String(64), primary_key=True)
    fund_id = Column(String(64), nullable=False)
    distribution_number = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False)
    version = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_distributions_fund', 'fund_id', 'distribution_number'),
    )


# ==============================================================================
# STORE
# ==============================================================================

class SqlFundDataSource(FundRecordStore):
    """
    Relational store for fund records.

    Capital call and distribution saves are conditional updates on the stored
    version, so two writers working from the same read cannot both succeed.
    """

    def __init__(self, db_url: str = DATABASE_URL, echo: bool = DB_ECHO):
        """
        Initialize the store and create missing tables.

        Args:
            db_url: Database connection URL (SQLite or PostgreSQL)
            echo: Log emitted SQL
        """
        self.db_url = db_url

        if db_url.startswith("sqlite:"):
            # Use StaticPool for SQLite so in-memory databases survive across sessions
            self.engine = create_engine(
                db_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool
            )
        else:
            self.engine = create_engine(db_url, echo=echo)

        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        logger.info(f"SqlFundDataSource initialized: {self.engine.url.render_as_string(hide_password=True)}")

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------

    def _get_payload(self, row_type: Type[Base], record_id: str, kind: str) -> Dict[str, Any]:
        with self.SessionLocal() as session:
            row = session.get(row_type, record_id)
            if row is None:
                raise RecordNotFoundError(f"{kind} {record_id} not found")
            return row.payload

    def get_fund(self, fund_id: str) -> Fund:
        return Fund.from_dict(self._get_payload(FundRow, fund_id, "Fund"))

    def get_investments(self, fund_id: str) -> List[Investment]:
        with self.SessionLocal() as session:
            rows = session.query(InvestmentRow).filter_by(fund_id=fund_id).order_by(InvestmentRow.id).all()
            return [Investment.from_dict(row.payload) for row in rows]

    def get_investors(self, fund_id: str) -> List[Investor]:
        with self.SessionLocal() as session:
            rows = session.query(InvestorRow).order_by(InvestorRow.id).all()
            investors = [Investor.from_dict(row.payload) for row in rows]
        return [i for i in investors if i.ownership_for(fund_id) is not None]

    def get_capital_calls(self, fund_id: str) -> List[CapitalCall]:
        with self.SessionLocal() as session:
            rows = (
                session.query(CapitalCallRow)
                .filter_by(fund_id=fund_id)
                .order_by(CapitalCallRow.call_number)
                .all()
            )
            return [CapitalCall.from_dict(row.payload) for row in rows]

    def get_distributions(self, fund_id: str) -> List[Distribution]:
        with self.SessionLocal() as session:
            rows = (
                session.query(DistributionRow)
                .filter_by(fund_id=fund_id)
                .order_by(DistributionRow.distribution_number)
                .all()
            )
            return [Distribution.from_dict(row.payload) for row in rows]

    def get_capital_call(self, call_id: str) -> CapitalCall:
        return CapitalCall.from_dict(self._get_payload(CapitalCallRow, call_id, "Capital call"))

    def get_distribution(self, distribution_id: str) -> Distribution:
        return Distribution.from_dict(self._get_payload(DistributionRow, distribution_id, "Distribution"))

    # --------------------------------------------------------------------------
    # Reference data writes (last write wins)
    # --------------------------------------------------------------------------

    def save_fund(self, fund: Fund) -> None:
        with self.SessionLocal() as session:
            session.merge(FundRow(id=fund.id, name=fund.name, payload=to_camel_dict(fund)))
            session.commit()

    def save_investment(self, investment: Investment) -> None:
        with self.SessionLocal() as session:
            session.merge(InvestmentRow(
                id=investment.id,
                fund_id=investment.fund_id,
                payload=to_camel_dict(investment)
            ))
            session.commit()

    def save_investor(self, investor: Investor) -> None:
        with self.SessionLocal() as session:
            session.merge(InvestorRow(id=investor.id, name=investor.name, payload=to_camel_dict(investor)))
            session.commit()

    # --------------------------------------------------------------------------
    # Versioned writes
    # --------------------------------------------------------------------------

    def _save_versioned(
        self,
        row_type: Type[Base],
        kind: str,
        record: Any,
        number_column: str,
        number: int
    ) -> Any:
        stored = replace(record, version=record.version + 1)
        values = {
            "fund_id": record.fund_id,
            number_column: number,
            "status": record.status.value,
            "version": stored.version,
            "payload": to_camel_dict(stored),
            "updated_at": datetime.utcnow(),
        }

        with self.SessionLocal() as session:
            existing: Optional[Base] = session.get(row_type, record.id)
            if existing is None:
                session.add(row_type(id=record.id, **values))
            else:
                check_version(kind, record.id, existing.version, record.version)
                # Conditional update closes the gap between the read above and the write
                updated = (
                    session.query(row_type)
                    .filter_by(id=record.id, version=record.version)
                    .update(values, synchronize_session=False)
                )
                if not updated:
                    raise ConcurrentUpdateError(f"{kind} {record.id} was modified concurrently")
            session.commit()

        logger.debug(f"Saved {kind.lower()} {record.id} at version {stored.version}")
        return stored

    def save_capital_call(self, call: CapitalCall) -> CapitalCall:
        return self._save_versioned(CapitalCallRow, "Capital call", call, "call_number", call.call_number)

    def save_distribution(self, distribution: Distribution) -> Distribution:
        return self._save_versioned(
            DistributionRow, "Distribution", distribution,
            "distribution_number", distribution.distribution_number
        )

    def _purge(self, row_type: Type[Base], record_id: str, kind: str) -> None:
        with self.SessionLocal() as session:
            row = session.get(row_type, record_id)
            if row is None:
                raise RecordNotFoundError(f"{kind} {record_id} not found")
            session.delete(row)
            session.commit()
        logger.info(f"Purged {kind.lower()} {record_id}")

    def purge_capital_call(self, call_id: str) -> None:
        self._purge(CapitalCallRow, call_id, "Capital call")

    def purge_distribution(self, distribution_id: str) -> None:
        self._purge(DistributionRow, distribution_id, "Distribution")
