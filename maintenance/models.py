"""
Dealbase Maintenance - Database Models

SQLAlchemy ORM models for companies, funding rounds and the maintenance
audit trail.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# Enums
class CompanyStatus(PyEnum):
    ACTIVE = "active"
    ACQUIRED = "acquired"
    SHUTDOWN = "shutdown"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class EnrichmentSource(PyEnum):
    ARTICLE_IMPORT = "article_import"
    WEB_SEARCH = "web_search"
    PITCH_DECK = "pitch_deck"
    MANUAL = "manual"
    API = "api"
    LLM_EXTRACTION = "llm_extraction"


class MaintenanceAgent(PyEnum):
    DB_CLEANER = "db_cleaner"


class MaintenanceStatus(PyEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


def generate_uuid() -> str:
    return str(uuid.uuid4())


class Company(Base):
    """
    Core company record, aggregated from articles, enrichment and manual input.
    Duplicates are collapsed by the DB cleaner's merge phase.
    """

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    slug: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    aliases: Mapped[Optional[list]] = mapped_column(JSON, default=list)

    # Description
    description: Mapped[Optional[str]] = mapped_column(Text)
    short_description: Mapped[Optional[str]] = mapped_column(Text)
    website: Mapped[Optional[str]] = mapped_column(String(500))
    linkedin_url: Mapped[Optional[str]] = mapped_column(String(500))
    crunchbase_url: Mapped[Optional[str]] = mapped_column(String(500))

    # Classification
    industry: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    sub_industry: Mapped[Optional[str]] = mapped_column(String(255))
    business_model: Mapped[Optional[str]] = mapped_column(String(100))
    target_market: Mapped[Optional[str]] = mapped_column(String(100))

    # Location
    headquarters: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    city: Mapped[Optional[str]] = mapped_column(String(255))
    region: Mapped[Optional[str]] = mapped_column(String(255))

    # Company facts
    founded_year: Mapped[Optional[int]] = mapped_column(Integer)
    founders: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    employee_count: Mapped[Optional[int]] = mapped_column(Integer)
    employee_range: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[CompanyStatus] = mapped_column(
        Enum(CompanyStatus), default=CompanyStatus.ACTIVE, nullable=False
    )
    status_details: Mapped[Optional[str]] = mapped_column(Text)

    # Funding summary
    total_raised: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    last_valuation: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    last_round_stage: Mapped[Optional[str]] = mapped_column(String(100))
    last_round_date: Mapped[Optional[date]] = mapped_column(Date)

    # Market
    competitors: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    notable_clients: Mapped[Optional[list]] = mapped_column(JSON, default=list)

    # Quality
    data_quality: Mapped[Optional[int]] = mapped_column(Integer)
    last_enriched_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    # Children are re-parented or deleted explicitly, never cascaded
    funding_rounds: Mapped[list["FundingRound"]] = relationship(
        "FundingRound", back_populates="company", passive_deletes="all"
    )
    enrichments: Mapped[list["CompanyEnrichment"]] = relationship(
        "CompanyEnrichment", back_populates="company", passive_deletes="all"
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.name})>"


class FundingRound(Base):
    """
    A single financing event. May be unlinked (company_id NULL) when the
    source article named a company that could not be resolved yet.
    """

    __tablename__ = "funding_rounds"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("companies.id"), index=True
    )
    company_name: Mapped[Optional[str]] = mapped_column(Text)

    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    amount_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    currency: Mapped[Optional[str]] = mapped_column(String(10))

    stage: Mapped[Optional[str]] = mapped_column(String(100))
    stage_normalized: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    geography: Mapped[Optional[str]] = mapped_column(String(255))
    sector: Mapped[Optional[str]] = mapped_column(String(255))
    sector_normalized: Mapped[Optional[str]] = mapped_column(String(255))

    investors: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    lead_investor: Mapped[Optional[str]] = mapped_column(Text)
    valuation_pre: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    valuation_post: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))

    funding_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    source: Mapped[Optional[str]] = mapped_column(String(100))
    source_url: Mapped[Optional[str]] = mapped_column(Text)
    is_enriched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    company: Mapped[Optional["Company"]] = relationship(
        "Company", back_populates="funding_rounds"
    )

    __table_args__ = (
        Index("ix_funding_rounds_company_date", "company_id", "funding_date"),
    )

    def __repr__(self) -> str:
        return f"<FundingRound(id={self.id}, company={self.company_name}, stage={self.stage}, amount_usd={self.amount_usd})>"


class CompanyEnrichment(Base):
    """
    Record of a data enrichment applied to a company (which fields, from where).
    """

    __tablename__ = "company_enrichments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=False, index=True
    )
    source: Mapped[EnrichmentSource] = mapped_column(
        Enum(EnrichmentSource), nullable=False
    )
    fields_updated: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    new_data: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    company: Mapped["Company"] = relationship("Company", back_populates="enrichments")

    def __repr__(self) -> str:
        return f"<CompanyEnrichment(company={self.company_id}, source={self.source.value})>"


class CompanyMergeLog(Base):
    """
    Audit trail for company merges.
    Holds full before/after snapshots so a merge can be reviewed or undone by hand.
    """

    __tablename__ = "company_merge_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    # No FK: the source company no longer exists after the merge
    merged_from_id: Mapped[str] = mapped_column(
        String(36), nullable=False, index=True
    )
    merged_into_id: Mapped[str] = mapped_column(
        String(36), nullable=False, index=True
    )
    merged_from_name: Mapped[str] = mapped_column(Text, nullable=False)
    merged_into_name: Mapped[str] = mapped_column(Text, nullable=False)

    before_state: Mapped[dict] = mapped_column(JSON, nullable=False)
    after_state: Mapped[dict] = mapped_column(JSON, nullable=False)
    fields_transferred: Mapped[list] = mapped_column(JSON, default=list)
    funding_rounds_transferred: Mapped[int] = mapped_column(Integer, default=0)
    enrichments_transferred: Mapped[int] = mapped_column(Integer, default=0)

    similarity_score: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    similarity_details: Mapped[Optional[dict]] = mapped_column(JSON)
    match_reason: Mapped[str] = mapped_column(Text, nullable=False)

    merged_by: Mapped[str] = mapped_column(String(50), nullable=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    maintenance_run_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<CompanyMergeLog(from={self.merged_from_name} -> into={self.merged_into_name}, score={self.similarity_score})>"


class MaintenanceRun(Base):
    """
    One execution of a maintenance agent, with its counters and error list.
    """

    __tablename__ = "maintenance_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    agent: Mapped[MaintenanceAgent] = mapped_column(
        Enum(MaintenanceAgent), nullable=False, index=True
    )
    status: Mapped[MaintenanceStatus] = mapped_column(
        Enum(MaintenanceStatus), default=MaintenanceStatus.PENDING, nullable=False
    )
    triggered_by: Mapped[Optional[str]] = mapped_column(String(100))

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)

    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    items_updated: Mapped[int] = mapped_column(Integer, default=0)
    items_created: Mapped[int] = mapped_column(Integer, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, default=0)
    items_skipped: Mapped[int] = mapped_column(Integer, default=0)

    details: Mapped[Optional[dict]] = mapped_column(JSON)
    errors: Mapped[Optional[list]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_maintenance_runs_agent_status", "agent", "status"),
    )

    def __repr__(self) -> str:
        return f"<MaintenanceRun(id={self.id}, agent={self.agent.value}, status={self.status.value})>"
