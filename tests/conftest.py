"""
Shared fixtures: a fresh SQLite store per test and record builders.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from maintenance.database import init_db
from maintenance.db_cleaner.base import CleanerConfig
from maintenance.models import Company, CompanyEnrichment, EnrichmentSource, FundingRound

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'dealbase.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def config():
    return CleanerConfig()


class RecordBuilder:
    """Adds committed rows with predictable creation times."""

    def __init__(self, session):
        self.session = session
        self._tick = 0

    def _next_time(self):
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    def company(self, name, **fields):
        fields.setdefault("created_at", self._next_time())
        company = Company(name=name, **fields)
        self.session.add(company)
        self.session.commit()
        return company

    def funding_round(self, company=None, **fields):
        fields.setdefault("created_at", self._next_time())
        if company is not None:
            fields.setdefault("company_id", company.id)
            fields.setdefault("company_name", company.name)
        funding_round = FundingRound(**fields)
        self.session.add(funding_round)
        self.session.commit()
        return funding_round

    def enrichment(self, company_id, **fields):
        fields.setdefault("source", EnrichmentSource.WEB_SEARCH)
        fields.setdefault("created_at", self._next_time())
        enrichment = CompanyEnrichment(company_id=company_id, **fields)
        self.session.add(enrichment)
        self.session.commit()
        return enrichment


@pytest.fixture
def build(db):
    return RecordBuilder(db)
