"""
Engine and session factories for the dealbase store.

The default factory is bound to settings.DATABASE_URL; the cleaner CLI and
the tests bind their own store through make_session_factory.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config.settings import settings
from maintenance.models import Base


def build_engine(database_url: str) -> Engine:
    return create_engine(database_url, echo=settings.DEBUG, future=True)


engine = build_engine(settings.DATABASE_URL)

# Cleaner code commits explicitly through UnitOfWork.transaction()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def make_session_factory(database_url: str) -> sessionmaker:
    """Session factory bound to a store other than DATABASE_URL (CLI override, tests)."""
    return sessionmaker(bind=build_engine(database_url), autoflush=False, autocommit=False)


def init_db(bind: Engine = None):
    """Create the company, funding round, enrichment, merge log and maintenance run tables."""
    Base.metadata.create_all(bind=bind or engine)
