"""
Pytest fixtures for testing
"""
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from famledger.application.ledger_locks import KeyedLockTable
from famledger.infrastructure.db.session import Base
import famledger.infrastructure.db.models  # noqa: F401  (registers the tables)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs handlers in a worker thread)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def family_id():
    """Family the test data belongs to"""
    return 1


@pytest.fixture
def other_family_id():
    return 2


@pytest.fixture
def locks():
    """Fresh ledger lock table with a short timeout"""
    return KeyedLockTable(timeout=1.0)


@pytest.fixture
def today():
    """Fixed reference date for status derivation"""
    return date(2024, 6, 15)
