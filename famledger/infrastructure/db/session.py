"""
SQLAlchemy engine, session factory and the request-scoped session dependency
"""
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from famledger.config import get_settings


class Base(DeclarativeBase):
    """Declarative base of the ledger tables"""
    pass


@lru_cache
def get_engine() -> Engine:
    """Process-wide engine, built from settings on first call"""
    return create_engine(get_settings().get_sqlalchemy_url(), pool_pre_ping=True)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: one session per request

    Use cases own the transaction (commit or rollback); this only closes the
    session once the response is produced.
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def check_db_connection() -> None:
    """
    Readiness check: one round trip through the pool.

    Raises:
        sqlalchemy.exc.OperationalError: database is unreachable
    """
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
