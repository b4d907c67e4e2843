"""
Database Connection Module

Provides the SQLAlchemy engine and session management for the ledger store.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# Database URL from environment
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('POSTGRES_USER', 'ledger')}:"
    f"{os.getenv('POSTGRES_PASSWORD', 'password')}@"
    f"{os.getenv('POSTGRES_HOST', 'localhost')}:"
    f"{os.getenv('POSTGRES_PORT', '5432')}/"
    f"{os.getenv('POSTGRES_DB', 'household_ledger')}"
)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS ledger_documents (
        profile_id VARCHAR(128) NOT NULL,
        collection VARCHAR(64) NOT NULL,
        doc_id VARCHAR(128) NOT NULL,
        payload TEXT NOT NULL,
        PRIMARY KEY (profile_id, collection, doc_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_settings (
        name VARCHAR(128) NOT NULL,
        setting_key VARCHAR(512) NOT NULL,
        setting_value TEXT NOT NULL,
        PRIMARY KEY (name, setting_key)
    )
    """,
]

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def create_ledger_engine(url: str | None = None) -> Engine:
    """Create an engine for the given URL (defaults to DATABASE_URL)."""
    url = url or DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(url)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def get_engine() -> Engine:
    """Get the process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_ledger_engine()
    return _engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker:
    global _session_factory
    if engine is not None:
        return sessionmaker(autocommit=False, autoflush=False, bind=engine)
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory


@contextmanager
def get_db_context(engine: Engine | None = None) -> Generator[Session, None, None]:
    """Get database session as context manager.

    Yields:
        Database session
    """
    db = get_session_factory(engine)()
    try:
        yield db
    finally:
        db.close()


def init_schema(engine: Engine | None = None) -> None:
    """Create the ledger tables if they do not exist."""
    with get_db_context(engine) as db:
        for statement in SCHEMA:
            db.execute(text(statement))
        db.commit()
