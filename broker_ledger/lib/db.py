"""
Database connection and initialization module.

Manages SQLite database creation, connection pooling, and schema initialization.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from broker_ledger.lib.config import DB_PATH_ENV_VAR
from broker_ledger.lib.errors import ConfigurationError

# Base class for all models
Base = declarative_base()

# Default database path (can be overridden by environment variable)
DEFAULT_DB_PATH = Path.home() / ".broker-ledger" / "data.db"

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker[Session]] = None


def _enable_foreign_keys(dbapi_conn: Any, connection_record: Any) -> None:
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def resolve_db_path(db_path: Optional[Path] = None) -> Path:
    """Explicit path, then BROKER_LEDGER_DB_PATH, then ~/.broker-ledger/data.db.

    Raises:
        ConfigurationError: If the configured path is a directory
    """
    if db_path is not None:
        return db_path
    env_db_path = os.environ.get(DB_PATH_ENV_VAR)
    if env_db_path:
        path = Path(env_db_path)
        if path.is_dir():
            raise ConfigurationError(f"{DB_PATH_ENV_VAR} must point to a file, got directory {path}")
        return path
    return DEFAULT_DB_PATH


def get_engine(db_path: Optional[Path] = None) -> Engine:
    """
    Get or create the SQLAlchemy engine.

    Args:
        db_path: Optional custom database path. Defaults to ~/.broker-ledger/data.db
                 Can also be set via BROKER_LEDGER_DB_PATH environment variable.

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine

    if _engine is None:
        db_path = resolve_db_path(db_path)

        # Ensure directory exists
        db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with SQLite-specific settings
        db_url = f"sqlite:///{db_path}"
        _engine = create_engine(
            db_url,
            echo=False,  # Set to True for SQL debugging
            connect_args={"check_same_thread": False},  # Sessions run in worker threads
        )

        # Enable foreign keys for all connections
        event.listen(_engine, "connect", _enable_foreign_keys)

    return _engine


def reset_engine() -> None:
    """Reset the global engine and session factory.

    This is used for testing to ensure a fresh database connection.
    **WARNING: Only use this in tests!**
    """
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionLocal = None


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        SQLAlchemy Session instance
    """
    global _SessionLocal

    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    return _SessionLocal()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic commit/rollback.

    Usage:
        with db_session() as session:
            session.add(Ticker(symbol="PLTR"))
            # Commits automatically when context exits successfully

    Yields:
        SQLAlchemy Session instance
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(db_path: Optional[Path] = None) -> None:
    """
    Initialize the database by creating all tables.

    Args:
        db_path: Optional custom database path. Defaults to ~/.broker-ledger/data.db
    """
    engine = get_engine(db_path)

    # Import all models to ensure they're registered with Base
    from broker_ledger.models import (  # noqa: F401
        Broker,
        BrokerAccount,
        BrokerMovement,
        Currency,
        Dividend,
        DividendTax,
        EquityTrade,
        FinancialSnapshot,
        ImportBatch,
        ImportError,
        OptionTrade,
        Ticker,
    )

    # Create all tables
    Base.metadata.create_all(bind=engine)


def reset_db(db_path: Optional[Path] = None) -> None:
    """
    Drop all tables and recreate them. **WARNING: This deletes all data!**

    Args:
        db_path: Optional custom database path
    """
    init_db(db_path)
    engine = get_engine(db_path)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def db_exists(db_path: Optional[Path] = None) -> bool:
    """
    Check if the database file exists.

    Args:
        db_path: Optional custom database path

    Returns:
        True if database file exists
    """
    return resolve_db_path(db_path).exists()
