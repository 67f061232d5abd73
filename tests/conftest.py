"""Pytest configuration and fixtures for all tests."""

import os
import tempfile
from pathlib import Path

import pytest

from broker_ledger.lib.config import DB_PATH_ENV_VAR
from broker_ledger.lib.db import init_db, reset_db, reset_engine

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "csv"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize test database before any tests run.

    Creates a temporary database for testing that is automatically cleaned up.
    Uses session scope so database is created once per test session.
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        test_db_path = Path(tmp.name)

    # Set environment variables BEFORE initializing
    os.environ[DB_PATH_ENV_VAR] = str(test_db_path)
    os.environ["LOG_FILE"] = ""

    init_db(test_db_path)

    yield test_db_path

    reset_engine()
    if test_db_path.exists():
        test_db_path.unlink()


@pytest.fixture(autouse=True)
def reset_database_between_tests(setup_test_database):
    """Reset database state between each test.

    This ensures test isolation by clearing all data between tests
    while keeping the schema intact.
    """
    reset_engine()
    reset_db(setup_test_database)

    yield


@pytest.fixture
def csv_dir() -> Path:
    """Path to the broker CSV fixtures."""
    return FIXTURES_DIR
