"""
Shared pytest fixtures for the audit ledger test suite.

This module provides fixtures that are automatically available to all test files:
- Temporary ledger databases (schema, indexes and triggers installed)
- A ``LedgerAppender`` tuned for fast tests
- A helper that bypasses the immutability triggers to simulate tampering
- A FastAPI ``TestClient`` bound to the temporary database

Every test gets its own database file, so tests never share chain state.
"""

import sqlite3
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from audit_ledger.config import LedgerSettings, SubmissionSettings, use_test_database
from audit_ledger.db import schema
from audit_ledger.ledger.appender import LedgerAppender

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Point the configured database at a fresh file under ``tmp_path``.

    Uses the config system's ``use_test_database`` context manager so that
    every repository call in the test resolves to this file.

    Yields:
        Path to the temporary database file (not yet created)
    """
    db_path = tmp_path / "audit_test.db"
    with use_test_database(db_path):
        yield db_path


@pytest.fixture(scope="function")
def test_db(temp_db_path: Path) -> Generator[Path, None, None]:
    """
    Initialize the ledger schema in the temporary database.

    Yields:
        Path to the initialized database file
    """
    schema.init_database()
    yield temp_db_path


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    """Ledger settings with short timeouts and no retry backoff."""
    return LedgerSettings(
        max_details_length=256,
        lock_timeout_seconds=2.0,
        max_attempts=3,
        retry_backoff_seconds=0.0,
        verify_batch_size=4,
    )


@pytest.fixture
def appender(test_db: Path, ledger_settings: LedgerSettings) -> LedgerAppender:
    """A fresh appender writing to the temporary ledger."""
    return LedgerAppender(ledger_settings)


@pytest.fixture
def submission_settings(tmp_path: Path) -> SubmissionSettings:
    """Small pool with a fallback file under ``tmp_path``."""
    return SubmissionSettings(
        max_workers=4,
        queue_capacity=16,
        enqueue_timeout_seconds=0.5,
        resubmit_attempts=2,
        resubmit_backoff_seconds=0.0,
        fallback_path=str(tmp_path / "fallback.jsonl"),
    )


@pytest.fixture
def fallback_path(tmp_path: Path) -> Path:
    return tmp_path / "fallback.jsonl"


# ============================================================================
# TAMPERING HELPERS
# ============================================================================


@pytest.fixture
def raw_sql(test_db: Path) -> Callable[..., None]:
    """
    Run SQL against the ledger file with the immutability triggers removed.

    Simulates an attacker with direct write access to the database file.
    Triggers stay dropped for the rest of the test.

    Returns:
        Callable ``raw_sql(statement, params=())``
    """

    def _run(statement: str, params: tuple = ()) -> None:
        conn = sqlite3.connect(str(test_db))
        try:
            conn.execute("DROP TRIGGER IF EXISTS audit_entries_no_update")
            conn.execute("DROP TRIGGER IF EXISTS audit_entries_no_delete")
            conn.execute(statement, params)
            conn.commit()
        finally:
            conn.close()

    return _run


# ============================================================================
# API FIXTURES
# ============================================================================


@pytest.fixture
def test_client(test_db: Path) -> TestClient:
    """
    FastAPI TestClient bound to the temporary ledger.

    Returns:
        TestClient instance for making HTTP requests
    """
    from audit_ledger.api.server import app

    return TestClient(app)
