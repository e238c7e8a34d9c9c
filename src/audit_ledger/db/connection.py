"""Opening SQLite connections to the ledger file.

Every connection gets the same pragmas and autocommit mode; write paths ask
``connection_scope(write=True)`` for an explicit transaction.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


def get_db_path() -> Path:
    from audit_ledger.config import config

    return config.database.absolute_path


def configure_connection(connection: sqlite3.Connection) -> sqlite3.Connection:
    """Set the pragmas every ledger connection relies on.

    WAL gives readers a stable snapshot while an append is in flight, and
    ``busy_timeout`` caps how long another process waits for the write lock
    before SQLite reports ``database is locked``.
    """
    connection.execute("PRAGMA journal_mode = WAL")
    connection.execute("PRAGMA busy_timeout = 5000")
    return connection


def get_connection() -> sqlite3.Connection:
    """Open the ledger file in autocommit mode with pragmas applied.

    Creates the parent directory on first use.
    """
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(db_path), isolation_level=None)
    return configure_connection(connection)


@contextmanager
def connection_scope(*, write: bool = False) -> Iterator[sqlite3.Connection]:
    """Open a connection for one unit of work and close it afterwards.

    With ``write=True`` the body runs inside a transaction that commits on
    normal exit and rolls back when the body raises.
    ``BEGIN IMMEDIATE`` takes the reserved lock up front, so two writer
    processes never read the same tail inside a write scope.
    """
    connection = get_connection()
    try:
        if write:
            connection.execute("BEGIN IMMEDIATE")
        yield connection
        if write:
            connection.execute("COMMIT")
    except Exception:
        if write and connection.in_transaction:
            try:
                connection.execute("ROLLBACK")
            except sqlite3.Error:
                # The body's exception is the one worth reporting.
                pass
        raise
    finally:
        connection.close()
