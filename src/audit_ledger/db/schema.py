"""Schema creation and immutability trigger wiring for the ledger table.

The schema layer is isolated from append/query code so changes to the
persisted record layout are reviewable without wading through the chain
logic.

Persisted record layout::

    audit_entries(
        sequence       INTEGER PRIMARY KEY     -- commit order, origin 1
        actor          TEXT NOT NULL
        action         TEXT NOT NULL
        details        TEXT NOT NULL
        timestamp      TEXT NOT NULL           -- UTC ISO-8601
        previous_hash  TEXT NOT NULL UNIQUE    -- 64 hex chars
        entry_hash     TEXT NOT NULL UNIQUE    -- 64 hex chars
    )

``UNIQUE(previous_hash)`` makes a fork unrepresentable: a second writer that
read the same tail cannot commit.  The ``BEFORE UPDATE`` / ``BEFORE DELETE``
triggers make committed rows immutable for every client of the file, not
only for this package.
"""

from __future__ import annotations

import logging
import sqlite3

from audit_ledger.db.connection import connection_scope

logger = logging.getLogger(__name__)

LEDGER_TABLE = "audit_entries"

APPEND_ONLY_MESSAGE = "audit ledger is append-only"

# Query-plan rationale:
# 1. dashboard and compliance filters are actor- or action-scoped and then
#    ordered/bounded by time.
# 2. unfiltered time-range exports use the bare timestamp index.
INDEX_STATEMENTS = (
    (
        "CREATE INDEX IF NOT EXISTS idx_audit_entries_actor_timestamp "
        "ON audit_entries(actor, timestamp)"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_audit_entries_action_timestamp "
        "ON audit_entries(action, timestamp)"
    ),
    "CREATE INDEX IF NOT EXISTS idx_audit_entries_timestamp ON audit_entries(timestamp)",
)


def create_immutability_triggers(conn: sqlite3.Connection) -> None:
    """Create triggers that reject UPDATE and DELETE on committed entries."""
    cursor = conn.cursor()
    cursor.execute("DROP TRIGGER IF EXISTS audit_entries_no_update")
    cursor.execute("DROP TRIGGER IF EXISTS audit_entries_no_delete")

    cursor.execute(f"""
        CREATE TRIGGER audit_entries_no_update
        BEFORE UPDATE ON audit_entries
        BEGIN
            SELECT RAISE(ABORT, '{APPEND_ONLY_MESSAGE}');
        END
    """)
    cursor.execute(f"""
        CREATE TRIGGER audit_entries_no_delete
        BEFORE DELETE ON audit_entries
        BEGIN
            SELECT RAISE(ABORT, '{APPEND_ONLY_MESSAGE}');
        END
    """)


def _create_schema(conn: sqlite3.Connection) -> None:
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS audit_entries (
            sequence INTEGER PRIMARY KEY CHECK (sequence >= 1),
            actor TEXT NOT NULL CHECK (length(trim(actor)) > 0),
            action TEXT NOT NULL CHECK (length(trim(action)) > 0),
            details TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            previous_hash TEXT NOT NULL UNIQUE CHECK (length(previous_hash) = 64),
            entry_hash TEXT NOT NULL UNIQUE CHECK (length(entry_hash) = 64)
        )
    """)

    for statement in INDEX_STATEMENTS:
        cursor.execute(statement)

    create_immutability_triggers(conn)


def init_database() -> None:
    """Initialize the ledger table, its indexes and immutability triggers.

    Idempotent: safe to call on every process start.
    """
    with connection_scope(write=True) as conn:
        _create_schema(conn)
    logger.debug("ledger schema ready")


def reset_ledger_for_tests() -> None:
    """Drop and recreate the ledger table.

    Destructive.  Exists for test fixtures only; nothing in the production
    call graph reaches it.  Any live :class:`LedgerAppender` must be given a
    fresh instance (or ``forget_tail()``) afterwards.
    """
    with connection_scope(write=True) as conn:
        conn.execute(f"DROP TABLE IF EXISTS {LEDGER_TABLE}")
        _create_schema(conn)
    logger.warning("ledger table reset (test fixture)")
