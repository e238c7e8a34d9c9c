"""Ledger storage adapter for the SQLite backend.

This module is the only code that issues SQL against ``audit_entries``.  It
offers exactly the contract the chain logic needs from durable storage:

- atomic single-record insert inside a caller-owned write transaction,
- cheap "last record" lookup (``MAX(sequence)`` on the primary key),
- ordered, snapshot-consistent range reads for verification,
- filtered, paginated reads for reporting.

There is deliberately no update or delete function.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from typing import Any, NoReturn

from audit_ledger.db import connection as db_connection
from audit_ledger.db.connection import connection_scope
from audit_ledger.db.errors import (
    DatabaseError,
    DatabaseOperationContext,
    DatabaseReadError,
    DatabaseWriteError,
)
from audit_ledger.db.types import ENTRY_COLUMNS, AuditEntry, LedgerTail


def _raise_read_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed repository read error while preserving chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseReadError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def _raise_write_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed repository write error while preserving chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseWriteError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def _build_filter(
    *,
    actor: str | None = None,
    action: str | None = None,
    since: str | None = None,
    until: str | None = None,
) -> tuple[str, list[Any]]:
    """Return a ``WHERE`` clause (possibly empty) and its parameters."""
    clauses: list[str] = []
    params: list[Any] = []
    if actor is not None:
        clauses.append("actor = ?")
        params.append(actor)
    if action is not None:
        clauses.append("action = ?")
        params.append(action)
    if since is not None:
        clauses.append("timestamp >= ?")
        params.append(since)
    if until is not None:
        clauses.append("timestamp <= ?")
        params.append(until)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


# ── Append path ───────────────────────────────────────────────────────────────


def get_tail(conn: sqlite3.Connection | None = None) -> LedgerTail | None:
    """Return the most recently committed entry's sequence and hash.

    Args:
        conn: Optional open connection.  The appender passes its write
            connection so the lookup happens inside the same immediate
            transaction as the insert.

    Returns:
        ``None`` for an empty ledger.
    """
    query = (
        "SELECT sequence, entry_hash FROM audit_entries "
        "WHERE sequence = (SELECT MAX(sequence) FROM audit_entries)"
    )
    try:
        if conn is not None:
            row = conn.execute(query).fetchone()
        else:
            with connection_scope() as scoped:
                row = scoped.execute(query).fetchone()
    except Exception as exc:
        _raise_read_error("ledger.get_tail", exc)
    if row is None:
        return None
    return LedgerTail(sequence=int(row[0]), entry_hash=row[1])


def insert_entry(conn: sqlite3.Connection, entry: AuditEntry) -> None:
    """Insert one fully-formed entry on a connection with an open transaction.

    The caller owns ``BEGIN``/``COMMIT``.  A primary-key or ``UNIQUE``
    violation surfaces as :class:`DatabaseWriteError` whose
    :attr:`~DatabaseWriteError.is_contention` is True.
    """
    try:
        conn.execute(
            f"""
            INSERT INTO audit_entries ({ENTRY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,  # nosec B608 - column list is a module constant
            (
                entry.sequence,
                entry.actor,
                entry.action,
                entry.details,
                entry.timestamp,
                entry.previous_hash,
                entry.entry_hash,
            ),
        )
    except Exception as exc:
        _raise_write_error(
            "ledger.insert_entry",
            exc,
            details=f"sequence={entry.sequence}",
        )


# ── Point and range reads ─────────────────────────────────────────────────────


def get_entry(sequence: int) -> AuditEntry | None:
    """Return the entry at ``sequence`` or ``None``."""
    try:
        with connection_scope() as conn:
            row = conn.execute(
                f"SELECT {ENTRY_COLUMNS} FROM audit_entries WHERE sequence = ?",  # nosec B608
                (sequence,),
            ).fetchone()
    except Exception as exc:
        _raise_read_error("ledger.get_entry", exc, details=f"sequence={sequence}")
    return AuditEntry.from_row(row) if row else None


def get_max_sequence() -> int:
    """Return the highest committed sequence, or 0 for an empty ledger."""
    try:
        with connection_scope() as conn:
            row = conn.execute("SELECT COALESCE(MAX(sequence), 0) FROM audit_entries").fetchone()
    except Exception as exc:
        _raise_read_error("ledger.get_max_sequence", exc)
    return int(row[0])


def iter_entries(
    *,
    after: int = 0,
    until: int | None = None,
    batch_size: int = 500,
) -> Iterator[AuditEntry]:
    """Yield entries with ``after < sequence <= until`` in ascending order.

    All batches are read inside one read transaction, so in WAL mode the scan
    observes a single committed snapshot: rows appended while the scan is in
    progress are invisible to it and a torn row can never be observed.

    The connection is closed when the generator is exhausted or closed.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive.")

    try:
        conn = db_connection.get_connection()
    except Exception as exc:
        _raise_read_error("ledger.iter_entries", exc)

    try:
        conn.execute("BEGIN")
        cursor_seq = after
        while True:
            params: list[Any] = [cursor_seq]
            bound = ""
            if until is not None:
                bound = "AND sequence <= ?"
                params.append(until)
            params.append(batch_size)
            try:
                rows = conn.execute(
                    f"""
                    SELECT {ENTRY_COLUMNS}
                    FROM audit_entries
                    WHERE sequence > ? {bound}
                    ORDER BY sequence ASC
                    LIMIT ?
                    """,  # nosec B608 - only constant fragments are interpolated
                    params,
                ).fetchall()
            except Exception as exc:
                _raise_read_error(
                    "ledger.iter_entries",
                    exc,
                    details=f"after={cursor_seq} until={until}",
                )
            if not rows:
                return
            for row in rows:
                entry = AuditEntry.from_row(row)
                cursor_seq = entry.sequence
                yield entry
            if len(rows) < batch_size:
                return
    finally:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        conn.close()


# ── Reporting reads ───────────────────────────────────────────────────────────


def list_entries(
    *,
    actor: str | None = None,
    action: str | None = None,
    since: str | None = None,
    until: str | None = None,
    limit: int = 50,
    offset: int = 0,
    newest_first: bool = True,
) -> tuple[list[AuditEntry], int]:
    """Return one filtered page of entries and the total match count.

    ``since``/``until`` are inclusive UTC ISO-8601 strings in the same format
    the appender stores, so lexical comparison is chronological.
    """
    where, params = _build_filter(actor=actor, action=action, since=since, until=until)
    order = "DESC" if newest_first else "ASC"
    try:
        with connection_scope() as conn:
            # Count and page from the same read transaction.
            conn.execute("BEGIN")
            total = conn.execute(
                f"SELECT COUNT(*) FROM audit_entries {where}",  # nosec B608
                params,
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS}
                FROM audit_entries
                {where}
                ORDER BY sequence {order}
                LIMIT ? OFFSET ?
                """,  # nosec B608 - clauses built from constant fragments
                [*params, limit, offset],
            ).fetchall()
            conn.execute("COMMIT")
    except Exception as exc:
        _raise_read_error(
            "ledger.list_entries",
            exc,
            details=f"actor={actor!r} action={action!r} since={since!r} until={until!r}",
        )
    return [AuditEntry.from_row(row) for row in rows], int(total)


def count_entries(*, actor: str | None = None, action: str | None = None) -> int:
    """Count entries, optionally scoped to one actor and/or action."""
    where, params = _build_filter(actor=actor, action=action)
    try:
        with connection_scope() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM audit_entries {where}",  # nosec B608
                params,
            ).fetchone()
    except Exception as exc:
        _raise_read_error("ledger.count_entries", exc, details=f"actor={actor!r} action={action!r}")
    return int(row[0])


def count_by_action() -> dict[str, int]:
    """Return ``{action: count}`` across the whole ledger."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                "SELECT action, COUNT(*) FROM audit_entries GROUP BY action ORDER BY action"
            ).fetchall()
    except Exception as exc:
        _raise_read_error("ledger.count_by_action", exc)
    return {action: int(count) for action, count in rows}


def count_by_actor(*, limit: int = 10) -> list[tuple[str, int]]:
    """Return the ``limit`` most active actors, most active first."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                """
                SELECT actor, COUNT(*) AS n
                FROM audit_entries
                GROUP BY actor
                ORDER BY n DESC, actor ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
    except Exception as exc:
        _raise_read_error("ledger.count_by_actor", exc, details=f"limit={limit}")
    return [(actor, int(count)) for actor, count in rows]
