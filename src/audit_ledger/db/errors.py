"""Exceptions raised by the storage adapter.

Lookups that find nothing return ``None``.  Anything that goes wrong inside
SQLite is re-raised as one of the classes below with the original
``sqlite3`` error kept on ``cause``, so the ledger layer can tell a lost race
from a broken disk.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass


@dataclass(slots=True)
class DatabaseOperationContext:
    """Which repository call failed, e.g. ``"ledger.insert_entry"``."""

    operation: str
    details: str | None = None


class DatabaseError(RuntimeError):
    """Root of the storage exception tree."""


class DatabaseOperationError(DatabaseError):
    def __init__(
        self,
        *,
        context: DatabaseOperationContext,
        cause: Exception | None = None,
    ) -> None:
        text = context.operation if not context.details else (
            f"{context.operation}: {context.details}"
        )
        super().__init__(text)
        self.context = context
        self.cause = cause

    @property
    def is_contention(self) -> bool:
        """True when the failure came from another writer, not from the disk.

        A constraint violation on ``sequence``/``previous_hash`` means someone
        else committed against the same tail; ``database is locked`` means
        SQLite's writer lock could not be taken within ``busy_timeout``.
        """
        if isinstance(self.cause, sqlite3.IntegrityError):
            return True
        if isinstance(self.cause, sqlite3.OperationalError):
            text = str(self.cause).lower()
            return "locked" in text or "busy" in text
        return False


class DatabaseReadError(DatabaseOperationError):
    """A query against the ledger table failed."""


class DatabaseWriteError(DatabaseOperationError):
    """An insert or its surrounding transaction failed."""
