"""Serialised append path for the hash chain.

:class:`LedgerAppender` is the single writer of the ledger.  One instance is
created per process (normally by the submission façade) and owns the chain's
"current tail" for the process lifetime.  Nothing else in the package holds
or mutates the tail.

Append sequence (``submit``):

1. Validate the submission.  Nothing below runs for a rejected submission,
   so it can never consume a sequence number.
2. Acquire the append lock (``threading.Lock``) with a timeout.  Timeout ⇒
   :exc:`ConcurrencyConflict`.
3. Open an immediate write transaction.  ``BEGIN IMMEDIATE`` takes SQLite's
   reserved lock, which serialises writer *processes* the same way the
   ``threading.Lock`` serialises writer *threads*.
4. Read the tail (cached, or from storage when unknown), capture the UTC
   timestamp, compute ``entry_hash``, insert the row, commit.
5. Advance the cached tail only after the commit returned, then release.

Failure handling:
    Any storage failure discards the attempt and forgets the cached tail.
    The next attempt re-runs steps 2 to 5 against the tail as storage now sees
    it; a row built on a stale ``previous_hash`` is never re-sent.  The
    ``UNIQUE`` constraints on ``sequence`` and ``previous_hash`` turn a
    stale-tail insert from another process into a contention error rather
    than a fork.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

from audit_ledger.config import LedgerSettings, config
from audit_ledger.db import ledger_repo
from audit_ledger.db.connection import connection_scope
from audit_ledger.db.errors import (
    DatabaseError,
    DatabaseOperationContext,
    DatabaseOperationError,
    DatabaseWriteError,
)
from audit_ledger.db.types import AuditEntry, LedgerTail
from audit_ledger.ledger.errors import ConcurrencyConflict, PersistenceError, ValidationError
from audit_ledger.ledger.hashing import (
    GENESIS_HASH,
    SEQUENCE_ORIGIN,
    compute_entry_hash,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


def validate_submission(
    actor: str,
    action: str,
    details: str,
    *,
    max_details_length: int,
) -> None:
    """Reject malformed submissions with :exc:`ValidationError`.

    Rules:
        - ``actor`` and ``action`` are non-blank strings.
        - ``details`` is a string of at most ``max_details_length`` characters
          (an empty string is allowed).
    """
    if not isinstance(actor, str) or not actor.strip():
        raise ValidationError("actor must be a non-empty string.")
    if not isinstance(action, str) or not action.strip():
        raise ValidationError("action must be a non-empty string.")
    if not isinstance(details, str):
        raise ValidationError("details must be a string.")
    if len(details) > max_details_length:
        raise ValidationError(
            f"details is {len(details)} characters; the maximum is {max_details_length}."
        )


class LedgerAppender:
    """Single-writer append path that keeps the chain invariants.

    Args:
        settings: Ledger tuning; defaults to ``config.ledger``.
        clock: Returns the current UTC ``datetime``.  Injected by tests that
            need deterministic timestamps.

    Thread safety:
        ``submit`` may be called from any number of threads.  All
        read-tail/compute/persist cycles pass through ``self._lock``.
    """

    def __init__(
        self,
        settings: LedgerSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or config.ledger
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        # Cached tail; ``_tail_known`` is False until loaded from storage.
        self._tail: LedgerTail | None = None
        self._tail_known = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    @property
    def tail(self) -> LedgerTail | None:
        """Last tail this appender committed or loaded (``None`` if unknown/empty)."""
        return self._tail

    def validate(self, actor: str, action: str, details: str) -> None:
        """Validate a submission against this appender's settings."""
        validate_submission(
            actor,
            action,
            details,
            max_details_length=self._settings.max_details_length,
        )

    def submit(self, actor: str, action: str, details: str) -> AuditEntry:
        """Append one entry and return it once committed.

        Raises:
            ValidationError: Malformed input.  Raised before the lock.
            ConcurrencyConflict: Lock not acquired within
                ``lock_timeout_seconds``, or writer contention persisted
                through ``max_attempts`` full cycles.
            PersistenceError: Storage failed for other reasons on every
                attempt.
        """
        self.validate(actor, action, details)

        attempts = max(1, self._settings.max_attempts)
        last_error: DatabaseOperationError | None = None

        for attempt in range(1, attempts + 1):
            if not self._lock.acquire(timeout=self._settings.lock_timeout_seconds):
                raise ConcurrencyConflict(
                    f"Append lock not acquired within {self._settings.lock_timeout_seconds}s "
                    f"(actor={actor!r}, action={action!r})."
                )
            try:
                entry = self._append_locked(actor, action, details)
            except DatabaseOperationError as exc:
                # The tail may have moved (another process) or be unknown
                # after a failed commit; reload it on the next cycle.
                self._forget_tail_locked()
                last_error = exc
                logger.warning(
                    "ledger: append attempt %d/%d failed for %r by %r: %s",
                    attempt,
                    attempts,
                    action,
                    actor,
                    exc,
                )
            else:
                logger.debug(
                    "ledger: appended %r by %r at sequence %d",
                    action,
                    actor,
                    entry.sequence,
                )
                return entry
            finally:
                self._lock.release()

            if attempt < attempts:
                time.sleep(self._settings.retry_backoff_seconds * attempt)

        assert last_error is not None
        if last_error.is_contention:
            raise ConcurrencyConflict(
                f"Ledger append for {action!r} by {actor!r} still contended after "
                f"{attempts} attempts: {last_error}"
            ) from last_error
        raise PersistenceError(
            f"Ledger append for {action!r} by {actor!r} failed after {attempts} attempts: "
            f"{last_error}",
            attempts=attempts,
        ) from last_error

    def forget_tail(self) -> None:
        """Drop the cached tail so the next append reloads it from storage."""
        with self._lock:
            self._forget_tail_locked()

    # ------------------------------------------------------------------
    # Private helpers (caller holds self._lock)
    # ------------------------------------------------------------------

    def _forget_tail_locked(self) -> None:
        self._tail = None
        self._tail_known = False

    def _append_locked(self, actor: str, action: str, details: str) -> AuditEntry:
        """One full read-tail/compute/persist cycle."""
        try:
            with connection_scope(write=True) as conn:
                if not self._tail_known:
                    self._tail = ledger_repo.get_tail(conn)
                    self._tail_known = True

                tail = self._tail
                sequence = tail.sequence + 1 if tail else SEQUENCE_ORIGIN
                previous_hash = tail.entry_hash if tail else GENESIS_HASH
                timestamp = utc_timestamp(self._clock())
                entry = AuditEntry(
                    sequence=sequence,
                    actor=actor,
                    action=action,
                    details=details,
                    timestamp=timestamp,
                    previous_hash=previous_hash,
                    entry_hash=compute_entry_hash(
                        actor=actor,
                        action=action,
                        details=details,
                        timestamp=timestamp,
                        previous_hash=previous_hash,
                    ),
                )
                ledger_repo.insert_entry(conn, entry)
        except DatabaseError:
            raise
        except (sqlite3.Error, OSError) as exc:
            # Connection, BEGIN IMMEDIATE or COMMIT failures.
            raise DatabaseWriteError(
                context=DatabaseOperationContext(
                    operation="ledger.append",
                    details=f"actor={actor!r} action={action!r}",
                ),
                cause=exc,
            ) from exc

        # Commit returned: this is the point of no return.
        self._tail = LedgerTail(sequence=entry.sequence, entry_hash=entry.entry_hash)
        return entry
