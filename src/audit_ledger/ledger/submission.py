"""Asynchronous, non-blocking submission entry point.

Business subsystems call :meth:`SubmissionFacade.submit` as a side effect of
their own operation (login, role change, document upload, ...).  The call
validates the input and hands the append to a bounded worker pool, so a slow
or contended ledger never blocks or fails the business operation.

Pool model
----------
- ``max_workers`` threads run appends (``ThreadPoolExecutor``).
- A ``BoundedSemaphore`` of ``max_workers + queue_capacity`` slots bounds the
  number of accepted-but-unfinished submissions.
- Backpressure: when no slot frees within ``enqueue_timeout_seconds`` the
  submission goes straight to the fallback channel (reason ``saturated``).

Retry policy
------------
``ConcurrencyConflict`` from the appender is resubmitted up to
``resubmit_attempts`` times with linear backoff; every resubmission starts
from a fresh tail.  ``PersistenceError`` is not resubmitted (the appender has
already restarted the full cycle ``max_attempts`` times).  Whatever cannot be
committed ends up in the fallback channel.

Accepted trade-off: a submission accepted into the pool is lost if the
process crashes before its worker commits it.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass
from pathlib import Path

from audit_ledger.config import SubmissionSettings, config
from audit_ledger.ledger import fallback
from audit_ledger.ledger.appender import LedgerAppender
from audit_ledger.ledger.errors import ConcurrencyConflict, PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubmissionStats:
    """Counters since the façade was created."""

    accepted: int
    committed: int
    diverted: int
    pending: int


class SubmissionFacade:
    """Fire-and-forget front door to the ledger.

    Args:
        appender: The process's single :class:`LedgerAppender`.  A new one is
            created when omitted.
        settings: Pool settings; defaults to ``config.submission``.
        fallback_path: Where undeliverable submissions are written; defaults
            to ``settings.absolute_fallback_path``.

    Example::

        with SubmissionFacade() as audit:
            audit.submit("alice", "USER_LOGIN", "login from 10.0.0.4")
    """

    def __init__(
        self,
        appender: LedgerAppender | None = None,
        settings: SubmissionSettings | None = None,
        *,
        fallback_path: Path | None = None,
    ) -> None:
        self._appender = appender or LedgerAppender()
        self._settings = settings or config.submission
        self._fallback_path = fallback_path or self._settings.absolute_fallback_path
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self._settings.max_workers),
            thread_name_prefix="audit-submit",
        )
        self._slots = threading.BoundedSemaphore(
            max(1, self._settings.max_workers) + max(0, self._settings.queue_capacity)
        )
        self._state_lock = threading.Lock()
        self._pending: set[Future] = set()
        self._closed = False
        self._accepted = 0
        self._committed = 0
        self._diverted = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def appender(self) -> LedgerAppender:
        return self._appender

    @property
    def closed(self) -> bool:
        with self._state_lock:
            return self._closed

    @property
    def stats(self) -> SubmissionStats:
        with self._state_lock:
            return SubmissionStats(
                accepted=self._accepted,
                committed=self._committed,
                diverted=self._diverted,
                pending=len(self._pending),
            )

    def submit(self, actor: str, action: str, details: str) -> None:
        """Record an audit event without waiting for it to be committed.

        Raises:
            ValidationError: Malformed input.  This is the only exception a
                caller can see; everything after validation is asynchronous.
        """
        self._appender.validate(actor, action, details)

        if self.closed:
            self._divert(actor, action, details, reason="shutdown")
            return

        if not self._slots.acquire(timeout=self._settings.enqueue_timeout_seconds):
            logger.warning(
                "audit submission pool saturated; diverting %r by %r to fallback",
                action,
                actor,
            )
            self._divert(actor, action, details, reason="saturated")
            return

        try:
            future = self._executor.submit(self._deliver, actor, action, details)
        except RuntimeError:
            # Executor shut down between the closed check and submit.
            self._slots.release()
            self._divert(actor, action, details, reason="shutdown")
            return

        with self._state_lock:
            self._accepted += 1
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every accepted submission has finished.

        Returns:
            True if nothing is pending any more, False on timeout.
        """
        with self._state_lock:
            snapshot = set(self._pending)
        if not snapshot:
            return True
        _, not_done = wait_for_futures(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work.  Queued submissions still run to completion."""
        with self._state_lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> SubmissionFacade:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _deliver(self, actor: str, action: str, details: str) -> None:
        attempts = max(1, self._settings.resubmit_attempts)
        last_conflict: ConcurrencyConflict | None = None

        for attempt in range(1, attempts + 1):
            try:
                self._appender.submit(actor, action, details)
            except ConcurrencyConflict as exc:
                last_conflict = exc
                logger.warning(
                    "audit submission %r by %r conflicted (attempt %d/%d): %s",
                    action,
                    actor,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt < attempts:
                    time.sleep(self._settings.resubmit_backoff_seconds * attempt)
                continue
            except PersistenceError as exc:
                self._divert(actor, action, details, reason="persistence_error", error=str(exc))
                return
            except Exception as exc:
                # Worker boundary: nothing above this frame would see it.
                logger.exception("unexpected failure delivering audit submission %r", action)
                self._divert(actor, action, details, reason="unexpected_error", error=repr(exc))
                return
            with self._state_lock:
                self._committed += 1
            return

        self._divert(
            actor,
            action,
            details,
            reason="concurrency_conflict",
            error=str(last_conflict),
        )

    def _on_done(self, future: Future) -> None:
        self._slots.release()
        with self._state_lock:
            self._pending.discard(future)

    def _divert(
        self,
        actor: str,
        action: str,
        details: str,
        *,
        reason: str,
        error: str | None = None,
    ) -> None:
        with self._state_lock:
            self._diverted += 1
        try:
            fallback.record_undelivered(
                self._fallback_path,
                actor=actor,
                action=action,
                details=details,
                reason=reason,
                error=error,
            )
        except fallback.FallbackWriteError:
            logger.exception("fallback file write failed; the ERROR log line is the only record")
