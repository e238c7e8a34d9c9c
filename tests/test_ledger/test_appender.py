"""Tests for the serialised append path.

Test organisation
-----------------
- :class:`TestValidation`: malformed submissions are rejected before the lock.
- :class:`TestChaining`: sequence numbers, genesis link, hash linkage.
- :class:`TestConcurrentAppends`: many threads, one contiguous chain.
- :class:`TestFailureHandling`: lock timeout, contention, storage failures.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from audit_ledger.config import LedgerSettings
from audit_ledger.db import ledger_repo
from audit_ledger.db.errors import DatabaseOperationContext, DatabaseWriteError
from audit_ledger.ledger.appender import LedgerAppender, validate_submission
from audit_ledger.ledger.errors import ConcurrencyConflict, PersistenceError, ValidationError
from audit_ledger.ledger.hashing import GENESIS_HASH, compute_entry_hash
from audit_ledger.ledger.verifier import verify


def _write_error(cause: Exception) -> DatabaseWriteError:
    return DatabaseWriteError(
        context=DatabaseOperationContext(operation="ledger.insert_entry"),
        cause=cause,
    )


# ── TestValidation ────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestValidation:
    @pytest.mark.parametrize(
        "actor, action, details, fragment",
        [
            ("", "LOGIN", "ok", "actor"),
            ("   ", "LOGIN", "ok", "actor"),
            ("alice", "", "ok", "action"),
            ("alice", "\t", "ok", "action"),
            ("alice", "LOGIN", None, "details"),
            (None, "LOGIN", "ok", "actor"),
        ],
    )
    def test_rejects_malformed_fields(self, actor, action, details, fragment) -> None:
        with pytest.raises(ValidationError, match=fragment):
            validate_submission(actor, action, details, max_details_length=10)

    def test_rejects_oversized_details(self) -> None:
        with pytest.raises(ValidationError, match="maximum is 10"):
            validate_submission("alice", "LOGIN", "x" * 11, max_details_length=10)

    def test_accepts_empty_details_and_exact_limit(self) -> None:
        validate_submission("alice", "LOGIN", "", max_details_length=10)
        validate_submission("alice", "LOGIN", "x" * 10, max_details_length=10)

    def test_validation_error_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            validate_submission("", "LOGIN", "", max_details_length=10)


@pytest.mark.db
class TestRejectedSubmissions:
    def test_rejected_submission_never_takes_the_lock(self, appender: LedgerAppender) -> None:
        appender._lock = MagicMock()

        with pytest.raises(ValidationError):
            appender.submit("", "LOGIN", "ok")

        appender._lock.acquire.assert_not_called()

    def test_rejected_submission_consumes_no_sequence(self, appender: LedgerAppender) -> None:
        appender.submit("alice", "LOGIN", "ok")
        with pytest.raises(ValidationError):
            appender.submit("alice", "LOGIN", "x" * 1000)
        entry = appender.submit("bob", "LOGOUT", "bye")

        assert entry.sequence == 2
        assert ledger_repo.get_max_sequence() == 2


# ── TestChaining ──────────────────────────────────────────────────────────────


@pytest.mark.db
class TestChaining:
    def test_first_entry_links_to_genesis(self, appender: LedgerAppender) -> None:
        entry = appender.submit("alice", "LOGIN", "ok")

        assert entry.sequence == 1
        assert entry.previous_hash == GENESIS_HASH

    def test_two_entries_form_a_chain(self, appender: LedgerAppender) -> None:
        """alice logs in, bob uploads a document: entry 2 links to entry 1."""
        first = appender.submit("alice", "LOGIN", "ok")
        second = appender.submit("bob", "UPLOAD", "doc.pdf")

        assert first.entry_hash == compute_entry_hash(
            actor="alice",
            action="LOGIN",
            details="ok",
            timestamp=first.timestamp,
            previous_hash=GENESIS_HASH,
        )
        assert second.sequence == 2
        assert second.previous_hash == first.entry_hash
        assert second.entry_hash == compute_entry_hash(
            actor="bob",
            action="UPLOAD",
            details="doc.pdf",
            timestamp=second.timestamp,
            previous_hash=first.entry_hash,
        )

    def test_returned_entry_matches_stored_row(self, appender: LedgerAppender) -> None:
        entry = appender.submit("alice", "LOGIN", "from 10.0.0.4")
        assert ledger_repo.get_entry(1) == entry

    def test_timestamp_comes_from_injected_clock(
        self, test_db: Path, ledger_settings: LedgerSettings
    ) -> None:
        fixed = datetime(2026, 5, 4, 3, 2, 1, 123456, tzinfo=UTC)
        appender = LedgerAppender(ledger_settings, clock=lambda: fixed)

        entry = appender.submit("alice", "LOGIN", "ok")

        assert entry.timestamp == "2026-05-04T03:02:01.123456+00:00"

    def test_tail_tracks_last_commit(self, appender: LedgerAppender) -> None:
        assert appender.tail is None
        entry = appender.submit("alice", "LOGIN", "ok")
        assert appender.tail is not None
        assert appender.tail.sequence == entry.sequence
        assert appender.tail.entry_hash == entry.entry_hash

    def test_new_appender_resumes_existing_chain(
        self, appender: LedgerAppender, ledger_settings: LedgerSettings
    ) -> None:
        first = appender.submit("alice", "LOGIN", "ok")

        restarted = LedgerAppender(ledger_settings)
        second = restarted.submit("alice", "LOGOUT", "bye")

        assert second.sequence == 2
        assert second.previous_hash == first.entry_hash

    def test_second_writer_on_same_file_recovers_from_stale_tail(
        self, appender: LedgerAppender, ledger_settings: LedgerSettings
    ) -> None:
        """Two appenders stand in for two processes sharing one database.

        The first appender's cached tail goes stale when the second one
        commits; its next insert collides on the primary key, the tail is
        reloaded, and the retry chains correctly.
        """
        other = LedgerAppender(ledger_settings)

        appender.submit("alice", "LOGIN", "ok")
        other.submit("bob", "LOGIN", "ok")
        third = appender.submit("alice", "LOGOUT", "bye")

        assert third.sequence == 3
        assert third.previous_hash == ledger_repo.get_entry(2).entry_hash
        assert verify().entries_checked == 3

    def test_forget_tail_reloads_from_storage(self, appender: LedgerAppender) -> None:
        appender.submit("alice", "LOGIN", "ok")
        appender.forget_tail()
        assert appender.tail is None

        entry = appender.submit("alice", "LOGOUT", "bye")
        assert entry.sequence == 2


# ── TestConcurrentAppends ─────────────────────────────────────────────────────


@pytest.mark.db
@pytest.mark.concurrency
class TestConcurrentAppends:
    def test_threads_produce_one_contiguous_chain(self, test_db: Path) -> None:
        appender = LedgerAppender(LedgerSettings(lock_timeout_seconds=10.0))
        threads_count = 8
        per_thread = 10
        barrier = threading.Barrier(threads_count)
        errors: list[BaseException] = []

        def worker(index: int) -> None:
            barrier.wait()
            for n in range(per_thread):
                try:
                    appender.submit(f"user-{index}", "ACTION", f"event {n}")
                except BaseException as exc:  # pragma: no cover - reported below
                    errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        entries = list(ledger_repo.iter_entries())
        total = threads_count * per_thread
        assert [e.sequence for e in entries] == list(range(1, total + 1))
        assert len({e.previous_hash for e in entries}) == total
        assert len({e.entry_hash for e in entries}) == total
        for before, after in zip(entries, entries[1:]):
            assert after.previous_hash == before.entry_hash
            assert after.timestamp >= before.timestamp

        result = verify()
        assert result.entries_checked == total
        assert result.final_hash == entries[-1].entry_hash


# ── TestFailureHandling ───────────────────────────────────────────────────────


@pytest.mark.db
class TestFailureHandling:
    def test_lock_timeout_raises_concurrency_conflict(self, test_db: Path) -> None:
        appender = LedgerAppender(LedgerSettings(lock_timeout_seconds=0.05))
        appender._lock.acquire()
        try:
            with pytest.raises(ConcurrencyConflict, match="Append lock"):
                appender.submit("alice", "LOGIN", "ok")
        finally:
            appender._lock.release()

        assert ledger_repo.get_max_sequence() == 0

    def test_persistent_storage_failure_raises_persistence_error(
        self, appender: LedgerAppender
    ) -> None:
        failure = _write_error(sqlite3.OperationalError("disk I/O error"))

        with patch.object(ledger_repo, "insert_entry", side_effect=failure) as insert:
            with pytest.raises(PersistenceError) as exc_info:
                appender.submit("alice", "LOGIN", "ok")

        assert exc_info.value.attempts == 3
        assert insert.call_count == 3
        assert appender.tail is None
        assert ledger_repo.get_max_sequence() == 0

    def test_persistent_contention_raises_concurrency_conflict(
        self, appender: LedgerAppender
    ) -> None:
        failure = _write_error(sqlite3.IntegrityError("UNIQUE constraint failed"))

        with patch.object(ledger_repo, "insert_entry", side_effect=failure):
            with pytest.raises(ConcurrencyConflict, match="still contended"):
                appender.submit("alice", "LOGIN", "ok")

    def test_transient_failure_restarts_full_cycle(self, appender: LedgerAppender) -> None:
        appender.submit("alice", "LOGIN", "ok")
        real_insert = ledger_repo.insert_entry
        calls = {"n": 0}

        def flaky_insert(conn, entry):
            calls["n"] += 1
            if calls["n"] == 1:
                raise _write_error(sqlite3.OperationalError("database is locked"))
            return real_insert(conn, entry)

        with patch.object(ledger_repo, "insert_entry", side_effect=flaky_insert):
            entry = appender.submit("bob", "UPLOAD", "doc.pdf")

        assert calls["n"] == 2
        assert entry.sequence == 2
        assert verify().entries_checked == 2

    def test_connection_failure_is_wrapped(self, appender: LedgerAppender) -> None:
        with patch(
            "audit_ledger.db.connection.sqlite3.connect",
            side_effect=sqlite3.OperationalError("unable to open database file"),
        ):
            with pytest.raises(PersistenceError) as exc_info:
                appender.submit("alice", "LOGIN", "ok")

        assert isinstance(exc_info.value.__cause__, DatabaseWriteError)
        assert exc_info.value.__cause__.context.operation == "ledger.append"

    def test_failed_attempts_are_logged(self, appender: LedgerAppender, caplog) -> None:
        failure = _write_error(sqlite3.OperationalError("disk I/O error"))

        with caplog.at_level("WARNING", logger="audit_ledger.ledger.appender"):
            with patch.object(ledger_repo, "insert_entry", side_effect=failure):
                with pytest.raises(PersistenceError):
                    appender.submit("alice", "LOGIN", "ok")

        assert sum("append attempt" in r.message for r in caplog.records) == 3
