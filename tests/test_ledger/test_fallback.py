"""Unit tests for the fallback channel.

Test organisation
-----------------
- :class:`TestRecordUndelivered`: record format, checksum and log line.
- :class:`TestReadUndelivered`: parsing, corrupt-line handling.
- :class:`TestReplayFallback`: re-submission through a real appender.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from audit_ledger.db import ledger_repo
from audit_ledger.ledger import fallback
from audit_ledger.ledger.appender import LedgerAppender
from audit_ledger.ledger.errors import PersistenceError
from audit_ledger.ledger.verifier import verify


def _lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def _record(path: Path, actor: str = "alice", reason: str = "saturated") -> str:
    return fallback.record_undelivered(
        path,
        actor=actor,
        action="USER_LOGIN",
        details="login from 10.0.0.4",
        reason=reason,
        error="pool full",
    )


@pytest.mark.unit
class TestRecordUndelivered:
    def test_creates_file_and_parent(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "fallback.jsonl"
        _record(path)
        assert path.exists()

    def test_returns_uuid_hex_record_id(self, fallback_path: Path) -> None:
        record_id = _record(fallback_path)
        assert len(record_id) == 32
        int(record_id, 16)

    def test_record_carries_submission_and_reason(self, fallback_path: Path) -> None:
        record_id = _record(fallback_path)

        (line,) = _lines(fallback_path)
        assert line["record_id"] == record_id
        assert line["actor"] == "alice"
        assert line["action"] == "USER_LOGIN"
        assert line["details"] == "login from 10.0.0.4"
        assert line["reason"] == "saturated"
        assert line["error"] == "pool full"
        assert line["schema_version"] == "1.0"
        assert line["_checksum"].startswith("sha256:")

    def test_appends_one_line_per_record(self, fallback_path: Path) -> None:
        for n in range(3):
            _record(fallback_path, actor=f"user-{n}")
        assert len(_lines(fallback_path)) == 3

    def test_logs_error_before_writing(self, fallback_path: Path, caplog) -> None:
        with caplog.at_level("ERROR", logger="audit_ledger.fallback"):
            record_id = _record(fallback_path)

        (record,) = caplog.records
        assert record.levelname == "ERROR"
        assert record_id in record.getMessage()
        assert "'alice'" in record.getMessage()

    def test_write_failure_raises_fallback_write_error(self, tmp_path: Path, caplog) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")

        with caplog.at_level("ERROR", logger="audit_ledger.fallback"):
            with pytest.raises(fallback.FallbackWriteError):
                _record(blocker / "fallback.jsonl")

        # The log line is still the durable trace of the submission.
        assert len(caplog.records) == 1


@pytest.mark.unit
class TestReadUndelivered:
    def test_missing_file_is_empty(self, fallback_path: Path) -> None:
        assert fallback.read_undelivered(fallback_path) == ([], [])

    def test_round_trips_records(self, fallback_path: Path) -> None:
        _record(fallback_path, actor="alice")
        _record(fallback_path, actor="bob", reason="persistence_error")

        records, corrupt = fallback.read_undelivered(fallback_path)

        assert corrupt == []
        assert [(r.actor, r.reason) for r in records] == [
            ("alice", "saturated"),
            ("bob", "persistence_error"),
        ]

    def test_edited_record_fails_checksum(self, fallback_path: Path) -> None:
        _record(fallback_path)
        (line,) = _lines(fallback_path)
        line["details"] = "edited"
        fallback_path.write_text(json.dumps(line) + "\n", encoding="utf-8")

        records, corrupt = fallback.read_undelivered(fallback_path)

        assert records == []
        assert len(corrupt) == 1

    @pytest.mark.parametrize("garbage", ["not json", "[1, 2, 3]", '{"_checksum": "sha256:00"}'])
    def test_garbage_lines_are_corrupt(self, fallback_path: Path, garbage: str) -> None:
        _record(fallback_path)
        with fallback_path.open("a", encoding="utf-8") as fh:
            fh.write(garbage + "\n")

        records, corrupt = fallback.read_undelivered(fallback_path)

        assert len(records) == 1
        assert corrupt == [garbage]


@pytest.mark.db
class TestReplayFallback:
    def test_missing_file_replays_nothing(
        self, appender: LedgerAppender, fallback_path: Path
    ) -> None:
        result = fallback.replay_fallback(appender, fallback_path)
        assert result == fallback.ReplayResult()

    def test_replayed_records_are_committed_and_removed(
        self, appender: LedgerAppender, fallback_path: Path
    ) -> None:
        _record(fallback_path, actor="alice")
        _record(fallback_path, actor="bob")

        result = fallback.replay_fallback(appender, fallback_path)

        assert result.replayed == [1, 2]
        assert result.failed == []
        assert fallback_path.read_text(encoding="utf-8") == ""
        assert [ledger_repo.get_entry(s).actor for s in (1, 2)] == ["alice", "bob"]
        assert verify().entries_checked == 2

    def test_failed_and_corrupt_records_are_kept(self, fallback_path: Path) -> None:
        _record(fallback_path, actor="alice")
        with fallback_path.open("a", encoding="utf-8") as fh:
            fh.write("not json\n")

        failing = MagicMock(spec=LedgerAppender)
        failing.submit.side_effect = PersistenceError("still down", attempts=3)

        result = fallback.replay_fallback(failing, fallback_path)

        assert result.replayed == []
        assert [r.actor for r in result.failed] == ["alice"]
        assert result.corrupt == ["not json"]

        records, corrupt = fallback.read_undelivered(fallback_path)
        assert [r.actor for r in records] == ["alice"]
        assert corrupt == ["not json"]
