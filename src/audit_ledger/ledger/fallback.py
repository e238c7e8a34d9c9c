"""Fallback channel for submissions that could not be committed.

A submission must never vanish silently.  When the appender gives up (lock
or writer contention past the retry limit, persistent storage failure), or
the submission pool is saturated or shut down, the submission is:

1. logged at ``ERROR`` on the ``audit_ledger.fallback`` logger, and
2. appended as one JSON line to the fallback file
   (``submission.fallback_path``).

Record format
-------------
::

    {
      "record_id":      "a3f91c9e2d4b5e6f...",
      "recorded_at":    "2026-02-27T14:23:01.452345+00:00",
      "schema_version": "1.0",
      "reason":         "persistence_error",
      "error":          "Ledger append for 'USER_LOGIN' ... failed ...",
      "actor":          "alice",
      "action":         "USER_LOGIN",
      "details":        "login from 10.0.0.4",
      "_checksum":      "sha256:b94f3e..."
    }

``_checksum`` covers every other field (``sort_keys=True``) so that
:func:`replay_fallback` refuses records edited after the fact.

Concurrency
-----------
``fcntl.flock(LOCK_EX)`` is held for every append and for the whole
read/replay/rewrite cycle of :func:`replay_fallback`.  ``fcntl`` is
POSIX-only.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from audit_ledger.ledger.errors import LedgerError

if TYPE_CHECKING:
    from audit_ledger.ledger.appender import LedgerAppender

logger = logging.getLogger("audit_ledger.fallback")

# Increment when the record format changes in a backwards-incompatible way.
_SCHEMA_VERSION = "1.0"


class FallbackWriteError(Exception):
    """Raised when a fallback record cannot be written to disk.

    The ERROR log line has already been emitted by then, so the submission
    is still traceable through the logging pipeline.
    """


@dataclass(frozen=True)
class FallbackRecord:
    """One undelivered submission read back from the fallback file."""

    record_id: str
    recorded_at: str
    reason: str
    error: str | None
    actor: str
    action: str
    details: str


@dataclass
class ReplayResult:
    """Outcome of :func:`replay_fallback`.

    Attributes:
        replayed: Sequence numbers committed for replayed records.
        failed: Records that failed again and were kept in the file.
        corrupt: Raw lines kept in the file because they did not parse or
            their checksum did not match.
    """

    replayed: list[int] = field(default_factory=list)
    failed: list[FallbackRecord] = field(default_factory=list)
    corrupt: list[str] = field(default_factory=list)


def record_undelivered(
    path: Path,
    *,
    actor: str,
    action: str,
    details: str,
    reason: str,
    error: str | None = None,
) -> str:
    """Log and persist one undelivered submission.

    Returns:
        The ``record_id`` (UUID4 hex) of the written record.

    Raises:
        FallbackWriteError: If the file write fails.  The ERROR log line has
            been emitted before the write is attempted.
    """
    record_id = uuid.uuid4().hex
    logger.error(
        "undelivered audit submission %s (%s): actor=%r action=%r details=%r error=%s",
        record_id,
        reason,
        actor,
        action,
        details,
        error,
    )

    body: dict = {
        "record_id": record_id,
        "recorded_at": datetime.now(UTC).isoformat(),
        "schema_version": _SCHEMA_VERSION,
        "reason": reason,
        "error": error,
        "actor": actor,
        "action": action,
        "details": details,
    }
    record = {**body, "_checksum": f"sha256:{_compute_checksum(body)}"}
    line = json.dumps(record, ensure_ascii=False, sort_keys=True)

    try:
        _append_line_locked(path, line)
    except OSError as exc:
        raise FallbackWriteError(
            f"Failed to write fallback record {record_id!r} to {path}: {exc}"
        ) from exc
    return record_id


def read_undelivered(path: Path) -> tuple[list[FallbackRecord], list[str]]:
    """Parse the fallback file into valid records and corrupt raw lines."""
    if not path.exists():
        return [], []
    return _parse_lines(path.read_text(encoding="utf-8").splitlines())


def replay_fallback(appender: LedgerAppender, path: Path) -> ReplayResult:
    """Re-submit every valid fallback record through ``appender``.

    Records are replayed in file order.  Committed records are removed from
    the file; records that fail again and corrupt lines are written back.
    Replayed entries get a fresh commit timestamp; the original submission
    time stays visible in the log and in the record's ``recorded_at``.
    """
    result = ReplayResult()
    if not path.exists():
        return result

    with path.open("r+", encoding="utf-8") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            records, result.corrupt = _parse_lines(fh.read().splitlines())
            kept_lines = list(result.corrupt)
            for record in records:
                try:
                    entry = appender.submit(record.actor, record.action, record.details)
                except LedgerError as exc:
                    logger.warning("replay of fallback record %s failed: %s", record.record_id, exc)
                    result.failed.append(record)
                    kept_lines.append(_serialise(record))
                    continue
                logger.info(
                    "replayed fallback record %s as sequence %d",
                    record.record_id,
                    entry.sequence,
                )
                result.replayed.append(entry.sequence)

            fh.seek(0)
            fh.truncate()
            for line in kept_lines:
                fh.write(line + "\n")
            fh.flush()
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
    return result


# ── Internal helpers ──────────────────────────────────────────────────────────


def _compute_checksum(payload: dict) -> str:
    """SHA-256 hex digest of the canonical JSON serialisation of ``payload``."""
    canonical = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _serialise(record: FallbackRecord) -> str:
    body = {
        "record_id": record.record_id,
        "recorded_at": record.recorded_at,
        "schema_version": _SCHEMA_VERSION,
        "reason": record.reason,
        "error": record.error,
        "actor": record.actor,
        "action": record.action,
        "details": record.details,
    }
    return json.dumps(
        {**body, "_checksum": f"sha256:{_compute_checksum(body)}"},
        ensure_ascii=False,
        sort_keys=True,
    )


def _parse_lines(lines: list[str]) -> tuple[list[FallbackRecord], list[str]]:
    records: list[FallbackRecord] = []
    corrupt: list[str] = []
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        try:
            envelope = json.loads(line)
        except json.JSONDecodeError:
            corrupt.append(line)
            continue
        if not isinstance(envelope, dict):
            corrupt.append(line)
            continue
        body = {k: v for k, v in envelope.items() if k != "_checksum"}
        if envelope.get("_checksum") != f"sha256:{_compute_checksum(body)}":
            corrupt.append(line)
            continue
        try:
            records.append(
                FallbackRecord(
                    record_id=body["record_id"],
                    recorded_at=body["recorded_at"],
                    reason=body["reason"],
                    error=body.get("error"),
                    actor=body["actor"],
                    action=body["action"],
                    details=body["details"],
                )
            )
        except KeyError:
            corrupt.append(line)
    return records, corrupt


def _append_line_locked(path: Path, line: str) -> None:
    """Append a single newline-terminated line to ``path`` under an exclusive lock.

    Creates the parent directory and the file if they do not exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            fh.write(line + "\n")
            fh.flush()
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
