"""Read-only reporting access to the ledger.

Thin layer over :mod:`audit_ledger.db.ledger_repo` that normalises filter
arguments (time bounds to the stored UTC format, page/size to limit/offset)
and shapes results for dashboards and compliance export.  It carries no
integrity responsibility and never coordinates with the appender.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime
from typing import IO

from audit_ledger.db import ledger_repo
from audit_ledger.db.types import AuditEntry, EntryPage
from audit_ledger.ledger.errors import ValidationError
from audit_ledger.ledger.hashing import SEQUENCE_ORIGIN, utc_timestamp

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


def _normalise_bound(value: datetime | str | None) -> str | None:
    """Turn a datetime or ISO-8601 string into the stored UTC timestamp format."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid ISO-8601 timestamp: {value!r}.") from exc
    return utc_timestamp(value)


def list_entries(
    *,
    actor: str | None = None,
    action: str | None = None,
    since: datetime | str | None = None,
    until: datetime | str | None = None,
    page: int = 0,
    size: int = DEFAULT_PAGE_SIZE,
    newest_first: bool = True,
) -> EntryPage:
    """Return one page of entries matching every given filter.

    Args:
        actor: Exact actor match.
        action: Exact action match.
        since: Inclusive lower time bound (naive values are taken as UTC).
        until: Inclusive upper time bound.
        page: Zero-based page index.
        size: Page size, ``1..MAX_PAGE_SIZE``.
        newest_first: Order by descending sequence (default) or ascending.

    Raises:
        ValidationError: For a negative page, out-of-range size, malformed
            timestamps, or ``since`` after ``until``.
    """
    if page < 0:
        raise ValidationError("page must be >= 0.")
    if not 1 <= size <= MAX_PAGE_SIZE:
        raise ValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}.")

    since_ts = _normalise_bound(since)
    until_ts = _normalise_bound(until)
    if since_ts is not None and until_ts is not None and since_ts > until_ts:
        raise ValidationError("since must not be after until.")

    items, total = ledger_repo.list_entries(
        actor=actor,
        action=action,
        since=since_ts,
        until=until_ts,
        limit=size,
        offset=page * size,
        newest_first=newest_first,
    )
    return EntryPage(items=items, page=page, size=size, total=total)


def get_entry(sequence: int) -> AuditEntry | None:
    """Return the entry at ``sequence`` or ``None``."""
    return ledger_repo.get_entry(sequence)


def count_entries(*, actor: str | None = None, action: str | None = None) -> int:
    """Count entries, optionally for one actor and/or action."""
    return ledger_repo.count_entries(actor=actor, action=action)


def count_by_action() -> dict[str, int]:
    """Entry counts per action label, for dashboards."""
    return ledger_repo.count_by_action()


def top_actors(limit: int = 10) -> list[tuple[str, int]]:
    """The ``limit`` most active actors with their entry counts."""
    if limit < 1:
        raise ValidationError("limit must be >= 1.")
    return ledger_repo.count_by_actor(limit=limit)


def recent_activity(limit: int = 10) -> list[AuditEntry]:
    """The ``limit`` most recent entries, newest first."""
    return list_entries(page=0, size=limit).items


def iter_range(
    from_seq: int | None = None,
    to_seq: int | None = None,
    *,
    batch_size: int = 500,
) -> Iterator[AuditEntry]:
    """Yield entries ``from_seq..to_seq`` in ascending sequence order."""
    start = SEQUENCE_ORIGIN if from_seq is None else max(from_seq, SEQUENCE_ORIGIN)
    yield from ledger_repo.iter_entries(after=start - 1, until=to_seq, batch_size=batch_size)


def export_entries(
    stream: IO[str],
    *,
    from_seq: int | None = None,
    to_seq: int | None = None,
) -> int:
    """Write entries as JSON lines in ascending order for compliance export.

    Every line carries all seven persisted fields, so the export can be
    re-verified offline with :func:`~audit_ledger.ledger.hashing.compute_entry_hash`.

    Returns:
        Number of lines written.
    """
    written = 0
    for entry in iter_range(from_seq, to_seq):
        stream.write(json.dumps(entry.to_dict(), ensure_ascii=False, sort_keys=True) + "\n")
        written += 1
    return written
