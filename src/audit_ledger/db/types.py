"""Shared DB-layer dataclasses for repository contracts."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

# Column order used by every SELECT in the repository; ``AuditEntry.from_row``
# depends on it.
ENTRY_COLUMNS = "sequence, actor, action, details, timestamp, previous_hash, entry_hash"


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """
    One committed, immutable ledger record.

    Attributes:
        sequence: Commit-order position, contiguous from 1.
        actor: Who performed the action (username or service id).
        action: Categorical label such as ``"USER_LOGIN"`` or
            ``"DOCUMENT_UPLOAD"``.
        details: Free text describing the event.
        timestamp: UTC ISO-8601 instant captured inside the append lock.
        previous_hash: ``entry_hash`` of the preceding entry, or the genesis
            sentinel for sequence 1.
        entry_hash: SHA-256 hex digest over the five fields above.
    """

    sequence: int
    actor: str
    action: str
    details: str
    timestamp: str
    previous_hash: str
    entry_hash: str

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> AuditEntry:
        """Build an entry from a row selected with :data:`ENTRY_COLUMNS`."""
        sequence, actor, action, details, timestamp, previous_hash, entry_hash = row
        return cls(
            sequence=int(sequence),
            actor=actor,
            action=action,
            details=details,
            timestamp=timestamp,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dict suitable for JSON export."""
        return asdict(self)


@dataclass(frozen=True, slots=True)
class LedgerTail:
    """The most recently committed entry's position and hash."""

    sequence: int
    entry_hash: str


@dataclass(slots=True)
class EntryPage:
    """
    One page of a filtered ledger listing.

    Attributes:
        items: Entries on this page, in the requested order.
        page: Zero-based page index.
        size: Requested page size.
        total: Number of entries matching the filter across all pages.
    """

    items: list[AuditEntry] = field(default_factory=list)
    page: int = 0
    size: int = 50
    total: int = 0

    @property
    def has_next(self) -> bool:
        return (self.page + 1) * self.size < self.total
