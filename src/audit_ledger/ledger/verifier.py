"""Chain verification.

:func:`verify` walks a sequence range in ascending order and re-derives
every link of the hash chain from the stored fields.  It fails at the first
entry that does not fit, naming its sequence number and both hash values.

Checks per entry, in order:

1. **Contiguity**: ``sequence`` is exactly one more than the previous
   entry's (or equals the first expected sequence).  A deleted row or an
   edited ``sequence`` shows up here as ``sequence_gap``, reported at the
   position that came up empty with ``actual_hash`` set to ``None``.
2. **Content**: ``compute_entry_hash(stored fields) == stored entry_hash``.
   Any edit to actor/action/details/timestamp/previous_hash that was not
   followed by a re-hash shows up as ``entry_hash_mismatch``.
3. **Link**: ``stored previous_hash == expected``, where ``expected`` is the
   checkpoint/genesis hash for the first entry and the previous entry's hash
   afterwards.  A re-hashed edit or a reordering shows up as
   ``previous_hash_mismatch``.  A link that equals the previous entry's own
   ``previous_hash`` is a fork and raises :exc:`ForkDetectedError`.

A clean pass returns a :class:`VerificationResult` whose ``final_hash`` can be
cached as a :class:`Checkpoint`; :func:`verify_from_checkpoint` then checks
only entries appended since, without re-hashing history.

Verification is read-only, takes no append lock, and reads one committed
snapshot (see :func:`audit_ledger.db.ledger_repo.iter_entries`).
"""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from dataclasses import dataclass

from audit_ledger.config import LedgerSettings, config
from audit_ledger.db import ledger_repo
from audit_ledger.ledger.errors import (
    ForkDetectedError,
    TamperedEntryError,
    ValidationError,
    VerificationCancelled,
)
from audit_ledger.ledger.hashing import (
    GENESIS_HASH,
    SEQUENCE_ORIGIN,
    compute_entry_hash,
    is_hex_digest,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """A previously verified position in the chain."""

    sequence: int
    entry_hash: str


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of a clean verification pass.

    Attributes:
        final_hash: Hash of the last verified entry, or the starting hash when
            the range was empty.
        last_sequence: Sequence of the last verified entry, or the sequence
            just before the range when it was empty.
        entries_checked: Number of entries re-hashed.
    """

    final_hash: str
    last_sequence: int
    entries_checked: int

    @property
    def checkpoint(self) -> Checkpoint:
        return Checkpoint(sequence=self.last_sequence, entry_hash=self.final_hash)


def verify(
    from_seq: int | None = None,
    to_seq: int | None = None,
    checkpoint_hash: str | None = None,
    *,
    cancel_event: threading.Event | None = None,
    settings: LedgerSettings | None = None,
) -> VerificationResult:
    """Verify entries ``from_seq..to_seq`` (inclusive; default: whole ledger).

    Args:
        from_seq: First sequence to check.  Defaults to the origin.
        to_seq: Last sequence to check.  Defaults to the tail at scan start.
        checkpoint_hash: Expected ``previous_hash`` of the first entry in the
            range.  Defaults to the genesis sentinel when starting at the
            origin, and otherwise to the *stored* hash of entry
            ``from_seq - 1`` (trusted, not re-verified).
        cancel_event: When set by another thread, the scan stops with
            :exc:`VerificationCancelled`.
        settings: Ledger settings (batch size); defaults to ``config.ledger``.

    Returns:
        :class:`VerificationResult` for a clean pass.

    Raises:
        TamperedEntryError: At the first entry that breaks the chain.
        ForkDetectedError: When two consecutive entries share a
            ``previous_hash``.
        VerificationCancelled: When ``cancel_event`` is set mid-scan.
        ValidationError: For an inverted range, a malformed checkpoint hash,
            or a ``from_seq`` more than one past the tail without a checkpoint.
    """
    settings = settings or config.ledger
    start = SEQUENCE_ORIGIN if from_seq is None else max(from_seq, SEQUENCE_ORIGIN)
    if to_seq is not None and to_seq < start - 1:
        raise ValidationError(f"to_seq ({to_seq}) precedes from_seq ({start}).")
    if checkpoint_hash is not None and not is_hex_digest(checkpoint_hash):
        raise ValidationError("checkpoint_hash must be a 64-character lowercase hex digest.")

    expected = _starting_hash(start, checkpoint_hash)
    expected_sequence = start
    last_sequence = start - 1
    predecessor_previous_hash: str | None = None
    checked = 0

    entries = ledger_repo.iter_entries(
        after=start - 1,
        until=to_seq,
        batch_size=settings.verify_batch_size,
    )
    with closing(entries):
        for entry in entries:
            if cancel_event is not None and cancel_event.is_set():
                raise VerificationCancelled(last_sequence if checked else None)

            if entry.sequence != expected_sequence:
                # Nothing is stored where the chain continues.
                raise TamperedEntryError(
                    expected_sequence,
                    expected_hash=expected,
                    actual_hash=None,
                    reason="sequence_gap",
                )

            recomputed = compute_entry_hash(
                actor=entry.actor,
                action=entry.action,
                details=entry.details,
                timestamp=entry.timestamp,
                previous_hash=entry.previous_hash,
            )
            if recomputed != entry.entry_hash:
                raise TamperedEntryError(
                    entry.sequence,
                    expected_hash=recomputed,
                    actual_hash=entry.entry_hash,
                    reason="entry_hash_mismatch",
                )

            if entry.previous_hash != expected:
                error_type = (
                    ForkDetectedError
                    if entry.previous_hash == predecessor_previous_hash
                    else TamperedEntryError
                )
                raise error_type(
                    entry.sequence,
                    expected_hash=expected,
                    actual_hash=entry.previous_hash,
                    reason="fork" if error_type is ForkDetectedError else "previous_hash_mismatch",
                )

            predecessor_previous_hash = entry.previous_hash
            expected = entry.entry_hash
            expected_sequence = entry.sequence + 1
            last_sequence = entry.sequence
            checked += 1

    logger.info(
        "ledger: verified %d entries (sequence %d..%d), final hash %s",
        checked,
        start,
        last_sequence,
        expected,
    )
    return VerificationResult(final_hash=expected, last_sequence=last_sequence, entries_checked=checked)


def verify_from_checkpoint(
    checkpoint: Checkpoint,
    *,
    to_seq: int | None = None,
    cancel_event: threading.Event | None = None,
    settings: LedgerSettings | None = None,
) -> VerificationResult:
    """Verify only entries appended after ``checkpoint``.

    The result's ``final_hash`` equals what a full pass from genesis would
    return, provided the checkpoint itself came from a clean pass.
    """
    return verify(
        from_seq=checkpoint.sequence + 1,
        to_seq=to_seq,
        checkpoint_hash=checkpoint.entry_hash,
        cancel_event=cancel_event,
        settings=settings,
    )


def _starting_hash(start: int, checkpoint_hash: str | None) -> str:
    if checkpoint_hash is not None:
        return checkpoint_hash
    if start == SEQUENCE_ORIGIN:
        return GENESIS_HASH

    anchor = ledger_repo.get_entry(start - 1)
    if anchor is None:
        tail = ledger_repo.get_max_sequence()
        if start - 1 > tail:
            raise ValidationError(
                f"from_seq ({start}) is past the ledger tail ({tail}); "
                "pass checkpoint_hash to anchor the range."
            )
        # A hole just before the range: an entry at ``start`` cannot chain to
        # anything legitimate, so report it against the genesis hash.
        logger.debug("ledger: no anchor entry before sequence %d", start)
        return GENESIS_HASH
    logger.debug("ledger: anchoring verification at stored hash of sequence %d", anchor.sequence)
    return anchor.entry_hash
