"""Ledger exception hierarchy.

::

    LedgerError
    ├── ValidationError        malformed input, rejected before the lock
    ├── ConcurrencyConflict    lock timeout / writer contention past the retry limit
    ├── PersistenceError       storage kept failing after full restarts
    ├── TamperedEntryError     verification found a broken link or hash
    │   └── ForkDetectedError  two entries chained to the same predecessor
    └── VerificationCancelled  caller aborted a scan

``TamperedEntryError`` is never repaired automatically.  It carries the exact
sequence number and both hash values for forensic follow-up.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger failures."""


class ValidationError(LedgerError, ValueError):
    """Raised when a submission is malformed.

    Raised before any hash work or lock acquisition, so a rejected submission
    never consumes a sequence number.
    """


class ConcurrencyConflict(LedgerError):
    """Raised when the append lock or the storage writer lock stays contended.

    Callers (normally the submission façade) may resubmit; the next attempt
    starts again from a fresh tail.
    """


class PersistenceError(LedgerError):
    """Raised when storage writes keep failing for non-contention reasons.

    Attributes:
        attempts: Number of full append cycles that were tried.
    """

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class TamperedEntryError(LedgerError):
    """Raised by the verifier at the first entry that breaks the chain.

    Attributes:
        sequence: Sequence number of the offending entry.
        expected_hash: What the chain says the value should be.
        actual_hash: What is stored, or ``None`` for a ``sequence_gap`` where
            no entry exists at ``sequence``.
        reason: One of ``"entry_hash_mismatch"``, ``"previous_hash_mismatch"``,
            ``"sequence_gap"`` or ``"fork"``.
    """

    def __init__(
        self,
        sequence: int,
        *,
        expected_hash: str,
        actual_hash: str | None,
        reason: str,
    ) -> None:
        self.sequence = sequence
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        self.reason = reason
        super().__init__(
            f"Ledger entry {sequence} failed verification ({reason}): "
            f"expected {expected_hash!r}, found {actual_hash!r}."
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "sequence": self.sequence,
            "expected_hash": self.expected_hash,
            "actual_hash": self.actual_hash,
            "reason": self.reason,
        }


class ForkDetectedError(TamperedEntryError):
    """Two entries share a ``previous_hash``.

    Treated as an unrecoverable integrity violation that needs an operator;
    there is no tie-break rule.
    """


class VerificationCancelled(LedgerError):
    """Raised when a caller sets the cancel event during a verification scan.

    Attributes:
        last_sequence: Last sequence that was fully checked, or ``None``.
    """

    def __init__(self, last_sequence: int | None) -> None:
        super().__init__(f"Verification cancelled after sequence {last_sequence}.")
        self.last_sequence = last_sequence
