"""Ledger package: append, verify and query the hash-chained audit log.

Public surface
--------------
- :class:`SubmissionFacade`: fire-and-forget submission for business code.
- :class:`LedgerAppender`: serialised append path (owns the chain tail).
- :func:`verify` / :func:`verify_from_checkpoint`: chain verification.
- :mod:`~audit_ledger.ledger.query`: read-only reporting access.
- The exception hierarchy rooted at :exc:`LedgerError`.

Usage example
-------------
::

    from audit_ledger.ledger import SubmissionFacade, verify

    audit = SubmissionFacade()
    audit.submit("alice", "USER_LOGIN", "login from 10.0.0.4")

    result = verify()
    checkpoint = result.checkpoint   # cache for incremental verification
"""

from audit_ledger.db.types import AuditEntry, EntryPage, LedgerTail
from audit_ledger.ledger.appender import LedgerAppender, validate_submission
from audit_ledger.ledger.errors import (
    ConcurrencyConflict,
    ForkDetectedError,
    LedgerError,
    PersistenceError,
    TamperedEntryError,
    ValidationError,
    VerificationCancelled,
)
from audit_ledger.ledger.hashing import GENESIS_HASH, SEQUENCE_ORIGIN, compute_entry_hash
from audit_ledger.ledger.submission import SubmissionFacade, SubmissionStats
from audit_ledger.ledger.verifier import (
    Checkpoint,
    VerificationResult,
    verify,
    verify_from_checkpoint,
)

__all__ = [
    "AuditEntry",
    "Checkpoint",
    "ConcurrencyConflict",
    "EntryPage",
    "ForkDetectedError",
    "GENESIS_HASH",
    "LedgerAppender",
    "LedgerError",
    "LedgerTail",
    "PersistenceError",
    "SEQUENCE_ORIGIN",
    "SubmissionFacade",
    "SubmissionStats",
    "TamperedEntryError",
    "ValidationError",
    "VerificationCancelled",
    "VerificationResult",
    "compute_entry_hash",
    "validate_submission",
    "verify",
    "verify_from_checkpoint",
]
