"""
Pydantic models for the read-only audit API.

Every model here is a response model: the HTTP surface exposes ledger
contents and verification outcomes but never accepts writes.  Submissions
reach the ledger only through :class:`~audit_ledger.ledger.SubmissionFacade`
inside the business process.
"""

from pydantic import BaseModel

from audit_ledger.db.types import AuditEntry


class AuditEntryModel(BaseModel):
    """
    One persisted ledger entry, field for field.

    Attributes:
        sequence: Commit-order position, contiguous from 1
        actor: Who performed the action
        action: Categorical label (e.g. "USER_LOGIN", "DOCUMENT_UPLOAD")
        details: Free text describing the event
        timestamp: UTC ISO-8601 instant
        previous_hash: Hash of the preceding entry (or the genesis sentinel)
        entry_hash: SHA-256 over the five fields above
    """

    sequence: int
    actor: str
    action: str
    details: str
    timestamp: str
    previous_hash: str
    entry_hash: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryModel":
        return cls(**entry.to_dict())


class AuditLogPageResponse(BaseModel):
    """One page of a filtered listing."""

    items: list[AuditEntryModel]
    page: int
    size: int
    total: int
    has_next: bool


class VerifyResponse(BaseModel):
    """
    Result of a clean verification pass.

    ``final_hash`` with ``last_sequence`` can be passed back as
    ``checkpoint_hash`` / ``from_seq = last_sequence + 1`` to verify only
    newer entries next time.
    """

    status: str = "ok"
    final_hash: str
    last_sequence: int
    entries_checked: int


class TamperedResponse(BaseModel):
    """Body of the 409 response when verification finds a broken link."""

    status: str = "tampered"
    sequence: int
    expected_hash: str
    actual_hash: str | None
    reason: str


class ActorCount(BaseModel):
    actor: str
    count: int


class AuditStatsResponse(BaseModel):
    """Dashboard counters."""

    total: int
    by_action: dict[str, int]
    top_actors: list[ActorCount]
