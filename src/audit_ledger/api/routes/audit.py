"""Read-only audit endpoints: listing, point lookup, verification, stats.

All handlers are plain ``def`` functions so FastAPI runs them in its worker
threadpool; the underlying SQLite reads are blocking.
"""

import logging
from typing import Literal

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from audit_ledger.api.models import (
    ActorCount,
    AuditEntryModel,
    AuditLogPageResponse,
    AuditStatsResponse,
    TamperedResponse,
    VerifyResponse,
)
from audit_ledger.ledger import query, verifier
from audit_ledger.ledger.errors import TamperedEntryError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])


@router.get("/logs", response_model=AuditLogPageResponse)
def list_logs(
    actor: str | None = None,
    action: str | None = None,
    since: str | None = Query(default=None, description="Inclusive ISO-8601 lower bound"),
    until: str | None = Query(default=None, description="Inclusive ISO-8601 upper bound"),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=query.DEFAULT_PAGE_SIZE, ge=1, le=query.MAX_PAGE_SIZE),
    order: Literal["desc", "asc"] = "desc",
):
    """List ledger entries, newest first unless ``order=asc``."""
    result = query.list_entries(
        actor=actor,
        action=action,
        since=since,
        until=until,
        page=page,
        size=size,
        newest_first=order == "desc",
    )
    return AuditLogPageResponse(
        items=[AuditEntryModel.from_entry(entry) for entry in result.items],
        page=result.page,
        size=result.size,
        total=result.total,
        has_next=result.has_next,
    )


@router.get("/logs/{sequence}", response_model=AuditEntryModel)
def get_log(sequence: int):
    """Return a single entry by sequence number."""
    entry = query.get_entry(sequence)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No ledger entry {sequence}")
    return AuditEntryModel.from_entry(entry)


@router.get(
    "/verify",
    response_model=VerifyResponse,
    responses={409: {"model": TamperedResponse}},
)
def verify_chain(
    from_seq: int | None = Query(default=None, ge=1),
    to_seq: int | None = Query(default=None, ge=0),
    checkpoint_hash: str | None = None,
):
    """Verify the chain (default: whole ledger).

    A tampered ledger answers 409 with the offending sequence and both
    hashes.  Nothing is repaired.
    """
    try:
        result = verifier.verify(from_seq=from_seq, to_seq=to_seq, checkpoint_hash=checkpoint_hash)
    except TamperedEntryError as exc:
        logger.critical("audit ledger verification failed: %s", exc)
        return JSONResponse(status_code=409, content=TamperedResponse(**exc.to_dict()).model_dump())
    return VerifyResponse(
        final_hash=result.final_hash,
        last_sequence=result.last_sequence,
        entries_checked=result.entries_checked,
    )


@router.get("/stats", response_model=AuditStatsResponse)
def stats(top: int = Query(default=10, ge=1, le=100)):
    """Dashboard counters: total entries, per-action counts, most active actors."""
    return AuditStatsResponse(
        total=query.count_entries(),
        by_action=query.count_by_action(),
        top_actors=[ActorCount(actor=a, count=c) for a, c in query.top_actors(top)],
    )
