"""Health and root endpoints.

Provides the root ``/`` endpoint (API identity and version) and the
``/health`` endpoint (liveness check with the current ledger tail).
"""

from fastapi import APIRouter

from audit_ledger import __version__
from audit_ledger.db import ledger_repo

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint showing API identity and current version."""
    return {"message": "Audit Ledger API", "version": __version__}


@router.get("/health")
def health_check():
    """Health check endpoint."""
    tail = ledger_repo.get_tail()
    return {
        "status": "ok",
        "last_sequence": tail.sequence if tail else 0,
        "last_hash": tail.entry_hash if tail else None,
    }
