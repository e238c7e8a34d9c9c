"""
FastAPI server exposing the audit ledger to compliance and dashboard tooling.

This module builds the read-only HTTP application:
- root and health endpoints
- ``/api/v1/audit/*`` listing, lookup, verification and stats
- exception handlers mapping ledger/storage failures to HTTP status codes

Writes are not exposed; business code submits through
:class:`~audit_ledger.ledger.SubmissionFacade` in-process.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from audit_ledger import __version__
from audit_ledger.api.routes import audit, health
from audit_ledger.db.errors import DatabaseError
from audit_ledger.db.schema import init_database
from audit_ledger.ledger.errors import LedgerError, ValidationError

logger = logging.getLogger(__name__)


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    logger.error("ledger error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


async def _database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error("storage unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Ledger storage unavailable"})


def create_app() -> FastAPI:
    """Build the FastAPI application with routes and error mapping."""
    application = FastAPI(title="Audit Ledger", version=__version__)

    # Dashboards are served from a different origin.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    application.add_exception_handler(ValidationError, _validation_error_handler)
    application.add_exception_handler(LedgerError, _ledger_error_handler)
    application.add_exception_handler(DatabaseError, _database_error_handler)

    application.include_router(health.router)
    application.include_router(audit.router)
    return application


app = create_app()


def start_server(host: str | None = None, port: int | None = None) -> None:
    """Ensure the schema exists and run the app under uvicorn."""
    import uvicorn

    from audit_ledger.config import config

    init_database()
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.logging.level.lower(),
    )
