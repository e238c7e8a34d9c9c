"""Tamper-evident audit ledger.

An append-only, SHA-256 hash-chained record of every privileged operation in
the document-management backend.  Business subsystems submit events through
:class:`~audit_ledger.ledger.submission.SubmissionFacade`; compliance tooling
reads them through :mod:`audit_ledger.ledger.query` and checks them with
:mod:`audit_ledger.ledger.verifier`.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# If the package is imported without being installed (for example straight
# from a source checkout), fall back to the last released version so the
# application can still start.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("audit-ledger")
except PackageNotFoundError:
    __version__ = "0.3.0"
