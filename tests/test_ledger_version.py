"""Tests for version management.

``audit_ledger.__version__`` comes from the installed package metadata
(``pyproject.toml``); the FastAPI schema and the root endpoint must agree
with it.
"""

from __future__ import annotations

import re

import pytest

import audit_ledger

_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(-[A-Za-z0-9]+(\.[A-Za-z0-9]+)*)?$")


@pytest.mark.unit
def test_version_is_semver() -> None:
    assert _SEMVER_RE.match(audit_ledger.__version__)


@pytest.mark.api
def test_openapi_and_root_report_package_version(test_client) -> None:
    assert test_client.get("/openapi.json").json()["info"]["version"] == audit_ledger.__version__
    assert test_client.get("/").json()["version"] == audit_ledger.__version__
