"""Hash-chain primitives.

Every entry hash is a SHA-256 hex digest over the canonical JSON
serialisation of the five hashed fields::

    {"action": ..., "actor": ..., "details": ..., "previous_hash": ...,
     "timestamp": ...}

serialised with ``sort_keys=True, ensure_ascii=False`` and encoded as UTF-8.
The JSON encoding keeps field boundaries unambiguous: ``("ab", "c")`` and
``("a", "bc")`` never produce the same input bytes.

The first entry chains to :data:`GENESIS_HASH`.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import UTC, datetime

#: ``previous_hash`` of sequence 1.  Same width as a real digest so the
#: persisted layout is uniform.
GENESIS_HASH = "0" * 64

#: First sequence number ever assigned.
SEQUENCE_ORIGIN = 1

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def compute_entry_hash(
    *,
    actor: str,
    action: str,
    details: str,
    timestamp: str,
    previous_hash: str,
) -> str:
    """Return the 64-character lowercase SHA-256 hex digest for an entry.

    Pure function of its arguments; the verifier calls it with the stored
    fields and compares against the stored ``entry_hash``.

    Example::

        digest = compute_entry_hash(
            actor="alice",
            action="LOGIN",
            details="ok",
            timestamp="2026-01-01T00:00:00.000000+00:00",
            previous_hash=GENESIS_HASH,
        )
        assert len(digest) == 64
    """
    payload = {
        "actor": actor,
        "action": action,
        "details": details,
        "timestamp": timestamp,
        "previous_hash": previous_hash,
    }
    canonical = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def utc_timestamp(moment: datetime | None = None) -> str:
    """Format ``moment`` (default: now) as the stored UTC ISO-8601 string.

    Always carries microseconds and a ``+00:00`` offset so every stored
    timestamp has the same width and sorts chronologically as text.
    """
    moment = moment or datetime.now(UTC)
    if moment.tzinfo is None:
        # Naive datetimes from callers are taken to be UTC already.
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def is_hex_digest(value: str) -> bool:
    """True if ``value`` looks like a lowercase SHA-256 hex digest."""
    return bool(_HEX64.match(value))
