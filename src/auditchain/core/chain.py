"""
Hash chain engine.

``hash_i = SHA-256(bytes.fromhex(hash_{i-1}) || canonical(entry_i))``

Every category starts from the same documented genesis value, 32 zero bytes,
so the first entry of a fresh log never depends on another category's state.
"""

from __future__ import annotations

import hashlib
import re

from .canonical import canonicalize
from .types import LogCategory, LogEntry

DIGEST_ALGORITHM = "sha256"
DIGEST_SIZE = 32
GENESIS_HASH = "00" * DIGEST_SIZE

_HEX_DIGEST = re.compile(r"[0-9a-f]{64}")


def genesis(category: LogCategory) -> str:
    """Return the starting ``prev_hash`` for ``category`` (same for all)."""
    LogCategory(category)
    return GENESIS_HASH


def is_hex_digest(value: object) -> bool:
    return isinstance(value, str) and _HEX_DIGEST.fullmatch(value) is not None


def next_hash(prev_hash: str, canonical_bytes: bytes) -> str:
    """Digest ``prev_hash`` followed by ``canonical_bytes``; lowercase hex."""
    if not is_hex_digest(prev_hash):
        raise ValueError(f"prev_hash must be {DIGEST_SIZE * 2} lowercase hex chars")
    digest = hashlib.new(DIGEST_ALGORITHM)
    digest.update(bytes.fromhex(prev_hash))
    digest.update(canonical_bytes)
    return digest.hexdigest()


def seal_entry(entry: LogEntry, prev_hash: str) -> LogEntry:
    """Return ``entry`` with its ``hash`` computed against ``prev_hash``.

    Raises:
        EncodingError: If the entry cannot be canonicalized.
    """
    payload = canonicalize(entry.to_record(include_hash=False))
    return entry.with_hash(next_hash(prev_hash, payload))
