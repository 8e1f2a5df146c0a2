"""
Canonical serialization of audit entries.

Hashing is only reproducible if logically equal entries always produce the
same bytes, so this module is strict: keys are sorted at every depth, output
is compact UTF-8 JSON, and anything JSON cannot represent exactly (non-finite
floats, non-string keys, cycles, arbitrary objects) is rejected.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping

import orjson

from .errors import EncodingError

# 64-bit bounds accepted by orjson
_INT_MIN = -(2**63)
_INT_MAX = 2**64 - 1


def canonicalize(entry: Mapping[str, Any]) -> bytes:
    """
    Produce deterministic JSON bytes for an entry.

    - Sorts keys recursively
    - Uses compact separators, UTF-8
    - Excludes any ``hash`` field

    Raises:
        EncodingError: If the entry holds values with no canonical form.
    """
    if not isinstance(entry, Mapping):
        raise EncodingError(f"entry must be a mapping, got {type(entry).__name__}")
    payload = _normalize({k: v for k, v in entry.items() if k != "hash"}, "$", set())
    try:
        return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)
    except TypeError as e:
        raise EncodingError("Canonical serialization failed", cause=e) from e


def _normalize(value: Any, path: str, active: set[int]) -> Any:
    """Return a plain-JSON copy of ``value`` or raise EncodingError."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        # Drop str subclasses (enums) down to their plain text
        return str.__str__(value)
    if isinstance(value, int):
        if not _INT_MIN <= value <= _INT_MAX:
            raise EncodingError(f"integer out of 64-bit range at {path}", path=path)
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(f"non-finite number at {path}", path=path)
        return float(value)
    if isinstance(value, (list, tuple, Mapping)):
        marker = id(value)
        if marker in active:
            raise EncodingError(f"cyclic structure at {path}", path=path)
        active.add(marker)
        try:
            if isinstance(value, Mapping):
                out: dict[str, Any] = {}
                for key, item in value.items():
                    if not isinstance(key, str):
                        raise EncodingError(
                            f"non-string key {key!r} at {path}", path=path
                        )
                    out[str.__str__(key)] = _normalize(item, f"{path}.{key}", active)
                return out
            return [
                _normalize(item, f"{path}[{idx}]", active)
                for idx, item in enumerate(value)
            ]
        finally:
            active.discard(marker)
    raise EncodingError(
        f"unsupported type {type(value).__name__} at {path}", path=path
    )


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("timestamp must be timezone-aware")
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
