"""
Internal diagnostics for non-fatal conditions.

Emits one structured JSON line per event to stderr when internal logging is
enabled (``AUDITCHAIN_INTERNAL_LOGGING_ENABLED=true``). Diagnostics must never
raise into the audit path.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from typing import Any, Callable

import orjson

_Writer = Callable[[dict[str, Any]], None]

# Cached on first use; tests reset it to None between cases
_internal_logging_enabled: bool | None = None


def _default_writer(payload: dict[str, Any]) -> None:
    sys.stderr.buffer.write(orjson.dumps(payload, default=str) + b"\n")
    sys.stderr.buffer.flush()


_writer: _Writer = _default_writer


def _is_enabled() -> bool:
    global _internal_logging_enabled
    if _internal_logging_enabled is None:
        try:
            from .settings import AuditSettings

            _internal_logging_enabled = AuditSettings().internal_logging_enabled
        except Exception:
            _internal_logging_enabled = False
    return _internal_logging_enabled


def set_writer_for_tests(writer: _Writer) -> None:
    """Replace the diagnostics writer (test hook)."""
    global _writer
    _writer = writer


def enable_for_tests(enabled: bool = True) -> None:
    global _internal_logging_enabled
    _internal_logging_enabled = enabled


def _reset_for_tests() -> None:
    global _writer, _internal_logging_enabled
    _writer = _default_writer
    _internal_logging_enabled = None


def _emit(level: str, component: str, message: str, **fields: Any) -> None:
    if not _is_enabled():
        return
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "level": level,
        "component": component,
        "message": message,
    }
    payload.update(fields)
    try:
        _writer(payload)
    except Exception:
        # Diagnostics are best-effort
        return


def info(component: str, message: str, **fields: Any) -> None:
    _emit("INFO", component, message, **fields)


def warn(component: str, message: str, **fields: Any) -> None:
    _emit("WARN", component, message, **fields)


def error(component: str, message: str, **fields: Any) -> None:
    _emit("ERROR", component, message, **fields)
