"""
Error hierarchy for the audit chain.

Append-side errors (`InvalidEntryError`, `EncodingError`, `AppendFailedError`)
always propagate to the caller. `ParseError` describes a single unreadable
record and is only ever attached to verification results, never raised out of
a scan.
"""

from __future__ import annotations

from typing import Any


class AuditChainError(Exception):
    """Base exception for all auditchain errors.

    Args:
        message: Human readable description.
        category: Log category the error relates to, when known.
        cause: Underlying exception, kept for diagnostics.
        **context: Extra structured fields for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        category: str | None = None,
        cause: BaseException | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.cause = cause
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error.type": type(self).__name__,
            "error.message": self.message,
        }
        if self.category is not None:
            data["category"] = self.category
        if self.cause is not None:
            data["error.cause"] = f"{type(self.cause).__name__}: {self.cause}"
        data.update(self.context)
        return data


class InvalidEntryError(AuditChainError):
    """Raised when caller supplied event fields fail validation."""


class EncodingError(InvalidEntryError):
    """Raised when an entry cannot be canonicalized (NaN, cycles, bad types)."""


class AppendFailedError(AuditChainError):
    """Raised when an entry could not be durably persisted."""


class ParseError(AuditChainError):
    """Describes a stored record that could not be parsed."""

    def __init__(self, message: str, *, position: int, **kwargs: Any) -> None:
        super().__init__(message, position=position, **kwargs)
        self.position = position


class ConfigurationError(AuditChainError):
    """Raised when settings are invalid or cannot be loaded."""
