"""
auditchain: tamper-evident, hash-chained audit logs for backup operations.

Usage:
    from auditchain import AuditLogger, InMemoryLogStore

    audit = AuditLogger(InMemoryLogStore())
    await audit.record_backup_created("user-1", "database", "/b.sql.gz")
    reports = await audit.check_integrity()
"""

from ._version import __version__
from .audit import AuditLogger
from .core.canonical import canonicalize, format_timestamp
from .core.chain import GENESIS_HASH, genesis, next_hash, seal_entry
from .core.errors import (
    AppendFailedError,
    AuditChainError,
    ConfigurationError,
    EncodingError,
    InvalidEntryError,
    ParseError,
)
from .core.settings import AuditSettings, load_settings
from .core.types import (
    AccessSubject,
    AuditEventTag,
    BackupSubject,
    LogCategory,
    LogEntry,
    ParseFailure,
    RestoreSubject,
    StoredRecord,
)
from .stores import BaseLogStore, FileLogStore, InMemoryLogStore, RotationRecord
from .verify import ArchiveReport, IntegrityVerifier, InvalidEntry, VerificationReport

__all__ = [
    "__version__",
    # Facade
    "AuditLogger",
    # Codec and chain
    "canonicalize",
    "format_timestamp",
    "GENESIS_HASH",
    "genesis",
    "next_hash",
    "seal_entry",
    # Types
    "LogCategory",
    "AuditEventTag",
    "LogEntry",
    "BackupSubject",
    "RestoreSubject",
    "AccessSubject",
    "StoredRecord",
    "ParseFailure",
    # Stores
    "BaseLogStore",
    "FileLogStore",
    "InMemoryLogStore",
    "RotationRecord",
    # Verification
    "IntegrityVerifier",
    "VerificationReport",
    "InvalidEntry",
    "ArchiveReport",
    # Settings
    "AuditSettings",
    "load_settings",
    # Errors
    "AuditChainError",
    "InvalidEntryError",
    "EncodingError",
    "AppendFailedError",
    "ParseError",
    "ConfigurationError",
]
