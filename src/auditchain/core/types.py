"""
Data model for audit log entries.

Each `LogCategory` owns an independent, totally ordered chain. Entries are
validated with Pydantic at the facade boundary; records read back from
storage are kept as raw mappings so verification hashes exactly what was
stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from .errors import ParseError


class LogCategory(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"
    ACCESS = "access"


class AuditEventTag(str, Enum):
    BACKUP_CREATED = "BACKUP_CREATED"
    BACKUP_RESTORED = "BACKUP_RESTORED"
    BACKUP_ACCESSED = "BACKUP_ACCESSED"


EVENT_BY_CATEGORY: dict[LogCategory, AuditEventTag] = {
    LogCategory.BACKUP: AuditEventTag.BACKUP_CREATED,
    LogCategory.RESTORE: AuditEventTag.BACKUP_RESTORED,
    LogCategory.ACCESS: AuditEventTag.BACKUP_ACCESSED,
}

CATEGORY_BY_EVENT: dict[AuditEventTag, LogCategory] = {
    v: k for k, v in EVENT_BY_CATEGORY.items()
}

# Operational detail only (sizes, durations); never secrets
Metadata = dict[str, JsonValue]


class _Subject(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    metadata: Metadata = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class BackupSubject(_Subject):
    """Subject of a ``BACKUP_CREATED`` entry."""

    type: str = Field(min_length=1, description="Backup kind, e.g. database")
    path: str = Field(min_length=1, description="Location of the backup file")


class RestoreSubject(_Subject):
    """Subject of a ``BACKUP_RESTORED`` entry."""

    backup_file: str = Field(alias="backupFile", min_length=1)


class AccessSubject(_Subject):
    """Subject of a ``BACKUP_ACCESSED`` entry."""

    backup_file: str = Field(alias="backupFile", min_length=1)
    action: str = Field(min_length=1, description="view, download, rotate, ...")


class LogEntry(BaseModel):
    """One audit record. ``hash`` is None until the entry is sealed."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event: AuditEventTag
    timestamp: str
    actor_id: str | None = Field(default=None, alias="actorId")
    subject: dict[str, JsonValue]
    hash: str | None = None

    @property
    def category(self) -> LogCategory:
        return CATEGORY_BY_EVENT[self.event]

    def to_record(self, *, include_hash: bool = True) -> dict[str, Any]:
        """Return the persisted JSON shape (camelCase keys)."""
        record: dict[str, Any] = {
            "event": self.event.value,
            "timestamp": self.timestamp,
            "actorId": self.actor_id,
            "subject": self.subject,
        }
        if include_hash and self.hash is not None:
            record["hash"] = self.hash
        return record

    def with_hash(self, value: str) -> LogEntry:
        return self.model_copy(update={"hash": value})


@dataclass(frozen=True)
class StoredRecord:
    """A stored line that parsed into a JSON object with a ``hash``."""

    position: int
    data: dict[str, Any]

    @property
    def hash(self) -> str:
        return str(self.data["hash"])

    @property
    def event(self) -> str | None:
        value = self.data.get("event")
        return value if isinstance(value, str) else None

    @property
    def timestamp(self) -> str | None:
        value = self.data.get("timestamp")
        return value if isinstance(value, str) else None

    def without_hash(self) -> dict[str, Any]:
        return {k: v for k, v in self.data.items() if k != "hash"}


@dataclass(frozen=True)
class ParseFailure:
    """A stored line that could not be parsed, kept at its position."""

    position: int
    raw: bytes
    message: str
    truncated: bool = False

    @property
    def error(self) -> ParseError:
        return ParseError(self.message, position=self.position)
