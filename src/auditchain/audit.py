"""
Audit logger facade for backup, restore and access events.

Typical use from a backup job::

    audit = AuditLogger()
    await audit.start()
    entry = await audit.record_backup_created(
        "user-42", "database", "/backups/db.sql.gz", {"sizeInMB": 10.5}
    )

Every ``record_*`` call either returns the persisted, sealed entry or raises.
`InvalidEntryError` means nothing was written; `AppendFailedError` means the
event is not durably audited and the caller should treat the underlying
operation accordingly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError

from .core import diagnostics
from .core.canonical import canonicalize, format_timestamp
from .core.chain import seal_entry
from .core.errors import InvalidEntryError
from .core.settings import AuditSettings, load_settings
from .core.types import (
    EVENT_BY_CATEGORY,
    AccessSubject,
    BackupSubject,
    LogCategory,
    LogEntry,
    RestoreSubject,
    _Subject,
)
from .stores.base import BaseLogStore, RotationRecord
from .stores.file import FileLogStore
from .verify import IntegrityVerifier, VerificationReport


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogger:
    """Builds, seals and appends audit entries; one chain per category."""

    def __init__(
        self,
        store: BaseLogStore | None = None,
        *,
        settings: AuditSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._store = store or FileLogStore.from_settings(self._settings)
        self._clock = clock or _utcnow
        self._verifier = IntegrityVerifier(self._store)
        self._unrecorded_rotations: dict[LogCategory, list[RotationRecord]] = {
            category: [] for category in LogCategory
        }

    @property
    def store(self) -> BaseLogStore:
        return self._store

    @property
    def verifier(self) -> IntegrityVerifier:
        return self._verifier

    async def start(self) -> None:
        """Initialize every category's log (idempotent)."""
        for category in LogCategory:
            await self._store.initialize(category)
        diagnostics.info("audit", "audit logger initialized", store=self._store.name)

    async def record_backup_created(
        self,
        actor_id: str | None,
        backup_type: str,
        path: str,
        metadata: dict[str, Any] | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> LogEntry:
        """Record a ``BACKUP_CREATED`` entry.

        ``backup_type`` is stored as the subject's ``type`` field (e.g. "database").
        """
        entry = self._build(
            LogCategory.BACKUP,
            actor_id,
            timestamp,
            BackupSubject,
            {"type": backup_type, "path": path, "metadata": metadata},
        )
        sealed = await self._append(entry)
        diagnostics.info(
            "audit",
            "backup operation logged",
            type=backup_type,
            path=path,
            actor_id=actor_id,
        )
        return sealed

    async def record_backup_restored(
        self,
        actor_id: str | None,
        backup_file: str,
        metadata: dict[str, Any] | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> LogEntry:
        entry = self._build(
            LogCategory.RESTORE,
            actor_id,
            timestamp,
            RestoreSubject,
            {"backup_file": backup_file, "metadata": metadata},
        )
        sealed = await self._append(entry)
        diagnostics.info(
            "audit",
            "restore operation logged",
            backup_file=backup_file,
            actor_id=actor_id,
        )
        return sealed

    async def record_backup_accessed(
        self,
        actor_id: str | None,
        backup_file: str,
        action: str,
        metadata: dict[str, Any] | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> LogEntry:
        entry = self._build(
            LogCategory.ACCESS,
            actor_id,
            timestamp,
            AccessSubject,
            {"backup_file": backup_file, "action": action, "metadata": metadata},
        )
        sealed = await self._append(entry)
        diagnostics.info(
            "audit",
            "backup access logged",
            backup_file=backup_file,
            action=action,
            actor_id=actor_id,
        )
        return sealed

    async def check_integrity(self) -> dict[LogCategory, VerificationReport]:
        """Verify every category; never raises for tampered or malformed logs."""
        return await self._verifier.verify_log_integrity()

    async def prune_archives(self, now: datetime | None = None) -> list[str]:
        """Delete archives past the retention window, auditing each deletion.

        The purge is recorded before the file is removed, so a deletion is
        never performed without a matching access entry.
        """
        now = now or self._clock()
        cutoff = now - timedelta(days=self._settings.retention_days)
        removed: list[str] = []
        for category in LogCategory:
            for archive in await self._store.expired_archives(category, cutoff):
                await self.record_backup_accessed(
                    None,
                    str(archive),
                    "purge",
                    {
                        "category": category.value,
                        "retentionDays": self._settings.retention_days,
                    },
                )
                await self._store.delete_archive(archive)
                removed.append(str(archive))
        return removed

    def _build(
        self,
        category: LogCategory,
        actor_id: str | None,
        timestamp: datetime | None,
        subject_cls: type[_Subject],
        fields: dict[str, Any],
    ) -> LogEntry:
        self._check_actor(category, actor_id)
        if fields.get("metadata") is None:
            fields["metadata"] = {}
        try:
            subject = subject_cls.model_validate(fields)
            entry = LogEntry(
                event=EVENT_BY_CATEGORY[category],
                timestamp=self._format_timestamp(category, timestamp),
                actor_id=actor_id,
                subject=subject.to_payload(),
            )
        except ValidationError as e:
            raise InvalidEntryError(
                f"Invalid {category.value} audit entry: {e.error_count()} error(s)",
                category=category.value,
                cause=e,
                errors=[err["msg"] for err in e.errors()],
            ) from e
        # Fail before taking the lock if the entry has no canonical form
        canonicalize(entry.to_record(include_hash=False))
        return entry

    def _check_actor(self, category: LogCategory, actor_id: str | None) -> None:
        if actor_id is None:
            return
        if not isinstance(actor_id, str) or not actor_id.strip():
            raise InvalidEntryError(
                "actor_id must be a non-empty string or None",
                category=category.value,
            )
        if len(actor_id) > self._settings.actor_id_max_length:
            raise InvalidEntryError(
                f"actor_id longer than {self._settings.actor_id_max_length} chars",
                category=category.value,
            )

    def _format_timestamp(
        self, category: LogCategory, timestamp: datetime | None
    ) -> str:
        value = timestamp if timestamp is not None else self._clock()
        try:
            return format_timestamp(value)
        except (AttributeError, ValueError) as e:
            raise InvalidEntryError(
                "timestamp must be a timezone-aware datetime",
                category=category.value,
                cause=e,
            ) from e

    async def _append(self, entry: LogEntry) -> LogEntry:
        category = entry.category
        async with self._store.lock(category):
            await self._rotate_if_needed(category)
            return await self._seal_and_append(entry)

    async def _seal_and_append(self, entry: LogEntry) -> LogEntry:
        """Seal against the current last hash and append; lock must be held."""
        category = entry.category
        prev_hash = await self._store.last_hash(category)
        sealed = seal_entry(entry, prev_hash)
        await self._store.append(category, sealed)
        return sealed

    async def _rotate_if_needed(self, category: LogCategory) -> None:
        """Rotate ``category`` if due, then audit every unrecorded rotation.

        Runs under ``lock(category)``; the access lock is taken inside it, never
        the other way round. A rotation whose record cannot be written stays
        pending and blocks further appends to ``category`` until it is recorded.
        """
        pending = self._unrecorded_rotations[category]
        if await self._store.needs_rotation(category):
            pending.append(await self._store.rotate(category))
        while pending:
            rotation = pending[0]
            entry = self._build(
                LogCategory.ACCESS,
                None,
                None,
                AccessSubject,
                {
                    "backup_file": rotation.archive_path,
                    "action": "rotate",
                    "metadata": {
                        "category": rotation.category.value,
                        "entries": rotation.entries,
                        "rootHash": rotation.root_hash,
                    },
                },
            )
            if category is LogCategory.ACCESS:
                await self._seal_and_append(entry)
            else:
                async with self._store.lock(LogCategory.ACCESS):
                    await self._seal_and_append(entry)
            pending.pop(0)
            diagnostics.info(
                "audit",
                "log rotation recorded",
                category=rotation.category.value,
                archive=rotation.archive_path,
            )
