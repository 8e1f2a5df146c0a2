"""
File-backed append-only log store.

One JSONL file per category. Appends are written to an ``O_APPEND`` descriptor
and followed by ``fsync``; if the write fails the file is truncated back to its
previous size. A trailing fragment left by an append that died mid-record was
never acknowledged, so the next append cuts it off before writing.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path

import orjson

from ..core import diagnostics
from ..core.chain import DIGEST_ALGORITHM, GENESIS_HASH
from ..core.errors import AppendFailedError
from ..core.settings import AuditSettings
from ..core.types import LogCategory, ParseFailure, StoredRecord
from .base import BaseLogStore, Record, RotationRecord, parse_lines

FILE_NAMES: dict[LogCategory, str] = {
    LogCategory.BACKUP: "backup-audit.log",
    LogCategory.RESTORE: "restore-audit.log",
    LogCategory.ACCESS: "backup-access.log",
}

MANIFEST_SUFFIX = ".manifest.json"


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def _complete_length(fd: int, size: int, chunk_size: int = 4096) -> int:
    """Length of the prefix of the first ``size`` bytes ending in ``\\n``."""
    pos = size
    while pos > 0:
        start = max(0, pos - chunk_size)
        idx = os.pread(fd, pos - start, start).rfind(b"\n")
        if idx != -1:
            return start + idx + 1
        pos = start
    return 0


def _write_atomic(path: Path, data: bytes) -> None:
    temp_path = path.with_name(path.name + ".tmp")
    with open(temp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(temp_path, path)


def read_log_file(path: Path) -> list[Record]:
    """Parse a log or archive file; a missing file reads as empty."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return []
    return parse_lines(data)


def manifest_path_for(archive: Path) -> Path:
    return archive.with_name(archive.name + MANIFEST_SUFFIX)


def category_for_file(path: Path) -> LogCategory | None:
    """Return the category whose live log name prefixes ``path``'s name."""
    for category, name in FILE_NAMES.items():
        if path.name == name or path.name.startswith(name + "."):
            return category
    return None


class FileLogStore(BaseLogStore):
    """Append-only JSONL files under ``directory``."""

    name = "file"

    def __init__(
        self,
        directory: str | Path,
        *,
        fsync: bool = True,
        rotate_max_bytes: int | None = None,
    ) -> None:
        super().__init__()
        self._directory = Path(directory)
        self._fsync = fsync
        self._rotate_max_bytes = rotate_max_bytes

    @classmethod
    def from_settings(cls, settings: AuditSettings) -> FileLogStore:
        return cls(
            settings.log_path,
            fsync=settings.fsync,
            rotate_max_bytes=settings.rotate_max_bytes,
        )

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, category: LogCategory) -> Path:
        return self._directory / FILE_NAMES[LogCategory(category)]

    async def _create(self, category: LogCategory) -> None:
        path = self.path_for(category)

        def _touch() -> None:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            os.close(fd)

        try:
            await asyncio.to_thread(_touch)
        except OSError as e:
            raise AppendFailedError(
                f"Cannot create the {category.value} log at {path}",
                category=category.value,
                cause=e,
            ) from e

    async def _write_line(self, category: LogCategory, line: bytes) -> None:
        path = self.path_for(category)
        fsync = self._fsync

        def _append() -> int:
            fd = os.open(path, os.O_RDWR | os.O_CREAT | os.O_APPEND, 0o600)
            try:
                size = os.fstat(fd).st_size
                discarded = 0
                # A previous append died mid-record and was never acknowledged
                if size > 0 and os.pread(fd, 1, size - 1) != b"\n":
                    end = _complete_length(fd, size)
                    os.ftruncate(fd, end)
                    discarded = size - end
                    size = end
                try:
                    _write_all(fd, line)
                    if fsync:
                        os.fsync(fd)
                except OSError:
                    # Roll back to the last complete record; the write error
                    # is what the caller needs to see
                    try:
                        os.ftruncate(fd, size)
                    except OSError:
                        pass
                    raise
                return discarded
            finally:
                os.close(fd)

        discarded = await asyncio.to_thread(_append)
        if discarded:
            diagnostics.warn(
                "file-store",
                "discarded incomplete trailing record",
                category=category.value,
                path=str(path),
                bytes=discarded,
            )

    async def _read_bytes(self, category: LogCategory) -> bytes:
        path = self.path_for(category)

        def _read() -> bytes:
            try:
                return path.read_bytes()
            except FileNotFoundError:
                return b""

        return await asyncio.to_thread(_read)

    async def needs_rotation(self, category: LogCategory) -> bool:
        if self._rotate_max_bytes is None:
            return False
        path = self.path_for(category)

        def _size() -> int:
            try:
                return path.stat().st_size
            except FileNotFoundError:
                return 0

        return await asyncio.to_thread(_size) >= self._rotate_max_bytes

    async def rotate(self, category: LogCategory) -> RotationRecord:
        """Archive the live log, write its manifest and restart the chain.

        The manifest is written before the live file is renamed, so an
        archive never exists without one. Once the rename has happened the
        chain restarts at genesis even if a later step fails.

        Must be called while holding ``lock(category)``.
        """
        category = LogCategory(category)
        if not self.lock(category).locked():
            raise RuntimeError("rotate requires holding store.lock(category)")
        await self.initialize(category)
        path = self.path_for(category)
        closed = datetime.now(timezone.utc)
        stamp = closed.strftime("%Y-%m-%dT%H-%M-%S.%fZ")
        renamed = False

        def _rotate() -> RotationRecord:
            nonlocal renamed
            archive = path.with_name(f"{path.name}.{stamp}")
            suffix = 1
            while archive.exists():
                archive = path.with_name(f"{path.name}.{stamp}-{suffix}")
                suffix += 1
            manifest_path = manifest_path_for(archive)
            records = read_log_file(path)
            complete = [
                r
                for r in records
                if not (isinstance(r, ParseFailure) and r.truncated)
            ]
            stored = [r for r in records if isinstance(r, StoredRecord)]
            rotation = RotationRecord(
                category=category,
                archive_path=str(archive),
                manifest_path=str(manifest_path),
                entries=len(complete),
                root_hash=stored[-1].hash if stored else None,
                first_ts=stored[0].timestamp if stored else None,
                last_ts=stored[-1].timestamp if stored else None,
                closed_ts=_utc_iso(closed),
            )
            manifest = {
                "version": "1.0",
                "file": archive.name,
                "category": category.value,
                "record_count": rotation.entries,
                "first_ts": rotation.first_ts,
                "last_ts": rotation.last_ts,
                "closed_ts": rotation.closed_ts,
                "root_hash": rotation.root_hash,
                "digest": DIGEST_ALGORITHM,
                "genesis": GENESIS_HASH,
            }
            _write_atomic(
                manifest_path,
                orjson.dumps(manifest, option=orjson.OPT_SORT_KEYS),
            )
            try:
                os.replace(path, archive)
            except OSError:
                manifest_path.unlink(missing_ok=True)
                raise
            renamed = True
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            os.close(fd)
            return rotation

        try:
            rotation = await asyncio.to_thread(_rotate)
        except OSError as e:
            raise AppendFailedError(
                f"Failed to rotate the {category.value} log",
                category=category.value,
                cause=e,
            ) from e
        finally:
            if renamed:
                self._reset_chain(category)
        diagnostics.info(
            "file-store",
            "log rotated",
            category=category.value,
            archive=rotation.archive_path,
            entries=rotation.entries,
        )
        return rotation

    def archives_for(self, category: LogCategory) -> list[Path]:
        """Archived files of ``category``, oldest first."""
        name = FILE_NAMES[LogCategory(category)]
        return sorted(
            p
            for p in self._directory.glob(f"{name}.*")
            if not p.name.endswith((MANIFEST_SUFFIX, ".tmp"))
        )

    async def expired_archives(
        self, category: LogCategory, older_than: datetime
    ) -> list[Path]:
        category = LogCategory(category)
        cutoff = older_than.timestamp()

        def _expired() -> list[Path]:
            expired = []
            for archive in self.archives_for(category):
                try:
                    mtime = archive.stat().st_mtime
                except FileNotFoundError:
                    # Removed since the directory was listed
                    continue
                if mtime < cutoff:
                    expired.append(archive)
            return expired

        try:
            return await asyncio.to_thread(_expired)
        except OSError as e:
            raise AppendFailedError(
                f"Cannot list {category.value} archives in {self._directory}",
                category=category.value,
                cause=e,
            ) from e

    async def delete_archive(self, path: Path) -> None:
        category = category_for_file(path)

        def _delete() -> None:
            path.unlink(missing_ok=True)
            manifest_path_for(path).unlink(missing_ok=True)

        try:
            await asyncio.to_thread(_delete)
        except OSError as e:
            raise AppendFailedError(
                f"Failed to delete archive {path}",
                category=category.value if category else None,
                cause=e,
                path=str(path),
            ) from e
        diagnostics.info("file-store", "archive deleted", path=str(path))
