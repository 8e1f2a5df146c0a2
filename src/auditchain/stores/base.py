"""
Append-only log store contract.

A store owns, per category, the lock that serializes appends and the cached
"last hash" of the chain. Callers must hold ``store.lock(category)`` across
reading the last hash, sealing the entry and calling ``append`` so that every
entry links to its true predecessor.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Union

import orjson

from ..core import diagnostics
from ..core.chain import genesis, is_hex_digest
from ..core.errors import AppendFailedError, InvalidEntryError
from ..core.types import LogCategory, LogEntry, ParseFailure, StoredRecord

Record = Union[StoredRecord, ParseFailure]


@dataclass(frozen=True)
class RotationRecord:
    """Describes a live log that was closed and archived."""

    category: LogCategory
    archive_path: str
    manifest_path: str
    entries: int
    root_hash: str | None
    first_ts: str | None
    last_ts: str | None
    closed_ts: str


def parse_line(position: int, raw: bytes) -> Record:
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        return ParseFailure(position, raw, f"invalid JSON: {e}")
    if not isinstance(data, dict):
        return ParseFailure(position, raw, "record is not a JSON object")
    if not is_hex_digest(data.get("hash")):
        return ParseFailure(position, raw, "missing or malformed hash")
    return StoredRecord(position, data)


def parse_lines(data: bytes) -> list[Record]:
    """Parse a JSONL buffer into records in append order.

    Malformed lines stay in place as `ParseFailure`. A final fragment without
    a trailing newline is an append that never completed and is flagged as
    ``truncated``.
    """
    if not data:
        return []
    chunks = data.split(b"\n")
    tail = chunks.pop()
    records: list[Record] = [parse_line(i, raw) for i, raw in enumerate(chunks)]
    if tail:
        records.append(
            ParseFailure(
                len(records),
                tail,
                "truncated record (no trailing newline)",
                truncated=True,
            )
        )
    return records


def serialize_record(entry: LogEntry) -> bytes:
    """One persisted line: canonical JSON of the sealed entry plus newline."""
    return orjson.dumps(entry.to_record(), option=orjson.OPT_SORT_KEYS) + b"\n"


class BaseLogStore(ABC):
    """Per-category append-only storage with chain state.

    Subclasses implement raw byte I/O; locking, chain state and parsing live
    here.
    """

    name = "base"

    def __init__(self) -> None:
        self._locks: dict[LogCategory, asyncio.Lock] = {
            category: asyncio.Lock() for category in LogCategory
        }
        self._init_lock = asyncio.Lock()
        self._last_hash: dict[LogCategory, str] = {}

    # Raw I/O implemented by backends

    @abstractmethod
    async def _create(self, category: LogCategory) -> None:
        """Ensure the backing resource exists, creating it empty if absent."""

    @abstractmethod
    async def _write_line(self, category: LogCategory, line: bytes) -> None:
        """Durably append ``line``; leave no partial record behind on failure."""

    @abstractmethod
    async def _read_bytes(self, category: LogCategory) -> bytes:
        """Return the full current contents (empty if missing)."""

    # Public contract

    def lock(self, category: LogCategory) -> asyncio.Lock:
        return self._locks[LogCategory(category)]

    async def initialize(self, category: LogCategory) -> None:
        """Create the category's log if needed and load its last hash.

        Idempotent; later calls are no-ops.
        """
        category = LogCategory(category)
        if category in self._last_hash:
            return
        async with self._init_lock:
            if category in self._last_hash:
                return
            await self._create(category)
            records = await self.read_all(category)
            self._last_hash[category] = self._resume_hash(category, records)

    async def last_hash(self, category: LogCategory) -> str:
        category = LogCategory(category)
        await self.initialize(category)
        return self._last_hash[category]

    async def append(self, category: LogCategory, entry: LogEntry) -> None:
        """Persist a sealed entry and advance the category's last hash.

        Raises:
            InvalidEntryError: If the entry is unsealed or in the wrong category.
            AppendFailedError: If the entry could not be durably written.
        """
        category = LogCategory(category)
        if entry.hash is None:
            raise InvalidEntryError(
                "entry must be sealed before append", category=category.value
            )
        if entry.category is not category:
            raise InvalidEntryError(
                f"{entry.event.value} does not belong to the {category.value} log",
                category=category.value,
            )
        if not self._locks[category].locked():
            raise RuntimeError("append requires holding store.lock(category)")
        await self.initialize(category)
        line = serialize_record(entry)
        try:
            await self._write_line(category, line)
        except OSError as e:
            diagnostics.error(
                "audit-store",
                "append failed",
                store=self.name,
                category=category.value,
                reason=type(e).__name__,
                detail=str(e),
            )
            raise AppendFailedError(
                f"Failed to append to the {category.value} log",
                category=category.value,
                store=self.name,
                cause=e,
            ) from e
        self._last_hash[category] = entry.hash

    async def read_all(self, category: LogCategory) -> list[Record]:
        """Return every stored record of ``category`` in append order."""
        return parse_lines(await self._read_bytes(LogCategory(category)))

    # Rotation and retention; backends without archives keep the defaults

    async def needs_rotation(self, category: LogCategory) -> bool:
        return False

    async def rotate(self, category: LogCategory) -> RotationRecord:
        raise NotImplementedError(f"{self.name} store does not rotate logs")

    async def expired_archives(
        self, category: LogCategory, older_than: datetime
    ) -> list[Path]:
        return []

    async def delete_archive(self, path: Path) -> None:
        raise NotImplementedError(f"{self.name} store has no archives")

    def _resume_hash(self, category: LogCategory, records: list[Record]) -> str:
        for record in reversed(records):
            if isinstance(record, StoredRecord):
                return record.hash
        return genesis(category)

    def _reset_chain(self, category: LogCategory) -> None:
        self._last_hash[category] = genesis(category)
