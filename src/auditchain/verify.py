"""
Integrity verification for audit logs.

Replays each category from genesis, recomputing every hash from the stored
fields and the *stored* hash of the previous record. Using the stored
predecessor hash localizes a corrupted entry to its own position instead of
cascading to every later entry. Verification takes no locks and reads a
snapshot of whatever was complete when the scan started.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal

import orjson

from .core import diagnostics
from .core.canonical import canonicalize
from .core.chain import genesis, next_hash
from .core.errors import EncodingError
from .core.types import LogCategory, ParseFailure, StoredRecord
from .stores.base import BaseLogStore, Record
from .stores.file import category_for_file, manifest_path_for, read_log_file

InvalidReason = Literal["parse_error", "hash_mismatch", "encoding_error"]


@dataclass
class InvalidEntry:
    position: int
    reason: InvalidReason
    event: str | None = None
    timestamp: str | None = None
    expected: str | None = None
    actual: str | None = None
    message: str = ""


@dataclass
class VerificationReport:
    category: LogCategory
    verified: bool
    entries: int
    invalid_entries: list[InvalidEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def invalid_positions(self) -> list[int]:
        return [e.position for e in self.invalid_entries]


@dataclass
class ArchiveReport:
    path: str
    report: VerificationReport
    manifest_found: bool
    manifest_valid: bool | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.report.verified and self.manifest_valid is not False


def verify_records(
    category: LogCategory, records: Iterable[Record]
) -> VerificationReport:
    """Replay ``records`` against the category's chain."""
    category = LogCategory(category)
    snapshot = list(records)
    warnings: list[str] = []
    last = snapshot[-1] if snapshot else None
    if isinstance(last, ParseFailure) and last.truncated:
        # Not durably acknowledged; may be an append still in flight
        snapshot.pop()
        warnings.append(
            f"incomplete trailing record at position {last.position} ignored"
        )

    invalid: list[InvalidEntry] = []
    prev_hash = genesis(category)
    for record in snapshot:
        if not isinstance(record, StoredRecord):
            invalid.append(
                InvalidEntry(
                    position=record.position,
                    reason="parse_error",
                    message=record.message,
                )
            )
            continue
        try:
            payload = canonicalize(record.without_hash())
        except EncodingError as e:
            invalid.append(
                InvalidEntry(
                    position=record.position,
                    reason="encoding_error",
                    event=record.event,
                    timestamp=record.timestamp,
                    actual=record.hash,
                    message=e.message,
                )
            )
        else:
            expected = next_hash(prev_hash, payload)
            if expected != record.hash:
                invalid.append(
                    InvalidEntry(
                        position=record.position,
                        reason="hash_mismatch",
                        event=record.event,
                        timestamp=record.timestamp,
                        expected=expected,
                        actual=record.hash,
                        message=f"Hash mismatch at position {record.position}",
                    )
                )
        prev_hash = record.hash

    return VerificationReport(
        category=category,
        verified=not invalid,
        entries=len(snapshot),
        invalid_entries=invalid,
        warnings=warnings,
    )


class IntegrityVerifier:
    """Read-only verifier over a log store."""

    def __init__(self, store: BaseLogStore) -> None:
        self._store = store

    async def verify_category(self, category: LogCategory) -> VerificationReport:
        category = LogCategory(category)
        report = verify_records(category, await self._store.read_all(category))
        if not report.verified:
            diagnostics.warn(
                "verifier",
                "audit log failed verification",
                category=category.value,
                positions=report.invalid_positions,
            )
        return report

    async def verify_log_integrity(
        self, categories: Iterable[LogCategory] | None = None
    ) -> dict[LogCategory, VerificationReport]:
        """Verify every category (or the given ones) independently."""
        selected = list(categories) if categories is not None else list(LogCategory)
        results: dict[LogCategory, VerificationReport] = {}
        for category in selected:
            results[LogCategory(category)] = await self.verify_category(category)
        return results

    async def verify_archive(
        self, path: str | Path, category: LogCategory | None = None
    ) -> ArchiveReport:
        """Verify a rotated log file against its manifest sidecar."""
        path = Path(path)
        resolved = category or category_for_file(path)
        if resolved is None:
            raise ValueError(f"cannot infer log category for {path}")
        records = await asyncio.to_thread(read_log_file, path)
        report = verify_records(resolved, records)

        manifest_path = manifest_path_for(path)
        try:
            raw = await asyncio.to_thread(manifest_path.read_bytes)
        except FileNotFoundError:
            return ArchiveReport(path=str(path), report=report, manifest_found=False)

        errors: list[str] = []
        try:
            manifest = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            errors.append(f"manifest is not valid JSON: {e}")
            manifest = {}
        if not isinstance(manifest, dict):
            errors.append("manifest is not a JSON object")
            manifest = {}
        if manifest:
            stored = [r for r in records if isinstance(r, StoredRecord)]
            root_hash = stored[-1].hash if stored else None
            if manifest.get("record_count") != report.entries:
                errors.append(
                    f"record_count {manifest.get('record_count')} "
                    f"!= {report.entries} records in file"
                )
            if manifest.get("root_hash") != root_hash:
                errors.append("root_hash does not match the last stored hash")
        return ArchiveReport(
            path=str(path),
            report=report,
            manifest_found=True,
            manifest_valid=not errors,
            errors=errors,
        )
