from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from auditchain import (
    AppendFailedError,
    AuditLogger,
    AuditSettings,
    InMemoryLogStore,
    InvalidEntryError,
    LogCategory,
)
from auditchain.core.canonical import canonicalize
from auditchain.core.chain import GENESIS_HASH, next_hash

FIXED = datetime(2024, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)


@pytest.fixture
def store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture
def audit(store: InMemoryLogStore) -> AuditLogger:
    return AuditLogger(store, settings=AuditSettings(), clock=lambda: FIXED)


@pytest.mark.critical
async def test_backup_created_entry_shape(audit: AuditLogger) -> None:
    entry = await audit.record_backup_created(
        "user-1", "database", "/b.sql.gz", {"sizeInMB": 10.5}
    )

    record = entry.to_record()
    assert record["event"] == "BACKUP_CREATED"
    assert record["timestamp"] == "2024-03-01T12:00:00.250Z"
    assert record["actorId"] == "user-1"
    assert record["subject"] == {
        "type": "database",
        "path": "/b.sql.gz",
        "metadata": {"sizeInMB": 10.5},
    }
    payload = canonicalize(entry.to_record(include_hash=False))
    assert entry.hash == next_hash(GENESIS_HASH, payload)


async def test_restore_and_access_subjects_use_camel_case(
    audit: AuditLogger,
) -> None:
    restored = await audit.record_backup_restored("user-2", "/b.sql.gz")
    accessed = await audit.record_backup_accessed(None, "/b.sql.gz", "download")

    assert restored.subject == {"backupFile": "/b.sql.gz", "metadata": {}}
    assert accessed.subject == {
        "backupFile": "/b.sql.gz",
        "action": "download",
        "metadata": {},
    }
    assert accessed.actor_id is None
    assert accessed.to_record()["actorId"] is None


async def test_each_category_has_its_own_chain(audit: AuditLogger) -> None:
    backup = await audit.record_backup_created("u", "files", "/a.tar")
    restore = await audit.record_backup_restored("u", "/a.tar")

    for entry in (backup, restore):
        payload = canonicalize(entry.to_record(include_hash=False))
        assert entry.hash == next_hash(GENESIS_HASH, payload)


async def test_second_entry_links_to_first(
    audit: AuditLogger, store: InMemoryLogStore
) -> None:
    first = await audit.record_backup_created("u", "files", "/a.tar")
    second = await audit.record_backup_created("u", "files", "/b.tar")

    payload = canonicalize(second.to_record(include_hash=False))
    assert second.hash == next_hash(first.hash or "", payload)
    assert await store.last_hash(LogCategory.BACKUP) == second.hash


async def test_explicit_timestamp_is_used(audit: AuditLogger) -> None:
    when = datetime(2023, 5, 6, 7, 8, 9, tzinfo=timezone(timedelta(hours=-5)))
    entry = await audit.record_backup_restored("u", "/a.tar", timestamp=when)
    assert entry.timestamp == "2023-05-06T12:08:09.000Z"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"actor_id": "", "backup_type": "database", "path": "/a"},
        {"actor_id": "   ", "backup_type": "database", "path": "/a"},
        {"actor_id": 42, "backup_type": "database", "path": "/a"},
        {"actor_id": "x" * 257, "backup_type": "database", "path": "/a"},
        {"actor_id": "u", "backup_type": "", "path": "/a"},
        {"actor_id": "u", "backup_type": "database", "path": ""},
        {
            "actor_id": "u",
            "backup_type": "database",
            "path": "/a",
            "metadata": "big",
        },
    ],
)
async def test_invalid_input_writes_nothing(
    audit: AuditLogger, store: InMemoryLogStore, kwargs: dict
) -> None:
    with pytest.raises(InvalidEntryError):
        await audit.record_backup_created(**kwargs)

    assert store.raw_lines(LogCategory.BACKUP) == []
    assert await store.last_hash(LogCategory.BACKUP) == GENESIS_HASH


async def test_non_finite_metadata_is_rejected(
    audit: AuditLogger, store: InMemoryLogStore
) -> None:
    with pytest.raises(InvalidEntryError):
        await audit.record_backup_accessed(
            "u", "/a", "view", {"ratio": float("nan")}
        )
    assert store.raw_lines(LogCategory.ACCESS) == []


async def test_naive_timestamp_is_rejected(audit: AuditLogger) -> None:
    with pytest.raises(InvalidEntryError, match="timezone-aware"):
        await audit.record_backup_restored(
            "u", "/a", timestamp=datetime(2024, 1, 1)
        )


async def test_actor_max_length_follows_settings(store: InMemoryLogStore) -> None:
    audit = AuditLogger(store, settings=AuditSettings(actor_id_max_length=4))
    await audit.record_backup_restored("abcd", "/a")
    with pytest.raises(InvalidEntryError):
        await audit.record_backup_restored("abcde", "/a")


@pytest.mark.security
async def test_append_failure_propagates(
    audit: AuditLogger, store: InMemoryLogStore
) -> None:
    await audit.record_backup_created("u", "database", "/a")
    before = await store.last_hash(LogCategory.BACKUP)
    store.fail_writes = True

    with pytest.raises(AppendFailedError):
        await audit.record_backup_created("u", "database", "/b")

    store.fail_writes = False
    after = await audit.record_backup_created("u", "database", "/c")
    payload = canonicalize(after.to_record(include_hash=False))
    assert after.hash == next_hash(before, payload)
    reports = await audit.check_integrity()
    assert reports[LogCategory.BACKUP].verified


@pytest.mark.critical
async def test_concurrent_records_chain_without_forks(
    audit: AuditLogger, store: InMemoryLogStore
) -> None:
    entries = await asyncio.gather(
        *(
            audit.record_backup_accessed(f"user-{i}", f"/b{i}", "view")
            for i in range(50)
        )
    )

    assert len({e.hash for e in entries}) == 50
    reports = await audit.check_integrity()
    assert reports[LogCategory.ACCESS].verified
    assert reports[LogCategory.ACCESS].entries == 50


async def test_start_initializes_every_category(
    audit: AuditLogger, store: InMemoryLogStore
) -> None:
    await audit.start()
    for category in LogCategory:
        assert await store.last_hash(category) == GENESIS_HASH


async def test_operational_diagnostics_emitted(
    audit: AuditLogger, captured_diagnostics: list[dict]
) -> None:
    await audit.record_backup_created("user-1", "database", "/b.sql.gz")

    messages = [d["message"] for d in captured_diagnostics]
    assert "backup operation logged" in messages
    logged = next(
        d for d in captured_diagnostics if d["message"] == "backup operation logged"
    )
    assert logged["component"] == "audit"
    assert logged["path"] == "/b.sql.gz"


async def test_prune_without_archives_is_a_noop(
    audit: AuditLogger, store: InMemoryLogStore
) -> None:
    assert await audit.prune_archives() == []
    assert store.raw_lines(LogCategory.ACCESS) == []
