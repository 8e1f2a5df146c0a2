from __future__ import annotations

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from auditchain.core.canonical import canonicalize
from auditchain.core.chain import GENESIS_HASH, seal_entry
from auditchain.core.types import AuditEventTag, LogCategory, LogEntry
from auditchain.stores.base import parse_lines, serialize_record
from auditchain.verify import verify_records

pytestmark = pytest.mark.property

json_key = st.text(min_size=1, max_size=12)
json_scalars = (
    st.none()
    | st.booleans()
    | st.integers(min_value=-(2**63), max_value=2**63 - 1)
    | st.floats(allow_nan=False, allow_infinity=False)
    | st.text(max_size=20)
)
json_values = st.recursive(
    json_scalars,
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(json_key, children, max_size=4),
    max_leaves=12,
)
json_dicts = st.dictionaries(json_key, json_values, max_size=6)

actors = st.none() | st.text(
    alphabet=st.characters(min_codepoint=33, max_codepoint=126),
    min_size=1,
    max_size=16,
)


def _entry(actor: str | None, metadata: dict, n: int) -> LogEntry:
    return LogEntry(
        event=AuditEventTag.BACKUP_ACCESSED,
        timestamp=f"2024-01-01T00:00:00.{n % 1000:03d}Z",
        actor_id=actor,
        subject={"backupFile": f"/b{n}", "action": "view", "metadata": metadata},
    )


@given(payload=json_dicts)
@settings(max_examples=200)
def test_canonical_bytes_parse_back_to_payload(payload: dict) -> None:
    assert json.loads(canonicalize(payload)) == payload


@given(payload=json_dicts)
@settings(max_examples=200)
def test_canonical_bytes_ignore_insertion_order(payload: dict) -> None:
    reordered = dict(reversed(list(payload.items())))
    assert canonicalize(reordered) == canonicalize(payload)


@given(
    rows=st.lists(st.tuples(actors, json_dicts), min_size=1, max_size=8),
    data=st.data(),
)
@settings(max_examples=100)
def test_any_single_field_change_is_localized(rows, data) -> None:
    prev = GENESIS_HASH
    lines = []
    for n, (actor, metadata) in enumerate(rows):
        sealed = seal_entry(_entry(actor, metadata, n), prev)
        prev = sealed.hash or ""
        lines.append(serialize_record(sealed))

    report = verify_records(LogCategory.ACCESS, parse_lines(b"".join(lines)))
    assert report.verified

    target = data.draw(st.integers(min_value=0, max_value=len(rows) - 1))
    record = json.loads(lines[target])
    record["subject"]["action"] = "download"
    lines[target] = json.dumps(record).encode() + b"\n"

    tampered = verify_records(LogCategory.ACCESS, parse_lines(b"".join(lines)))
    assert tampered.invalid_positions == [target]
