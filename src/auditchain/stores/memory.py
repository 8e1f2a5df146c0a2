"""
In-memory log store.

Keeps each category as a byte buffer laid out exactly like the file backend,
so tests can tamper with stored lines, simulate torn writes, and inject write
failures without touching the filesystem.
"""

from __future__ import annotations

from ..core.types import LogCategory
from .base import BaseLogStore


class InMemoryLogStore(BaseLogStore):
    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._buffers: dict[LogCategory, bytearray] = {}
        self.fail_writes = False

    async def _create(self, category: LogCategory) -> None:
        self._buffers.setdefault(category, bytearray())

    async def _write_line(self, category: LogCategory, line: bytes) -> None:
        if self.fail_writes:
            raise OSError("simulated write failure")
        buffer = self._buffers.setdefault(category, bytearray())
        if buffer and not buffer.endswith(b"\n"):
            # Unacknowledged fragment from an append that never completed
            del buffer[buffer.rfind(b"\n") + 1 :]
        buffer.extend(line)

    async def _read_bytes(self, category: LogCategory) -> bytes:
        return bytes(self._buffers.get(category, b""))

    # Test helpers

    def raw_lines(self, category: LogCategory) -> list[bytes]:
        """Return stored lines without their trailing newline."""
        data = bytes(self._buffers.get(LogCategory(category), b""))
        return data.split(b"\n")[:-1] if data else []

    def replace_raw(self, category: LogCategory, data: bytes) -> None:
        """Overwrite the stored bytes of ``category`` (simulated tampering)."""
        self._buffers[LogCategory(category)] = bytearray(data)
