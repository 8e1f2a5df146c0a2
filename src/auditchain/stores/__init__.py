"""Append-only log stores: the shared contract plus file and memory backends."""

from .base import BaseLogStore, RotationRecord, parse_lines
from .file import FileLogStore
from .memory import InMemoryLogStore

__all__ = [
    "BaseLogStore",
    "RotationRecord",
    "FileLogStore",
    "InMemoryLogStore",
    "parse_lines",
]
