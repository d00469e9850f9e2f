"""Persistence layer: the locked, atomically written clone registry."""

from codex_mirror.persistence.file_lock import FileLock, HeldLock
from codex_mirror.persistence.registry import RegistryStore

__all__ = [
    "FileLock",
    "HeldLock",
    "RegistryStore",
]
