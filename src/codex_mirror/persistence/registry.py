"""
codex-mirror — registry store.

Purpose
- Durable, concurrency-safe mapping from clone name to :class:`CloneRecord`.

Functional requirements
- Every mutation is a read-modify-write performed while holding the cross-process lock.
- The document is replaced atomically (temp file + rename); readers never see a torn file and
  therefore do not lock.
- Inserts re-check the clone name under the lock; duplicates raise :class:`ValidationError`.
- Unknown versions or malformed clone lists raise :class:`SchemaError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from codex_mirror.domain.models import CloneRecord, Registry
from codex_mirror.errors import SchemaError, ValidationError
from codex_mirror.persistence.file_lock import FileLock
from codex_mirror.utils.fs import read_json, write_json_atomic

logger = logging.getLogger(__name__)

REGISTRY_FILE_MODE = 0o600


class RegistryStore:
    def __init__(
        self,
        registry_path: Path | str,
        *,
        lock_timeout_seconds: float = 10.0,
        lock_poll_interval_seconds: float = 0.04,
    ) -> None:
        self._path = Path(registry_path)
        self._lock = FileLock(
            Path(f"{self._path}.lock"),
            timeout_seconds=lock_timeout_seconds,
            poll_interval_seconds=lock_poll_interval_seconds,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._lock.path

    async def load(self) -> Registry:
        return await asyncio.to_thread(self._load_sync)

    async def list(self) -> list[CloneRecord]:
        registry = await self.load()
        return list(registry.clones)

    async def find_by_name(self, name: str) -> CloneRecord | None:
        registry = await self.load()
        return registry.find(name)

    async def save(self, registry: Registry) -> None:
        async with self._lock.hold():
            await asyncio.to_thread(self._save_sync, registry)

    async def insert(self, record: CloneRecord) -> None:
        """Add a new entry; an existing entry with the same name raises :class:`ValidationError`.

        The name check runs while the lock is held, so two writers racing on one name cannot
        both succeed.
        """

        async with self._lock.hold():
            registry = await self.load()
            if registry.find(record.name) is not None:
                raise ValidationError(f"Clone '{record.name}' already exists")
            registry.clones.append(record)
            await asyncio.to_thread(self._save_sync, registry)
        logger.debug("registry insert", extra={"clone": record.name})

    async def upsert(self, record: CloneRecord) -> None:
        async with self._lock.hold():
            registry = await self.load()
            for index, existing in enumerate(registry.clones):
                if existing.name == record.name:
                    registry.clones[index] = record
                    break
            else:
                registry.clones.append(record)
            await asyncio.to_thread(self._save_sync, registry)
        logger.debug("registry upsert", extra={"clone": record.name})

    async def remove_by_name(self, name: str) -> CloneRecord | None:
        """Delete the entry for ``name`` and return it so callers can restore it on rollback."""

        async with self._lock.hold():
            registry = await self.load()
            for index, existing in enumerate(registry.clones):
                if existing.name == name:
                    removed = registry.clones.pop(index)
                    break
            else:
                return None
            await asyncio.to_thread(self._save_sync, registry)
        logger.debug("registry remove", extra={"clone": name})
        return removed

    def _load_sync(self) -> Registry:
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return Registry()
        except json.JSONDecodeError as exc:
            raise SchemaError(f"Unsupported registry schema at {self._path}: {exc}") from exc
        return Registry.from_dict(payload, source=str(self._path))

    def _save_sync(self, registry: Registry) -> None:
        write_json_atomic(self._path, registry.to_dict(), mode=REGISTRY_FILE_MODE)


__all__ = ["REGISTRY_FILE_MODE", "RegistryStore"]
