"""
codex-mirror — clone lifecycle manager.

Purpose
- Create, update, and remove clones as transactions over the registry, wrapper installer,
  secrets store, templates, and runtime provider.

Functional requirements
- A clone is in the registry only once its directory tree and wrapper are fully installed.
- A failed operation undoes its completed steps and raises :class:`TransactionError` chained
  from the root cause; rollback failures are reported, never raised.
- ``update_all`` updates clones one at a time and stops at the first failure. Clones updated
  before the failure keep their new runtime.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

from codex_mirror.core.clone_name import assert_valid_clone_name
from codex_mirror.core.clone_paths import ClonePaths, derive_clone_paths
from codex_mirror.core.runtime import RuntimeProvider
from codex_mirror.core.secrets import (
    build_template_secrets,
    template_secret_key,
    write_clone_secrets,
)
from codex_mirror.core.templates import (
    apply_clone_template,
    ensure_template_compatibility,
    parse_clone_template,
    resolve_template_runtime_pin,
    template_label,
)
from codex_mirror.core.transaction import Transaction
from codex_mirror.core.wrappers import WrapperManager
from codex_mirror.domain.models import CloneRecord, CloneTemplate, utc_now_iso
from codex_mirror.errors import NotFoundError, ValidationError
from codex_mirror.observability.logging import correlation_scope
from codex_mirror.persistence.registry import RegistryStore
from codex_mirror.utils.fs import copy_dir, ensure_dir, remove_path, write_json_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CreateCloneOptions:
    name: str
    root_path: Path | str
    template: CloneTemplate | str | None = None
    api_key: str | None = None


class CloneManager:
    def __init__(
        self,
        registry: RegistryStore,
        wrappers: WrapperManager,
        runtime_provider: RuntimeProvider,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._wrappers = wrappers
        self._runtime = runtime_provider
        self._environ = dict(os.environ if environ is None else environ)

    @property
    def wrappers(self) -> WrapperManager:
        return self._wrappers

    async def list_clones(self) -> list[CloneRecord]:
        clones = await self._registry.list()
        return sorted(clones, key=lambda clone: clone.name)

    async def get_clone(self, name: str) -> CloneRecord:
        clone_name = assert_valid_clone_name(name)
        clone = await self._registry.find_by_name(clone_name)
        if clone is None:
            raise NotFoundError(f"Clone '{clone_name}' was not found")
        return clone

    async def create_clone(self, options: CreateCloneOptions) -> CloneRecord:
        name = assert_valid_clone_name(options.name)
        template = parse_clone_template(options.template)

        if await self._registry.find_by_name(name) is not None:
            raise ValidationError(f"Clone '{name}' already exists")

        root_path = os.path.abspath(os.path.expanduser(os.fspath(options.root_path)))
        paths = derive_clone_paths(root_path)
        if await asyncio.to_thread(paths.metadata_path.exists):
            raise ValidationError(f"Root path already contains a clone: {root_path}")

        wrapper_path = self._wrappers.path_for_clone(name)
        txn = Transaction("create", name)

        with correlation_scope(operation="create", clone=name):
            try:
                txn.on_rollback(
                    "clone directory",
                    lambda: asyncio.to_thread(remove_path, paths.clone_base_dir),
                )
                for directory in (paths.home_dir, paths.codex_home_dir, paths.logs_dir):
                    await asyncio.to_thread(ensure_dir, directory)
                setup = await apply_clone_template(template, paths.codex_home_dir)

                runtime = await self._runtime.install(
                    paths.runtime_dir,
                    pinned_version=resolve_template_runtime_pin(template, self._environ),
                )
                now = utc_now_iso()
                clone = CloneRecord(
                    id=uuid.uuid4().hex,
                    name=name,
                    template=template,
                    root_path=root_path,
                    runtime_path=str(paths.runtime_dir),
                    runtime_entry_path=runtime.entry_path,
                    runtime_kind=runtime.kind,
                    wrapper_path=str(wrapper_path),
                    codex_version_pinned=runtime.version,
                    default_codex_args=setup.default_codex_args,
                    created_at=now,
                    updated_at=now,
                )

                installed = await txn.step(
                    "wrapper",
                    lambda: self._wrappers.install(clone),
                    undo=lambda: self._remove_unclaimed_wrapper(name),
                )
                clone = replace(clone, wrapper_path=installed)

                secrets = build_template_secrets(template, options.api_key)
                if secrets:
                    await write_clone_secrets(paths, secrets)

                await self._write_metadata(clone)
                await txn.step(
                    "registry",
                    lambda: self._registry.insert(clone),
                    undo=lambda: self._registry.remove_by_name(name),
                )
            except Exception as exc:
                await txn.rollback()
                raise txn.fail(exc) from exc

            logger.info(
                "created clone",
                extra={
                    "root_path": root_path,
                    "template": template.value,
                    "version": clone.codex_version_pinned,
                },
            )
        return clone

    async def update_clone(self, name: str) -> CloneRecord:
        clone_name = assert_valid_clone_name(name)
        previous = await self.get_clone(clone_name)
        paths = derive_clone_paths(previous.root_path)
        runtime_dir = Path(previous.runtime_path)
        backup_dir = Path(
            f"{previous.runtime_path}.backup-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        )
        txn = Transaction("update", clone_name)

        with correlation_scope(operation="update", clone=clone_name):
            # Registered up front; rollback runs them newest first.
            txn.on_rollback("registry", lambda: self._registry.upsert(previous))
            txn.on_rollback("metadata", lambda: self._write_metadata(previous))
            txn.on_rollback("wrapper", lambda: self._wrappers.install(previous))
            backup_exists = False
            try:
                if await asyncio.to_thread(runtime_dir.exists):
                    await asyncio.to_thread(copy_dir, runtime_dir, backup_dir)
                    backup_exists = True
                    txn.on_rollback("runtime", lambda: self._restore_runtime(backup_dir, runtime_dir))

                runtime = await self._runtime.install(
                    runtime_dir,
                    pinned_version=resolve_template_runtime_pin(previous.template, self._environ),
                )
                updated = replace(
                    previous,
                    runtime_entry_path=runtime.entry_path,
                    runtime_kind=runtime.kind,
                    codex_version_pinned=runtime.version,
                    updated_at=utc_now_iso(),
                )

                await ensure_template_compatibility(previous.template, paths.codex_home_dir)

                wrapper_path = await self._wrappers.install(updated)
                updated = replace(updated, wrapper_path=wrapper_path)

                await self._write_metadata(updated)
                await self._registry.upsert(updated)
            except Exception as exc:
                await txn.rollback()
                raise txn.fail(exc) from exc
            finally:
                if backup_exists:
                    await self._discard_backup(backup_dir)

            logger.info(
                "updated clone",
                extra={
                    "previous_version": previous.codex_version_pinned,
                    "version": updated.codex_version_pinned,
                },
            )
        return updated

    async def update_all(self) -> list[CloneRecord]:
        updated: list[CloneRecord] = []
        for clone in await self.list_clones():
            updated.append(await self.update_clone(clone.name))
        return updated

    async def remove_clone(self, name: str) -> CloneRecord:
        clone_name = assert_valid_clone_name(name)
        clone = await self.get_clone(clone_name)
        paths = derive_clone_paths(clone.root_path)
        txn = Transaction("remove", clone_name)

        with correlation_scope(operation="remove", clone=clone_name):
            try:
                await txn.step(
                    "registry",
                    lambda: self._registry.remove_by_name(clone_name),
                    undo=lambda: self._registry.upsert(clone),
                )
                await asyncio.to_thread(remove_path, paths.clone_base_dir)
                await self._wrappers.remove(clone_name)
            except Exception as exc:
                await txn.rollback()
                raise txn.fail(exc) from exc
            logger.info("removed clone", extra={"root_path": clone.root_path})
        return clone

    async def save_clone(self, clone: CloneRecord) -> None:
        assert_valid_clone_name(clone.name)
        await self._write_metadata(clone)
        await self._registry.upsert(clone)

    async def set_api_key(self, name: str, api_key: str) -> CloneRecord:
        clone = await self.get_clone(name)
        if template_secret_key(clone.template) is None:
            raise ValidationError(
                f"Clone '{clone.name}' uses the {template_label(clone.template)} template, "
                "which does not take an API key"
            )
        if not api_key.strip():
            raise ValidationError("API key must not be empty")

        await write_clone_secrets(
            derive_clone_paths(clone.root_path),
            build_template_secrets(clone.template, api_key),
        )
        updated = replace(clone, updated_at=utc_now_iso())
        await self.save_clone(updated)
        return updated

    async def refresh_wrappers(self, wrappers: WrapperManager | None = None) -> list[CloneRecord]:
        """Reinstall every clone's wrapper, optionally into another bin directory."""

        manager = wrappers or self._wrappers
        refreshed: list[CloneRecord] = []
        for clone in await self.list_clones():
            wrapper_path = await manager.install(clone)
            updated = replace(clone, wrapper_path=wrapper_path, updated_at=utc_now_iso())
            await self.save_clone(updated)
            refreshed.append(updated)
        return refreshed

    async def _write_metadata(self, clone: CloneRecord) -> None:
        paths: ClonePaths = derive_clone_paths(clone.root_path)
        await asyncio.to_thread(write_json_atomic, paths.metadata_path, clone.to_dict())

    async def _remove_unclaimed_wrapper(self, name: str) -> None:
        # A concurrent create that registered this name owns the wrapper now.
        if await self._registry.find_by_name(name) is not None:
            logger.info("wrapper belongs to a registered clone; keeping it", extra={"clone": name})
            return
        await self._wrappers.remove(name)

    async def _restore_runtime(self, backup_dir: Path, runtime_dir: Path) -> None:
        await asyncio.to_thread(remove_path, runtime_dir)
        await asyncio.to_thread(copy_dir, backup_dir, runtime_dir)

    async def _discard_backup(self, backup_dir: Path) -> None:
        try:
            await asyncio.to_thread(remove_path, backup_dir)
        except OSError as exc:
            logger.warning(
                "could not remove runtime backup",
                extra={"path": str(backup_dir), "error": str(exc)},
            )


__all__ = ["CloneManager", "CreateCloneOptions"]
