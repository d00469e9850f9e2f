"""Read-only health checks for clones, fanned out over a bounded worker pool."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Final

from codex_mirror.core.clone_paths import derive_clone_paths
from codex_mirror.core.launcher import Launcher
from codex_mirror.core.secrets import read_clone_secrets
from codex_mirror.core.templates import get_template_spec
from codex_mirror.domain.models import AuthStatus, CloneRecord, DoctorResult
from codex_mirror.errors import describe_error
from codex_mirror.utils.concurrency import IndexedWorkerPool
from codex_mirror.utils.fs import is_file, is_writable_dir

logger = logging.getLogger(__name__)

AUTH_PROBE_ARGS: Final[tuple[str, ...]] = ("login", "status")

_NOT_LOGGED_IN_RE: Final[re.Pattern[str]] = re.compile(r"not logged in", re.IGNORECASE)
_LOGGED_IN_RE: Final[re.Pattern[str]] = re.compile(r"logged in", re.IGNORECASE)


class Doctor:
    def __init__(
        self,
        launcher: Launcher,
        *,
        auth_timeout_seconds: float = 5.0,
        concurrency: int = 4,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if auth_timeout_seconds <= 0:
            raise ValueError("auth_timeout_seconds must be > 0")
        self._launcher = launcher
        self._auth_timeout = float(auth_timeout_seconds)
        self._concurrency = max(1, int(concurrency))
        self._environ = dict(os.environ if environ is None else environ)

    async def check_one(self, clone: CloneRecord) -> DoctorResult:
        errors: list[str] = []
        paths = derive_clone_paths(clone.root_path)

        if not await asyncio.to_thread(is_file, clone.runtime_entry_path):
            errors.append(f"Runtime entry missing: {clone.runtime_entry_path}")
        if not await asyncio.to_thread(is_file, clone.wrapper_path):
            errors.append(f"Wrapper missing: {clone.wrapper_path}")

        writable = True
        for directory in paths.isolated_dirs():
            problem = await asyncio.to_thread(_directory_problem, directory)
            if problem is not None:
                writable = False
                errors.append(problem)

        spec = get_template_spec(clone.template)
        try:
            auth = await self._launcher.capture(
                clone,
                list(AUTH_PROBE_ARGS),
                timeout_seconds=self._auth_timeout,
            )
        except OSError as exc:
            # Runtime entry missing or not executable; keep the checks gathered so far.
            auth_status = AuthStatus.UNKNOWN
            errors.append(f"Auth check failed: {describe_error(exc)}")
        else:
            if auth.timed_out:
                errors.append(f"Auth check timed out after {self._auth_timeout:g}s")
            auth_status = classify_auth_output(auth.combined_output)
            if auth_status is AuthStatus.UNKNOWN and not spec.tolerate_unknown_auth:
                errors.append("Could not determine auth status")

        if spec.secret_env:
            secrets = await read_clone_secrets(paths)
            if not secrets.get(spec.secret_env) and not self._environ.get(spec.secret_env):
                errors.append(
                    f"{spec.label} API key is missing. "
                    f"Set {spec.secret_env} in clone setup or shell."
                )
        if (
            spec.recommended_codex_version is not None
            and clone.codex_version_pinned != spec.recommended_codex_version
        ):
            errors.append(
                f"{spec.label} template expects Codex {spec.recommended_codex_version}; "
                f"run 'codex-mirror update {clone.name}'"
            )

        return DoctorResult(
            name=clone.name,
            ok=not errors,
            runtime_path=clone.runtime_entry_path,
            wrapper_path=clone.wrapper_path,
            auth_status=auth_status,
            writable=writable,
            errors=tuple(errors),
        )

    async def check_many(self, clones: Sequence[CloneRecord]) -> list[DoctorResult]:
        """Check every clone; one clone's failure becomes its own failing result."""

        pool: IndexedWorkerPool[CloneRecord, DoctorResult] = IndexedWorkerPool(
            self._concurrency,
            on_error=_failed_result,
        )
        return await pool.map(clones, self.check_one)


def classify_auth_output(output: str) -> AuthStatus:
    if _NOT_LOGGED_IN_RE.search(output):
        return AuthStatus.NOT_LOGGED_IN
    if _LOGGED_IN_RE.search(output):
        return AuthStatus.LOGGED_IN
    return AuthStatus.UNKNOWN


def _directory_problem(path: Path) -> str | None:
    if not path.is_dir():
        return f"Missing directory: {path}"
    if not is_writable_dir(path):
        return f"Directory is not writable: {path}"
    return None


def _failed_result(clone: CloneRecord, exc: Exception) -> DoctorResult:
    logger.warning("doctor check failed", extra={"clone": clone.name, "error": describe_error(exc)})
    return DoctorResult(
        name=clone.name,
        ok=False,
        runtime_path=clone.runtime_entry_path,
        wrapper_path=clone.wrapper_path,
        auth_status=AuthStatus.UNKNOWN,
        writable=False,
        errors=(f"Unexpected doctor error: {describe_error(exc)}",),
    )


__all__ = ["AUTH_PROBE_ARGS", "Doctor", "classify_auth_output"]
