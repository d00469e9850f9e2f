"""Typed failures raised by codex-mirror components.

Lower layers raise the precise types below. Only the clone manager wraps failures, and only at
transaction boundaries, into :class:`TransactionError`.
"""

from __future__ import annotations

from collections.abc import Sequence


class CodexMirrorError(Exception):
    """Base class for all codex-mirror failures."""


class ValidationError(CodexMirrorError, ValueError):
    """Invalid clone name, unsupported template, or otherwise unacceptable input."""


class NotFoundError(CodexMirrorError, LookupError):
    """Operation referenced a clone name that is not registered."""


class SchemaError(CodexMirrorError):
    """The registry document (or a record in it) is not understood."""


class LockTimeoutError(CodexMirrorError, TimeoutError):
    """The registry lock could not be obtained before the hard deadline."""


class LockIntegrityError(CodexMirrorError):
    """The lock path is a symlink or non-regular file and must not be touched."""


class UnsafePathError(CodexMirrorError):
    """A computed path escapes the directory it must stay inside."""


class UnsafeOverwriteError(CodexMirrorError):
    """Refused to replace a symlink or non-regular file."""


class RuntimeNotFoundError(CodexMirrorError):
    """No system installation of the agent runtime could be discovered."""


class TransactionError(CodexMirrorError):
    """Composite failure of a create/update/remove transaction."""

    def __init__(
        self,
        operation: str,
        clone_name: str,
        cause: BaseException,
        rollback_errors: Sequence[str] = (),
    ) -> None:
        self.operation = operation
        self.clone_name = clone_name
        self.cause = cause
        self.rollback_errors = tuple(rollback_errors)
        super().__init__(self._render())

    @property
    def rollback_clean(self) -> bool:
        return not self.rollback_errors

    def _render(self) -> str:
        message = f"Failed to {self.operation} clone '{self.clone_name}': {_describe(self.cause)}"
        if self.rollback_errors:
            message += f". Rollback issues: {'; '.join(self.rollback_errors)}"
        return message


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


def describe_error(exc: BaseException) -> str:
    """Return a one-line human description of ``exc``."""

    return _describe(exc)


__all__ = [
    "CodexMirrorError",
    "LockIntegrityError",
    "LockTimeoutError",
    "NotFoundError",
    "RuntimeNotFoundError",
    "SchemaError",
    "TransactionError",
    "UnsafeOverwriteError",
    "UnsafePathError",
    "ValidationError",
    "describe_error",
]
