"""Explicit reversible steps for clone lifecycle operations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from codex_mirror.errors import TransactionError, describe_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Compensation = Callable[[], Awaitable[object]]


class Transaction:
    """Records completed steps and their compensations.

    ``rollback`` runs compensations newest first and collects their failures instead of raising,
    so one broken undo never hides the others or the original cause.
    """

    def __init__(self, operation: str, clone_name: str) -> None:
        self.operation = operation
        self.clone_name = clone_name
        self._completed: list[str] = []
        self._compensations: list[tuple[str, Compensation]] = []
        self.rollback_errors: list[str] = []

    async def step(
        self,
        label: str,
        action: Callable[[], Awaitable[T]],
        undo: Compensation | None = None,
    ) -> T:
        result = await action()
        self._completed.append(label)
        if undo is not None:
            self._compensations.append((label, undo))
        return result

    def on_rollback(self, label: str, undo: Compensation) -> None:
        self._compensations.append((label, undo))

    def completed(self, label: str) -> bool:
        return label in self._completed

    async def rollback(self) -> list[str]:
        while self._compensations:
            label, undo = self._compensations.pop()
            try:
                await undo()
            except Exception as exc:
                message = f"{label} rollback failed: {describe_error(exc)}"
                logger.error(message, extra={"operation": self.operation, "clone": self.clone_name})
                self.rollback_errors.append(message)
        return list(self.rollback_errors)

    def fail(self, cause: BaseException) -> TransactionError:
        return TransactionError(self.operation, self.clone_name, cause, self.rollback_errors)


__all__ = ["Compensation", "Transaction"]
