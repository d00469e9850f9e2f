"""Unit tests for reversible transaction steps."""

from __future__ import annotations

import pytest

from codex_mirror.core.transaction import Transaction
from codex_mirror.errors import TransactionError


@pytest.mark.asyncio
async def test_rollback_runs_compensations_newest_first() -> None:
    order: list[str] = []

    async def record(label: str) -> None:
        order.append(label)

    async def done() -> str:
        return "ok"

    txn = Transaction("create", "alpha")
    txn.on_rollback("directory", lambda: record("directory"))
    assert await txn.step("wrapper", done, undo=lambda: record("wrapper")) == "ok"
    await txn.step("registry", done, undo=lambda: record("registry"))

    assert await txn.rollback() == []
    assert order == ["registry", "wrapper", "directory"]


@pytest.mark.asyncio
async def test_failed_step_is_not_compensated() -> None:
    undone: list[str] = []

    async def boom() -> None:
        raise OSError("disk full")

    async def undo() -> None:
        undone.append("wrapper")

    txn = Transaction("create", "alpha")
    with pytest.raises(OSError):
        await txn.step("wrapper", boom, undo=undo)

    assert not txn.completed("wrapper")
    await txn.rollback()
    assert undone == []


@pytest.mark.asyncio
async def test_rollback_collects_failures_and_keeps_going() -> None:
    ran: list[str] = []

    async def broken() -> None:
        raise PermissionError("read-only")

    async def fine() -> None:
        ran.append("fine")

    txn = Transaction("update", "alpha")
    txn.on_rollback("runtime", fine)
    txn.on_rollback("wrapper", broken)

    errors = await txn.rollback()

    assert errors == ["wrapper rollback failed: read-only"]
    assert ran == ["fine"]
    assert await txn.rollback() == errors


@pytest.mark.asyncio
async def test_fail_wraps_cause_with_rollback_issues() -> None:
    async def broken() -> None:
        raise RuntimeError("")

    txn = Transaction("remove", "alpha")
    txn.on_rollback("registry", broken)
    await txn.rollback()

    error = txn.fail(ValueError("bad thing"))

    assert isinstance(error, TransactionError)
    assert not error.rollback_clean
    assert str(error) == (
        "Failed to remove clone 'alpha': bad thing. "
        "Rollback issues: registry rollback failed: RuntimeError"
    )


def test_fail_without_rollback_issues() -> None:
    error = Transaction("create", "alpha").fail(OSError("nope"))

    assert error.rollback_clean
    assert str(error) == "Failed to create clone 'alpha': nope"
