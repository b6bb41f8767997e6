from __future__ import annotations

import asyncio
import logging

import pytest

from utils.side_effects import best_effort, drain_side_effects, fire_and_forget, pending_side_effects


async def _boom() -> None:
    raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_best_effort_logs_and_returns_none(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR):
        result = await best_effort(_boom(), "rollup for guild %s", "G1")

    assert result is None
    assert "rollup for guild G1" in caplog.text


@pytest.mark.asyncio
async def test_best_effort_passes_through_results() -> None:
    async def value() -> int:
        return 7

    assert await best_effort(value(), "value") == 7


@pytest.mark.asyncio
async def test_best_effort_does_not_swallow_cancellation() -> None:
    async def cancelled() -> None:
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await best_effort(cancelled(), "cancelled")


@pytest.mark.asyncio
async def test_fire_and_forget_holds_tasks_until_done() -> None:
    gate = asyncio.Event()
    seen: list[str] = []

    async def work() -> None:
        await gate.wait()
        seen.append("done")

    fire_and_forget(work(), "work")
    fire_and_forget(_boom(), "failing work")
    assert pending_side_effects() >= 1

    gate.set()
    await drain_side_effects(timeout=1)

    assert seen == ["done"]
    assert pending_side_effects() == 0
