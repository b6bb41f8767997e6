from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_PENDING: set[asyncio.Task[Any]] = set()


async def best_effort(awaitable: Awaitable[T], description: str, *args: Any) -> T | None:
    """Await a side effect, logging and swallowing any failure.

    Used for writes that must never fail the caller's primary action, such as
    activity timestamps and analytics rollups. ``description`` is a logging
    format string and ``args`` its arguments.
    """
    try:
        return await awaitable
    except asyncio.CancelledError:
        raise
    except Exception:
        LOGGER.exception("Side effect failed: " + description, *args)
        return None


def fire_and_forget(awaitable: Awaitable[Any], description: str, *args: Any) -> asyncio.Task[Any]:
    """Schedule ``best_effort`` in the background and keep the task referenced."""
    task = asyncio.ensure_future(best_effort(awaitable, description, *args))
    _PENDING.add(task)
    task.add_done_callback(_PENDING.discard)
    return task


def pending_side_effects() -> int:
    return len(_PENDING)


async def drain_side_effects(timeout: float = 5.0) -> None:
    """Wait for background side effects, used on shutdown and in tests."""
    if not _PENDING:
        return
    _, pending = await asyncio.wait(set(_PENDING), timeout=timeout)
    if pending:
        LOGGER.warning("%s side effects still pending after %.1fs", len(pending), timeout)
