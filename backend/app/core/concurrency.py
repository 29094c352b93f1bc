"""Fan-out/fan-in helper with per-branch isolation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Sequence
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


async def _bounded(awaitable: Awaitable[T], timeout: float | None) -> T:
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


async def collect_settled(
    awaitables: Sequence[Awaitable[T]],
    *,
    default: T,
    branch_timeout: float | None = None,
    overall_timeout: float | None = None,
    label: str = "fan-out",
) -> list[T]:
    """Run ``awaitables`` concurrently and return one result per branch.

    A branch that raises or exceeds ``branch_timeout`` yields ``default``.
    Branches still running when ``overall_timeout`` elapses are cancelled and
    also yield ``default``; the completed branches are kept.
    """

    if not awaitables:
        return []

    tasks = [asyncio.ensure_future(_bounded(item, branch_timeout)) for item in awaitables]
    done, pending = await asyncio.wait(tasks, timeout=overall_timeout)

    if pending:
        logger.warning(
            "{}: {} of {} branches still running after {}s, using partial results",
            label,
            len(pending),
            len(tasks),
            overall_timeout,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    results: list[T] = []
    failures = 0
    for task in tasks:
        if task not in done or task.cancelled():
            results.append(default)
            continue
        exc = task.exception()
        if exc is not None:
            failures += 1
            logger.warning("{}: branch failed: {!r}", label, exc)
            results.append(default)
            continue
        results.append(task.result())

    if failures:
        logger.info("{}: {} of {} branches failed", label, failures, len(tasks))
    return results
