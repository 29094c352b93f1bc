from __future__ import annotations

import asyncio

from app.core.concurrency import collect_settled


async def _value(value, delay=0.0):
    await asyncio.sleep(delay)
    return value


async def _boom():
    raise RuntimeError("branch failed")


def test_failed_branch_yields_default_without_affecting_others():
    results = asyncio.run(collect_settled([_value([1]), _boom(), _value([3])], default=[]))

    assert results == [[1], [], [3]]


def test_branch_timeout_yields_default():
    results = asyncio.run(
        collect_settled([_value("fast"), _value("slow", delay=5)], default=None, branch_timeout=0.05)
    )

    assert results == ["fast", None]


def test_overall_timeout_returns_completed_branches():
    results = asyncio.run(
        collect_settled(
            [_value("fast"), _value("slow", delay=5)],
            default="missing",
            overall_timeout=0.1,
        )
    )

    assert results == ["fast", "missing"]


def test_no_branches():
    assert asyncio.run(collect_settled([], default=None)) == []
