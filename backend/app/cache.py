"""Shared cache tier plus the process-local stale fallback."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

import redis.asyncio as redis
from cachetools import TLRUCache
from loguru import logger
from redis.exceptions import RedisError

from app.core.errors import UpstreamUnavailable

T = TypeVar("T")


class CacheBackend(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class RedisCacheBackend:
    """Shared cache tier backed by Redis."""

    def __init__(self, url: str, *, socket_timeout: float = 2.0) -> None:
        self.client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, key: str) -> bytes | None:
        return await self.client.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCacheBackend:
    """Process-local cache used when no Redis URL is configured.

    Entries carry their own TTL; ``TLRUCache`` drops them once expired.
    """

    def __init__(self, *, maxsize: int = 1024, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: TLRUCache[str, tuple[bytes, int]] = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, now: now + entry[1],
            timer=clock,
        )

    async def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        return entry[0] if entry is not None else None

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._entries[key] = (value, ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()


def build_cache_backend(redis_url: str | None) -> CacheBackend:
    if redis_url:
        logger.info("Using Redis cache tier at {}", redis_url.split("@")[-1])
        return RedisCacheBackend(redis_url)
    logger.info("No REDIS_URL configured; using process-local cache tier")
    return MemoryCacheBackend()


@dataclass
class _Snapshot(Generic[T]):
    value: T
    captured_at: float


class ResilientCache(Generic[T]):
    """Cache-aside reads with a bounded-age in-memory fallback.

    Lookup order is shared tier, then live fetch, then the last successful
    fetch result if it is younger than ``stale_after_seconds``. Upstream errors
    and fetches running past ``fetch_timeout`` never escape
    :meth:`get_or_fetch`; callers get the snapshot or ``empty()`` instead.

    Concurrent misses on one key share a single in-flight fetch.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        name: str,
        encode: Callable[[T], bytes],
        decode: Callable[[bytes], T],
        empty: Callable[[], T],
        ttl_seconds: int,
        stale_after_seconds: float = 1800,
        fetch_timeout: float | None = None,
        is_empty: Callable[[T], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.stale_after_seconds = stale_after_seconds
        self.fetch_timeout = fetch_timeout
        self._encode = encode
        self._decode = decode
        self._empty = empty
        self._is_empty = is_empty or (lambda value: not value)
        self._clock = clock
        self._snapshots: dict[str, _Snapshot[T]] = {}
        self._pending_writes: set[asyncio.Task[None]] = set()
        self._inflight: dict[str, asyncio.Task[T]] = {}

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        cached = await self._read(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._refresh(key, fetch))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        # A caller that gives up leaves the shared fetch running.
        return await asyncio.shield(task)

    async def _refresh(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        try:
            if self.fetch_timeout is None:
                value = await fetch()
            else:
                value = await asyncio.wait_for(fetch(), self.fetch_timeout)
        except (UpstreamUnavailable, asyncio.TimeoutError) as exc:
            return self._fallback(key, exc)

        if not self._is_empty(value):
            self._snapshots[key] = _Snapshot(value=value, captured_at=self._clock())
            self._schedule_write(key, value)
        return value

    def snapshot_age(self, key: str) -> float | None:
        snapshot = self._snapshots.get(key)
        if snapshot is None:
            return None
        return self._clock() - snapshot.captured_at

    async def invalidate(self, key: str) -> None:
        self._snapshots.pop(key, None)
        try:
            await self.backend.delete(key)
        except (RedisError, OSError) as exc:
            logger.warning("[{}] cache delete failed for {}: {}", self.name, key, exc)

    async def drain(self) -> None:
        """Wait for outstanding shared-tier writes."""

        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def _read(self, key: str) -> T | None:
        try:
            raw = await self.backend.get(key)
        except (RedisError, OSError) as exc:
            logger.warning("[{}] cache read failed for {}: {}", self.name, key, exc)
            return None
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning("[{}] discarding undecodable cache entry {}: {}", self.name, key, exc)
            return None

    def _fallback(self, key: str, exc: BaseException) -> T:
        snapshot = self._snapshots.get(key)
        if snapshot is not None:
            age = self._clock() - snapshot.captured_at
            if age < self.stale_after_seconds:
                logger.warning(
                    "[{}] upstream unavailable ({}); serving stale snapshot ({}m old)",
                    self.name,
                    exc,
                    round(age / 60),
                )
                return snapshot.value
        logger.error("[{}] upstream unavailable and no usable snapshot: {}", self.name, exc)
        return self._empty()

    def _schedule_write(self, key: str, value: T) -> None:
        try:
            payload = self._encode(value)
        except (TypeError, ValueError) as exc:
            logger.warning("[{}] could not encode value for {}: {}", self.name, key, exc)
            return
        task = asyncio.get_running_loop().create_task(self._write(key, payload))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write(self, key: str, payload: bytes) -> None:
        try:
            await self.backend.set(key, payload, self.ttl_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("[{}] cache write failed for {}: {}", self.name, key, exc)
