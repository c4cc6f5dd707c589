"""Short-lived snapshot cache with pluggable stores and single-flight refresh."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Protocol

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from app.core.clock import Clock, now_ms
from app.core.config import Settings
from app.core.errors import CacheError
from app.domain import CacheEntry, Snapshot

ComputeFn = Callable[[], Awaitable[Snapshot]]


class CacheStore(Protocol):
    backend: str

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def count(self) -> int: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...


class MemoryCacheStore:
    backend = "memory"

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries = {}

    async def count(self) -> int:
        return len(self._entries)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class RedisCacheStore:
    """Stores each entry as JSON under ``prefix + key`` with a server-side TTL."""

    backend = "redis"

    def __init__(self, client: aioredis.Redis, *, prefix: str = "tokens:") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "tokens:") -> "RedisCacheStore":
        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix)

    async def get(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.client.get(self.prefix + key)
        except RedisError as exc:
            raise CacheError(f"redis get failed for {key}") from exc
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            return CacheEntry(
                key=key,
                snapshot=Snapshot.from_dict(payload["snapshot"]),
                expires_at=int(payload["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise CacheError(f"corrupt cache entry for {key}") from exc

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        body = json.dumps(
            {"expires_at": entry.expires_at, "snapshot": entry.snapshot.to_dict()},
            separators=(",", ":"),
        )
        try:
            await self.client.setex(self.prefix + entry.key, ttl_seconds, body)
        except RedisError as exc:
            raise CacheError(f"redis setex failed for {entry.key}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self.prefix + key)
        except RedisError as exc:
            raise CacheError(f"redis delete failed for {key}") from exc

    async def clear(self) -> None:
        try:
            keys = [key async for key in self.client.scan_iter(match=f"{self.prefix}*")]
            if keys:
                await self.client.delete(*keys)
        except RedisError as exc:
            raise CacheError("redis clear failed") from exc

    async def count(self) -> int:
        try:
            return len([key async for key in self.client.scan_iter(match=f"{self.prefix}*")])
        except RedisError as exc:
            raise CacheError("redis scan failed") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as exc:
            raise CacheError("redis ping failed") from exc

    async def aclose(self) -> None:
        await self.client.aclose()


def build_cache_store(settings: Settings) -> CacheStore:
    if settings.redis_enabled:
        logger.info("Using Redis cache store prefix={}", settings.redis_key_prefix)
        return RedisCacheStore.from_url(settings.redis_url, prefix=settings.redis_key_prefix)
    if settings.cache_backend == "redis":
        logger.warning("cache_backend=redis but REDIS_URL is empty; using memory store")
    return MemoryCacheStore()


@dataclass(slots=True)
class CacheStats:
    backend: str
    connected: bool
    entries: int | None
    hits: int
    misses: int
    coalesced: int
    errors: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _consume_outcome(task: asyncio.Task) -> None:
    # Waiters may all have been cancelled; the refresh outcome is still consumed here.
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Cache refresh failed with no waiter left: {}", task.exception())


class AggregationCache:
    """Serve snapshots from ``store`` and coalesce concurrent refreshes per key.

    Store failures never reach callers: reads degrade to a miss and writes to
    a no-op. Failures of ``compute`` propagate and leave the store untouched.
    """

    def __init__(self, store: CacheStore, *, clock: Clock = now_ms) -> None:
        self.store = store
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[Snapshot]] = {}
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._errors = 0

    async def get_or_compute(
        self, key: str, ttl_seconds: int, compute: ComputeFn
    ) -> Snapshot:
        entry = await self._read(key)
        if entry is not None and entry.is_live(self._clock()):
            self._hits += 1
            return entry.snapshot

        task = self._inflight.get(key)
        if task is None:
            self._misses += 1
            task = asyncio.ensure_future(self._compute_and_store(key, ttl_seconds, compute))
            task.add_done_callback(_consume_outcome)
            self._inflight[key] = task
        else:
            self._coalesced += 1
        # A cancelled waiter must not cancel the refresh other waiters share.
        return await asyncio.shield(task)

    async def clear(self, key: str | None = None) -> None:
        try:
            if key is None:
                await self.store.clear()
            else:
                await self.store.delete(key)
        except CacheError as exc:
            self._errors += 1
            logger.warning("Cache clear failed key={}: {}", key, exc)
            return
        logger.info("Cache cleared key={}", key or "*")

    async def stats(self) -> CacheStats:
        try:
            connected = await self.store.ping()
            entries: int | None = await self.store.count()
        except CacheError as exc:
            self._errors += 1
            logger.warning("Cache stats unavailable: {}", exc)
            connected, entries = False, None
        return CacheStats(
            backend=self.store.backend,
            connected=connected,
            entries=entries,
            hits=self._hits,
            misses=self._misses,
            coalesced=self._coalesced,
            errors=self._errors,
        )

    async def aclose(self) -> None:
        await self.store.aclose()

    async def _compute_and_store(
        self, key: str, ttl_seconds: int, compute: ComputeFn
    ) -> Snapshot:
        try:
            snapshot = await compute()
            entry = CacheEntry(
                key=key, snapshot=snapshot, expires_at=self._clock() + ttl_seconds * 1000
            )
            await self._write(entry, ttl_seconds)
            return snapshot
        finally:
            self._inflight.pop(key, None)

    async def _read(self, key: str) -> CacheEntry | None:
        try:
            return await self.store.get(key)
        except CacheError as exc:
            self._errors += 1
            logger.warning("Cache read failed key={}; treating as miss: {}", key, exc)
            return None

    async def _write(self, entry: CacheEntry, ttl_seconds: int) -> None:
        try:
            await self.store.set(entry, ttl_seconds)
        except CacheError as exc:
            self._errors += 1
            logger.warning("Cache write failed key={}; continuing uncached: {}", entry.key, exc)
