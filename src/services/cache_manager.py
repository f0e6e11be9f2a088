"""Two-tier (memory + persistent) cache for ESI responses.

Lookups hit an in-process map first and fall back to the SQLite cache
table. Persistent hits are promoted into memory for a short, fixed TTL so
long-lived but rarely used payloads do not stay resident. Store failures
never reach callers: they are logged and treated as a miss or a no-op.

The manager also owns cache preloading (three staggered bands of fetches
per entity, at most once per entity per process) and the periodic sweep of
expired entries.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from data.repositories import cache_entries
from models.app import CacheEntry, CacheStats
from utils import global_config
from utils.exceptions import CacheIOError
from utils.metrics import get_metrics

if TYPE_CHECKING:
    from data.repositories import Repository

logger = logging.getLogger(__name__)

PreloadFetcher = Callable[[str, int], Awaitable[Any]]

ENTITY_KEY_PATTERN = re.compile(r"char:(\d+)")

# module name -> (endpoint template, band index)
PRELOAD_MODULES: dict[str, tuple[str, int]] = {
    "basic": ("/characters/{entity_id}/", 0),
    "location": ("/characters/{entity_id}/location/", 0),
    "ship": ("/characters/{entity_id}/ship/", 0),
    "online": ("/characters/{entity_id}/online/", 0),
    "wallet": ("/characters/{entity_id}/wallet/", 0),
    "skills": ("/characters/{entity_id}/skills/", 1),
    "skill_queue": ("/characters/{entity_id}/skillqueue/", 1),
    "contacts": ("/characters/{entity_id}/contacts/", 1),
    "implants": ("/characters/{entity_id}/implants/", 1),
    "assets": ("/characters/{entity_id}/assets/", 2),
    "clones": ("/characters/{entity_id}/clones/", 2),
}


@dataclass
class MemoryCacheRecord:
    """A memory-tier entry; `expires_at` is on the monotonic clock."""

    data: Any
    expires_at: float
    entity_id: int | None = None
    tags: frozenset[str] = frozenset()
    access_count: int = 0


def entity_id_from_key(key: str) -> int | None:
    """Extract the owning entity from a cache key, if it names one."""
    match = ENTITY_KEY_PATTERN.search(key)
    return int(match.group(1)) if match else None


class CacheManager:
    """Memory + persistent cache with preload and background cleanup."""

    def __init__(
        self,
        repository: Repository,
        memory_capacity: int | None = None,
        promotion_ttl: float | None = None,
        cleanup_interval: float | None = None,
        preload_band_delays: Iterable[float] | None = None,
    ) -> None:
        """Initialize the cache manager.

        Args:
            repository: Persistent store holding the cache table
            memory_capacity: Maximum number of memory-tier entries
            promotion_ttl: Seconds a persistent hit stays in memory
            cleanup_interval: Seconds between expired-entry sweeps
            preload_band_delays: Delays of the instant/+2s/+5s preload bands
        """
        cache_config = global_config.cache
        self.repository = repository
        self.memory_capacity = memory_capacity or cache_config.memory_capacity
        self.promotion_ttl = promotion_ttl or cache_config.promotion_ttl
        self.cleanup_interval = cleanup_interval or cache_config.cleanup_interval
        self.preload_band_delays = tuple(
            preload_band_delays
            if preload_band_delays is not None
            else cache_config.preload_band_delays
        )
        if len(self.preload_band_delays) != 3:
            raise ValueError("preload_band_delays needs exactly three values")

        self._memory: dict[str, MemoryCacheRecord] = {}
        self._hits = 0
        self._misses = 0
        self._memory_hits = 0
        self._persistent_hits = 0

        self._fetcher: PreloadFetcher | None = None
        self._preload_in_progress: set[int] = set()
        self._preloaded: set[int] = set()
        self._preload_tasks: dict[int, asyncio.Task] = {}
        self._cleanup_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    async def _store(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except (sqlite3.Error, OSError, ValueError) as e:
            raise CacheIOError(f"Persistent cache {operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Memory tier
    # ------------------------------------------------------------------

    def _store_in_memory(
        self,
        key: str,
        data: Any,
        ttl: float,
        entity_id: int | None,
        tags: Iterable[str] = (),
    ) -> None:
        if key in self._memory:
            del self._memory[key]
        elif len(self._memory) >= self.memory_capacity:
            self._evict_one()
        self._memory[key] = MemoryCacheRecord(
            data=data,
            expires_at=time.monotonic() + ttl,
            entity_id=entity_id,
            tags=frozenset(tags),
        )

    def _evict_one(self) -> None:
        # min() keeps the first minimum; dict order makes that the oldest insert
        victim = min(self._memory, key=lambda k: self._memory[k].access_count)
        del self._memory[victim]
        logger.debug("Evicted memory cache entry %s", victim)

    @property
    def memory_size(self) -> int:
        return len(self._memory)

    def memory_keys(self) -> list[str]:
        """Keys currently held in memory, oldest insertion first."""
        return list(self._memory)

    # ------------------------------------------------------------------
    # Public cache API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Get cached data, or None on a miss.

        Args:
            key: Cache key

        Returns:
            The cached payload; never one past its expiry
        """
        record = self._memory.get(key)
        if record is not None:
            if time.monotonic() < record.expires_at:
                record.access_count += 1
                self._hits += 1
                self._memory_hits += 1
                get_metrics().increment("cache.memory_hit")
                return record.data
            del self._memory[key]

        now = datetime.now(UTC)
        try:
            entry = await self._store(
                "read", cache_entries.get_entry(self.repository, key, now)
            )
        except CacheIOError as e:
            logger.warning("%s; treating %s as a miss", e, key)
            entry = None

        if entry is None:
            self._misses += 1
            get_metrics().increment("cache.miss")
            return None

        remaining = (entry.expires_at - now).total_seconds()
        self._store_in_memory(
            key,
            entry.data,
            min(self.promotion_ttl, remaining),
            entry.entity_id,
            entry.tags,
        )
        self._hits += 1
        self._persistent_hits += 1
        get_metrics().increment("cache.persistent_hit")

        try:
            await self._store("touch", cache_entries.touch_entry(self.repository, key, now))
        except CacheIOError as e:
            logger.debug("%s", e)

        return entry.data

    async def set(
        self,
        key: str,
        data: Any,
        ttl: float,
        tags: Iterable[str] | None = None,
        priority: int = 0,
        endpoint: str | None = None,
        entity_id: int | None = None,
    ) -> None:
        """Store data in both tiers.

        Args:
            key: Cache key
            data: JSON-serializable payload
            ttl: Lifetime in seconds
            tags: Group invalidation tags
            priority: Eviction hint kept with the persistent row
            endpoint: Endpoint the payload came from
            entity_id: Owning entity (derived from the key when omitted)
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        if entity_id is None:
            entity_id = entity_id_from_key(key)

        tags = list(tags or [])
        self._store_in_memory(key, data, ttl, entity_id, tags)

        now = datetime.now(UTC)
        entry = CacheEntry(
            key=key,
            data=data,
            expires_at=now + timedelta(seconds=ttl),
            endpoint=endpoint,
            entity_id=entity_id,
            tags=tags,
            priority=priority,
        )
        try:
            await self._store(
                "write", cache_entries.upsert_entry(self.repository, entry, now)
            )
        except (CacheIOError, TypeError) as e:
            logger.warning("Could not persist cache entry %s: %s", key, e)

    async def invalidate(self, pattern: str) -> int:
        """Remove entries whose key contains `pattern` or tagged with it.

        Returns:
            Number of entries removed (best effort if the store fails)
        """
        if not pattern:
            raise ValueError("Invalidation pattern must not be empty")

        doomed = [
            key
            for key, record in self._memory.items()
            if pattern in key or pattern in record.tags
        ]
        for key in doomed:
            del self._memory[key]
        removed = len(doomed)

        try:
            removed += await self._store(
                "invalidate", cache_entries.delete_matching(self.repository, pattern)
            )
        except CacheIOError as e:
            logger.warning("%s; only memory entries were invalidated", e)

        logger.debug("Invalidated %d cache entries matching %r", removed, pattern)
        return removed

    async def invalidate_entity(self, entity_id: int) -> int:
        """Remove every entry belonging to an entity.

        Returns:
            Number of entries removed (best effort if the store fails)
        """
        doomed = [
            key for key, record in self._memory.items() if record.entity_id == entity_id
        ]
        for key in doomed:
            del self._memory[key]
        removed = len(doomed)

        try:
            removed += await self._store(
                "invalidate",
                cache_entries.delete_for_entity(self.repository, entity_id),
            )
        except CacheIOError as e:
            logger.warning("%s; only memory entries were invalidated", e)

        logger.info("Invalidated %d cache entries for entity %d", removed, entity_id)
        return removed

    async def get_stats(self) -> CacheStats:
        """Hit/miss counters and tier sizes."""
        total = self._hits + self._misses
        try:
            persistent_size = await self._store(
                "count",
                cache_entries.count_entries(self.repository, datetime.now(UTC)),
            )
        except CacheIOError as e:
            logger.warning("%s", e)
            persistent_size = 0

        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            memory_hits=self._memory_hits,
            persistent_hits=self._persistent_hits,
            hit_rate=round(self._hits / total * 100, 2) if total else 0.0,
            memory_size=len(self._memory),
            persistent_size=persistent_size,
        )

    def reset_stats(self) -> None:
        """Zero the hit/miss counters."""
        self._hits = 0
        self._misses = 0
        self._memory_hits = 0
        self._persistent_hits = 0

    def clear_memory(self) -> int:
        """Drop the memory tier only."""
        cleared = len(self._memory)
        self._memory.clear()
        return cleared

    async def clear_persistent(self) -> int:
        """Drop the persistent tier only."""
        try:
            return await self._store("clear", cache_entries.clear(self.repository))
        except CacheIOError as e:
            logger.warning("%s", e)
            return 0

    async def clear_all(self) -> None:
        """Drop both tiers and reset the statistics."""
        self.clear_memory()
        await self.clear_persistent()
        self.reset_stats()
        logger.info("Cache cleared")

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self) -> int:
        """Sweep expired entries out of both tiers.

        Returns:
            Number of entries removed
        """
        now_mono = time.monotonic()
        expired = [k for k, r in self._memory.items() if r.expires_at <= now_mono]
        for key in expired:
            del self._memory[key]
        removed = len(expired)

        try:
            removed += await self._store(
                "cleanup",
                cache_entries.delete_expired(self.repository, datetime.now(UTC)),
            )
        except CacheIOError as e:
            logger.warning("%s", e)

        if removed:
            logger.debug("Cache cleanup removed %d expired entries", removed)
        return removed

    def start_cleanup(self) -> None:
        """Start the periodic expired-entry sweep (idempotent)."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop()
        )

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Cache cleanup failed")

    async def close(self) -> None:
        """Stop the cleanup sweep and cancel pending preloads."""
        tasks = list(self._preload_tasks.values())
        if self._cleanup_task is not None:
            tasks.append(self._cleanup_task)
            self._cleanup_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Preload
    # ------------------------------------------------------------------

    def bind_fetcher(self, fetcher: PreloadFetcher) -> None:
        """Set the coroutine used by preload to fetch one endpoint."""
        self._fetcher = fetcher

    def is_preloaded(self, entity_id: int) -> bool:
        return entity_id in self._preloaded

    def _plan_preload(self, entity_id: int, modules: Iterable[str]) -> list[list[str]]:
        bands: list[list[str]] = [[], [], []]
        for module in dict.fromkeys(modules):
            spec = PRELOAD_MODULES.get(module)
            if spec is None:
                logger.warning("Unknown preload module %r ignored", module)
                continue
            template, band = spec
            bands[band].append(template.format(entity_id=entity_id))
        return bands

    def preload(self, entity_id: int, modules: Iterable[str]) -> asyncio.Task | None:
        """Warm the cache for an entity in three staggered bands.

        Runs at most once per entity for the lifetime of this manager and
        never twice concurrently.

        Args:
            entity_id: Entity to preload
            modules: Module names (see PRELOAD_MODULES)

        Returns:
            The scheduled preload task, or None if skipped
        """
        if entity_id in self._preload_in_progress or entity_id in self._preloaded:
            logger.debug("Preload for entity %d already done or running", entity_id)
            return None
        if self._fetcher is None:
            logger.warning("Preload requested for %d but no fetcher is bound", entity_id)
            return None

        bands = self._plan_preload(entity_id, modules)
        self._preload_in_progress.add(entity_id)
        self._preloaded.add(entity_id)

        task = asyncio.get_running_loop().create_task(
            self._run_preload(entity_id, bands)
        )
        self._preload_tasks[entity_id] = task
        task.add_done_callback(lambda t, eid=entity_id: self._finish_preload(eid, t))
        return task

    async def _run_preload(self, entity_id: int, bands: list[list[str]]) -> None:
        await asyncio.gather(
            *(
                self._run_band(entity_id, delay, endpoints)
                for delay, endpoints in zip(self.preload_band_delays, bands, strict=True)
                if endpoints
            )
        )

    async def _run_band(
        self, entity_id: int, delay: float, endpoints: list[str]
    ) -> None:
        if delay > 0:
            await asyncio.sleep(delay)

        assert self._fetcher is not None
        results = await asyncio.gather(
            *(self._fetcher(endpoint, entity_id) for endpoint in endpoints),
            return_exceptions=True,
        )
        for endpoint, result in zip(endpoints, results, strict=True):
            if isinstance(result, Exception):
                logger.debug("Preload of %s failed: %s", endpoint, result)

    def _finish_preload(self, entity_id: int, task: asyncio.Task) -> None:
        self._preload_in_progress.discard(entity_id)
        self._preload_tasks.pop(entity_id, None)
        if task.cancelled():
            logger.info("Preload for entity %d cancelled", entity_id)
        else:
            logger.debug("Preload for entity %d finished", entity_id)

    def cancel_preload(self, entity_id: int) -> bool:
        """Cancel the pending bands of an entity's preload.

        Returns:
            True if a running preload was cancelled
        """
        task = self._preload_tasks.get(entity_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all_preloads(self) -> int:
        """Cancel every running preload (session end)."""
        return sum(self.cancel_preload(eid) for eid in list(self._preload_tasks))
