"""Tests for the two-tier cache manager."""

import asyncio

import pytest

from services.cache_manager import CacheManager, entity_id_from_key
from utils.metrics import get_metrics


def _manager(repo, **kwargs):
    kwargs.setdefault("memory_capacity", 10)
    kwargs.setdefault("preload_band_delays", (0, 0, 0))
    return CacheManager(repo, **kwargs)


class TestGetSet:
    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, repo):
        cache = _manager(repo)

        await cache.set("k1", {"v": 1}, 1)
        assert await cache.get("k1") == {"v": 1}

        await asyncio.sleep(1.1)
        assert await cache.get("k1") is None

    @pytest.mark.asyncio
    async def test_persistent_tier_survives_memory_clear(self, repo):
        cache = _manager(repo)
        await cache.set("v3|GET|char:7|/characters/7/|no-body", {"name": "Pilot"}, 60)

        cache.clear_memory()
        assert cache.memory_size == 0

        assert await cache.get("v3|GET|char:7|/characters/7/|no-body") == {"name": "Pilot"}
        stats = await cache.get_stats()
        assert stats.persistent_hits == 1
        assert stats.memory_hits == 0

    @pytest.mark.asyncio
    async def test_persistent_hit_is_promoted_with_short_ttl(self, repo):
        cache = _manager(repo, promotion_ttl=0.2)
        await cache.set("long", [1, 2, 3], 3600)
        cache.clear_memory()

        assert await cache.get("long") == [1, 2, 3]
        assert cache.memory_keys() == ["long"]

        # Served from memory while the promotion lasts
        assert await cache.get("long") == [1, 2, 3]
        assert (await cache.get_stats()).memory_hits == 1

        await asyncio.sleep(0.3)
        assert await cache.get("long") == [1, 2, 3]
        assert (await cache.get_stats()).persistent_hits == 2

    @pytest.mark.asyncio
    async def test_new_instance_reads_persistent_tier(self, repo):
        await _manager(repo).set("shared", "payload", 60)
        assert await _manager(repo).get("shared") == "payload"

    @pytest.mark.asyncio
    async def test_rejects_non_positive_ttl(self, repo):
        cache = _manager(repo)
        with pytest.raises(ValueError):
            await cache.set("k", 1, 0)

    @pytest.mark.asyncio
    async def test_hit_rate(self, repo):
        cache = _manager(repo)
        await cache.set("a", 1, 60)
        await cache.get("a")
        await cache.get("missing")

        stats = await cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.hit_rate == 50.0
        assert stats.persistent_size == 1
        assert get_metrics().get_count("cache.miss") == 1


class TestEviction:
    @pytest.mark.asyncio
    async def test_capacity_plus_one_evicts_lowest_access_count(self, repo):
        cache = _manager(repo, memory_capacity=3)
        for key in ("a", "b", "c"):
            await cache.set(key, key, 60)
        # b is never read; a and c are
        await cache.get("a")
        await cache.get("c")
        await cache.get("c")

        await cache.set("d", "d", 60)

        assert cache.memory_size == 3
        assert sorted(cache.memory_keys()) == ["a", "c", "d"]

    @pytest.mark.asyncio
    async def test_ties_evict_oldest_insertion(self, repo):
        cache = _manager(repo, memory_capacity=2)
        await cache.set("first", 1, 60)
        await cache.set("second", 2, 60)
        await cache.set("third", 3, 60)

        assert cache.memory_keys() == ["second", "third"]

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self, repo):
        cache = _manager(repo, memory_capacity=2)
        await cache.set("a", 1, 60)
        await cache.set("b", 2, 60)
        await cache.set("a", 3, 60)

        assert cache.memory_size == 2
        assert await cache.get("a") == 3


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_store_failures_are_absorbed(self, repo):
        cache = _manager(repo)
        await repo.execute("DROP TABLE esi_service_cache")

        # Writes still land in memory, reads of unknown keys are misses
        await cache.set("k", {"v": 1}, 60)
        assert await cache.get("k") == {"v": 1}
        assert await cache.get("other") is None

        stats = await cache.get_stats()
        assert stats.persistent_size == 0
        assert await cache.cleanup() == 0

    @pytest.mark.asyncio
    async def test_invalidate_reports_memory_count_when_store_fails(self, repo):
        cache = _manager(repo)
        await cache.set("char:1|wallet", 1, 60)
        await repo.execute("DROP TABLE esi_service_cache")

        assert await cache.invalidate("wallet") == 1


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_by_key_substring_and_tag(self, repo):
        cache = _manager(repo)
        await cache.set("v3|GET|char:1|/characters/1/wallet/|no-body", 1, 60)
        await cache.set("v3|GET|char:1|/characters/1/skills/|no-body", 2, 60, tags=["moderate"])
        await cache.set("v3|GET|char:2|/characters/2/wallet/|no-body", 3, 60)

        removed = await cache.invalidate("char:1|/characters/1/wallet")
        # one memory entry and one persistent row
        assert removed == 2
        assert await cache.get("v3|GET|char:1|/characters/1/wallet/|no-body") is None
        assert await cache.get("v3|GET|char:2|/characters/2/wallet/|no-body") == 3

        assert await cache.invalidate("moderate") == 2
        assert await cache.get("v3|GET|char:1|/characters/1/skills/|no-body") is None

    @pytest.mark.asyncio
    async def test_tag_invalidation_clears_memory_tier(self, repo):
        cache = _manager(repo)
        await cache.set("v3|GET|public|/markets/prices/|no-body", {"v": 1}, 60, tags=["moderate"])

        await cache.invalidate("moderate")

        assert cache.memory_keys() == []
        assert await cache.get("v3|GET|public|/markets/prices/|no-body") is None

    @pytest.mark.asyncio
    async def test_promoted_entry_keeps_its_tags(self, repo):
        cache = _manager(repo)
        key = "v3|GET|char:1|/characters/1/skills/|no-body"
        await cache.set(key, {"v": 1}, 60, tags=["char:1", "moderate"])
        cache.clear_memory()
        assert await cache.get(key) == {"v": 1}
        assert cache.memory_keys() == [key]

        assert await cache.invalidate("moderate") == 2
        assert cache.memory_keys() == []

    @pytest.mark.asyncio
    async def test_invalidate_entity(self, repo):
        cache = _manager(repo)
        await cache.set("v3|GET|char:1|/characters/1/|no-body", 1, 60)
        await cache.set("v3|GET|char:1|/characters/1/ship/|no-body", 2, 60)
        await cache.set("v3|GET|char:2|/characters/2/|no-body", 3, 60)

        assert await cache.invalidate_entity(1) == 4
        assert cache.memory_keys() == ["v3|GET|char:2|/characters/2/|no-body"]

    @pytest.mark.asyncio
    async def test_empty_pattern_rejected(self, repo):
        with pytest.raises(ValueError):
            await _manager(repo).invalidate("")

    def test_entity_id_from_key(self):
        assert entity_id_from_key("v3|GET|char:123|/x/|no-body") == 123
        assert entity_id_from_key("v3|GET|char:public|/x/|no-body") is None


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_from_both_tiers(self, repo):
        cache = _manager(repo)
        await cache.set("short", 1, 0.1)
        await cache.set("long", 2, 60)
        await asyncio.sleep(0.2)

        assert await cache.cleanup() == 2
        assert cache.memory_keys() == ["long"]
        assert (await cache.get_stats()).persistent_size == 1

    @pytest.mark.asyncio
    async def test_clear_all_resets_stats(self, repo):
        cache = _manager(repo)
        await cache.set("a", 1, 60)
        await cache.get("a")

        await cache.clear_all()

        stats = await cache.get_stats()
        assert stats.hits == 0
        assert stats.memory_size == 0
        assert stats.persistent_size == 0

    @pytest.mark.asyncio
    async def test_close_cancels_cleanup_loop(self, repo):
        cache = _manager(repo, cleanup_interval=60)
        cache.start_cleanup()
        cache.start_cleanup()
        task = cache._cleanup_task

        await cache.close()

        assert task.cancelled()


class TestPreload:
    @pytest.mark.asyncio
    async def test_preload_runs_once_per_entity(self, repo):
        cache = _manager(repo)
        fetched = []

        async def fetcher(endpoint, entity_id):
            fetched.append(endpoint)
            return {}

        cache.bind_fetcher(fetcher)

        task = cache.preload(5, ["basic", "skills", "assets"])
        assert task is not None
        # Concurrent second call is skipped
        assert cache.preload(5, ["basic"]) is None
        await task

        assert sorted(fetched) == [
            "/characters/5/",
            "/characters/5/assets/",
            "/characters/5/skills/",
        ]
        assert cache.preload(5, ["basic", "skills"]) is None
        assert len(fetched) == 3
        assert cache.is_preloaded(5)

    @pytest.mark.asyncio
    async def test_preload_bands_are_staggered(self, repo):
        cache = _manager(repo, preload_band_delays=(0, 0.05, 0.1))
        order = []

        async def fetcher(endpoint, entity_id):
            order.append(endpoint)

        cache.bind_fetcher(fetcher)
        await cache.preload(8, ["clones", "skill_queue", "location"])

        assert order == [
            "/characters/8/location/",
            "/characters/8/skillqueue/",
            "/characters/8/clones/",
        ]

    @pytest.mark.asyncio
    async def test_failed_fetches_do_not_break_preload(self, repo):
        cache = _manager(repo)

        async def fetcher(endpoint, entity_id):
            raise RuntimeError("upstream down")

        cache.bind_fetcher(fetcher)
        await cache.preload(9, ["basic", "wallet"])
        assert cache.is_preloaded(9)

    @pytest.mark.asyncio
    async def test_cancel_preload(self, repo):
        cache = _manager(repo, preload_band_delays=(0, 5, 5))
        fetched = []

        async def fetcher(endpoint, entity_id):
            fetched.append(endpoint)

        cache.bind_fetcher(fetcher)
        task = cache.preload(3, ["basic", "assets"])
        await asyncio.sleep(0.05)

        assert cache.cancel_preload(3) is True
        await asyncio.gather(task, return_exceptions=True)

        assert fetched == ["/characters/3/"]
        assert task.cancelled()
        assert cache.cancel_preload(3) is False

    @pytest.mark.asyncio
    async def test_preload_without_fetcher_is_skipped(self, repo):
        cache = _manager(repo)
        assert cache.preload(1, ["basic"]) is None
        assert not cache.is_preloaded(1)
