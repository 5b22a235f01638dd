"""
Tests for CacheService, its metrics and the domain caches built on it.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from cursus_cache.shared.caching import (
    CacheBatch,
    CacheService,
    DataCacheService,
    PerformanceMetrics,
    SessionCacheService,
    cached,
)
from cursus_cache.shared.caching import keys
from cursus_cache.shared.caching.session_cache import parse_timestamp
from cursus_cache.shared.metrics_collector import get_metrics_collector


def failing_store(error=ConnectionError("store down")):
    """A store whose every operation raises."""
    store = MagicMock()
    for name in ("get", "set", "mget", "mset", "delete", "exists", "expire", "ttl", "incr", "scan", "info", "ping"):
        setattr(store, name, AsyncMock(side_effect=error))
    return store


class TestKeys:
    """Test key builders and TTL policy."""

    def test_builders(self):
        assert keys.path_detail("p1") == "path:p1:detail"
        assert keys.user_progress(42, "p1") == "user:42:progress:p1"
        assert keys.paths_list() == "paths:list:all"
        assert keys.user_namespace("42") == "user:42:*"
        assert keys.session("abc") == "session:abc"

    def test_rejects_glob_and_empty_segments(self):
        with pytest.raises(ValueError):
            keys.path_detail("*")
        with pytest.raises(ValueError):
            keys.user_profile("")

    def test_ttl_policy(self):
        """Test TTLs resolve by entity and, for user keys, by view."""
        assert keys.ttl_for("session:abc") == keys.CacheTTL.SESSION
        assert keys.ttl_for("path:p1:detail") == keys.CacheTTL.LEARNING_PATH
        assert keys.ttl_for("user:1:dashboard") == keys.CacheTTL.DASHBOARD
        assert keys.ttl_for("user:1:progress:p1") == keys.CacheTTL.USER_PROGRESS
        assert keys.ttl_for("unknown:1") is None

    def test_hash_content_is_stable(self):
        assert keys.hash_content("print(1)") == keys.hash_content("print(1)")
        assert keys.hash_content("print(1)") != keys.hash_content("print(2)")
        assert len(keys.hash_content("x")) == 16


class TestPerformanceMetrics:
    """Test derived rates."""

    def test_derived_rates(self):
        metrics = PerformanceMetrics(hits=3, misses=1, errors=1, operations=10, total_latency_ms=8.0)

        assert metrics.lookups == 4
        assert metrics.hit_rate == 75.0
        assert metrics.miss_rate == 25.0
        assert metrics.average_latency_ms == 2.0
        assert metrics.error_rate == 10.0

    def test_empty_metrics_have_zero_rates(self):
        data = PerformanceMetrics().to_dict()

        assert data["hit_rate"] == 0.0
        assert data["average_latency_ms"] == 0.0
        assert data["error_rate"] == 0.0


class TestCacheService:
    """Test the JSON cache over the memory store."""

    @pytest.mark.asyncio
    async def test_round_trip(self, cache):
        """Test stored values come back structurally equal."""
        value = {"id": "p1", "title": "Python Basics", "modules": [1, 2, {"x": None}], "published": True}

        assert await cache.set("path:p1:detail", value) is True
        assert await cache.get("path:p1:detail") == value

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, cache, store):
        """Test logical keys are stored under the namespace prefix."""
        await cache.set("path:p1:detail", {"id": "p1"})

        assert await store.exists("test:path:p1:detail")
        assert await store.exists("path:p1:detail") is False

    @pytest.mark.asyncio
    async def test_ttl_policy_applied(self, cache, store):
        """Test keys without an explicit TTL get their data-type default."""
        await cache.set("session:s1", {"user_id": "1"})
        await cache.set("unknown:thing", 1)
        await cache.set("path:p1:detail", {}, ttl=30)

        assert await store.ttl("test:session:s1") == keys.CacheTTL.SESSION
        assert await store.ttl("test:unknown:thing") == cache.default_ttl
        assert await store.ttl("test:path:p1:detail") == 30

    @pytest.mark.asyncio
    async def test_non_positive_ttl_falls_back_to_policy(self, cache, store):
        """Test a zero or negative TTL never reaches the store."""
        await cache.set("session:s1", {}, ttl=0)
        await cache.set("unknown:thing", 1, ttl=-5)
        await cache.mset({"challenge:c1:detail": {}}, ttl=0)

        assert await store.ttl("test:session:s1") == keys.CacheTTL.SESSION
        assert await store.ttl("test:unknown:thing") == cache.default_ttl
        assert await store.ttl("test:challenge:c1:detail") == keys.CacheTTL.CHALLENGE

    @pytest.mark.asyncio
    async def test_miss_counts_once(self, cache):
        """Test a miss increments misses by exactly one."""
        before = cache.get_metrics()

        assert await cache.get("path:none:detail") is None

        after = cache.get_metrics()
        assert after.misses == before.misses + 1
        assert after.hits == before.hits

    @pytest.mark.asyncio
    async def test_hit_counts(self, cache):
        await cache.set("module:m1:detail", {"id": "m1"})
        await cache.get("module:m1:detail")

        metrics = cache.get_metrics()
        assert metrics.hits == 1
        assert metrics.sets == 1
        assert get_metrics_collector().get_counter("cache_hits_total").get_value() == 1

    @pytest.mark.asyncio
    async def test_get_or_set_computes_once(self, cache):
        """Test the producer only runs on a miss."""
        producer = MagicMock(return_value={"id": "p1"})

        first = await cache.get_or_set("path:p1:detail", producer)
        second = await cache.get_or_set("path:p1:detail", producer)

        assert first == second == {"id": "p1"}
        producer.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_or_set_awaits_async_producer(self, cache):
        producer = AsyncMock(return_value=[1, 2, 3])

        assert await cache.get_or_set("search:abc", producer) == [1, 2, 3]
        assert await cache.get("search:abc") == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_get_or_set_does_not_cache_none(self, cache):
        producer = MagicMock(return_value=None)

        assert await cache.get_or_set("user:1:profile", producer) is None
        assert await cache.get_or_set("user:1:profile", producer) is None
        assert producer.call_count == 2

    @pytest.mark.asyncio
    async def test_delete(self, cache):
        """Test delete reports whether the key existed, without counting errors."""
        await cache.set("user:1:profile", {"name": "Ada"})

        assert await cache.delete("user:1:profile") is True
        assert await cache.delete("user:1:profile") is False

        metrics = cache.get_metrics()
        assert metrics.deletes == 1
        assert metrics.errors == 0

    @pytest.mark.asyncio
    async def test_store_failures_degrade_to_miss(self):
        """Test store errors are counted and never raised."""
        cache = CacheService(failing_store(), namespace="test")

        assert await cache.get("a") is None
        assert await cache.set("a", 1) is False
        assert await cache.delete("a") is False
        assert await cache.scan_keys("*") == []
        assert await cache.mget(["a", "b"]) == [None, None]
        assert await cache.ping() is False

        metrics = cache.get_metrics()
        assert metrics.errors == 6
        assert metrics.hits == 0
        assert get_metrics_collector().get_counter("cache_errors_total").get_value() == 6

    @pytest.mark.asyncio
    async def test_undecodable_value_is_an_error(self, cache, store):
        await store.set("test:path:p1:detail", "not json{")

        assert await cache.get("path:p1:detail") is None
        assert cache.get_metrics().errors == 1

    @pytest.mark.asyncio
    async def test_reset_metrics(self, cache):
        """Test counters restart from zero after a reset."""
        await cache.get("a")
        await cache.get("b")
        cache.reset_metrics()

        assert cache.get_metrics() == PerformanceMetrics()

        await cache.get("c")
        assert cache.get_metrics().misses == 1

    @pytest.mark.asyncio
    async def test_concurrent_lookups_are_all_counted(self, cache):
        await cache.set("k", 1)

        await asyncio.gather(*(cache.get("k") for _ in range(25)), *(cache.get("x") for _ in range(15)))

        metrics = cache.get_metrics()
        assert metrics.hits == 25
        assert metrics.misses == 15

    @pytest.mark.asyncio
    async def test_bulk_operations(self, cache, store):
        assert await cache.mset({"challenge:c1:detail": {"id": "c1"}, "challenge:c2:detail": {"id": "c2"}})
        assert await cache.mget(["challenge:c1:detail", "challenge:c9:detail", "challenge:c2:detail"]) == [
            {"id": "c1"}, None, {"id": "c2"}
        ]
        assert await store.ttl("test:challenge:c1:detail") == keys.CacheTTL.CHALLENGE

        assert await cache.mset({"a": 1}, ttl=5)
        assert await store.ttl("test:a") == 5

    @pytest.mark.asyncio
    async def test_increment_sets_ttl_on_create(self, cache, store):
        assert await cache.increment("counter:views", ttl=60) == 1
        assert await cache.increment("counter:views", 2, ttl=60) == 3
        assert await store.ttl("test:counter:views") == 60

    @pytest.mark.asyncio
    async def test_exists_and_expire(self, cache, store):
        await cache.set("user:1:profile", {})

        assert await cache.exists("user:1:profile") is True
        assert await cache.expire("user:1:profile", 7) is True
        assert await store.ttl("test:user:1:profile") == 7
        assert await cache.exists("user:2:profile") is False

    @pytest.mark.asyncio
    async def test_scan_keys_strips_namespace(self, cache):
        await cache.set("user:1:profile", {})
        await cache.set("user:1:dashboard", {})

        assert sorted(await cache.scan_keys("user:1:*")) == ["user:1:dashboard", "user:1:profile"]

    @pytest.mark.asyncio
    async def test_flush_all_stays_in_namespace(self, cache, store):
        """Test flush removes only keys under the cache namespace."""
        await cache.set("path:p1:detail", {})
        await cache.set("session:s1", {})
        await store.set("other:path:p1:detail", "{}")

        assert await cache.flush_all() is True
        assert await store.scan("test:*") == []
        assert await store.exists("other:path:p1:detail") is True

    @pytest.mark.asyncio
    async def test_maintenance_access_leaves_counters_untouched(self, cache):
        await cache.set("session:s1", {"user_id": "1"})
        await cache.set("session:s2", {"user_id": "2"})
        before = cache.get_metrics()

        assert sorted(await cache.peek_keys("session:*")) == ["session:s1", "session:s2"]
        assert await cache.peek_many(["session:s1", "session:missing"]) == [{"user_id": "1"}, None]
        assert await cache.purge(["session:s1", "session:missing", "session:s2"], batch_size=2) == [
            "session:s1", "session:s2"
        ]

        assert cache.get_metrics() == before

    @pytest.mark.asyncio
    async def test_maintenance_access_raises_store_errors(self):
        cache = CacheService(failing_store(), namespace="test")

        with pytest.raises(ConnectionError):
            await cache.peek_keys("*")
        with pytest.raises(ConnectionError):
            await cache.purge(["a"])

        assert cache.get_metrics().errors == 0


class TestDataCacheService:
    """Test the domain-shaped cache accessors."""

    @pytest.mark.asyncio
    async def test_learning_path_round_trip(self, cache):
        data_cache = DataCacheService(cache)
        await data_cache.set_learning_path("p1", {"id": "p1"})
        await data_cache.set_path_modules("p1", [{"id": "m1"}])

        assert await data_cache.get_learning_path("p1") == {"id": "p1"}
        assert await data_cache.get_path_modules("p1") == [{"id": "m1"}]
        assert await data_cache.invalidate_learning_path("p1") == 2
        assert await data_cache.get_learning_path("p1") is None

    @pytest.mark.asyncio
    async def test_all_user_progress(self, cache):
        data_cache = DataCacheService(cache)
        await data_cache.set_user_progress("42", "p1", {"percent": 10})
        await data_cache.set_user_progress("42", "p2", {"percent": 80})
        await data_cache.set_user_progress("43", "p1", {"percent": 50})

        assert await data_cache.get_all_user_progress("42") == {
            "p1": {"percent": 10},
            "p2": {"percent": 80},
        }

    @pytest.mark.asyncio
    async def test_code_analysis_is_stamped(self, cache):
        data_cache = DataCacheService(cache)
        await data_cache.set_code_analysis("print('hi')", {"score": 9})

        analysis = await data_cache.get_code_analysis("print('hi')")
        assert analysis["score"] == 9
        assert parse_timestamp(analysis["timestamp"]) is not None

    @pytest.mark.asyncio
    async def test_cache_stats(self, cache):
        data_cache = DataCacheService(cache)
        await data_cache.set_learning_path("p1", {})
        await data_cache.set_challenge("c1", {})
        await data_cache.set_search_results("python", ["p1"])

        stats = await data_cache.get_cache_stats()

        assert stats["learning_paths"] == 1
        assert stats["challenges"] == 1
        assert stats["search_results"] == 1
        assert stats["total_keys"] == 3


class TestSessionCacheService:
    """Test session caching and per-user session handling."""

    @pytest.mark.asyncio
    async def test_set_and_touch(self, cache):
        now = datetime(2024, 1, 1, 12, 0, 0)
        sessions = SessionCacheService(cache, now=lambda: now)
        await sessions.set_session("s1", 42, {"device": "web"})

        session = await sessions.get_session("s1")
        assert session == {"device": "web", "user_id": "42", "last_activity": now.isoformat()}

        now = now + timedelta(minutes=5)
        assert await sessions.touch_session("s1", page="dashboard") is True
        session = await sessions.get_session("s1")
        assert session["page"] == "dashboard"
        assert session["last_activity"] == now.isoformat()

        assert await sessions.touch_session("missing") is False

    @pytest.mark.asyncio
    async def test_user_sessions(self, cache):
        sessions = SessionCacheService(cache)
        await sessions.set_session("s1", "42")
        await sessions.set_session("s2", "42")
        await sessions.set_session("s3", "7")

        assert set(await sessions.get_user_sessions("42")) == {"s1", "s2"}
        assert await sessions.invalidate_user_sessions("42") == 2
        assert await sessions.get_user_sessions("42") == {}
        assert await sessions.get_session("s3") is not None

    @pytest.mark.asyncio
    async def test_cleanup_expired_sessions(self, cache):
        now = datetime(2024, 1, 2, 0, 0, 0)
        sessions = SessionCacheService(cache, now=lambda: now)
        await cache.set("session:old", {"user_id": "1", "last_activity": (now - timedelta(hours=30)).isoformat()})
        await cache.set("session:new", {"user_id": "1", "last_activity": (now - timedelta(hours=1)).isoformat()})

        assert await sessions.cleanup_expired_sessions(24 * 3600) == 1
        assert await sessions.get_session("old") is None
        assert await sessions.get_session("new") is not None

    @pytest.mark.asyncio
    async def test_session_stats(self, cache):
        now = datetime(2024, 1, 1, 12, 0, 0)
        sessions = SessionCacheService(cache, now=lambda: now)
        await cache.set("session:a", {"user_id": "1", "last_activity": (now - timedelta(seconds=60)).isoformat()})
        await cache.set("session:b", {"user_id": "2", "last_activity": (now - timedelta(seconds=120)).isoformat()})

        stats = await sessions.get_session_stats()

        assert stats == {"total_active_sessions": 2, "unique_users": 2, "average_idle_seconds": 90.0}

    def test_parse_timestamp(self):
        assert parse_timestamp("2024-01-01T10:00:00Z") == datetime(2024, 1, 1, 10, 0, 0)
        assert parse_timestamp("2024-01-01T12:00:00+02:00") == datetime(2024, 1, 1, 10, 0, 0)
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


class TestCachedDecorator:
    """Test the read-through decorator."""

    @pytest.mark.asyncio
    async def test_result_is_cached(self, cache):
        calls = []

        @cached(cache, key_func=lambda path_id: f"path:{path_id}:detail")
        async def load_path(path_id):
            calls.append(path_id)
            return {"id": path_id}

        assert await load_path("p1") == {"id": "p1"}
        assert await load_path("p1") == {"id": "p1"}
        assert calls == ["p1"]
        assert await cache.get("path:p1:detail") == {"id": "p1"}
        assert load_path.__name__ == "load_path"

    @pytest.mark.asyncio
    async def test_default_key_uses_name_and_arguments(self, cache, store):
        @cached(cache, ttl=30)
        async def popular(limit, kind="paths"):
            return [kind] * limit

        assert await popular(2, kind="challenges") == ["challenges", "challenges"]
        assert await store.ttl("test:popular:2:kind=challenges") == 30

    @pytest.mark.asyncio
    async def test_disabled_always_calls_through(self, cache):
        calls = []

        @cached(cache, key_func=lambda: "user:u1:profile", enabled=False)
        async def load_profile():
            calls.append(1)
            return {"id": "u1"}

        await load_profile()
        await load_profile()

        assert len(calls) == 2
        assert await cache.exists("user:u1:profile") is False

    def test_rejects_plain_functions(self, cache):
        with pytest.raises(TypeError):
            cached(cache)(lambda: 1)


class TestCacheBatch:
    """Test batched writes and deletes."""

    @pytest.mark.asyncio
    async def test_execute_applies_in_order(self, cache, store):
        batch = CacheBatch(cache).set("user:1:profile", {"name": "Ada"}).set("search:abc", [], ttl=5)
        batch.delete("user:1:profile").delete("user:9:profile")

        outcome = await batch.execute()

        assert outcome["success"] is False
        assert outcome["results"] == [
            {"operation": "set", "key": "user:1:profile", "success": True},
            {"operation": "set", "key": "search:abc", "success": True},
            {"operation": "delete", "key": "user:1:profile", "success": True},
            {"operation": "delete", "key": "user:9:profile", "success": False},
        ]
        assert await store.ttl("test:search:abc") == 5

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        batch = CacheBatch(cache).set("a", 1).clear()

        assert await batch.execute() == {"success": True, "results": []}
        assert await cache.exists("a") is False
