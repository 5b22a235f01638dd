"""
Tests for cache health classification, threshold alerts and reports.
"""

import pytest
from unittest.mock import AsyncMock

from cursus_cache.shared.caching import (
    AlertKind,
    AlertSeverity,
    CacheInvalidationService,
    CacheMonitoringService,
    DataCacheService,
    PerformanceMetrics,
    SessionCacheService,
)
from cursus_cache.shared.config import MonitoringSettings
from cursus_cache.shared.metrics_collector import get_metrics_collector


async def lookups(cache, hits=0, misses=0):
    """Drive real hits and misses through the cache."""
    await cache.set("path:hot:detail", {"id": "hot"})
    for _ in range(hits):
        await cache.get("path:hot:detail")
    for _ in range(misses):
        await cache.get("path:cold:detail")


@pytest.fixture
def monitoring(cache):
    return CacheMonitoringService(cache)


class TestHealthStatus:
    """Test health classification from counters."""

    def test_healthy_without_traffic(self, monitoring):
        """Test low-volume windows never degrade health."""
        health = monitoring.get_health_status(PerformanceMetrics(misses=5, operations=5))

        assert health["status"] == "healthy"
        assert health["reasons"] == []

    def test_low_hit_rate_degrades(self, monitoring):
        health = monitoring.get_health_status(PerformanceMetrics(hits=4, misses=6, operations=10))

        assert health["status"] == "degraded"
        assert "cache hit rate is 40.0%" in health["reasons"][0]
        assert health["recommendations"] == ["Consider optimizing cache keys and warming strategies"]

    def test_very_low_hit_rate_is_unhealthy(self, monitoring):
        health = monitoring.get_health_status(PerformanceMetrics(hits=1, misses=9, operations=10))

        assert health["status"] == "unhealthy"

    def test_error_rate(self, monitoring):
        metrics = PerformanceMetrics(hits=9, misses=0, errors=1, operations=10)

        health = monitoring.get_health_status(metrics)

        assert health["status"] == "unhealthy"
        assert any("error rate" in reason for reason in health["reasons"])

    def test_latency(self, monitoring):
        metrics = PerformanceMetrics(hits=20, operations=20, total_latency_ms=20 * 200.0)

        health = monitoring.get_health_status(metrics)

        assert health["status"] == "degraded"
        assert any("average latency" in reason for reason in health["reasons"])

    def test_worst_condition_wins(self, monitoring):
        metrics = PerformanceMetrics(hits=4, misses=6, errors=1, operations=10)

        assert monitoring.get_health_status(metrics)["status"] == "unhealthy"


class TestMonitorAndAlert:
    """Test alert de-duplication, re-arming and escalation."""

    @pytest.mark.asyncio
    async def test_quiet_when_healthy(self, cache, monitoring):
        await lookups(cache, hits=20)

        assert monitoring.monitor_and_alert() == []
        assert get_metrics_collector().get_gauge("cache_hit_rate").get_value() == 100.0

    @pytest.mark.asyncio
    async def test_persistent_condition_alerts_once(self, cache, monitoring):
        await lookups(cache, misses=10)

        first = monitoring.monitor_and_alert()
        second = monitoring.monitor_and_alert()

        assert len(first) == 1
        assert first[0].kind == AlertKind.LOW_HIT_RATE
        assert first[0].severity == AlertSeverity.CRITICAL
        assert first[0].threshold == 20.0
        assert second == []

    @pytest.mark.asyncio
    async def test_alert_rearms_after_clearing(self, cache, monitoring):
        await lookups(cache, misses=10)
        assert len(monitoring.monitor_and_alert()) == 1

        cache.reset_metrics()
        assert monitoring.monitor_and_alert() == []

        await lookups(cache, misses=10)
        assert len(monitoring.monitor_and_alert()) == 1
        assert len(monitoring.get_recent_alerts()) == 2

    @pytest.mark.asyncio
    async def test_escalation_raises_new_alert(self, cache, monitoring):
        await lookups(cache, hits=4, misses=6)
        warning = monitoring.monitor_and_alert()
        assert [alert.severity for alert in warning] == [AlertSeverity.WARNING]

        await lookups(cache, misses=20)
        critical = monitoring.monitor_and_alert()
        assert [alert.severity for alert in critical] == [AlertSeverity.CRITICAL]

        await lookups(cache, misses=5)
        assert monitoring.monitor_and_alert() == []
        assert get_metrics_collector().get_counter("cache_alerts_total").get_value() == 2

    @pytest.mark.asyncio
    async def test_recent_alerts_bounded_newest_first(self, cache):
        monitoring = CacheMonitoringService(cache, settings=MonitoringSettings(alert_log_size=2))

        for _ in range(3):
            cache.reset_metrics()
            monitoring.monitor_and_alert()
            await lookups(cache, misses=10)
            monitoring.monitor_and_alert()

        alerts = monitoring.get_recent_alerts()
        assert len(alerts) == 2
        assert alerts[0].timestamp >= alerts[1].timestamp
        assert monitoring.stats["alerts_created"] == 3
        assert len(monitoring.get_recent_alerts(limit=1)) == 1

    def test_alert_to_dict(self, monitoring):
        metrics = PerformanceMetrics(hits=1, misses=9, operations=10)
        monitoring.cache.get_metrics = lambda: metrics

        alert = monitoring.monitor_and_alert()[0].to_dict()

        assert alert["kind"] == "low_hit_rate"
        assert alert["severity"] == "critical"
        assert alert["value"] == 10.0
        assert alert["id"].startswith("low_hit_rate-")


class TestReports:
    """Test performance metrics and reports."""

    @pytest.mark.asyncio
    async def test_performance_metrics_include_store_stats(self, cache, monitoring):
        await lookups(cache, hits=3, misses=1)

        data = await monitoring.get_performance_metrics()

        assert data["hits"] == 3
        assert data["misses"] == 1
        assert data["hit_rate"] == 75.0
        assert data["key_count"] == 1
        assert data["memory_used_bytes"] > 0
        assert data["memory_usage_percent"] == 0.0

    @pytest.mark.asyncio
    async def test_report(self, cache, monitoring):
        await DataCacheService(cache).set_user_profile("42", {"name": "Ada"})
        await lookups(cache, misses=10)
        monitoring.monitor_and_alert()

        report = await monitoring.generate_performance_report(window_minutes=30)

        assert report["window_minutes"] == 30
        assert report["health"]["status"] == "unhealthy"
        assert report["alerts"]["total"] == 1
        assert report["alerts"]["by_kind"] == {"low_hit_rate": 1}
        assert report["alerts"]["by_severity"] == {"critical": 1}
        assert report["cache_distribution"]["user_data"] == 1
        assert report["session_stats"]["total_active_sessions"] == 0

    @pytest.mark.asyncio
    async def test_reading_metrics_does_not_change_them(self, cache, monitoring):
        """Test reports and cleanup leave the hit and miss counters alone."""
        sessions = SessionCacheService(cache)
        for i in range(12):
            await sessions.set_session(f"s{i}", str(i))
        await lookups(cache, misses=12)
        before = cache.get_metrics()
        assert monitoring.get_health_status()["status"] == "unhealthy"

        report = await monitoring.generate_performance_report()
        await monitoring.get_performance_metrics()
        await CacheInvalidationService(cache, sessions=sessions).scheduled_cleanup()

        assert report["session_stats"]["total_active_sessions"] == 12
        assert report["summary"]["hits"] == 0
        assert report["health"]["status"] == "unhealthy"
        assert cache.get_metrics() == before
        assert monitoring.get_health_status()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_report_survives_store_statistics_failure(self, cache, monitoring):
        cache.store.scan = AsyncMock(side_effect=ConnectionError("scan timed out"))

        report = await monitoring.generate_performance_report()

        assert report["summary"]["key_count"] == 0
        assert report["cache_distribution"] == {}
        assert report["session_stats"] == {}
