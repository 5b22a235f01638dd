"""
Tests for settings, structured logging and the metrics registry.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from cursus_cache.shared.config import (
    CacheBackend,
    CacheSettings,
    MonitoringSettings,
    get_cache_settings,
    get_config_summary,
    get_settings,
    reset_settings,
)
from cursus_cache.shared.logging_config import (
    CorrelationContext,
    CorrelationFilter,
    JSONFormatter,
    get_correlation_id,
    get_logger,
)
from cursus_cache.shared.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from cursus_cache.shared.caching.invalidation import InvalidationEventType
from cursus_cache.shared.schemas import InvalidationRequest


class TestSettings:
    """Test environment-driven configuration."""

    def test_defaults(self):
        settings = get_settings()

        assert settings.cache.cache_namespace == "cursus"
        assert settings.monitoring.hit_rate_warning == 50.0
        assert settings.monitoring.min_requests == 10

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CACHE_NAMESPACE", "staging")
        monkeypatch.setenv("CACHE_BACKEND", "memory")
        reset_settings()

        assert get_cache_settings().cache_namespace == "staging"
        assert get_cache_settings().cache_backend == CacheBackend.MEMORY

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()

    def test_namespace_validation(self):
        with pytest.raises(ValidationError):
            CacheSettings(cache_namespace="bad:ns")

    def test_threshold_validation(self):
        with pytest.raises(ValidationError):
            MonitoringSettings(hit_rate_warning=150)

    def test_summary(self):
        summary = get_config_summary()

        assert summary["cache"]["namespace"] == "cursus"
        assert "monitoring" in summary


class TestInvalidationRequest:
    """Test request body coercion."""

    def test_aliases_and_coercion(self):
        request = InvalidationRequest.model_validate({"type": "user", "entityId": 42, "userId": " 7 "})

        assert request.entity_id == "42"
        assert request.user_id == "7"
        assert request.metadata == {}
        assert request.has_required_fields()

    def test_blank_entity_is_missing(self):
        request = InvalidationRequest.model_validate({"type": "user", "entityId": "  "})

        assert not request.has_required_fields()

    def test_unknown_type(self):
        request = InvalidationRequest.model_validate({"type": "nope", "entityId": "1"})

        with pytest.raises(ValueError, match="Invalid invalidation type"):
            request.to_event()

    def test_member_name_type_is_accepted(self):
        request = InvalidationRequest.model_validate({"type": "LEARNING_PATH", "entityId": "p1"})

        assert request.to_event().type == InvalidationEventType.LEARNING_PATH


class TestLogging:
    """Test structured logging helpers."""

    def test_logger_attaches_context(self, caplog):
        logger = get_logger("cursus_cache.tests", "tests")

        with caplog.at_level(logging.INFO, logger="cursus_cache.tests"):
            logger.info("hello", operation="greet", key="user:1:profile")

        record = caplog.records[-1]
        assert record.component == "tests"
        assert record.operation == "greet"
        assert record.key == "user:1:profile"

    def test_json_formatter_includes_correlation(self):
        record = logging.LogRecord("cursus_cache.tests", logging.INFO, __file__, 1, "payload", (), None)
        record.key = "path:p1:detail"

        with CorrelationContext("corr-1"):
            CorrelationFilter().filter(record)
            assert get_correlation_id() == "corr-1"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "payload"
        assert entry["correlation_id"] == "corr-1"
        assert entry["key"] == "path:p1:detail"
        assert get_correlation_id() is None


class TestMetricsCollector:
    """Test the metrics registry."""

    def test_singleton(self):
        assert get_metrics_collector() is MetricsCollector.get_instance()

    def test_counter(self):
        collector = get_metrics_collector()
        collector.get_counter("cache_test_total").increment(2)
        collector.get_counter("cache_test_total").increment()

        assert collector.get_counter("cache_test_total").get_value() == 3
        assert collector.get_metric_series("cache_test_total").get_latest_value().value == 3

    def test_timer(self):
        get_metrics_collector().get_timer("cache_test_operation").record(0.01, operation="get")

        stats = get_metrics_collector().get_timer("cache_test_operation").histogram.get_statistics()
        assert stats["count"] == 1
        assert stats["sum"] == 0.01

    def test_prometheus_export(self):
        collector = get_metrics_collector()
        collector.set_cache_hit_rate(87.5)
        collector.record_request("GET", "/api/cache/metrics", 200, 0.01)

        text = collector.export_metrics("prometheus")

        assert "# TYPE cache_hit_rate gauge" in text
        assert "cache_hit_rate 87.5" in text
        assert 'http_requests_total{method="GET",endpoint="/api/cache/metrics",status="200"} 1' in text

    def test_unknown_export_format(self):
        with pytest.raises(ValueError):
            get_metrics_collector().export_metrics("xml")
