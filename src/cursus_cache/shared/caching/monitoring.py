"""
Cache monitoring and alerting for Cursus.

Derives hit rate, latency and error rate from CacheService counters,
classifies health, builds performance reports and raises threshold alerts
into a bounded recent-alerts log.
"""

import threading
from collections import deque, Counter as TallyCounter
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from ..config import MonitoringSettings, get_monitoring_settings
from ..logging_config import get_logger
from ..metrics_collector import get_metrics_collector
from .cache_service import CacheService, PerformanceMetrics
from .data_cache import DataCacheService
from .session_cache import SessionCacheService


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    WARNING = "warning"
    CRITICAL = "critical"


class AlertKind(str, Enum):
    """Conditions an alert can report."""
    LOW_HIT_RATE = "low_hit_rate"
    HIGH_LATENCY = "high_latency"
    HIGH_ERROR_RATE = "high_error_rate"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class Alert:
    """A threshold breach; immutable once raised."""
    id: str
    severity: AlertSeverity
    kind: AlertKind
    message: str
    value: float
    threshold: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        data['kind'] = self.kind.value
        data['timestamp'] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class ThresholdRule:
    """Warning and critical thresholds over one derived metric."""
    kind: AlertKind
    metric: str
    label: str
    unit: str
    warning: float
    critical: float
    higher_is_worse: bool
    volume: str
    recommendations: Tuple[str, str]

    def evaluate(self, value: float) -> Optional[AlertSeverity]:
        if self.higher_is_worse:
            if value > self.critical:
                return AlertSeverity.CRITICAL
            if value > self.warning:
                return AlertSeverity.WARNING
        else:
            if value < self.critical:
                return AlertSeverity.CRITICAL
            if value < self.warning:
                return AlertSeverity.WARNING
        return None

    def threshold_for(self, severity: AlertSeverity) -> float:
        return self.critical if severity == AlertSeverity.CRITICAL else self.warning

    def describe(self, severity: AlertSeverity, value: float) -> str:
        bound = 'above' if self.higher_is_worse else 'below'
        return (
            f"{severity.value.capitalize()}: {self.label} is {value:.1f}{self.unit} "
            f"({bound} {self.threshold_for(severity):g}{self.unit})"
        )


def create_threshold_rules(settings: MonitoringSettings) -> List[ThresholdRule]:
    return [
        ThresholdRule(
            kind=AlertKind.LOW_HIT_RATE,
            metric='hit_rate',
            label='cache hit rate',
            unit='%',
            warning=settings.hit_rate_warning,
            critical=settings.hit_rate_critical,
            higher_is_worse=False,
            volume='lookups',
            recommendations=(
                'Consider optimizing cache keys and warming strategies',
                'Review caching strategies and TTL values',
            ),
        ),
        ThresholdRule(
            kind=AlertKind.HIGH_LATENCY,
            metric='average_latency_ms',
            label='average latency',
            unit='ms',
            warning=settings.latency_warning_ms,
            critical=settings.latency_critical_ms,
            higher_is_worse=True,
            volume='lookups',
            recommendations=(
                'Monitor store load and consider connection pooling',
                'Check store server performance and network latency',
            ),
        ),
        ThresholdRule(
            kind=AlertKind.HIGH_ERROR_RATE,
            metric='error_rate',
            label='error rate',
            unit='%',
            warning=settings.error_rate_warning,
            critical=settings.error_rate_critical,
            higher_is_worse=True,
            volume='operations',
            recommendations=(
                'Inspect cache error logs for recurring failures',
                'Check store connectivity and configuration',
            ),
        ),
    ]


class CacheMonitoringService:
    """Observability and alerting over CacheService metrics."""

    def __init__(
        self,
        cache: CacheService,
        data_cache: Optional[DataCacheService] = None,
        sessions: Optional[SessionCacheService] = None,
        settings: Optional[MonitoringSettings] = None
    ):
        self.settings = settings or get_monitoring_settings()
        self.cache = cache
        self.data_cache = data_cache or DataCacheService(cache)
        self.sessions = sessions or SessionCacheService(cache)
        self.rules = create_threshold_rules(self.settings)
        self.min_requests = self.settings.min_requests

        self.logger = get_logger(__name__, 'cache_monitoring')
        self.metrics_collector = get_metrics_collector()

        self._lock = threading.Lock()
        self._alerts: deque = deque(maxlen=self.settings.alert_log_size)
        # Highest severity alerted per kind while its condition persists
        self._active: Dict[AlertKind, AlertSeverity] = {}

        self.stats = {
            'alerts_created': 0,
            'evaluations': 0,
            'last_evaluation': None,
        }

    # Evaluation

    def evaluate_thresholds(
        self, metrics: Optional[PerformanceMetrics] = None
    ) -> List[Tuple[ThresholdRule, AlertSeverity, float]]:
        """Rules currently breached, skipping those without enough traffic."""
        metrics = metrics or self.cache.get_metrics()
        breaches = []
        for rule in self.rules:
            if getattr(metrics, rule.volume) < self.min_requests:
                continue
            value = getattr(metrics, rule.metric)
            severity = rule.evaluate(value)
            if severity is not None:
                breaches.append((rule, severity, value))
        return breaches

    async def get_performance_metrics(self) -> Dict[str, Any]:
        """Counter snapshot with derived rates and store statistics."""
        snapshot = self.cache.get_metrics()
        try:
            info = await self.cache.store.info()
            key_count = len(await self.cache.peek_keys('*'))
        except Exception as e:
            self.logger.warning(f"Store statistics unavailable: {e}", operation="get_performance_metrics")
            info, key_count = {}, 0

        used_memory = int(info.get('used_memory', 0) or 0)
        max_memory = int(info.get('maxmemory', 0) or 0)

        return {
            **snapshot.to_dict(),
            'key_count': key_count,
            'memory_used_bytes': used_memory,
            'memory_usage_percent': round(used_memory / max_memory * 100, 2) if max_memory else 0.0,
            'evicted_keys': int(info.get('evicted_keys', 0) or 0),
            'connected_clients': int(info.get('connected_clients', 0) or 0),
            'uptime_seconds': int(info.get('uptime_in_seconds', 0) or 0),
        }

    def get_health_status(self, metrics: Optional[PerformanceMetrics] = None) -> Dict[str, Any]:
        """Classify health from the current counters; no side effects."""
        reasons: List[str] = []
        recommendations: List[str] = []
        status = HealthStatus.HEALTHY

        for rule, severity, value in self.evaluate_thresholds(metrics):
            reasons.append(rule.describe(severity, value))
            if severity == AlertSeverity.CRITICAL:
                status = HealthStatus.UNHEALTHY
                recommendations.append(rule.recommendations[1])
            else:
                if status == HealthStatus.HEALTHY:
                    status = HealthStatus.DEGRADED
                recommendations.append(rule.recommendations[0])

        return {
            'status': status.value,
            'reasons': reasons,
            'recommendations': recommendations,
            'checked_at': datetime.utcnow().isoformat(),
        }

    def monitor_and_alert(self) -> List[Alert]:
        """Raise alerts for newly crossed thresholds.

        A kind stays suppressed while its condition persists and re-arms
        once it clears. Escalating from warning to critical raises a new
        alert. Only alerts created by this call are returned.
        """
        metrics = self.cache.get_metrics()
        breaches = self.evaluate_thresholds(metrics)
        breached_kinds = {rule.kind for rule, _, _ in breaches}
        now = datetime.utcnow()
        new_alerts: List[Alert] = []

        with self._lock:
            for kind in list(self._active):
                if kind not in breached_kinds:
                    del self._active[kind]
                    self.logger.info(f"Alert condition cleared: {kind.value}", operation="monitor_and_alert")

            for rule, severity, value in breaches:
                previous = self._active.get(rule.kind)
                if previous == AlertSeverity.CRITICAL or previous == severity:
                    continue

                alert = Alert(
                    id=f"{rule.kind.value}-{uuid4().hex[:12]}",
                    severity=severity,
                    kind=rule.kind,
                    message=rule.describe(severity, value),
                    value=round(value, 3),
                    threshold=rule.threshold_for(severity),
                    timestamp=now
                )
                self._active[rule.kind] = severity
                self._alerts.append(alert)
                new_alerts.append(alert)

            self.stats['alerts_created'] += len(new_alerts)
            self.stats['evaluations'] += 1
            self.stats['last_evaluation'] = now.isoformat()

        self.metrics_collector.set_cache_hit_rate(metrics.hit_rate)
        for alert in new_alerts:
            self.metrics_collector.get_counter('cache_alerts_total', 'Cache alerts raised').increment(
                1, kind=alert.kind.value, severity=alert.severity.value
            )
            self.logger.warning(
                f"Cache alert raised: {alert.message}",
                operation="monitor_and_alert",
                alert_id=alert.id,
                kind=alert.kind.value,
                severity=alert.severity.value
            )

        return new_alerts

    def get_recent_alerts(self, limit: int = 20) -> List[Alert]:
        """Most recent alerts first."""
        with self._lock:
            alerts = list(self._alerts)
        return list(reversed(alerts))[:max(limit, 0)]

    async def generate_performance_report(self, window_minutes: int = 60) -> Dict[str, Any]:
        """Current metrics and health combined with alerts raised in the window."""
        now = datetime.utcnow()
        since = now - timedelta(minutes=window_minutes)

        summary = await self.get_performance_metrics()
        health = self.get_health_status()
        try:
            distribution = await self.data_cache.get_cache_stats()
            session_stats = await self.sessions.get_session_stats()
        except Exception as e:
            self.logger.warning(f"Key statistics unavailable: {e}", operation="generate_performance_report")
            distribution, session_stats = {}, {}
        with self._lock:
            window_alerts = [alert for alert in self._alerts if alert.timestamp >= since]

        return {
            'generated_at': now.isoformat(),
            'window_minutes': window_minutes,
            'summary': summary,
            'health': health,
            'alerts': {
                'total': len(window_alerts),
                'by_kind': dict(TallyCounter(alert.kind.value for alert in window_alerts)),
                'by_severity': dict(TallyCounter(alert.severity.value for alert in window_alerts)),
                'recent': [alert.to_dict() for alert in reversed(window_alerts)],
            },
            'cache_distribution': distribution,
            'session_stats': session_stats,
        }

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self.stats,
                'active_conditions': {kind.value: severity.value for kind, severity in self._active.items()},
                'alerts_in_log': len(self._alerts),
            }
