"""
Process-wide metrics for the Cursus cache service.

Counters, gauges and timers are registered on a singleton collector and
exported in Prometheus text format.
"""

import threading
from datetime import datetime
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass, field
from collections import deque
from enum import Enum


class MetricType(str, Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class MetricUnit(str, Enum):
    """Metric units."""
    COUNT = "count"
    SECONDS = "seconds"
    PERCENT = "percent"


@dataclass
class MetricValue:
    """A single recorded sample."""
    name: str
    value: Union[int, float]
    metric_type: MetricType
    unit: MetricUnit
    timestamp: datetime
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class MetricSeries:
    """Bounded time series of samples for one metric name."""
    name: str
    metric_type: MetricType
    unit: MetricUnit
    description: str = ""
    values: deque = field(default_factory=lambda: deque(maxlen=1000))
    last_updated: datetime = field(default_factory=datetime.utcnow)

    def add_value(self, value: Union[int, float], timestamp: datetime, **labels):
        self.values.append(MetricValue(
            name=self.name,
            value=value,
            metric_type=self.metric_type,
            unit=self.unit,
            timestamp=timestamp,
            labels={k: str(v) for k, v in labels.items()}
        ))
        self.last_updated = timestamp

    def get_latest_value(self) -> Optional[MetricValue]:
        return self.values[-1] if self.values else None


class Counter:
    """Monotonic counter."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._value = 0
        self._lock = threading.Lock()

    def increment(self, amount: Union[int, float] = 1, **labels):
        with self._lock:
            self._value += amount
            value = self._value

        MetricsCollector.get_instance().record_metric(
            self.name, value, MetricType.COUNTER, MetricUnit.COUNT,
            description=self.description, **labels
        )

    def get_value(self) -> Union[int, float]:
        with self._lock:
            return self._value


class Gauge:
    """Gauge metric that can increase or decrease."""

    def __init__(self, name: str, description: str = "", unit: MetricUnit = MetricUnit.COUNT):
        self.name = name
        self.description = description
        self.unit = unit
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: Union[int, float], **labels):
        with self._lock:
            self._value = value

        MetricsCollector.get_instance().record_metric(
            self.name, value, MetricType.GAUGE, self.unit,
            description=self.description, **labels
        )

    def get_value(self) -> Union[int, float]:
        with self._lock:
            return self._value


class Histogram:
    """Histogram metric for tracking distributions."""

    def __init__(self, name: str, description: str = "", unit: MetricUnit = MetricUnit.COUNT,
                 buckets: List[float] = None):
        self.name = name
        self.description = description
        self.unit = unit
        self.buckets = buckets or [0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, float('inf')]
        self._bucket_counts = {bucket: 0 for bucket in self.buckets}
        self._sum = 0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: Union[int, float], **labels):
        with self._lock:
            self._sum += value
            self._count += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._bucket_counts[bucket] += 1

        MetricsCollector.get_instance().record_metric(
            self.name, value, MetricType.HISTOGRAM, self.unit,
            description=self.description, **labels
        )

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'count': self._count,
                'sum': self._sum,
                'mean': self._sum / self._count if self._count > 0 else 0,
                'buckets': self._bucket_counts.copy()
            }


class Timer:
    """Timer metric backed by a seconds histogram."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self.histogram = Histogram(f"{name}_seconds", description, MetricUnit.SECONDS)

    def record(self, duration: float, **labels):
        self.histogram.observe(duration, **labels)


class MetricsCollector:
    """Central metrics registry."""

    _instance: Optional['MetricsCollector'] = None
    _lock = threading.Lock()

    def __init__(self):
        self._series_lock = threading.Lock()
        self.metrics: Dict[str, MetricSeries] = {}
        self.counters: Dict[str, Counter] = {}
        self.gauges: Dict[str, Gauge] = {}
        self.timers: Dict[str, Timer] = {}

    @classmethod
    def get_instance(cls) -> 'MetricsCollector':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Discard the singleton; the next access starts with an empty registry."""
        with cls._lock:
            cls._instance = None

    def record_metric(
        self,
        name: str,
        value: Union[int, float],
        metric_type: MetricType,
        unit: MetricUnit,
        timestamp: Optional[datetime] = None,
        description: str = "",
        **labels
    ):
        """Record a metric sample."""
        if timestamp is None:
            timestamp = datetime.utcnow()

        with self._series_lock:
            series = self.metrics.get(name)
            if series is None:
                series = self.metrics[name] = MetricSeries(
                    name=name, metric_type=metric_type, unit=unit, description=description
                )
            series.add_value(value, timestamp, **labels)

    def get_counter(self, name: str, description: str = "") -> Counter:
        """Get or create a counter."""
        with self._series_lock:
            if name not in self.counters:
                self.counters[name] = Counter(name, description)
            return self.counters[name]

    def get_gauge(self, name: str, description: str = "", unit: MetricUnit = MetricUnit.COUNT) -> Gauge:
        """Get or create a gauge."""
        with self._series_lock:
            if name not in self.gauges:
                self.gauges[name] = Gauge(name, description, unit)
            return self.gauges[name]

    def get_timer(self, name: str, description: str = "") -> Timer:
        """Get or create a timer."""
        with self._series_lock:
            if name not in self.timers:
                self.timers[name] = Timer(name, description)
            return self.timers[name]

    def get_metric_series(self, name: str) -> Optional[MetricSeries]:
        return self.metrics.get(name)

    def export_metrics(self, format_type: str = 'prometheus') -> str:
        """Export metrics in the requested format."""
        if format_type == 'prometheus':
            return self._export_prometheus_format()
        raise ValueError(f"Unsupported format: {format_type}")

    def _export_prometheus_format(self) -> str:
        lines = []

        with self._series_lock:
            series_items = list(self.metrics.values())

        for series in series_items:
            latest_value = series.get_latest_value()
            if not latest_value:
                continue

            metric_name = series.name.replace('-', '_').replace('.', '_')
            lines.append(f"# HELP {metric_name} {series.description or series.name}")
            lines.append(f"# TYPE {metric_name} {series.metric_type.value}")

            labels = [f'{k}="{v}"' for k, v in latest_value.labels.items()]
            label_str = '{' + ','.join(labels) + '}' if labels else ''
            lines.append(f"{metric_name}{label_str} {latest_value.value}")

        return '\n'.join(lines)

    def record_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self.get_counter('http_requests_total', 'Total HTTP requests').increment(
            method=method, endpoint=endpoint, status=str(status_code)
        )
        self.get_timer('http_request_duration', 'HTTP request duration').record(
            duration, method=method, endpoint=endpoint
        )
        if status_code >= 400:
            self.get_counter('http_errors_total', 'HTTP responses with status >= 400').increment(
                method=method, endpoint=endpoint, status=str(status_code)
            )

    def set_cache_hit_rate(self, hit_rate: float):
        """Publish the current cache hit rate, in percent."""
        self.get_gauge('cache_hit_rate', 'Cache hit rate', MetricUnit.PERCENT).set(hit_rate)


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    return MetricsCollector.get_instance()
