"""
Cache layer for Cursus.

- Key-value store adapters (Redis and in-memory)
- Typed cache service with metrics
- Domain data and session caches
- Read-through decorator, batched writes and cache warming
- Event-driven invalidation and scheduled cleanup
- Monitoring, health and threshold alerts
"""

from .store import (
    CacheError,
    StoreUnavailableError,
    KeyValueStore,
    RedisKeyValueStore,
    MemoryKeyValueStore,
    create_store
)

from .cache_service import (
    CacheService,
    CacheMetrics,
    PerformanceMetrics,
    CacheBatch,
    cached
)

from .data_cache import DataCacheService
from .session_cache import SessionCacheService
from .warming import WarmingJob, WarmingSource, CacheWarmer

from .invalidation import (
    InvalidationEventType,
    InvalidationEvent,
    InvalidationResult,
    InvalidationRule,
    KeyTemplate,
    CacheInvalidationService,
    create_default_invalidation_rules
)

from .monitoring import (
    Alert,
    AlertKind,
    AlertSeverity,
    HealthStatus,
    CacheMonitoringService
)

__all__ = [
    # Store
    'CacheError',
    'StoreUnavailableError',
    'KeyValueStore',
    'RedisKeyValueStore',
    'MemoryKeyValueStore',
    'create_store',

    # Cache
    'CacheService',
    'CacheMetrics',
    'PerformanceMetrics',
    'CacheBatch',
    'cached',
    'DataCacheService',
    'SessionCacheService',

    # Warming
    'WarmingJob',
    'WarmingSource',
    'CacheWarmer',

    # Invalidation
    'InvalidationEventType',
    'InvalidationEvent',
    'InvalidationResult',
    'InvalidationRule',
    'KeyTemplate',
    'CacheInvalidationService',
    'create_default_invalidation_rules',

    # Monitoring
    'Alert',
    'AlertKind',
    'AlertSeverity',
    'HealthStatus',
    'CacheMonitoringService',
]
