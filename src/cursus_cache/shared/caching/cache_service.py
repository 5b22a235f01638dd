"""
Typed read-through cache over a key-value store.

CacheService never raises store errors from its regular operations: failures
are counted, logged and reported as ``None`` / ``False`` so a broken store
degrades to cache-miss behaviour. The maintenance calls used by statistics,
cleanup and invalidation are the exception.
"""

import asyncio
import functools
import inspect
import json
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import get_cache_settings
from ..logging_config import get_logger
from ..metrics_collector import get_metrics_collector
from . import keys
from .store import KeyValueStore

Producer = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class PerformanceMetrics:
    """Immutable snapshot of cumulative cache counters."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0
    operations: int = 0
    total_latency_ms: float = 0.0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of lookups."""
        return self.hits / self.lookups * 100 if self.lookups else 0.0

    @property
    def miss_rate(self) -> float:
        return self.misses / self.lookups * 100 if self.lookups else 0.0

    @property
    def average_latency_ms(self) -> float:
        return self.total_latency_ms / self.lookups if self.lookups else 0.0

    @property
    def error_rate(self) -> float:
        """Errors as a percentage of store operations."""
        return self.errors / self.operations * 100 if self.operations else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            **asdict(self),
            'lookups': self.lookups,
            'hit_rate': round(self.hit_rate, 2),
            'miss_rate': round(self.miss_rate, 2),
            'average_latency_ms': round(self.average_latency_ms, 3),
            'error_rate': round(self.error_rate, 2),
        }


class CacheMetrics:
    """Cumulative counters guarded by a single lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters = self._zero()

    @staticmethod
    def _zero() -> Dict[str, Union[int, float]]:
        return {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'deletes': 0,
            'errors': 0,
            'operations': 0,
            'total_latency_ms': 0.0,
        }

    def record(self, latency_ms: float = 0.0, **increments: int):
        with self._lock:
            self._counters['operations'] += 1
            self._counters['total_latency_ms'] += latency_ms
            for name, amount in increments.items():
                self._counters[name] += amount

    def snapshot(self) -> PerformanceMetrics:
        with self._lock:
            return PerformanceMetrics(**self._counters)

    def reset(self):
        with self._lock:
            self._counters = self._zero()


class CacheService:
    """JSON-serializing cache with TTL policy, key namespacing and metrics."""

    def __init__(self, store: KeyValueStore, namespace: Optional[str] = None,
                 default_ttl: Optional[int] = None):
        settings = get_cache_settings()
        self.store = store
        self.namespace = settings.cache_namespace if namespace is None else namespace
        self.default_ttl = default_ttl or settings.cache_default_ttl
        self.metrics = CacheMetrics()
        self.collector = get_metrics_collector()
        self.logger = get_logger(__name__, 'cache_service')

    # Key namespacing

    def make_key(self, key: str) -> str:
        """Map a logical key or pattern to its store key."""
        return f"{self.namespace}:{key}" if self.namespace else key

    def strip_key(self, store_key: str) -> str:
        """Map a store key back to its logical key."""
        prefix = f"{self.namespace}:"
        if self.namespace and store_key.startswith(prefix):
            return store_key[len(prefix):]
        return store_key

    def resolve_ttl(self, key: str, ttl: Optional[int] = None) -> int:
        """Explicit positive TTL, else the key policy, else the default.

        A TTL of zero or less never reaches the store.
        """
        if ttl is not None and ttl > 0:
            return ttl
        return keys.ttl_for(key) or self.default_ttl

    # Serialization

    @staticmethod
    def serialize(value: Any) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def deserialize(data: str) -> Any:
        return json.loads(data)

    # Error accounting

    def record_error(self, operation: str, error: Exception, key: Optional[str] = None):
        """Count and log a failed store operation."""
        self.metrics.record(errors=1)
        self.collector.get_counter('cache_errors_total', 'Failed cache operations').increment(
            1, operation=operation
        )
        self.logger.error(
            f"Cache {operation} failed{f' for key {key}' if key else ''}: {error}",
            operation=operation,
            key=key,
            error_type=type(error).__name__
        )

    def _observe(self, operation: str, started: float) -> float:
        elapsed = time.perf_counter() - started
        self.collector.get_timer('cache_operation_duration', 'Cache operation duration').record(
            elapsed, operation=operation
        )
        return elapsed * 1000

    # Core operations

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or failure."""
        started = time.perf_counter()
        try:
            data = await self.store.get(self.make_key(key))
        except Exception as e:
            self.record_error('get', e, key)
            return None

        latency_ms = self._observe('get', started)

        if data is None:
            self.metrics.record(latency_ms, misses=1)
            self.collector.get_counter('cache_misses_total', 'Cache misses').increment(1)
            return None

        try:
            value = self.deserialize(data)
        except (TypeError, ValueError) as e:
            self.record_error('deserialize', e, key)
            return None

        self.metrics.record(latency_ms, hits=1)
        self.collector.get_counter('cache_hits_total', 'Cache hits').increment(1)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a value; False on serialization or store failure."""
        started = time.perf_counter()
        try:
            data = self.serialize(value)
            await self.store.set(self.make_key(key), data, self.resolve_ttl(key, ttl))
        except Exception as e:
            self.record_error('set', e, key)
            return False

        self._observe('set', started)
        self.metrics.record(sets=1)
        self.collector.get_counter('cache_sets_total', 'Cache writes').increment(1)
        return True

    async def get_or_set(self, key: str, producer: Producer, ttl: Optional[int] = None) -> Any:
        """Return the cached value, computing and storing it on a miss.

        The producer runs once per miss observed by this call; concurrent
        callers that both miss both compute, and the last write wins. A
        producer result of None is returned but not cached.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = producer()
        if inspect.isawaitable(value):
            value = await value

        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def delete(self, key: str) -> bool:
        """Delete a key; True iff it existed and was removed."""
        try:
            removed = await self.store.delete(self.make_key(key))
        except Exception as e:
            self.record_error('delete', e, key)
            return False

        if removed:
            self.metrics.record(deletes=removed)
            self.collector.get_counter('cache_deletes_total', 'Cache deletions').increment(removed)
        else:
            self.metrics.record()
        return removed > 0

    async def exists(self, key: str) -> bool:
        try:
            found = await self.store.exists(self.make_key(key))
        except Exception as e:
            self.record_error('exists', e, key)
            return False
        self.metrics.record()
        return found

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            updated = await self.store.expire(self.make_key(key), ttl)
        except Exception as e:
            self.record_error('expire', e, key)
            return False
        self.metrics.record()
        return updated

    async def mget(self, keys_: List[str]) -> List[Optional[Any]]:
        """Fetch several keys; each position is None on miss or decode failure."""
        if not keys_:
            return []

        started = time.perf_counter()
        try:
            values = await self.store.mget([self.make_key(key) for key in keys_])
        except Exception as e:
            self.record_error('mget', e)
            return [None] * len(keys_)

        latency_ms = self._observe('mget', started)
        results: List[Optional[Any]] = []
        hits = misses = 0

        for key, data in zip(keys_, values):
            if data is None:
                misses += 1
                results.append(None)
                continue
            try:
                results.append(self.deserialize(data))
                hits += 1
            except (TypeError, ValueError) as e:
                self.record_error('deserialize', e, key)
                results.append(None)

        self.metrics.record(latency_ms, hits=hits, misses=misses)
        return results

    async def mset(self, mapping: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        """Store several values with one TTL (per-key policy when omitted)."""
        if not mapping:
            return True

        try:
            if ttl is not None and ttl > 0:
                payload = {self.make_key(key): self.serialize(value) for key, value in mapping.items()}
                await self.store.mset(payload, ttl)
            else:
                for key, value in mapping.items():
                    await self.store.set(self.make_key(key), self.serialize(value), self.resolve_ttl(key))
        except Exception as e:
            self.record_error('mset', e)
            return False

        self.metrics.record(sets=len(mapping))
        return True

    async def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> Optional[int]:
        """Atomically increment an integer counter; None on failure."""
        store_key = self.make_key(key)
        try:
            value = await self.store.incr(store_key, amount)
            if value == amount and ttl:
                await self.store.expire(store_key, ttl)
        except Exception as e:
            self.record_error('increment', e, key)
            return None
        self.metrics.record(sets=1)
        return value

    async def scan_keys(self, pattern: str) -> List[str]:
        """Logical keys matching a pattern within the namespace; [] on failure."""
        try:
            store_keys = await self.store.scan(self.make_key(pattern))
        except Exception as e:
            self.record_error('scan', e, pattern)
            return []
        self.metrics.record()
        return [self.strip_key(key) for key in store_keys]

    async def flush_all(self) -> bool:
        """Delete every key in the namespace (scan then delete, never FLUSHALL)."""
        try:
            store_keys = await self.store.scan(self.make_key('*'))
            removed = await self.store.delete(*store_keys) if store_keys else 0
        except Exception as e:
            self.record_error('flush_all', e)
            return False

        self.metrics.record(deletes=removed)
        self.logger.warning(
            f"Flushed {removed} keys from namespace '{self.namespace}'",
            operation="flush_all",
            removed=removed
        )
        return True

    async def ping(self) -> bool:
        try:
            return await self.store.ping()
        except Exception as e:
            self.record_error('ping', e)
            return False

    # Maintenance access: leaves the counters untouched and raises store errors

    async def peek_keys(self, pattern: str) -> List[str]:
        """Logical keys matching a pattern."""
        return [self.strip_key(key) for key in await self.store.scan(self.make_key(pattern))]

    async def peek_many(self, keys_: List[str]) -> List[Optional[Any]]:
        """Decoded values for several keys; None on miss or undecodable data."""
        if not keys_:
            return []

        results: List[Optional[Any]] = []
        for data in await self.store.mget([self.make_key(key) for key in keys_]):
            try:
                results.append(None if data is None else self.deserialize(data))
            except (TypeError, ValueError):
                results.append(None)
        return results

    async def purge(self, keys_: List[str], batch_size: int = 500) -> List[str]:
        """Delete keys in batches; returns the logical keys that were actually removed.

        Every delete in a batch is attempted before the first failure is raised.
        """
        removed: List[str] = []
        for start in range(0, len(keys_), batch_size):
            batch = keys_[start:start + batch_size]
            counts = await asyncio.gather(
                *(self.store.delete(self.make_key(key)) for key in batch),
                return_exceptions=True
            )
            for count in counts:
                if isinstance(count, Exception):
                    raise count
            removed.extend(key for key, count in zip(batch, counts) if count)
        return removed

    # Metrics

    def get_metrics(self) -> PerformanceMetrics:
        return self.metrics.snapshot()

    def reset_metrics(self):
        self.metrics.reset()
        self.logger.info("Cache metrics reset", operation="reset_metrics")


def cached(cache: CacheService, key_func: Optional[Callable[..., str]] = None,
           ttl: Optional[int] = None, enabled: bool = True):
    """Decorator for caching coroutine results through ``cache.get_or_set``.

    Without ``key_func`` the key is the function name followed by its arguments.
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"cached() requires a coroutine function, got {func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not enabled:
                return await func(*args, **kwargs)

            if key_func:
                cache_key = key_func(*args, **kwargs)
            else:
                key_parts = [func.__name__]
                key_parts.extend(str(arg) for arg in args)
                key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
                cache_key = ":".join(key_parts)

            return await cache.get_or_set(cache_key, lambda: func(*args, **kwargs), ttl)

        return wrapper

    return decorator


class CacheBatch:
    """Queued sets and deletes applied in order by ``execute``."""

    def __init__(self, cache: CacheService):
        self.cache = cache
        self.operations: List[Dict[str, Any]] = []

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> 'CacheBatch':
        self.operations.append({'operation': 'set', 'key': key, 'value': value, 'ttl': ttl})
        return self

    def delete(self, key: str) -> 'CacheBatch':
        self.operations.append({'operation': 'delete', 'key': key})
        return self

    async def execute(self) -> Dict[str, Any]:
        """Apply queued operations; ``success`` is False if any one of them failed.

        A delete of a missing key counts as a failure.
        """
        results = []
        for op in self.operations:
            if op['operation'] == 'set':
                ok = await self.cache.set(op['key'], op['value'], op['ttl'])
            else:
                ok = await self.cache.delete(op['key'])
            results.append({'operation': op['operation'], 'key': op['key'], 'success': ok})

        return {'success': all(r['success'] for r in results), 'results': results}

    def clear(self) -> 'CacheBatch':
        self.operations = []
        return self
