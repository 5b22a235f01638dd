"""
Key-value store adapters for the Cursus cache layer.

The cache services depend only on the ``KeyValueStore`` protocol. Two
implementations are provided: ``RedisKeyValueStore`` for deployments and
``MemoryKeyValueStore`` for local development and tests.
"""

import asyncio
import fnmatch
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..config import CacheBackend, RedisSettings, get_cache_settings, get_redis_settings
from ..logging_config import get_logger


class CacheError(Exception):
    """Base class for cache layer errors."""


class StoreUnavailableError(CacheError):
    """Raised when the key-value store cannot be reached."""


@runtime_checkable
class KeyValueStore(Protocol):
    """Async key-value store contract used by the cache services.

    Values are opaque strings. ``ttl`` follows Redis semantics: -2 when the
    key does not exist, -1 when it exists without an expiry.
    """

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def ping(self) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool: ...

    async def mget(self, keys: List[str]) -> List[Optional[str]]: ...

    async def mset(self, mapping: Dict[str, str], ttl: Optional[int] = None) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def incr(self, key: str, amount: int = 1) -> int: ...

    async def scan(self, pattern: str) -> List[str]: ...

    async def info(self) -> Dict[str, Any]: ...


class RedisKeyValueStore:
    """Redis-backed store.

    The client is created lazily on first use and shared by every caller.
    Transient connection failures are retried by redis-py with exponential
    backoff; anything that survives the retries surfaces as a redis error.
    """

    def __init__(self, settings: Optional[RedisSettings] = None, scan_count: int = 500):
        self.settings = settings or get_redis_settings()
        self.scan_count = scan_count
        self.redis_client: Optional[Redis] = None
        self.logger = get_logger(__name__, 'redis_store')
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to Redis if not already connected."""
        if self.redis_client is not None:
            return

        async with self._connect_lock:
            if self.redis_client is not None:
                return

            retry = Retry(
                ExponentialBackoff(cap=self.settings.redis_backoff_cap, base=self.settings.redis_backoff_base),
                self.settings.redis_retry_attempts
            )
            client = redis.from_url(
                self.settings.redis_url,
                db=self.settings.redis_db,
                max_connections=self.settings.redis_max_connections,
                socket_connect_timeout=self.settings.redis_connect_timeout,
                socket_timeout=self.settings.redis_socket_timeout,
                retry=retry,
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
                decode_responses=True
            )

            try:
                await client.ping()
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                await client.aclose()
                self.logger.error(f"Failed to connect to Redis: {e}", operation="connect")
                raise StoreUnavailableError(f"Redis unavailable at {self.settings.redis_url}: {e}") from e

            self.redis_client = client
            self.logger.info("Connected to Redis successfully", operation="connect")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            self.logger.info("Disconnected from Redis", operation="disconnect")

    async def _client(self) -> Redis:
        if self.redis_client is None:
            await self.connect()
        return self.redis_client

    async def ping(self) -> bool:
        client = await self._client()
        return bool(await client.ping())

    async def get(self, key: str) -> Optional[str]:
        client = await self._client()
        return await client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        client = await self._client()
        return bool(await client.set(key, value, ex=ttl))

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        client = await self._client()
        return await client.mget(keys)

    async def mset(self, mapping: Dict[str, str], ttl: Optional[int] = None) -> bool:
        if not mapping:
            return True
        client = await self._client()
        async with client.pipeline(transaction=False) as pipe:
            for key, value in mapping.items():
                pipe.set(key, value, ex=ttl)
            results = await pipe.execute()
        return all(results)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        client = await self._client()
        return await client.delete(*keys)

    async def exists(self, key: str) -> bool:
        client = await self._client()
        return await client.exists(key) > 0

    async def expire(self, key: str, ttl: int) -> bool:
        client = await self._client()
        return bool(await client.expire(key, ttl))

    async def ttl(self, key: str) -> int:
        client = await self._client()
        return await client.ttl(key)

    async def incr(self, key: str, amount: int = 1) -> int:
        client = await self._client()
        return await client.incrby(key, amount)

    async def scan(self, pattern: str) -> List[str]:
        """Collect keys matching a glob pattern with SCAN (never KEYS)."""
        client = await self._client()
        return [key async for key in client.scan_iter(match=pattern, count=self.scan_count)]

    async def info(self) -> Dict[str, Any]:
        client = await self._client()
        return await client.info()


@dataclass
class _MemoryEntry:
    value: str
    expires_at: Optional[float]


class MemoryKeyValueStore:
    """In-process store with the same contract as Redis.

    ``clock`` returns seconds and drives expiry, so tests can advance time
    without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._data: Dict[str, _MemoryEntry] = {}
        self._lock = threading.RLock()
        self._started_at = clock()
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def ping(self) -> bool:
        return True

    def _live_entry(self, key: str) -> Optional[_MemoryEntry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self.clock():
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self.clock() + ttl if ttl else None

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        with self._lock:
            self._data[key] = _MemoryEntry(value, self._expiry(ttl))
            return True

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        with self._lock:
            entries = [self._live_entry(key) for key in keys]
            return [entry.value if entry else None for entry in entries]

    async def mset(self, mapping: Dict[str, str], ttl: Optional[int] = None) -> bool:
        with self._lock:
            expires_at = self._expiry(ttl)
            for key, value in mapping.items():
                self._data[key] = _MemoryEntry(value, expires_at)
            return True

    async def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                if self._live_entry(key) is not None:
                    del self._data[key]
                    removed += 1
            return removed

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    async def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            entry.expires_at = self.clock() + ttl
            return True

    async def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return -2
            if entry.expires_at is None:
                return -1
            return max(0, int(round(entry.expires_at - self.clock())))

    async def incr(self, key: str, amount: int = 1) -> int:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                entry = self._data[key] = _MemoryEntry("0", None)
            try:
                current = int(entry.value)
            except ValueError:
                raise ValueError(f"value at {key} is not an integer") from None
            entry.value = str(current + amount)
            return current + amount

    async def scan(self, pattern: str) -> List[str]:
        with self._lock:
            return [
                key for key in list(self._data)
                if fnmatch.fnmatchcase(key, pattern) and self._live_entry(key) is not None
            ]

    async def info(self) -> Dict[str, Any]:
        with self._lock:
            live_keys = [key for key in list(self._data) if self._live_entry(key) is not None]
            used_memory = sum(len(key) + len(self._data[key].value) for key in live_keys)
            return {
                'redis_version': 'memory',
                'used_memory': used_memory,
                'maxmemory': 0,
                'evicted_keys': 0,
                'connected_clients': 1 if self.connected else 0,
                'uptime_in_seconds': int(self.clock() - self._started_at),
                'db_keys': len(live_keys),
            }


def create_store(backend: Optional[CacheBackend] = None) -> KeyValueStore:
    """Build the store configured by ``CACHE_BACKEND``."""
    backend = backend or get_cache_settings().cache_backend
    if backend == CacheBackend.MEMORY:
        return MemoryKeyValueStore()
    return RedisKeyValueStore()
