"""
Dependencies for the cache API

Builds the cache services once per application and exposes them to
endpoints through FastAPI dependency injection.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from ..shared.caching import (
    CacheInvalidationService,
    CacheMonitoringService,
    CacheService,
    DataCacheService,
    KeyValueStore,
    SessionCacheService,
    create_store,
)
from ..shared.metrics_collector import MetricsCollector, get_metrics_collector
from ..shared.schemas import ErrorResponse


@dataclass
class CacheServices:
    """The wired cache layer held on ``app.state.services``."""
    store: KeyValueStore
    cache: CacheService
    data_cache: DataCacheService
    sessions: SessionCacheService
    invalidation: CacheInvalidationService
    monitoring: CacheMonitoringService

    @classmethod
    def build(cls, store: Optional[KeyValueStore] = None) -> 'CacheServices':
        store = store or create_store()
        cache = CacheService(store)
        data_cache = DataCacheService(cache)
        sessions = SessionCacheService(cache)
        return cls(
            store=store,
            cache=cache,
            data_cache=data_cache,
            sessions=sessions,
            invalidation=CacheInvalidationService(cache, sessions=sessions),
            monitoring=CacheMonitoringService(cache, data_cache=data_cache, sessions=sessions),
        )


def get_services(request: Request) -> CacheServices:
    return request.app.state.services


def get_cache_service(request: Request) -> CacheService:
    return get_services(request).cache


def get_invalidation_service(request: Request) -> CacheInvalidationService:
    return get_services(request).invalidation


def get_monitoring_service(request: Request) -> CacheMonitoringService:
    return get_services(request).monitoring


def get_collector() -> MetricsCollector:
    return get_metrics_collector()


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    """Build the ``{success: false, error, details}`` envelope."""
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))
