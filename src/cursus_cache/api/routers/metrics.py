"""
Cache Metrics API Endpoints

- GET /cache/metrics - Performance metrics, health, reports or raw counters
- DELETE /cache/metrics - Reset cumulative cache counters
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from ...shared.caching import CacheMonitoringService, CacheService
from ...shared.metrics_collector import MetricsCollector
from ..dependencies import error_response, get_cache_service, get_collector, get_monitoring_service


logger = logging.getLogger(__name__)
router = APIRouter()

METRIC_TYPES = ("summary", "health", "report", "basic", "prometheus")


@router.get(
    "/cache/metrics",
    summary="Get cache metrics",
    description="""
    Cache observability in one endpoint, selected by ``type``:
    - summary: counters with derived rates and store statistics
    - health: healthy / degraded / unhealthy with reasons
    - report: time-windowed performance report with alert history
    - basic: raw cumulative counters
    - prometheus: process metrics in Prometheus text format
    """
)
async def get_cache_metrics(
    metrics_type: str = Query("summary", alias="type", description="summary, health, report, basic or prometheus"),
    window: int = Query(60, ge=1, le=24 * 60, description="Report window in minutes"),
    cache: CacheService = Depends(get_cache_service),
    monitoring: CacheMonitoringService = Depends(get_monitoring_service),
    collector: MetricsCollector = Depends(get_collector)
):
    """Return cache metrics of the requested type."""
    if metrics_type not in METRIC_TYPES:
        return error_response(400, "Invalid metrics type. Use: summary, health, report, basic, or prometheus")

    try:
        if metrics_type == "summary":
            data = await monitoring.get_performance_metrics()
        elif metrics_type == "health":
            data = monitoring.get_health_status()
        elif metrics_type == "report":
            data = await monitoring.generate_performance_report(window_minutes=window)
        elif metrics_type == "basic":
            data = cache.get_metrics().to_dict()
        else:
            return PlainTextResponse(
                collector.export_metrics("prometheus"),
                media_type="text/plain; version=0.0.4"
            )

        return {"success": True, "data": data}

    except Exception as e:
        logger.error(f"Error getting cache metrics: {e}", exc_info=True)
        return error_response(500, "Failed to get cache metrics", str(e))


@router.delete(
    "/cache/metrics",
    summary="Reset cache metrics",
    description="Zero the cumulative cache counters. Requires ``action=reset-metrics``."
)
async def reset_cache_metrics(
    action: str = Query(None, description="Must be reset-metrics"),
    cache: CacheService = Depends(get_cache_service)
):
    """Reset cumulative cache counters."""
    if action != "reset-metrics":
        return error_response(400, "Invalid action. Use: reset-metrics")

    try:
        cache.reset_metrics()
        return {"success": True, "message": "Cache metrics reset successfully"}

    except Exception as e:
        logger.error(f"Error resetting cache metrics: {e}", exc_info=True)
        return error_response(500, "Failed to reset cache metrics", str(e))
