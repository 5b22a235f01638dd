"""
Cache Alerts API Endpoints

- GET /cache/alerts?action=monitor - Evaluate thresholds and return new alerts
- GET /cache/alerts?action=recent - Most recent alerts first
"""

import logging

from fastapi import APIRouter, Depends, Query

from ...shared.caching import CacheMonitoringService
from ..dependencies import error_response, get_monitoring_service


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/cache/alerts",
    summary="Monitor cache thresholds and list alerts",
    description="""
    With ``action=monitor`` the thresholds are evaluated now and only the
    alerts raised by this evaluation are returned. Otherwise the most recent
    alerts are listed, newest first.
    """
)
async def get_cache_alerts(
    limit: int = Query(20, ge=1, le=1000, description="Maximum alerts to return"),
    action: str = Query("recent", description="monitor or recent"),
    monitoring: CacheMonitoringService = Depends(get_monitoring_service)
):
    """Run threshold monitoring or list recent alerts."""
    try:
        if action == "monitor":
            new_alerts = monitoring.monitor_and_alert()
            return {
                "success": True,
                "data": {
                    "newAlerts": [alert.to_dict() for alert in new_alerts],
                    "alertCount": len(new_alerts),
                },
            }

        alerts = monitoring.get_recent_alerts(limit)
        return {
            "success": True,
            "data": {
                "alerts": [alert.to_dict() for alert in alerts],
                "count": len(alerts),
            },
        }

    except Exception as e:
        logger.error(f"Error processing cache alerts: {e}", exc_info=True)
        return error_response(500, "Failed to process cache alerts", str(e))
