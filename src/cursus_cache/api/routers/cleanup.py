"""
Cache Cleanup API Endpoints

- POST /cache/cleanup?action=scheduled - Sweep stale entries by category
- POST /cache/cleanup?action=flush-all - Delete every key in the cache namespace
"""

import logging

from fastapi import APIRouter, Depends, Query

from ...shared.caching import CacheInvalidationService, CacheService
from ..dependencies import error_response, get_cache_service, get_invalidation_service


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/cache/cleanup",
    summary="Run cache cleanup",
    description="""
    ``scheduled`` removes expired sessions, stale code analyses, search
    results and user keys without a TTL, and undecodable entries. It is
    idempotent and meant to be called by an external scheduler.

    ``flush-all`` deletes every key in the cache namespace. Operational use only.
    """
)
async def run_cache_cleanup(
    action: str = Query("scheduled", description="scheduled or flush-all"),
    cache: CacheService = Depends(get_cache_service),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service)
):
    """Run scheduled cleanup or flush the namespace."""
    if action not in ("scheduled", "flush-all"):
        return error_response(400, "Invalid action. Use: scheduled or flush-all")

    try:
        if action == "scheduled":
            result = await invalidation.scheduled_cleanup()
            return {
                "success": True,
                "data": {
                    "totalKeysRemoved": result["total_keys_removed"],
                    "categories": result["categories"],
                    "errors": result["errors"],
                    "message": f"Cleanup completed: {result['total_keys_removed']} keys removed",
                },
            }

        flushed = await cache.flush_all()
        logger.warning(f"Cache flush requested, flushed={flushed}")
        return {
            "success": flushed,
            "data": {
                "flushed": flushed,
                "message": "All cache data flushed" if flushed else "Failed to flush cache",
            },
        }

    except Exception as e:
        logger.error(f"Error during cache cleanup: {e}", exc_info=True)
        return error_response(500, "Failed to perform cache cleanup", str(e))
