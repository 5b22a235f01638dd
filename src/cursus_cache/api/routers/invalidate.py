"""
Cache Invalidation API Endpoints

- POST /cache/invalidate - Invalidate the keys affected by a domain change event
- DELETE /cache/invalidate - Delete by pattern, by user or a single key
- GET /cache/invalidate/logs - Recent invalidations, newest first
"""

import logging

from fastapi import APIRouter, Depends, Query

from ...shared.caching import CacheInvalidationService
from ...shared.caching.keys import has_glob
from ...shared.schemas import InvalidationRequest
from ..dependencies import error_response, get_invalidation_service


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/cache/invalidate",
    summary="Invalidate cache for a domain event",
    description="""
    Maps the event ``type`` to its key templates, renders them with
    ``entityId``, ``userId`` and ``metadata`` values and deletes the matching
    keys. Partial failures are reported in ``errors``.
    """
)
async def invalidate_cache(
    body: InvalidationRequest,
    invalidation: CacheInvalidationService = Depends(get_invalidation_service)
):
    """Invalidate every key affected by an event."""
    if not body.has_required_fields():
        return error_response(400, "Missing required fields: type and entityId")

    try:
        event = body.to_event()
    except ValueError as e:
        return error_response(400, str(e))

    try:
        result = await invalidation.invalidate(event)
        return {
            "success": result.success,
            "data": {
                "invalidatedKeys": result.invalidated_keys,
                "keyCount": len(result.invalidated_keys),
                "errors": result.errors,
            },
        }

    except Exception as e:
        logger.error(f"Error invalidating cache: {e}", exc_info=True)
        return error_response(500, "Failed to invalidate cache", str(e))


@router.delete(
    "/cache/invalidate",
    summary="Delete cache entries by pattern, user or key",
    description="Exactly one of ``pattern``, ``userId`` or ``key`` is used, in that order of precedence."
)
async def delete_cache_entries(
    pattern: str = Query(None, description="Glob pattern, e.g. user:42:*"),
    user_id: str = Query(None, alias="userId", description="Clear every cached key and session of a user"),
    key: str = Query(None, description="Single cache key"),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service)
):
    """Delete cache entries selected by pattern, user or key."""
    if not (pattern or user_id or key):
        return error_response(400, "Missing required parameter: pattern, userId, or key")

    if user_id and not pattern and has_glob(user_id):
        return error_response(400, "userId must not contain wildcard characters")

    try:
        if pattern:
            deleted_count = await invalidation.invalidate_by_pattern(pattern)
            return {
                "success": True,
                "data": {
                    "deletedCount": deleted_count,
                    "message": f"Deleted {deleted_count} keys matching pattern: {pattern}",
                },
            }

        if user_id:
            result = await invalidation.invalidate_user_cache(user_id)
            return {
                "success": True,
                "data": {
                    "deletedCount": result["deleted_count"],
                    "sessionsInvalidated": result["sessions_invalidated"],
                    "errors": result["errors"],
                    "message": f"Invalidated cache for user: {user_id}",
                },
            }

        deleted = await invalidation.invalidate_key(key)
        return {
            "success": deleted,
            "data": {
                "deleted": deleted,
                "message": f"Key {'deleted' if deleted else 'not found'}: {key}",
            },
        }

    except Exception as e:
        logger.error(f"Error deleting cache entries: {e}", exc_info=True)
        return error_response(500, "Failed to delete cache entries", str(e))


@router.get(
    "/cache/invalidate/logs",
    summary="List recent invalidations"
)
async def get_invalidation_logs(
    limit: int = Query(50, ge=1, le=1000),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service)
):
    """Recent invalidation events, newest first."""
    logs = invalidation.get_invalidation_logs(limit)
    return {"success": True, "data": {"logs": logs, "count": len(logs)}}
