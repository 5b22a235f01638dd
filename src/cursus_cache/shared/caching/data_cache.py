"""
Typed accessors for cached learning-path, module, challenge and user data.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..logging_config import get_logger
from . import keys
from .cache_service import CacheService


class DataCacheService:
    """Domain-level get/set helpers built on the key builders and TTL policy."""

    def __init__(self, cache: CacheService):
        self.cache = cache
        self.logger = get_logger(__name__, 'data_cache')

    # Learning paths

    async def set_learning_path(self, path_id: str, path: Dict[str, Any]) -> bool:
        return await self.cache.set(keys.path_detail(path_id), path, keys.CacheTTL.LEARNING_PATH)

    async def get_learning_path(self, path_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.path_detail(path_id))

    async def set_learning_paths(self, paths: Dict[str, Dict[str, Any]]) -> bool:
        """Cache several learning paths in one round trip."""
        mapping = {keys.path_detail(path_id): path for path_id, path in paths.items()}
        return await self.cache.mset(mapping, keys.CacheTTL.LEARNING_PATH)

    async def set_path_modules(self, path_id: str, modules: List[Dict[str, Any]]) -> bool:
        return await self.cache.set(keys.path_modules(path_id), modules, keys.CacheTTL.LEARNING_PATH)

    async def get_path_modules(self, path_id: str) -> Optional[List[Dict[str, Any]]]:
        return await self.cache.get(keys.path_modules(path_id))

    async def set_path_list(self, paths: List[Dict[str, Any]], view: str = 'all') -> bool:
        return await self.cache.set(keys.paths_list(view), paths, keys.CacheTTL.LEARNING_PATH)

    async def get_path_list(self, view: str = 'all') -> Optional[List[Dict[str, Any]]]:
        return await self.cache.get(keys.paths_list(view))

    async def invalidate_learning_path(self, path_id: str) -> int:
        """Drop the cached detail, module list and stats of one path."""
        removed = 0
        for key in (keys.path_detail(path_id), keys.path_modules(path_id), keys.path_stats(path_id)):
            if await self.cache.delete(key):
                removed += 1
        return removed

    # Modules and challenges

    async def set_module(self, module_id: str, module: Dict[str, Any]) -> bool:
        return await self.cache.set(keys.module_detail(module_id), module, keys.CacheTTL.MODULE)

    async def get_module(self, module_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.module_detail(module_id))

    async def set_module_challenges(self, module_id: str, challenges: List[Dict[str, Any]]) -> bool:
        return await self.cache.set(keys.module_challenges(module_id), challenges, keys.CacheTTL.MODULE)

    async def get_module_challenges(self, module_id: str) -> Optional[List[Dict[str, Any]]]:
        return await self.cache.get(keys.module_challenges(module_id))

    async def set_challenge(self, challenge_id: str, challenge: Dict[str, Any]) -> bool:
        return await self.cache.set(keys.challenge_detail(challenge_id), challenge, keys.CacheTTL.CHALLENGE)

    async def get_challenge(self, challenge_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.challenge_detail(challenge_id))

    async def get_challenges(self, challenge_ids: List[str]) -> List[Optional[Dict[str, Any]]]:
        return await self.cache.mget([keys.challenge_detail(cid) for cid in challenge_ids])

    # User data

    async def set_user_profile(self, user_id: str, profile: Dict[str, Any]) -> bool:
        return await self.cache.set(keys.user_profile(user_id), profile, keys.CacheTTL.USER_PROFILE)

    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.user_profile(user_id))

    async def set_user_enrollments(self, user_id: str, enrollments: List[Dict[str, Any]]) -> bool:
        return await self.cache.set(keys.user_enrollments(user_id), enrollments, keys.CacheTTL.USER_ENROLLMENTS)

    async def get_user_enrollments(self, user_id: str) -> Optional[List[Dict[str, Any]]]:
        return await self.cache.get(keys.user_enrollments(user_id))

    async def set_user_progress(self, user_id: str, path_id: str, progress: Dict[str, Any]) -> bool:
        return await self.cache.set(keys.user_progress(user_id, path_id), progress, keys.CacheTTL.USER_PROGRESS)

    async def get_user_progress(self, user_id: str, path_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.user_progress(user_id, path_id))

    async def get_all_user_progress(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        """Cached progress of a user keyed by path id."""
        pattern = keys.build_key('user', user_id, 'progress') + ':*'
        progress_keys = await self.cache.scan_keys(pattern)
        values = await self.cache.mget(progress_keys)
        return {
            key.rsplit(':', 1)[-1]: value
            for key, value in zip(progress_keys, values)
            if value is not None
        }

    async def set_recommendations(self, user_id: str, recommendations: List[Any]) -> bool:
        return await self.cache.set(keys.user_recommendations(user_id), recommendations, keys.CacheTTL.RECOMMENDATIONS)

    async def get_recommendations(self, user_id: str) -> Optional[List[Any]]:
        return await self.cache.get(keys.user_recommendations(user_id))

    async def set_dashboard(self, user_id: str, dashboard: Dict[str, Any]) -> bool:
        return await self.cache.set(keys.user_dashboard(user_id), dashboard, keys.CacheTTL.DASHBOARD)

    async def get_dashboard(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.user_dashboard(user_id))

    # Code analysis and search

    async def set_code_analysis(self, code: str, analysis: Dict[str, Any]) -> bool:
        """Cache an analysis keyed by the code's digest.

        A ``timestamp`` is stamped on the payload when absent; scheduled
        cleanup uses it to drop stale analyses.
        """
        payload = dict(analysis)
        payload.setdefault('timestamp', datetime.utcnow().isoformat())
        return await self.cache.set(keys.code_analysis(keys.hash_content(code)), payload, keys.CacheTTL.CODE_ANALYSIS)

    async def get_code_analysis(self, code: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.code_analysis(keys.hash_content(code)))

    async def set_search_results(self, query: str, results: List[Any]) -> bool:
        return await self.cache.set(keys.search_results(keys.hash_content(query)), results, keys.CacheTTL.SEARCH_RESULTS)

    async def get_search_results(self, query: str) -> Optional[List[Any]]:
        return await self.cache.get(keys.search_results(keys.hash_content(query)))

    # Statistics

    async def get_cache_stats(self) -> Dict[str, int]:
        """Number of cached keys per data category.

        Read-only maintenance view: counters are untouched and store errors propagate.
        """
        stats = {}
        for category, pattern in keys.CATEGORY_PATTERNS.items():
            stats[category] = len(await self.cache.peek_keys(pattern))
        stats['total_keys'] = len(await self.cache.peek_keys('*'))
        return stats
