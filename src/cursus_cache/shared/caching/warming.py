"""
Cache warming for Cursus.

Loads frequently read data into the cache ahead of requests. A warming job
pairs a name with an async loader that returns logical keys mapped to
values; the warmer writes them with one ``mset`` and keeps per-job
statistics.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from ..logging_config import get_logger
from ..metrics_collector import MetricUnit, get_metrics_collector
from . import keys
from .cache_service import CacheService


class WarmingSource(Protocol):
    """Where warmed data comes from, usually the primary database."""

    async def user_profile(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def user_progress(self, user_id: str) -> Dict[str, Dict[str, Any]]: ...

    async def recommendations(self, user_id: str) -> Optional[List[Any]]: ...

    async def popular_paths(self, limit: int) -> List[Dict[str, Any]]: ...

    async def popular_challenges(self, limit: int) -> List[Dict[str, Any]]: ...


@dataclass
class WarmingJob:
    """Cache warming job configuration."""
    name: str
    data_loader: Callable[[], Awaitable[Dict[str, Any]]]
    ttl: Optional[int] = None
    priority: int = 1  # 1 = highest
    enabled: bool = True
    last_run: Optional[datetime] = None
    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_duration: float = 0.0


class CacheWarmer:
    """Runs warming jobs against a CacheService."""

    def __init__(self, cache: CacheService, source: Optional[WarmingSource] = None):
        self.cache = cache
        self.source = source
        self.logger = get_logger(__name__, 'cache_warmer')
        self.metrics = get_metrics_collector()

        self.jobs: Dict[str, WarmingJob] = {}
        self.stats = {
            'jobs_executed': 0,
            'jobs_succeeded': 0,
            'jobs_failed': 0,
            'total_items_warmed': 0,
            'total_warming_time': 0.0,
        }

    def register_job(self, job: WarmingJob) -> None:
        self.jobs[job.name] = job
        self.logger.info(f"Registered cache warming job: {job.name}", operation="register_job")

    def unregister_job(self, job_name: str) -> bool:
        if job_name in self.jobs:
            del self.jobs[job_name]
            self.logger.info(f"Unregistered cache warming job: {job_name}", operation="unregister_job")
            return True
        return False

    def get_job(self, job_name: str) -> Optional[WarmingJob]:
        return self.jobs.get(job_name)

    def list_jobs(self, enabled_only: bool = True) -> List[WarmingJob]:
        """Jobs in priority order."""
        jobs = [job for job in self.jobs.values() if job.enabled or not enabled_only]
        return sorted(jobs, key=lambda j: j.priority)

    async def warm_job(self, job_name: str) -> bool:
        """Execute a registered job; False when it is missing, disabled or failed."""
        job = self.jobs.get(job_name)
        if not job or not job.enabled:
            self.logger.warning(f"Job {job_name} not found or disabled", operation="warm_job")
            return False
        success, _ = await self._execute(job)
        return success

    async def run_jobs(self) -> Dict[str, bool]:
        """Run every enabled job in priority order; one failure does not stop the rest."""
        return {job.name: (await self._execute(job))[0] for job in self.list_jobs()}

    async def _execute(self, job: WarmingJob) -> Tuple[bool, int]:
        started = time.perf_counter()
        try:
            data = await job.data_loader()
            success = await self.cache.mset(data, job.ttl) if data else True
        except Exception as e:
            self._finish(job, started, success=False, items=0, status='error')
            self.logger.error(f"Cache warming job {job.name} failed: {e}", operation="warm_job", job=job.name)
            return False, 0

        items = len(data) if success and data else 0
        self._finish(job, started, success=success, items=items, status='success' if success else 'failed')
        if success:
            self.logger.info(f"Cache warming job {job.name} warmed {items} items", operation="warm_job", job=job.name)
        else:
            self.logger.error(f"Cache warming job {job.name} failed to set cache data", operation="warm_job", job=job.name)
        return success, items

    def _finish(self, job: WarmingJob, started: float, success: bool, items: int, status: str):
        duration = time.perf_counter() - started
        job.run_count += 1
        job.last_run = datetime.utcnow()
        job.avg_duration = (job.avg_duration * (job.run_count - 1) + duration) / job.run_count
        if success:
            job.success_count += 1
            self.stats['jobs_succeeded'] += 1
        else:
            job.error_count += 1
            self.stats['jobs_failed'] += 1
        self.stats['jobs_executed'] += 1
        self.stats['total_items_warmed'] += items
        self.stats['total_warming_time'] += duration

        self.metrics.get_counter('cache_warming_jobs_total', 'Cache warming job runs').increment(
            1, job=job.name, status=status
        )
        self.metrics.get_gauge(
            'cache_warming_duration_seconds', 'Last cache warming job duration', MetricUnit.SECONDS
        ).set(duration, job=job.name)

    async def _run_once(self, jobs: List[WarmingJob]) -> int:
        warmed = 0
        for job in sorted(jobs, key=lambda j: j.priority):
            _, items = await self._execute(job)
            warmed += items
        return warmed

    def _require_source(self) -> WarmingSource:
        if self.source is None:
            raise ValueError("CacheWarmer has no data source configured")
        return self.source

    # Built-in warmers

    async def warm_user_cache(self, user_id: str) -> int:
        """Load a user's profile, progress and recommendations; returns items warmed."""
        source = self._require_source()
        user_id = str(user_id)

        async def load_profile():
            profile = await source.user_profile(user_id)
            return {} if profile is None else {keys.user_profile(user_id): profile}

        async def load_progress():
            progress = await source.user_progress(user_id) or {}
            return {keys.user_progress(user_id, path_id): value for path_id, value in progress.items()}

        async def load_recommendations():
            recommendations = await source.recommendations(user_id)
            return {} if recommendations is None else {keys.user_recommendations(user_id): recommendations}

        warmed = await self._run_once([
            WarmingJob(f'user-profile:{user_id}', load_profile, priority=1),
            WarmingJob(f'user-progress:{user_id}', load_progress, priority=2),
            WarmingJob(f'user-recommendations:{user_id}', load_recommendations, priority=3),
        ])
        self.logger.info(f"Warmed {warmed} cache entries for user {user_id}", operation="warm_user_cache")
        return warmed

    async def warm_popular_content(self, limit: int = 20) -> int:
        """Load the most requested learning paths and challenges; returns items warmed."""
        source = self._require_source()

        async def load_paths():
            return {keys.path_detail(p['id']): p for p in await source.popular_paths(limit) if p.get('id')}

        async def load_challenges():
            return {keys.challenge_detail(c['id']): c for c in await source.popular_challenges(limit) if c.get('id')}

        warmed = await self._run_once([
            WarmingJob('popular-paths', load_paths, priority=1),
            WarmingJob('popular-challenges', load_challenges, priority=2),
        ])
        self.logger.info(f"Warmed {warmed} popular content entries", operation="warm_popular_content")
        return warmed

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'jobs': {
                job.name: {
                    'priority': job.priority,
                    'enabled': job.enabled,
                    'run_count': job.run_count,
                    'success_count': job.success_count,
                    'error_count': job.error_count,
                    'avg_duration': round(job.avg_duration, 4),
                    'last_run': job.last_run.isoformat() if job.last_run else None,
                }
                for job in self.jobs.values()
            },
        }
