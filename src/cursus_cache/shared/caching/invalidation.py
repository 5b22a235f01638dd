"""
Event-driven cache invalidation for Cursus.

Domain change events are mapped to key templates, rendered with the event's
identifiers and deleted. Wildcard templates are resolved in two phases: the
store is scanned for matching keys, then the collected keys are deleted.
The phases are not isolated from concurrent writers; a key written between
them survives until the next cleanup or its TTL.
"""

import asyncio
import json
import string
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from ..config import get_cache_settings
from ..logging_config import get_logger
from ..metrics_collector import get_metrics_collector
from . import keys
from .cache_service import CacheService
from .session_cache import SessionCacheService, parse_timestamp

_FORMATTER = string.Formatter()


class InvalidationEventType(str, Enum):
    """Kinds of domain change that invalidate cached data."""
    LEARNING_PATH = "learning_path"
    MODULE = "module"
    CHALLENGE = "challenge"
    ENROLLMENT = "enrollment"
    USER = "user"
    USER_PROGRESS = "user_progress"
    USER_LOGOUT = "user_logout"
    CODE_ANALYSIS = "code_analysis"
    SEARCH_INDEX = "search_index"
    SYSTEM_MAINTENANCE = "system_maintenance"


@dataclass
class InvalidationEvent:
    """A domain change notification."""
    type: InvalidationEventType
    entity_id: str
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        self.type = InvalidationEventType(self.type)
        self.entity_id = str(self.entity_id)
        if self.user_id is not None:
            self.user_id = str(self.user_id)

    def template_values(self) -> Dict[str, Any]:
        return {**self.metadata, 'entity_id': self.entity_id, 'user_id': self.user_id}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'entity_id': self.entity_id,
            'user_id': self.user_id,
            'metadata': self.metadata,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class InvalidationResult:
    """Outcome of one invalidation; errors are soft failures."""
    success: bool = True
    invalidated_keys: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'invalidated_keys': list(self.invalidated_keys),
            'key_count': len(self.invalidated_keys),
            'errors': list(self.errors),
        }


@dataclass(frozen=True)
class KeyTemplate:
    """A key or glob pattern with ``{field}`` placeholders.

    Fields resolve from ``entity_id``, ``user_id`` and the event metadata.
    """
    pattern: str

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(name for _, name, _, _ in _FORMATTER.parse(self.pattern) if name)

    @property
    def is_wildcard(self) -> bool:
        literal = ''.join(text for text, _, _, _ in _FORMATTER.parse(self.pattern))
        return keys.has_glob(literal)

    def render(self, event: InvalidationEvent) -> Optional[str]:
        """Substitute the event's values; None when a field is unavailable.

        Raises ValueError when a value contains glob characters, since it
        would widen the pattern beyond the intended entity.
        """
        values = event.template_values()
        substitutions = {}
        for name in self.fields:
            value = values.get(name)
            if value is None or value == '':
                return None
            value = str(value)
            if keys.has_glob(value):
                raise ValueError(f"{name} contains glob characters: {value!r}")
            substitutions[name] = value
        return self.pattern.format(**substitutions)


@dataclass(frozen=True)
class InvalidationRule:
    """Templates invalidated for an event type, plus event types it cascades to."""
    event_type: InvalidationEventType
    templates: Tuple[KeyTemplate, ...]
    cascades: Tuple[InvalidationEventType, ...] = ()


def _rule(event_type: InvalidationEventType, *patterns: str,
          cascades: Tuple[InvalidationEventType, ...] = ()) -> InvalidationRule:
    return InvalidationRule(event_type, tuple(KeyTemplate(p) for p in patterns), cascades)


def create_default_invalidation_rules() -> Dict[InvalidationEventType, InvalidationRule]:
    """Event type to key template mapping for Cursus data."""
    rules = [
        _rule(InvalidationEventType.LEARNING_PATH,
              'path:{entity_id}:*', 'paths:list:*', 'user:*:progress:{entity_id}', 'user:*:dashboard'),
        _rule(InvalidationEventType.MODULE,
              'module:{entity_id}:*', 'path:{path_id}:modules', 'path:{path_id}:detail'),
        _rule(InvalidationEventType.CHALLENGE,
              'challenge:{entity_id}:*', 'module:{module_id}:challenges'),
        # entity_id of an enrollment event is the learning path id
        _rule(InvalidationEventType.ENROLLMENT,
              'user:{user_id}:enrollments', 'user:{user_id}:dashboard', 'path:{entity_id}:stats',
              cascades=(InvalidationEventType.USER_PROGRESS,)),
        _rule(InvalidationEventType.USER,
              'user:{entity_id}:profile', 'user:{entity_id}:recommendations', 'user:{entity_id}:dashboard'),
        _rule(InvalidationEventType.USER_PROGRESS,
              'user:{user_id}:progress:*', 'user:{user_id}:dashboard', 'user:{user_id}:recommendations'),
        _rule(InvalidationEventType.USER_LOGOUT,
              'session:{entity_id}', 'user:{user_id}:dashboard'),
        _rule(InvalidationEventType.CODE_ANALYSIS, 'analysis:*'),
        _rule(InvalidationEventType.SEARCH_INDEX, 'search:*'),
        _rule(InvalidationEventType.SYSTEM_MAINTENANCE, '*'),
    ]
    return {rule.event_type: rule for rule in rules}


@dataclass
class InvalidationLogEntry:
    """Record of one processed invalidation event."""
    event_type: str
    entity_id: str
    user_id: Optional[str]
    key_count: int
    error_count: int
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type,
            'entity_id': self.entity_id,
            'user_id': self.user_id,
            'key_count': self.key_count,
            'error_count': self.error_count,
            'duration_ms': round(self.duration_ms, 3),
            'timestamp': self.timestamp.isoformat(),
        }


class CacheInvalidationService:
    """Translates domain change events into cache key removals.

    Deletes use CacheService maintenance calls, which raise store errors,
    so one template's failure is captured without aborting the others.
    Successful deletes leave the hit and miss counters untouched.
    """

    def __init__(
        self,
        cache: CacheService,
        sessions: Optional[SessionCacheService] = None,
        rules: Optional[Dict[InvalidationEventType, InvalidationRule]] = None,
        batch_size: int = 500
    ):
        settings = get_cache_settings()
        self.cache = cache
        self.store = cache.store
        self.sessions = sessions or SessionCacheService(cache)
        self.rules = dict(rules or create_default_invalidation_rules())
        self.batch_size = batch_size
        self.session_max_idle_seconds = settings.session_max_idle_seconds
        self.analysis_max_age_seconds = settings.analysis_max_age_seconds

        self.logger = get_logger(__name__, 'cache_invalidation')
        self.metrics = get_metrics_collector()

        self._lock = threading.Lock()
        self._logs: deque = deque(maxlen=settings.invalidation_log_size)
        self._pending: Set[asyncio.Task] = set()

        self.stats = {
            'events_processed': 0,
            'events_with_errors': 0,
            'keys_invalidated': 0,
            'pattern_invalidations': 0,
            'user_invalidations': 0,
            'scheduled_events': 0,
            'scheduled_failures': 0,
            'cleanup_runs': 0,
            'cleanup_keys_removed': 0,
            'last_cleanup': None,
        }

    def _bump(self, **increments):
        with self._lock:
            for name, amount in increments.items():
                self.stats[name] += amount

    # Rule resolution

    def resolve_rules(self, event_type: InvalidationEventType) -> List[InvalidationRule]:
        """Rules for an event type followed by its cascades, each at most once."""
        ordered: List[InvalidationRule] = []
        visited: Set[InvalidationEventType] = set()
        queue = deque([InvalidationEventType(event_type)])

        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            rule = self.rules.get(current)
            if rule is None:
                continue
            ordered.append(rule)
            queue.extend(rule.cascades)

        return ordered

    def add_rule(self, rule: InvalidationRule):
        """Register a rule, merging it into an existing rule for the same event type."""
        with self._lock:
            existing = self.rules.get(rule.event_type)
            if existing is not None:
                templates = existing.templates + tuple(t for t in rule.templates if t not in existing.templates)
                cascades = existing.cascades + tuple(c for c in rule.cascades if c not in existing.cascades)
                rule = InvalidationRule(rule.event_type, templates, cascades)
            self.rules[rule.event_type] = rule

        self.logger.info(
            f"Registered invalidation rule for {rule.event_type.value}",
            operation="add_rule",
            templates=[t.pattern for t in rule.templates]
        )

    def remove_rule(self, event_type: InvalidationEventType, pattern: Optional[str] = None) -> bool:
        """Drop the rule for an event type, or only one of its templates.

        A rule left without templates or cascades is removed. Returns False
        when nothing matched.
        """
        event_type = InvalidationEventType(event_type)
        with self._lock:
            rule = self.rules.get(event_type)
            if rule is None:
                return False
            if pattern is None:
                del self.rules[event_type]
            else:
                templates = tuple(t for t in rule.templates if t.pattern != pattern)
                if len(templates) == len(rule.templates):
                    return False
                if templates or rule.cascades:
                    self.rules[event_type] = InvalidationRule(event_type, templates, rule.cascades)
                else:
                    del self.rules[event_type]

        self.logger.info(
            f"Removed invalidation rule for {event_type.value}",
            operation="remove_rule",
            pattern=pattern
        )
        return True

    # Deletion primitives

    async def _delete_matching(self, pattern: str) -> List[str]:
        """Scan for keys matching a logical pattern, then delete them in batches.

        Returns the keys actually removed; a key that vanished between the
        scan and the delete is not reported.
        """
        return await self.cache.purge(await self.cache.peek_keys(pattern), self.batch_size)

    async def _delete_key(self, key: str) -> bool:
        return bool(await self.cache.purge([key]))

    # Public API

    async def invalidate(self, event: InvalidationEvent) -> InvalidationResult:
        """Delete every key the event's rules point at. Never raises."""
        started = time.perf_counter()
        result = InvalidationResult()
        seen: Set[str] = set()

        for rule in self.resolve_rules(event.type):
            for template in rule.templates:
                try:
                    pattern = template.render(event)
                except ValueError as e:
                    result.errors.append(f"{template.pattern}: {e}")
                    continue

                if pattern is None:
                    self.logger.debug(
                        f"Skipping template {template.pattern}: missing fields",
                        operation="invalidate",
                        event_type=event.type.value
                    )
                    continue

                try:
                    if template.is_wildcard:
                        targeted = await self._delete_matching(pattern)
                    else:
                        targeted = [pattern] if await self._delete_key(pattern) else []
                except Exception as e:
                    self.cache.record_error('invalidate', e, pattern)
                    result.errors.append(f"{pattern}: {e}")
                    continue

                for key in targeted:
                    if key not in seen:
                        seen.add(key)
                        result.invalidated_keys.append(key)

        duration_ms = (time.perf_counter() - started) * 1000
        self._record_event(event, result, duration_ms)
        return result

    def _record_event(self, event: InvalidationEvent, result: InvalidationResult, duration_ms: float):
        entry = InvalidationLogEntry(
            event_type=event.type.value,
            entity_id=event.entity_id,
            user_id=event.user_id,
            key_count=len(result.invalidated_keys),
            error_count=len(result.errors),
            duration_ms=duration_ms
        )
        with self._lock:
            self._logs.append(entry)
            self.stats['events_processed'] += 1
            self.stats['keys_invalidated'] += entry.key_count
            if result.errors:
                self.stats['events_with_errors'] += 1

        self.metrics.get_counter('cache_invalidations_total', 'Processed invalidation events').increment(
            1, event_type=event.type.value, status='partial' if result.errors else 'success'
        )

        log = self.logger.warning if result.errors else self.logger.info
        log(
            f"Invalidated {entry.key_count} keys for {event.type.value} {event.entity_id}",
            operation="invalidate",
            event_type=event.type.value,
            entity_id=event.entity_id,
            key_count=entry.key_count,
            errors=result.errors,
            duration_ms=round(duration_ms, 3)
        )

    async def invalidate_key(self, key: str) -> bool:
        """Delete a single logical key."""
        deleted = await self.cache.delete(key)
        if deleted:
            self._bump(keys_invalidated=1)
        return deleted

    async def invalidate_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the number removed."""
        try:
            removed = len(await self._delete_matching(pattern))
        except Exception as e:
            self.cache.record_error('invalidate_by_pattern', e, pattern)
            return 0

        self._bump(pattern_invalidations=1, keys_invalidated=removed)
        self.logger.info(
            f"Pattern invalidation {pattern} removed {removed} keys",
            operation="invalidate_by_pattern",
            pattern=pattern,
            removed=removed
        )
        return removed

    async def invalidate_user_cache(self, user_id: str) -> Dict[str, Any]:
        """Delete every ``user:{user_id}:*`` key and the user's sessions."""
        result = {'deleted_count': 0, 'sessions_invalidated': 0, 'errors': []}

        try:
            pattern = keys.user_namespace(user_id)
            result['deleted_count'] = len(await self._delete_matching(pattern))
        except ValueError as e:
            result['errors'].append(str(e))
            return result
        except Exception as e:
            self.cache.record_error('invalidate_user_cache', e, str(user_id))
            result['errors'].append(f"user keys: {e}")

        try:
            result['sessions_invalidated'] = await self.sessions.invalidate_user_sessions(user_id)
        except Exception as e:
            self.cache.record_error('invalidate_user_sessions', e, str(user_id))
            result['errors'].append(f"sessions: {e}")

        result['deleted_count'] += result['sessions_invalidated']
        self._bump(user_invalidations=1, keys_invalidated=result['deleted_count'])
        self.logger.info(
            f"Cleared {result['deleted_count']} cached keys for user {user_id}",
            operation="invalidate_user_cache",
            user_id=str(user_id),
            errors=result['errors']
        )
        return result

    # Fire-and-forget

    def schedule_invalidation(self, event: InvalidationEvent) -> asyncio.Task:
        """Run ``invalidate`` in the background.

        Delivery is best-effort: failures are logged and counted, never
        raised. Readers may see the stale value until its TTL expires.
        """
        task = asyncio.create_task(self._run_scheduled(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        self._bump(scheduled_events=1)
        return task

    async def _run_scheduled(self, event: InvalidationEvent) -> Optional[InvalidationResult]:
        try:
            result = await self.invalidate(event)
        except Exception as e:
            self._bump(scheduled_failures=1)
            self.logger.exception(
                f"Background invalidation failed for {event.type.value} {event.entity_id}: {e}",
                operation="schedule_invalidation"
            )
            return None

        if result.errors:
            self._bump(scheduled_failures=1)
        return result

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for every scheduled invalidation to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Scheduled cleanup

    async def _read_payloads(self, pattern: str) -> List[Tuple[str, Optional[str]]]:
        store_keys = await self.store.scan(self.cache.make_key(pattern))
        if not store_keys:
            return []
        return list(zip(store_keys, await self.store.mget(store_keys)))

    async def _remove(self, store_keys: List[str]) -> int:
        removed = 0
        for start in range(0, len(store_keys), self.batch_size):
            removed += await self.store.delete(*store_keys[start:start + self.batch_size])
        return removed

    @staticmethod
    def _decode(raw: Optional[str]) -> Tuple[bool, Any]:
        try:
            return True, json.loads(raw)
        except (TypeError, ValueError):
            return False, None

    async def _cleanup_corrupt_entries(self) -> int:
        """Sessions and analyses whose payload cannot be interpreted."""
        corrupt = []
        for pattern, required in (('session:*', 'last_activity'), ('analysis:*', 'timestamp')):
            for store_key, raw in await self._read_payloads(pattern):
                if raw is None:
                    continue
                ok, payload = self._decode(raw)
                if not ok or not isinstance(payload, dict) or parse_timestamp(payload.get(required)) is None:
                    corrupt.append(store_key)
        return await self._remove(corrupt)

    async def _cleanup_stale_analysis(self) -> int:
        now = self.sessions.now()
        stale = []
        for store_key, raw in await self._read_payloads('analysis:*'):
            ok, payload = self._decode(raw)
            if not ok or not isinstance(payload, dict):
                continue
            analysed_at = parse_timestamp(payload.get('timestamp'))
            if analysed_at and (now - analysed_at).total_seconds() > self.analysis_max_age_seconds:
                stale.append(store_key)
        return await self._remove(stale)

    async def _cleanup_without_ttl(self, pattern: str) -> int:
        unbounded = []
        for store_key in await self.store.scan(self.cache.make_key(pattern)):
            if await self.store.ttl(store_key) == -1:
                unbounded.append(store_key)
        return await self._remove(unbounded)

    async def scheduled_cleanup(self) -> Dict[str, Any]:
        """Sweep stale entries by category. Idempotent.

        Invoked by an external scheduler. A failing category is reported in
        ``errors`` and does not stop the others.
        """
        steps = [
            ('corrupt_entries', self._cleanup_corrupt_entries),
            ('expired_sessions', lambda: self.sessions.cleanup_expired_sessions(self.session_max_idle_seconds)),
            ('stale_analysis', self._cleanup_stale_analysis),
            ('unbounded_search', lambda: self._cleanup_without_ttl('search:*')),
            ('orphaned_user_keys', lambda: self._cleanup_without_ttl('user:*')),
        ]

        categories: Dict[str, int] = {}
        errors: List[str] = []

        for name, step in steps:
            try:
                categories[name] = await step()
            except Exception as e:
                self.cache.record_error(f'cleanup_{name}', e)
                categories[name] = 0
                errors.append(f"{name}: {e}")

        total = sum(categories.values())
        with self._lock:
            self.stats['cleanup_runs'] += 1
            self.stats['cleanup_keys_removed'] += total
            self.stats['last_cleanup'] = datetime.utcnow().isoformat()

        self.logger.info(
            f"Cache cleanup completed: {total} keys removed",
            operation="scheduled_cleanup",
            categories=categories,
            errors=errors
        )
        return {'total_keys_removed': total, 'categories': categories, 'errors': errors}

    # Introspection

    def get_invalidation_logs(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent invalidations first."""
        with self._lock:
            entries = list(self._logs)
        return [entry.to_dict() for entry in reversed(entries)][:max(limit, 0)]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self.stats)
            rules = dict(self.rules)
        return {
            'overall': stats,
            'rules': {
                event_type.value: {
                    'templates': [t.pattern for t in rule.templates],
                    'cascades': [c.value for c in rule.cascades],
                }
                for event_type, rule in rules.items()
            },
            'pending_events': self.pending_count,
        }
