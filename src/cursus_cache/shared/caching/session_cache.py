"""
Session entries cached under ``session:{session_id}``.

Each payload carries ``user_id`` and ``last_activity`` (naive UTC, ISO 8601),
which per-user clears and idle cleanup rely on.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..logging_config import get_logger
from . import keys
from .cache_service import CacheService


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp to naive UTC; None when missing or malformed."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class SessionCacheService:
    """Cache of active user sessions."""

    def __init__(self, cache: CacheService, now: Callable[[], datetime] = datetime.utcnow):
        self.cache = cache
        self.now = now
        self.logger = get_logger(__name__, 'session_cache')

    async def set_session(self, session_id: str, user_id: str, data: Optional[Dict[str, Any]] = None) -> bool:
        payload = {
            **(data or {}),
            'user_id': str(user_id),
            'last_activity': self.now().isoformat(),
        }
        return await self.cache.set(keys.session(session_id), payload, keys.CacheTTL.SESSION)

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(keys.session(session_id))

    async def touch_session(self, session_id: str, **updates) -> bool:
        """Refresh ``last_activity`` and merge updates; False when the session is gone."""
        session = await self.get_session(session_id)
        if not isinstance(session, dict):
            return False

        session.update(updates)
        session['last_activity'] = self.now().isoformat()
        return await self.cache.set(keys.session(session_id), session, keys.CacheTTL.SESSION)

    async def delete_session(self, session_id: str) -> bool:
        return await self.cache.delete(keys.session(session_id))

    async def _all_sessions(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Every decodable session; store errors propagate and counters are untouched."""
        session_keys = await self.cache.peek_keys('session:*')
        values = await self.cache.peek_many(session_keys)
        return [
            (key.split(':', 1)[1], value)
            for key, value in zip(session_keys, values)
            if isinstance(value, dict)
        ]

    async def _sessions_of(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        return {
            session_id: session
            for session_id, session in await self._all_sessions()
            if session.get('user_id') == str(user_id)
        }

    async def get_user_sessions(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        """Active sessions of a user keyed by session id; empty when the store fails."""
        try:
            return await self._sessions_of(user_id)
        except Exception as e:
            self.cache.record_error('get_user_sessions', e, str(user_id))
            return {}

    async def invalidate_user_sessions(self, user_id: str) -> int:
        """Delete every session of a user; store errors propagate."""
        session_ids = await self._sessions_of(user_id)
        removed = len(await self.cache.purge([keys.session(sid) for sid in session_ids]))

        if removed:
            self.logger.info(
                f"Invalidated {removed} sessions for user {user_id}",
                operation="invalidate_user_sessions",
                user_id=str(user_id)
            )
        return removed

    def is_expired(self, session: Dict[str, Any], max_idle_seconds: int) -> bool:
        last_activity = parse_timestamp(session.get('last_activity'))
        if last_activity is None:
            return True
        return (self.now() - last_activity).total_seconds() > max_idle_seconds

    async def cleanup_expired_sessions(self, max_idle_seconds: int) -> int:
        """Delete sessions idle for longer than ``max_idle_seconds``; store errors propagate."""
        expired = [
            keys.session(session_id)
            for session_id, session in await self._all_sessions()
            if self.is_expired(session, max_idle_seconds)
        ]
        return len(await self.cache.purge(expired))

    async def get_session_stats(self) -> Dict[str, Any]:
        sessions = await self._all_sessions()
        if not sessions:
            return {'total_active_sessions': 0, 'unique_users': 0, 'average_idle_seconds': 0.0}

        now = self.now()
        idle = [
            (now - last_activity).total_seconds()
            for last_activity in (parse_timestamp(s.get('last_activity')) for _, s in sessions)
            if last_activity is not None
        ]
        return {
            'total_active_sessions': len(sessions),
            'unique_users': len({s.get('user_id') for _, s in sessions}),
            'average_idle_seconds': round(sum(idle) / len(idle), 1) if idle else 0.0,
        }
