"""
Cache key builders and TTL policy.

Every logical key has the shape ``entity:id[:view...]``. Builders are the only
place key strings are assembled, so two callers asking for the same resource
always collide on the same key.
"""

import hashlib
from typing import Dict, Optional

# Characters with meaning in store glob patterns
GLOB_CHARS = frozenset('*?[]')

MINUTE = 60
HOUR = 60 * MINUTE


class CacheTTL:
    """Default time-to-live per data type, in seconds."""
    SESSION = 24 * HOUR
    USER_PROFILE = HOUR
    USER_ENROLLMENTS = HOUR
    USER_PROGRESS = 30 * MINUTE
    RECOMMENDATIONS = 30 * MINUTE
    DASHBOARD = 5 * MINUTE
    LEARNING_PATH = 2 * HOUR
    MODULE = 2 * HOUR
    CHALLENGE = HOUR
    CODE_ANALYSIS = 15 * MINUTE
    SEARCH_RESULTS = 10 * MINUTE


# Scan patterns per data category, used for statistics
CATEGORY_PATTERNS: Dict[str, str] = {
    'learning_paths': 'path:*',
    'path_lists': 'paths:list:*',
    'modules': 'module:*',
    'challenges': 'challenge:*',
    'user_data': 'user:*',
    'sessions': 'session:*',
    'code_analysis': 'analysis:*',
    'search_results': 'search:*',
}

_ENTITY_TTLS = {
    'session': CacheTTL.SESSION,
    'path': CacheTTL.LEARNING_PATH,
    'paths': CacheTTL.LEARNING_PATH,
    'module': CacheTTL.MODULE,
    'challenge': CacheTTL.CHALLENGE,
    'analysis': CacheTTL.CODE_ANALYSIS,
    'search': CacheTTL.SEARCH_RESULTS,
}

_USER_VIEW_TTLS = {
    'profile': CacheTTL.USER_PROFILE,
    'enrollments': CacheTTL.USER_ENROLLMENTS,
    'progress': CacheTTL.USER_PROGRESS,
    'recommendations': CacheTTL.RECOMMENDATIONS,
    'dashboard': CacheTTL.DASHBOARD,
}


def build_key(*segments) -> str:
    """Join segments into a key, rejecting empty segments and glob characters."""
    parts = [str(segment) for segment in segments]
    for part in parts:
        if not part:
            raise ValueError("Cache key segments must not be empty")
        if GLOB_CHARS.intersection(part):
            raise ValueError(f"Cache key segment contains a glob character: {part!r}")
    return ':'.join(parts)


def has_glob(pattern: str) -> bool:
    return bool(GLOB_CHARS.intersection(pattern))


def ttl_for(key: str) -> Optional[int]:
    """Return the default TTL for a logical key, or None when no policy applies."""
    segments = key.split(':')
    entity = segments[0]
    if entity == 'user':
        return _USER_VIEW_TTLS.get(segments[2]) if len(segments) > 2 else None
    return _ENTITY_TTLS.get(entity)


def hash_content(content: str, length: int = 16) -> str:
    """Stable short digest used to key code analysis and search results."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:length]


# Learning paths

def path_detail(path_id) -> str:
    return build_key('path', path_id, 'detail')


def path_modules(path_id) -> str:
    return build_key('path', path_id, 'modules')


def path_stats(path_id) -> str:
    return build_key('path', path_id, 'stats')


def paths_list(view: str = 'all') -> str:
    return build_key('paths', 'list', view)


# Modules and challenges

def module_detail(module_id) -> str:
    return build_key('module', module_id, 'detail')


def module_challenges(module_id) -> str:
    return build_key('module', module_id, 'challenges')


def challenge_detail(challenge_id) -> str:
    return build_key('challenge', challenge_id, 'detail')


# Per-user data

def user_profile(user_id) -> str:
    return build_key('user', user_id, 'profile')


def user_enrollments(user_id) -> str:
    return build_key('user', user_id, 'enrollments')


def user_progress(user_id, path_id) -> str:
    return build_key('user', user_id, 'progress', path_id)


def user_recommendations(user_id) -> str:
    return build_key('user', user_id, 'recommendations')


def user_dashboard(user_id) -> str:
    return build_key('user', user_id, 'dashboard')


def user_namespace(user_id) -> str:
    """Pattern covering every key owned by a user."""
    return build_key('user', user_id) + ':*'


# Sessions, analysis and search

def session(session_id) -> str:
    return build_key('session', session_id)


def code_analysis(code_hash: str) -> str:
    return build_key('analysis', code_hash)


def search_results(query_hash: str) -> str:
    return build_key('search', query_hash)
