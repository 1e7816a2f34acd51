"""Redis client for session lookup and rate limiting"""
import redis
import logging
from typing import Optional
from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60

# Rate limiting configuration
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_STRICT_WINDOW = 60  # seconds
if settings.ENVIRONMENT == "development":
    RATE_LIMIT_REQUESTS = 1000
    RATE_LIMIT_STRICT_REQUESTS = 1000
else:
    RATE_LIMIT_REQUESTS = 300
    RATE_LIMIT_STRICT_REQUESTS = 60


def set_session(session_id: str, user_id: int) -> None:
    """Store session in Redis"""
    key = f"session:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, user_id)


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    key = f"session:{session_id}"
    user_id = get_redis_client().get(key)
    return int(user_id) if user_id else None


def increment_rate_limit(key: str, window: int) -> int:
    """Increment the fixed-window counter at key and return the new count"""
    client = get_redis_client()
    count = client.incr(key)
    if count == 1:
        client.expire(key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited.

    State-changing requests count against their own bucket; reads never touch it.
    """
    if strict:
        key = f"ratelimit:strict:{identifier}"
        return increment_rate_limit(key, RATE_LIMIT_STRICT_WINDOW) <= RATE_LIMIT_STRICT_REQUESTS
    return increment_rate_limit(f"ratelimit:{identifier}", RATE_LIMIT_WINDOW) <= RATE_LIMIT_REQUESTS
