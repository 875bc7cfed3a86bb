"""
Redis cache layer — read-through cache for public alert listings.

Residents' phones poll "active alerts for my sitio" and "alerts near me"
far more often than officials change alerts, so those listings are cached
briefly and dropped whenever an alert is published, extended or deactivated.

Every helper degrades to a cache miss when Redis is disabled or down; the
database remains the source of truth.

Usage:
    from bantay.app.core.cache import cache_get, cache_set, invalidate_alert_listings

    cached = await cache_get(listing_key("active", area="Sitio Centro"))
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Optional

from bantay.app.core.config import settings

logger = logging.getLogger(__name__)

LISTING_PREFIX = "alerts:listing"

# Lazy Redis client, initialised on first use
_redis_client = None


async def _get_redis():
    """Get or create async Redis client; None when caching is off."""
    global _redis_client
    if not settings.CACHE_ENABLED:
        return None
    if _redis_client is None:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis client created: %s", settings.REDIS_URL)
        except Exception as e:
            logger.warning("Redis unavailable: %s — caching disabled", e)
            return None
    return _redis_client


def listing_key(kind: str, **params: Any) -> str:
    """Deterministic key for a listing query."""
    raw = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.md5(raw.encode()).hexdigest()[:12]
    return f"{LISTING_PREFIX}:{kind}:{digest}"


async def cache_get(key: str) -> Optional[Any]:
    """Get a cached value by key. Returns None on miss or error."""
    client = await _get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is not None:
            logger.debug("Cache HIT: %s", key)
            return json.loads(raw)
    except Exception as e:
        logger.warning("Cache GET error for %s: %s", key, e)
    return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Set a cached value with optional TTL (seconds)."""
    client = await _get_redis()
    if not client:
        return False
    try:
        await client.set(key, json.dumps(value, default=str), ex=ttl or settings.CACHE_TTL)
        return True
    except Exception as e:
        logger.warning("Cache SET error for %s: %s", key, e)
        return False


async def invalidate_alert_listings() -> int:
    """Drop every cached alert listing. Returns number of keys removed."""
    client = await _get_redis()
    if not client:
        return 0
    try:
        keys = [key async for key in client.scan_iter(f"{LISTING_PREFIX}:*")]
        if keys:
            await client.delete(*keys)
        return len(keys)
    except Exception as e:
        logger.warning("Cache invalidation error: %s", e)
        return 0


async def ping_redis() -> bool:
    client = await _get_redis()
    if not client:
        return False
    return bool(await client.ping())


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
