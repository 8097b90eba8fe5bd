"""
Hybrid in-memory + Redis rate limiting for the public search endpoint.

Counts are kept per fixed window in process memory and mirrored to Redis
periodically so several API workers share roughly the same budget. Redis
being unreachable degrades to memory-only counting; it never blocks search.
"""

import logging
import os
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request

from .config import RATE_LIMIT_ENABLED

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
_redis_unavailable_until = 0

# {key: {"count": int, "reset_time": int, "last_redis_sync": int}}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()

REDIS_SYNC_INTERVAL = 10
REDIS_RETRY_AFTER = 60
MEMORY_CACHE_CLEANUP_INTERVAL = 60
last_cleanup_time = 0


def get_redis_client() -> redis.Redis:
    """
    Get or create the Redis client from REDIS_URL, or REDIS_HOST/PORT/...

    Raises:
        redis.RedisError: If the connection test fails
    """
    global redis_client

    if redis_client is None:
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
        else:
            client = redis.Redis(
                host=os.getenv("REDIS_HOST", "localhost"),
                port=int(os.getenv("REDIS_PORT", "6379")),
                password=os.getenv("REDIS_PASSWORD") or None,
                db=int(os.getenv("REDIS_DB", "0")),
                ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
        client.ping()
        logger.info("✅ Redis connected for rate limiting")
        redis_client = client

    return redis_client


def _optional_redis() -> Optional[redis.Redis]:
    """Redis client, or None while Redis is known to be down"""
    global _redis_unavailable_until

    now = int(time.time())
    if now < _redis_unavailable_until:
        return None
    try:
        return get_redis_client()
    except Exception as e:
        logger.warning(f"⚠️ Redis unavailable, rate limiting from memory only: {e}")
        _redis_unavailable_until = now + REDIS_RETRY_AFTER
        return None


def cleanup_expired_cache():
    """Drop memory entries whose window has closed, at most once per interval"""
    global last_cleanup_time
    current_time = int(time.time())

    if current_time - last_cleanup_time < MEMORY_CACHE_CLEANUP_INTERVAL:
        return

    with cache_lock:
        expired_keys = [k for k, v in memory_cache.items() if current_time >= v["reset_time"]]
        for k in expired_keys:
            del memory_cache[k]

    if expired_keys:
        logger.debug(f"🧹 Cleaned up {len(expired_keys)} expired rate limit entries")
    last_cleanup_time = current_time


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: Optional[redis.Redis] = None
) -> tuple[bool, int, int]:
    """
    Count one request against a fixed window.

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    cleanup_expired_cache()
    current_time = int(time.time())

    with cache_lock:
        entry = memory_cache.get(key)
        if entry is None or current_time >= entry["reset_time"]:
            entry = {"count": 0, "reset_time": current_time + window_seconds, "last_redis_sync": 0}
            if client is not None:
                try:
                    redis_count = client.get(key)
                    redis_ttl = client.ttl(key)
                    if redis_count and redis_ttl > 0:
                        entry["count"] = int(redis_count)
                        entry["reset_time"] = current_time + redis_ttl
                except redis.RedisError as e:
                    logger.warning(f"⚠️ Failed to load {key} from Redis: {e}")
            memory_cache[key] = entry

        is_allowed = entry["count"] < limit
        if is_allowed:
            entry["count"] += 1

        if client is not None and current_time - entry["last_redis_sync"] >= REDIS_SYNC_INTERVAL:
            try:
                client.set(key, entry["count"], ex=max(1, entry["reset_time"] - current_time))
                entry["last_redis_sync"] = current_time
            except redis.RedisError as e:
                logger.warning(f"⚠️ Failed to sync {key} to Redis: {e}")

        return is_allowed, entry["count"], max(0, entry["reset_time"] - current_time)


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Create a per-IP rate limiter dependency.

    Example:
        rate_limit_search = create_rate_limiter(limit=60, window_seconds=60, key_prefix="search")

        @router.post("/specialists")
        async def search(data: SearchRequest, _: None = Depends(rate_limit_search)):
            ...
    """

    async def rate_limiter(request: Request):
        if not RATE_LIMIT_ENABLED:
            return

        client_ip = request.client.host if request.client else "unknown"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        key = f"{key_prefix}:{client_ip}"

        is_allowed, current_count, ttl = check_rate_limit(key, limit, window_seconds, _optional_redis())
        if not is_allowed:
            logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
            raise HTTPException(
                status_code=429,
                detail={
                    "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                    "retry_after": ttl,
                },
                headers={"Retry-After": str(ttl)},
            )

    return rate_limiter
