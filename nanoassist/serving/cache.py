"""
Redis Cache Module

Response cache shared by the chart, dashboard, recordings and profile
paths, plus the persisted auth session. Values are stored as JSON under
``{REDIS_KEY_PREFIX}:{namespace}:{key}``.

The cache is advisory: when Redis is down or not initialized, reads miss
and writes are skipped instead of failing the caller.
"""

import json
import re
from typing import Any, List, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from nanoassist.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()

# Failures that turn a cache call into a miss
CACHE_ERRORS = (RedisError, RuntimeError, OSError)
SCAN_BATCH = 500
GLOB_SPECIALS = re.compile(r"([\\*?\[\]])")

_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """
    Open the shared pool and ping it. The client also backs the change feed.

    Raises:
        RedisError: Redis is unreachable; the pool is released again
    """
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=settings.redis.decode_responses,
    )
    client = Redis(connection_pool=pool)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.error("Redis unreachable", host=settings.redis.host, error=str(e))
        await client.aclose()
        await pool.disconnect()
        raise

    _redis_pool, _redis_client = pool, client
    logger.info("Redis connected", host=settings.redis.host, db=settings.redis.db)
    return client


async def close_redis() -> None:
    global _redis_pool, _redis_client

    client, pool = _redis_client, _redis_pool
    _redis_client, _redis_pool = None, None
    if client is not None:
        await client.aclose()
    if pool is not None:
        await pool.disconnect()
        logger.info("Redis pool closed")


def get_redis() -> Redis:
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def full_key(namespace: str, key: str) -> str:
    return f"{settings.redis.key_prefix}:{namespace}:{key}"


def escape_glob(text: str) -> str:
    """Make ``text`` match itself literally in a SCAN MATCH pattern."""
    return GLOB_SPECIALS.sub(r"\\\1", text)


def encode(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


def decode(raw: Optional[str]) -> Optional[Any]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


async def delete_matching(client: Redis, pattern: str) -> int:
    """UNLINK every key matching ``pattern``, in SCAN-sized batches."""
    removed = 0
    batch: List[str] = []
    async for key in client.scan_iter(match=pattern, count=SCAN_BATCH):
        batch.append(key)
        if len(batch) >= SCAN_BATCH:
            removed += await client.unlink(*batch)
            batch = []
    if batch:
        removed += await client.unlink(*batch)
    return removed


class CacheManager:
    """
    One namespace of the cache.

    Example:
        cache = CacheManager("charts", default_ttl=60)
        await cache.set("u1:Acme:week", points)
        points = await cache.get("u1:Acme:week")
        await cache.invalidate("u1:Acme:")
    """

    def __init__(self, namespace: str, default_ttl: int = 3600):
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return full_key(self.namespace, key)

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, None on miss or when the cache is down"""
        try:
            raw = await get_redis().get(self._key(key))
        except CACHE_ERRORS as e:
            logger.debug("Cache read skipped", namespace=self.namespace, error=str(e))
            return None
        value = decode(raw)
        if raw is not None and value is None:
            logger.debug("Undecodable cache entry", namespace=self.namespace, key=key)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            payload = encode(value)
        except (TypeError, ValueError) as e:
            logger.warning("Value not cacheable", namespace=self.namespace, key=key, error=str(e))
            return False
        try:
            await get_redis().set(self._key(key), payload, ex=ttl or self.default_ttl)
        except CACHE_ERRORS as e:
            logger.debug("Cache write skipped", namespace=self.namespace, error=str(e))
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            return await get_redis().delete(self._key(key)) > 0
        except CACHE_ERRORS as e:
            logger.debug("Cache delete skipped", namespace=self.namespace, error=str(e))
            return False

    async def invalidate(self, prefix: str = "") -> int:
        """Drop every key of the namespace that starts with ``prefix``."""
        try:
            return await delete_matching(get_redis(), f"{escape_glob(self._key(prefix))}*")
        except CACHE_ERRORS as e:
            logger.debug("Cache invalidation skipped", namespace=self.namespace, error=str(e))
            return 0


# Pre-configured cache managers
chart_cache = CacheManager("charts", default_ttl=settings.dashboard.chart_cache_ttl)
dashboard_cache = CacheManager("dashboard", default_ttl=settings.dashboard.latest_metrics_ttl)
recordings_cache = CacheManager("recordings", default_ttl=settings.dashboard.recordings_ttl)
profile_cache = CacheManager("profiles", default_ttl=settings.dashboard.profile_cache_ttl)
auth_cache = CacheManager("auth", default_ttl=30 * 24 * 3600)
