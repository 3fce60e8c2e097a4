import json
from typing import Any, Optional

import redis
import structlog

from src.config import settings

logger = structlog.get_logger()


class CacheService:
    """JSON values in Redis. Every failure is logged and reported as a cache miss."""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client or redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=1.0,
            socket_connect_timeout=1.0,
        )

    def get(self, key: str) -> Optional[Any]:
        """Get cached value"""
        try:
            cached = self.redis_client.get(key)
            if cached:
                return json.loads(cached)
        except (redis.RedisError, ValueError) as e:
            logger.error("Cache get failed", key=key, error=str(e))
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set cached value with TTL"""
        try:
            return bool(self.redis_client.setex(key, ttl or settings.CACHE_TTL, json.dumps(value, default=str)))
        except redis.RedisError as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        """Delete cached value"""
        try:
            return bool(self.redis_client.delete(key))
        except redis.RedisError as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            return False

    def generate_key(self, prefix: str, *args) -> str:
        """Generate cache key"""
        return f"{prefix}:{'_'.join(str(arg) for arg in args)}"
