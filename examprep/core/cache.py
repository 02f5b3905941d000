import redis
import logging
from typing import Optional

from examprep.core.config import Settings

logger = logging.getLogger(__name__)

def redis_client_from_settings(settings: Settings) -> redis.Redis:
    return redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )

def user_dashboard_pattern(user_id: str) -> str:
    return f"dashboard:user:{user_id}:*"

class ProgressCache:
    """Drops a user's cached dashboard entries after progress changes."""

    def __init__(self, client: redis.Redis, batch_size: int = 500):
        self.client = client
        self.batch_size = batch_size

    def invalidate_user(self, user_id: str) -> int:
        pattern = user_dashboard_pattern(user_id)
        try:
            keys = list(self.client.scan_iter(match=pattern, count=self.batch_size))
            if not keys:
                return 0
            deleted = self.client.delete(*keys)
            logger.info("Invalidated %s cache keys matching: %s", deleted, pattern)
            return int(deleted)
        except redis.RedisError as e:
            logger.error("Cache invalidation failed for %s: %s", pattern, e)
            return 0

def build_progress_cache(settings: Settings, client: Optional[redis.Redis] = None) -> Optional[ProgressCache]:
    if not settings.CACHE_INVALIDATION_ENABLED:
        return None
    return ProgressCache(client or redis_client_from_settings(settings))
