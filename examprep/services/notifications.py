import json
import logging
from typing import Any, Dict, Optional

import redis

from examprep.core.cache import redis_client_from_settings
from examprep.core.config import Settings

logger = logging.getLogger(__name__)

PROGRESS_UPDATED = "progress:updated"


class RedisProgressNotifier:
    """Publishes session events on the per-user channel read by the websocket layer."""

    def __init__(self, client: redis.Redis, channel_prefix: str = "user"):
        self.client = client
        self.channel_prefix = channel_prefix

    def channel_for(self, user_id: str) -> str:
        return f"{self.channel_prefix}:{user_id}"

    def session_completed(self, user_id: str, payload: Dict[str, Any]) -> int:
        message = json.dumps({"event": PROGRESS_UPDATED, "data": payload}, default=str)
        try:
            return int(self.client.publish(self.channel_for(user_id), message))
        except redis.RedisError as e:
            logger.error("Progress notification failed for user %s: %s", user_id, e)
            return 0


def build_notifier(settings: Settings, client: Optional[redis.Redis] = None) -> Optional[RedisProgressNotifier]:
    if not settings.NOTIFICATIONS_ENABLED:
        return None
    return RedisProgressNotifier(
        client or redis_client_from_settings(settings),
        channel_prefix=settings.NOTIFICATION_CHANNEL_PREFIX,
    )
