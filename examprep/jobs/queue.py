from redis import Redis
from rq import Queue

from examprep.core.config import Settings


def get_queue(settings: Settings, connection: Redis = None) -> Queue:
    if connection is None:
        connection = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.RQ_QUEUE, connection=connection)
