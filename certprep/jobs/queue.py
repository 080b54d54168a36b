from functools import lru_cache

from redis import Redis
from rq import Queue

from certprep.core.config import settings


@lru_cache()
def get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL)


@lru_cache()
def get_queue() -> Queue:
    return Queue(settings.RQ_QUEUE, connection=get_redis())
