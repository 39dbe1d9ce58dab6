from functools import lru_cache

from arq.connections import ArqRedis
from redis.asyncio import Redis

from marketplace.core.settings import settings


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


@lru_cache(maxsize=1)
def get_job_queue() -> ArqRedis:
    # arq stores pickled job payloads, so responses stay as bytes.
    return ArqRedis.from_url(settings.redis_url)
