from __future__ import annotations

import logging
import os

import redis

logger = logging.getLogger(__name__)


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def create_redis(url: str | None = None) -> redis.Redis:
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True)


def close_redis(client: redis.Redis) -> None:
    try:
        client.close()
    except redis.RedisError:
        # Some redis client versions don't require explicit close.
        logger.debug("redis close failed", exc_info=True)
