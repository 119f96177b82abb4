"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis

from runcoin.config import Settings, get_settings
from runcoin.redis_client import get_redis_or_none


async def get_redis_dep() -> AsyncGenerator[redis.Redis | None, None]:
    """Yield the Redis client, or None when Redis was never initialized."""
    yield get_redis_or_none()


def get_settings_dep() -> Settings:
    return get_settings()
