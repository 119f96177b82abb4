"""Optional Redis pool for reward events and the rate limiter.

Every caller treats Redis as best-effort. When ``init_redis`` was never
called (tests, local runs without Redis) the accessors return None and
reward writes proceed without publishing.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

_pool: redis.Redis | None = None


async def init_redis(url: str | None) -> None:
    """Open the pool. An empty URL leaves Redis disabled."""
    global _pool  # noqa: PLW0603
    if not url:
        _pool = None
        return
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        health_check_interval=30,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis_or_none() -> redis.Redis | None:
    return _pool


async def redis_status() -> str:
    """``disabled``, ``ok`` or ``error: ...`` for the readiness probe."""
    if _pool is None:
        return "disabled"
    try:
        await _pool.ping()
    except (RedisError, OSError) as exc:
        return f"error: {exc}"
    return "ok"
