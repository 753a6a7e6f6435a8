"""Process-wide async Redis client for the replay cache."""
from __future__ import annotations

import redis.asyncio as aioredis

_client: aioredis.Redis | None = None
_url: str = "redis://localhost:6379/0"


def configure_redis(url: str) -> None:
    global _url
    _url = url


def get_redis() -> aioredis.Redis:
    """Return the shared client, creating it on first use."""
    global _client
    if _client is None:
        _client = aioredis.from_url(_url, decode_responses=True)
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
