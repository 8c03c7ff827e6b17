"""Redis client construction for status event pub/sub."""

import redis.asyncio as redis


async def create_redis(url: str) -> redis.Redis:
    """Connect to Redis and verify the connection with a PING."""
    client = redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    return client
