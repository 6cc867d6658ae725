from collections.abc import AsyncIterator

from redis.asyncio import Redis

from signdesk.core.config import get_settings
from signdesk.core.logging import get_logger

logger = get_logger(__name__)


async def get_redis_client() -> AsyncIterator[Redis | None]:
    settings = get_settings()
    if not settings.redis_url:
        yield None
        return
    client = Redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()
