import redis.asyncio as redis

from security_service.configs.settings import Settings
from security_service.configs.logging_config import get_logger

log = get_logger(__name__)


class RedisClient:
    """
    Owns the redis connection used by the token cache.

    Constructed once at startup and handed to the cache explicitly.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self.client: redis.Redis | None = None

    async def connect(self) -> redis.Redis:
        try:
            log.info("redis.connect url=%s", self._settings.redis_url)
            self.client = redis.from_url(self._settings.redis_url, decode_responses=True)
            await self.client.ping()
            log.info("redis.connected")
        except Exception as e:
            log.error("redis.connect_failed error=%s", e)
            raise
        return self.client

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
