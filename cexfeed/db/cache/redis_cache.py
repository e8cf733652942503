"""cexfeed/db/cache/redis_cache.py"""
import json
from typing import Optional, List

import redis.asyncio as redis
from loguru import logger

from cexfeed.core.models.announcement import ScrapedAnnouncement

BATCH_KEY = "announcements:latest_batch"


class RedisCache:
    """Redis cache for the last aggregated batch and per-exchange watermarks"""

    def __init__(self, redis_url: str = "redis://localhost:6379", use_fakeredis: bool = False,
                 batch_ttl: int = 300):
        self._log = logger.bind(component="cache")
        self._batch_ttl = batch_ttl

        if use_fakeredis:
            import fakeredis.aioredis
            self._redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
        else:
            self._redis = redis.from_url(redis_url, decode_responses=True)

    async def set_batch(self, announcements: List[ScrapedAnnouncement]) -> None:
        payload = json.dumps([ann.to_dict() for ann in announcements], ensure_ascii=False)
        await self._redis.set(BATCH_KEY, payload, ex=self._batch_ttl)

    async def get_batch(self) -> Optional[List[ScrapedAnnouncement]]:
        """Cached batch while its TTL lasts, otherwise None"""
        payload = await self._redis.get(BATCH_KEY)
        if not payload:
            return None
        try:
            return [ScrapedAnnouncement.from_dict(item) for item in json.loads(payload)]
        except (ValueError, KeyError) as e:
            self._log.warning(f"Dropping unreadable cached batch: {e}")
            await self._redis.delete(BATCH_KEY)
            return None

    async def get_latest_ms(self, exchange: str) -> Optional[int]:
        """Get latest published timestamp for exchange"""
        key = f"latest:{exchange}"
        value = await self._redis.get(key)
        return int(value) if value else None

    async def set_latest_ms(self, exchange: str, timestamp_ms: int):
        """Update latest published timestamp"""
        key = f"latest:{exchange}"
        current = await self.get_latest_ms(exchange)
        if not current or timestamp_ms > current:
            await self._redis.set(key, str(timestamp_ms), ex=86400 * 30)  # 30 days

    async def close(self):
        await self._redis.aclose()
