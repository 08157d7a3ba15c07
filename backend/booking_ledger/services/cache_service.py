"""
Redis cache for the merged booking listing.

CACHING STRATEGY
================

What we cache:
  - The merged, deduplicated booking list (JSON-serialized)
  - Cache key pattern: "bookings:list:{view}"

Why:
  - The listing reads five stores and decompresses every payload
  - Admin dashboards poll it far more often than bookings change

Invalidation strategy:
  - Every successful write (create, update, cancel, complete, incomplete
    save, cleanup) bumps "bookings:generation", then deletes all
    "bookings:list:*" keys via SCAN
  - A listing is stored only if the generation it was read under is still
    current (checked and written in one Lua script), so a listing built
    before a write can never be cached after that write invalidated
  - TTL-based expiry as safety net

Redis is never authoritative. Disabled or unreachable Redis means every
listing goes to the store (fail open).
"""

import json
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from booking_ledger.core.config import Settings
from booking_ledger.core.logging import get_logger
from booking_ledger.core.metrics import record_cache_operation

logger = get_logger(__name__)

LISTING_PREFIX = "bookings:list:"
GENERATION_KEY = "bookings:generation"

# KEYS: generation, listing; ARGV: expected generation, ttl, payload
STORE_IF_CURRENT = """
if (tonumber(redis.call("GET", KEYS[1])) or 0) ~= tonumber(ARGV[1]) then
    return 0
end
redis.call("SETEX", KEYS[2], ARGV[2], ARGV[3])
return 1
"""


class ListingCache:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[redis.Redis] = None
        self._store_script = None

    async def get_redis(self) -> Optional[redis.Redis]:
        """Get or create the Redis connection. Returns None if Redis is disabled or down."""
        if not self.settings.REDIS_ENABLED:
            return None

        if self._client is None:
            client = redis.from_url(
                self.settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            try:
                await client.ping()
            except (RedisError, OSError) as e:
                logger.error("redis_connection_failed", error=str(e))
                await client.aclose()
                return None
            self._client = client
            logger.info("redis_connected", url=self.settings.REDIS_URL)

        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._store_script = None

    async def get_listing(self, view: str = "all") -> Optional[dict]:
        client = await self.get_redis()
        if not client:
            return None

        key = f"{LISTING_PREFIX}{view}"
        try:
            data = await client.get(key)
        except (RedisError, OSError) as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None
        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
        return None

    async def generation(self) -> Optional[int]:
        """Current listing generation; read it before loading the data you will cache."""
        client = await self.get_redis()
        if not client:
            return None

        try:
            return int(await client.get(GENERATION_KEY) or 0)
        except (RedisError, OSError) as e:
            logger.error("cache_generation_error", error=str(e))
            return None

    async def set_listing(self, data: dict, generation: Optional[int], view: str = "all") -> bool:
        """Store `data` only if no write has invalidated since `generation` was read."""
        client = await self.get_redis()
        if not client or generation is None:
            return False

        key = f"{LISTING_PREFIX}{view}"
        if self._store_script is None:
            self._store_script = client.register_script(STORE_IF_CURRENT)
        try:
            stored = await self._store_script(
                keys=[GENERATION_KEY, key],
                args=[generation, self.settings.REDIS_CACHE_TTL, json.dumps(data, default=str)],
            )
        except (RedisError, OSError) as e:
            logger.error("cache_set_error", key=key, error=str(e))
            return False
        if not stored:
            logger.info("cache_set_skipped", key=key, reason="stale_generation", generation=generation)
            return False
        logger.debug("cache_set", key=key, ttl=self.settings.REDIS_CACHE_TTL)
        return True

    async def invalidate(self) -> None:
        client = await self.get_redis()
        if not client:
            return

        try:
            await client.incr(GENERATION_KEY)
            deleted = 0
            async for key in client.scan_iter(match=f"{LISTING_PREFIX}*", count=100):
                await client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", keys_deleted=deleted)
        except (RedisError, OSError) as e:
            logger.error("cache_invalidation_error", error=str(e))

    async def stats(self) -> dict:
        """Redis cache statistics for the health endpoint."""
        client = await self.get_redis()
        if not client:
            return {"status": "disabled"}

        try:
            info = await client.info("stats")
        except (RedisError, OSError) as e:
            return {"status": "error", "error": str(e)}
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
