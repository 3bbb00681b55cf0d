"""Redis-backed cache of the most recent messages per conversation.

Each conversation gets one Redis list under ``messages:<conversationId>``
holding the JSON wire form of its newest messages, most recent first. The
list is capped at ``max_messages`` and expires ``ttl_seconds`` after the
last push.

The cache is advisory. The conversation store is authoritative, readers fall
through to it on a miss, and a cache outage never fails a send. Every Redis
error surfaces as ``CacheUnavailable`` so callers can log and carry on.

A cache built with ``client=None`` is disabled: pushes are no-ops and reads
always miss.
"""
import json
import logging
from typing import List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from connecthub.errors import CacheUnavailable

logger = logging.getLogger(__name__)

KEY_PREFIX = "messages:"

# Mirror of the presence registry (best effort; the registry is authoritative)
ONLINE_USERS_KEY = "online_users"


def cache_key(conv_id: str) -> str:
    return f"{KEY_PREFIX}{conv_id}"


class RecentMessageCache:
    """Capped, expiring per-conversation message lists."""

    def __init__(
        self,
        client: Optional["aioredis.Redis"],
        max_messages: int = 50,
        ttl_seconds: int = 3600,
    ) -> None:
        self._client = client
        self.max_messages = max_messages
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings) -> "RecentMessageCache":
        """Build from ``AppSettings`` (``cache`` section plus redis secrets)."""
        cache = settings.cache
        if not cache.enabled:
            logger.info("[Cache] Disabled by configuration")
            return cls(None, cache.max_messages, cache.ttl_seconds)
        client = aioredis.from_url(
            cache.url,
            password=settings.secrets.redis.password,
            decode_responses=True,
        )
        logger.info(f"[Cache] Using Redis at {cache.url}")
        return cls(client, cache.max_messages, cache.ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def push(self, conv_id: str, message: dict) -> None:
        """Prepend a message (wire form) and trim the list to the cap."""
        if self._client is None:
            return
        key = cache_key(conv_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, json.dumps(message))
                pipe.ltrim(key, 0, self.max_messages - 1)
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"Cache push failed: {e}") from e

    async def get(self, conv_id: str) -> List[dict]:
        """Cached messages, most recent first; ``[]`` on a miss."""
        if self._client is None:
            return []
        try:
            raw = await self._client.lrange(cache_key(conv_id), 0, self.max_messages - 1)
        except RedisError as e:
            raise CacheUnavailable(f"Cache read failed: {e}") from e
        messages = []
        for item in raw:
            try:
                messages.append(json.loads(item))
            except (TypeError, ValueError):
                logger.warning(f"[Cache] Dropping undecodable entry in {conv_id}")
        return messages

    async def invalidate(self, conv_id: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.delete(cache_key(conv_id))
        except RedisError as e:
            raise CacheUnavailable(f"Cache invalidate failed: {e}") from e

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern`` (glob syntax).

        Uses SCAN rather than KEYS so large keyspaces are not blocked.

        Returns:
            Number of keys deleted.
        """
        if self._client is None:
            return 0
        deleted = 0
        try:
            batch = []
            async for key in self._client.scan_iter(match=pattern, count=100):
                batch.append(key)
                if len(batch) >= 100:
                    deleted += await self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._client.delete(*batch)
        except RedisError as e:
            raise CacheUnavailable(f"Cache pattern invalidate failed: {e}") from e
        if deleted:
            logger.info(f"[Cache] Invalidated {deleted} key(s) matching {pattern}")
        return deleted

    async def mark_online(self, identity: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.sadd(ONLINE_USERS_KEY, identity)
        except RedisError as e:
            raise CacheUnavailable(f"Presence mirror failed: {e}") from e

    async def mark_offline(self, identity: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.srem(ONLINE_USERS_KEY, identity)
        except RedisError as e:
            raise CacheUnavailable(f"Presence mirror failed: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
