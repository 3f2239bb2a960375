"""
Redis triage-queue cache for RTM-Triage.

Mirrors each organization's priority ranking into a sorted set so that
dashboards can page through the queue without touching PostgreSQL. The
mirror is advisory: PostgreSQL remains the source of truth.
"""

from typing import Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from rtm_triage.core.exceptions import StorageError


class RedisQueueCache:
    """Sorted-set mirror of priority ranks, keyed per organization."""

    def __init__(self, connection_string: str, max_connections: int = 10):
        self.connection_string = connection_string
        self.max_connections = max_connections
        self.redis_client = None
        self.default_ttl = 3600  # 1 hour; a stale mirror expires on its own

    async def initialize(self) -> None:
        """Initialize Redis connection and validate it."""
        try:
            self.redis_client = aioredis.from_url(
                self.connection_string,
                max_connections=self.max_connections,
                socket_keepalive=True,
                decode_responses=True,
            )
            await self.redis_client.ping()
        except (RedisError, OSError) as e:
            raise StorageError(f"Failed to initialize Redis storage: {str(e)}")

    @staticmethod
    def _queue_key(organization_id: str) -> str:
        return f"triage_queue:{organization_id}"

    async def publish_ranking(self, organization_id: str, ranks: Dict[str, int]) -> None:
        """Replace the organization's mirrored ranking in one MULTI/EXEC block."""
        key = self._queue_key(organization_id)
        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                if ranks:
                    pipe.zadd(key, ranks)
                    pipe.expire(key, self.default_ttl)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to publish ranking to Redis: {str(e)}")

    async def get_top(self, organization_id: str, limit: int = 20) -> List[str]:
        """Alert ids in rank order, best first."""
        try:
            return await self.redis_client.zrange(
                self._queue_key(organization_id), 0, limit - 1
            )
        except RedisError as e:
            raise StorageError(f"Failed to read ranking from Redis: {str(e)}")

    async def get_rank(self, organization_id: str, alert_id: str) -> Optional[int]:
        try:
            score = await self.redis_client.zscore(self._queue_key(organization_id), alert_id)
        except RedisError as e:
            raise StorageError(f"Failed to read rank from Redis: {str(e)}")
        return int(score) if score is not None else None

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis_client.ping()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
