"""Redis pub/sub broadcaster for shuttle status events."""

import asyncio
import logging

import orjson
import redis.asyncio as aioredis

from shuttle.config import settings

logger = logging.getLogger(__name__)

CHANNEL = "shuttle:status"
STATE_KEY = "shuttle:state"


class Broadcaster:
    """Publishes status events to Redis and manages WebSocket subscribers.

    The Redis channel is where the push-notification worker listens; the
    in-process queues feed the ``/ws/shuttles`` stream.
    """

    def __init__(self) -> None:
        self._redis: aioredis.Redis | None = None
        self._subscribers: set[asyncio.Queue] = set()

    async def connect(self) -> None:
        self._redis = aioredis.from_url(settings.redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    async def publish(self, event: dict, push: dict | None = None) -> None:
        """Publish one status event to Redis and fan out to WebSocket subscribers.

        ``push`` is the variant for the push-notification worker, carrying
        fields (device tokens) that must not reach the state hash or the
        WebSocket stream. Without it ``event`` goes everywhere.
        """
        payload = orjson.dumps(event)

        if self._redis:
            try:
                # Latest event per student, for new connections
                await self._redis.hset(STATE_KEY, str(event["student_uuid"]), payload)
                await self._redis.publish(CHANNEL, orjson.dumps(push) if push else payload)
            except Exception:
                logger.exception("Failed to publish to Redis")

        dead = set()
        for q in self._subscribers:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dead.add(q)
        self._subscribers -= dead

    async def get_current_state(self) -> list[bytes]:
        """Latest status event of every student seen today."""
        if self._redis:
            try:
                data = await self._redis.hgetall(STATE_KEY)
                return list(data.values())
            except Exception:
                logger.exception("Failed to get state from Redis")
        return []

    async def clear_state(self) -> None:
        if self._redis:
            try:
                await self._redis.delete(STATE_KEY)
            except Exception:
                logger.exception("Failed to clear state in Redis")

    def subscribe(self) -> asyncio.Queue:
        """Create a new subscriber queue for WebSocket fan-out."""
        q: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscribers.discard(q)
