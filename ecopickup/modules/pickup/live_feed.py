"""Live pickup feed: pushes committed pickup snapshots to viewers of that pickup.

Publishers call ``publish`` only after the write is committed. Every
subscription delivers snapshots to its callback one at a time, in arrival
order, and drops any snapshot whose ``version`` it has already seen, so a
viewer never observes a pickup going backwards.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import redis.asyncio as redis
from starlette.requests import HTTPConnection

from ecopickup.config import settings

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[dict], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


class _Subscription:
    """Per-viewer delivery queue with version de-duplication."""

    def __init__(self, pickup_id: uuid.UUID, on_update: UpdateCallback) -> None:
        self.pickup_id = pickup_id
        self._on_update = on_update
        self._queue: asyncio.Queue[dict] = asyncio.Queue()
        self._last_version = 0
        self._task = asyncio.create_task(self._pump())

    def offer(self, record: dict) -> None:
        self._queue.put_nowait(record)

    async def _pump(self) -> None:
        while True:
            record = await self._queue.get()
            version = int(record.get("version", 0))
            if version <= self._last_version:
                continue
            self._last_version = version
            try:
                await self._on_update(record)
            except Exception:
                logger.exception("Live update delivery failed for pickup %s", self.pickup_id)

    async def close(self) -> None:
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


class PickupFeed(ABC):
    """Fan-out of pickup snapshots to live viewers."""

    @abstractmethod
    async def publish(self, pickup_id: uuid.UUID, record: dict) -> None:
        """Push a committed snapshot to every current viewer of the pickup."""

    @abstractmethod
    async def subscribe(self, pickup_id: uuid.UUID, on_update: UpdateCallback) -> Unsubscribe:
        """Register a viewer; the returned coroutine function ends the subscription."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryPickupFeed(PickupFeed):
    """Single-process feed, used in tests and single-worker deployments."""

    def __init__(self) -> None:
        self._subscriptions: dict[uuid.UUID, set[_Subscription]] = {}

    async def publish(self, pickup_id: uuid.UUID, record: dict) -> None:
        for subscription in list(self._subscriptions.get(pickup_id, ())):
            subscription.offer(record)

    async def subscribe(self, pickup_id: uuid.UUID, on_update: UpdateCallback) -> Unsubscribe:
        subscription = _Subscription(pickup_id, on_update)
        self._subscriptions.setdefault(pickup_id, set()).add(subscription)

        async def unsubscribe() -> None:
            viewers = self._subscriptions.get(pickup_id)
            if viewers is not None:
                viewers.discard(subscription)
                if not viewers:
                    del self._subscriptions[pickup_id]
            await subscription.close()

        return unsubscribe

    def subscriber_count(self, pickup_id: uuid.UUID) -> int:
        return len(self._subscriptions.get(pickup_id, ()))

    async def close(self) -> None:
        for viewers in list(self._subscriptions.values()):
            for subscription in list(viewers):
                await subscription.close()
        self._subscriptions.clear()


class RedisPickupFeed(PickupFeed):
    """Redis pub/sub feed; one channel per pickup, ``{prefix}:{pickup_id}``."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        channel_prefix: str | None = None,
    ) -> None:
        self._redis = redis_client
        self._prefix = channel_prefix or settings.live_feed_channel_prefix

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    def _channel(self, pickup_id: uuid.UUID) -> str:
        return f"{self._prefix}:{pickup_id}"

    async def publish(self, pickup_id: uuid.UUID, record: dict) -> None:
        client = await self._get_redis()
        await client.publish(self._channel(pickup_id), json.dumps(record, default=str))

    async def subscribe(self, pickup_id: uuid.UUID, on_update: UpdateCallback) -> Unsubscribe:
        client = await self._get_redis()
        channel = self._channel(pickup_id)
        pubsub = client.pubsub()
        await pubsub.subscribe(channel)
        subscription = _Subscription(pickup_id, on_update)

        async def _read() -> None:
            try:
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    try:
                        subscription.offer(json.loads(message["data"]))
                    except json.JSONDecodeError:
                        logger.warning("Dropping malformed live update on %s", channel)
            except Exception:
                logger.exception(
                    "Live feed reader on %s stopped; viewer gets no more updates", channel
                )

        reader = asyncio.create_task(_read())

        async def unsubscribe() -> None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            await subscription.close()
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

        return unsubscribe

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_pickup_feed(backend: str | None = None) -> PickupFeed:
    """Create the feed selected by ``settings.live_feed_backend``."""
    backend = backend or settings.live_feed_backend
    if backend == "memory":
        return InMemoryPickupFeed()
    if backend == "redis":
        return RedisPickupFeed()
    raise ValueError(f"Unknown live feed backend: {backend!r}")


def get_pickup_feed(connection: HTTPConnection) -> PickupFeed:
    """FastAPI dependency returning the feed created at application startup."""
    return connection.app.state.pickup_feed
