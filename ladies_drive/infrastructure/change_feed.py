"""
Change feeds -- push "these documents changed" notices to live queries.

* ``InProcessChangeFeed``: one ``asyncio.Queue`` per listener.  Used by
  tests and single-process deployments.
* ``RedisChangeFeed``: Redis pub/sub on ``changes:<collection>`` so every
  API process sees writes made by every other process.

A listener must be registered *before* the first query of a live view,
otherwise a write landing between the query and the registration is lost.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class ChangeListener(ABC):
    @abstractmethod
    async def wait(self) -> set[str]:
        """Block until at least one change arrives; return the changed ids."""


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, collection: str, doc_ids: Iterable[str]) -> None: ...

    @abstractmethod
    def listen(self, *collections: str):
        """Async context manager yielding one ``ChangeListener`` that wakes on
        a write to any of *collections*."""


# ── In-process ────────────────────────────────────────────────────────


class _QueueListener(ChangeListener):
    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    async def wait(self) -> set[str]:
        changed = set(await self.queue.get())
        # coalesce a burst of writes into one wake-up
        while not self.queue.empty():
            changed |= self.queue.get_nowait()
        return changed


class InProcessChangeFeed(ChangeFeed):
    def __init__(self):
        self._queues: dict[str, set[asyncio.Queue]] = defaultdict(set)

    async def publish(self, collection: str, doc_ids: Iterable[str]) -> None:
        ids = frozenset(doc_ids)
        for queue in list(self._queues.get(collection, ())):
            queue.put_nowait(ids)

    @asynccontextmanager
    async def listen(self, *collections: str) -> AsyncIterator[ChangeListener]:
        queue: asyncio.Queue = asyncio.Queue()
        for collection in collections:
            self._queues[collection].add(queue)
        try:
            yield _QueueListener(queue)
        finally:
            for collection in collections:
                self._queues[collection].discard(queue)

    def listener_count(self, collection: str) -> int:
        return len(self._queues.get(collection, ()))


# ── Redis pub/sub ─────────────────────────────────────────────────────


def channel_for(collection: str) -> str:
    return f"changes:{collection}"


class _RedisListener(ChangeListener):
    def __init__(self, pubsub):
        self.pubsub = pubsub

    async def wait(self) -> set[str]:
        while True:
            message = await self.pubsub.get_message(
                ignore_subscribe_messages=True, timeout=None
            )
            if message is None or message.get("type") != "message":
                continue
            try:
                return set(json.loads(message["data"]))
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed change notice: %r", message)


class RedisChangeFeed(ChangeFeed):
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, collection: str, doc_ids: Iterable[str]) -> None:
        await self.redis.publish(
            channel_for(collection), json.dumps(sorted(doc_ids))
        )

    @asynccontextmanager
    async def listen(self, *collections: str) -> AsyncIterator[ChangeListener]:
        channels = [channel_for(c) for c in collections]
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*channels)
        try:
            yield _RedisListener(pubsub)
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
