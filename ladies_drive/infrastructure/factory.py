"""Builds the configured ``DocumentStore`` and ``ChangeFeed``."""

from __future__ import annotations

import logging

from ladies_drive.config import Settings

from .change_feed import ChangeFeed, InProcessChangeFeed, RedisChangeFeed
from .memory_store import InMemoryDocumentStore
from .store import DocumentStore

logger = logging.getLogger(__name__)


def build_change_feed(settings: Settings) -> ChangeFeed:
    if settings.change_feed_backend == "redis":
        from .redis_client import get_redis

        return RedisChangeFeed(get_redis())
    return InProcessChangeFeed()


def build_store(settings: Settings) -> DocumentStore:
    feed = build_change_feed(settings)
    logger.info(
        "Document store: %s (change feed: %s)",
        settings.store_backend,
        settings.change_feed_backend,
    )
    if settings.store_backend == "memory":
        return InMemoryDocumentStore(feed, settings.transaction_max_attempts)

    from .database import get_session_factory
    from .sql_store import SqlDocumentStore

    return SqlDocumentStore(
        get_session_factory(), feed, settings.transaction_max_attempts
    )
