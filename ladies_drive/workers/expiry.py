"""
Background Expiry Worker
========================

Runs every ``EXPIRY_INTERVAL_SECONDS`` (default 30 s) and cancels ride
requests that stayed SEARCHING longer than ``SEARCH_EXPIRY_MINUTES``.

Concurrency safety
------------------
* **Redis distributed lock** (when a Redis client is given) ensures only
  one API process sweeps per cycle.
* Each expiry is its own transaction that re-checks SEARCHING, so a ride
  accepted between the scan and the write is left alone.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis

from ladies_drive.config import settings
from ladies_drive.infrastructure.locks import DistributedLock
from ladies_drive.services.lifecycle import RideLifecycleManager

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop(
    lifecycle: RideLifecycleManager, redis: Optional[aioredis.Redis] = None
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(lifecycle, redis))
    logger.info(
        "Expiry worker started (interval=%ds, expiry=%dmin)",
        settings.expiry_interval_seconds,
        settings.search_expiry_minutes,
    )


async def stop_expiry_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Expiry worker stopped")


async def run_expiry_cycle(
    lifecycle: RideLifecycleManager, redis: Optional[aioredis.Redis] = None
) -> int:
    """Execute one sweep.  Returns the number of requests expired."""
    lock = DistributedLock(redis, "ride_expiry", ttl_seconds=60) if redis else None
    if lock is not None and not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0

    expired = 0
    try:
        expired = await lifecycle.expire_stale_requests()
    except Exception:
        logger.exception("Error in expiry cycle")
    finally:
        if lock is not None:
            await lock.release()
    return expired


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(
    lifecycle: RideLifecycleManager, redis: Optional[aioredis.Redis]
) -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    stop_event = _stop_event
    while not stop_event.is_set():
        await run_expiry_cycle(lifecycle, redis)
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                stop_event.wait(), timeout=settings.expiry_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle
