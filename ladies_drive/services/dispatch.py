"""
Dispatch Coordinator
====================

Serves each driver a live ``DispatchView`` (assigned ride, else open
requests it may accept) and each passenger the list of available drivers
in their city.

The coordinator does not assign anyone.  Drivers pick from their view and
call ``RideLifecycleManager.accept``; the accept transaction decides races.

Skip state lives in a ``DriverSession`` owned by the caller's connection
and is handed to every query as ``exclude_ids``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import AbstractSet, Optional

from ladies_drive.domain.dispatch import (
    DispatchView,
    available_drivers,
    build_dispatch_view,
    can_receive_requests,
    visible_requests,
)
from ladies_drive.domain.entities import RideRequest, User
from ladies_drive.domain.enums import (
    ASSIGNED_STATUSES,
    Availability,
    RideStatus,
    UserRole,
)
from ladies_drive.domain.errors import NotEligible
from ladies_drive.infrastructure.documents import (
    ride_from_document,
    user_from_document,
)
from ladies_drive.infrastructure.repositories import (
    RIDES,
    USERS,
    RideRepository,
    UserRepository,
)
from ladies_drive.infrastructure.store import DocumentStore, Query, lookup

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (RideStatus.SEARCHING, *sorted(ASSIGNED_STATUSES))


class DriverSession:
    """One driver connection: the rides skipped so far and nothing else."""

    def __init__(self, coordinator: "DispatchCoordinator", driver_id: str):
        self.coordinator = coordinator
        self.driver_id = driver_id
        self.skipped: set[str] = set()

    def skip(self, ride_id: str) -> None:
        """Hide *ride_id* from this session.  The ride itself is untouched."""
        self.skipped.add(ride_id)
        logger.debug("Driver %s skipped ride %s", self.driver_id, ride_id)

    async def view(self) -> DispatchView:
        return await self.coordinator.view_for(self.driver_id, self.skipped)

    def views(self) -> AsyncIterator[DispatchView]:
        # the set is passed by reference: later skips apply on the next push
        return self.coordinator.watch(self.driver_id, self.skipped)


class DispatchCoordinator:
    def __init__(self, store: DocumentStore):
        self.store = store
        self.rides = RideRepository(store)
        self.users = UserRepository(store)

    def open_session(self, driver_id: str) -> DriverSession:
        return DriverSession(self, driver_id)

    # ── Driver side ───────────────────────────────────────────────────

    async def eligible_requests(
        self, driver_id: str, exclude_ids: AbstractSet[str] = frozenset()
    ) -> list[RideRequest]:
        """Open requests *driver_id* may accept right now, oldest first."""
        driver = await self._driver(driver_id)
        if not can_receive_requests(driver):
            return []
        rides = await self.rides.list(status=RideStatus.SEARCHING, city=driver.city)
        return visible_requests(rides, driver, exclude_ids)

    async def view_for(
        self, driver_id: str, exclude_ids: AbstractSet[str] = frozenset()
    ) -> DispatchView:
        driver = await self._driver(driver_id)
        docs = await self.store.query(_view_query(driver))
        return build_dispatch_view(
            [ride_from_document(d) for d in docs], driver, exclude_ids
        )

    async def watch(
        self, driver_id: str, exclude_ids: AbstractSet[str] = frozenset()
    ) -> AsyncIterator[DispatchView]:
        """Push a new view whenever a ride or the driver's own profile changes.

        The driver is re-read on every wake-up, so availability and
        verification changes reach the live feed at once.
        """
        previous: Optional[DispatchView] = None
        async with self.store.feed.listen(RIDES, USERS) as changes:
            while True:
                view = await self.view_for(driver_id, exclude_ids)
                if view != previous:
                    previous = view
                    yield view
                await changes.wait()

    # ── Passenger side ────────────────────────────────────────────────

    async def available_drivers(self, city: str) -> list[User]:
        users = await self.users.list(
            role=UserRole.DRIVER, city=city, availability=Availability.AVAILABLE
        )
        return available_drivers(users, city)

    async def watch_available_drivers(self, city: str) -> AsyncIterator[list[User]]:
        query = self.users.query(UserRole.DRIVER, city, Availability.AVAILABLE)
        async with aclosing(self.store.watch(query)) as results:
            async for docs in results:
                yield available_drivers([user_from_document(d) for d in docs], city)

    # ── Internals ─────────────────────────────────────────────────────

    async def _driver(self, driver_id: str) -> User:
        driver = await self.users.require(driver_id)
        if not driver.is_driver:
            raise NotEligible(f"User {driver_id} is not a driver")
        return driver


def _view_query(driver: User) -> Query:
    """Non-terminal rides in the driver's city, plus any assigned to them."""

    def relevant(doc) -> bool:
        return doc.get("city") == driver.city or lookup(doc, "driver.id") == driver.id

    return Query(RIDES).where("status", "in", _OPEN_STATUSES).matching(relevant)
