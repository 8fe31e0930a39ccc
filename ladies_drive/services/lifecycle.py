"""
Ride Lifecycle Manager
======================

Owns a ride from request to terminal state::

    SEARCHING  -> ACCEPTED | CANCELLED
    ACCEPTED   -> ARRIVED  | CANCELLED
    ARRIVED    -> IN_PROGRESS
    IN_PROGRESS-> COMPLETED

Every state change is one ``DocumentStore.transact`` call, so concurrent
callers serialize on the ride document:

* ``accept``   -- the first commit that sees SEARCHING wins; every other
  attempt re-reads ACCEPTED and fails with ``AlreadyTaken``.
* ``complete`` -- ride status + both users' ``completedTrips`` in one
  commit.  Either all three writes land or none do.
* ``cancel``   -- only before pickup; releases the assigned driver in the
  same commit.

Single active ride
------------------
With ``enforce_single_active_ride`` the driver document carries
``activeRideId``.  ``accept`` reads and writes it in the same transaction
as the ride, so two accepts by one driver on different rides conflict and
the loser sees ``DriverBusy``.

Request expiry
--------------
``expire_stale_requests`` cancels SEARCHING rides older than
``search_expiry`` with reason ``EXPIRED``; ``workers.expiry`` calls it on a
timer.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from datetime import datetime, timedelta, timezone
from typing import Optional

from ladies_drive.domain.entities import (
    Place,
    RideOptions,
    RideRequest,
    User,
)
from ladies_drive.domain.enums import (
    EXPIRED_REASON,
    Availability,
    RideStatus,
    ServiceClass,
)
from ladies_drive.domain.errors import (
    AlreadyTaken,
    DriverBusy,
    InvalidInput,
    InvalidTransition,
    NotEligible,
)
from ladies_drive.infrastructure.documents import ride_from_document
from ladies_drive.infrastructure.repositories import (
    RIDES,
    RideRepository,
    UserRepository,
    ride_ref,
    user_ref,
)
from ladies_drive.infrastructure.store import DocumentStore, Query, Transaction

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RideLifecycleManager:
    def __init__(
        self,
        store: DocumentStore,
        *,
        enforce_single_active_ride: bool = True,
        search_expiry: Optional[timedelta] = timedelta(minutes=10),
        default_city: str = "Unknown",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.rides = RideRepository(store)
        self.users = UserRepository(store)
        self.enforce_single_active_ride = enforce_single_active_ride
        self.search_expiry = search_expiry
        self.default_city = default_city
        self.clock = clock

    # ── Passenger side ────────────────────────────────────────────────

    async def request_ride(
        self,
        passenger: User,
        pickup: Place,
        destination: Place,
        service_class: ServiceClass = ServiceClass.REGULAR,
        price: float = 0.0,
        options: Optional[RideOptions] = None,
        target_driver_id: Optional[str] = None,
    ) -> RideRequest:
        """Create a SEARCHING request.  The price is frozen from here on."""
        if passenger is None or not passenger.id:
            raise InvalidInput("A ride needs a passenger")
        _require_coordinates("pickup", pickup)
        _require_coordinates("destination", destination)
        if price is None or price < 0:
            raise InvalidInput(f"Price must be a non-negative amount, got {price!r}")
        try:
            service_class = ServiceClass(service_class)
        except ValueError as exc:
            raise InvalidInput(f"Unknown service class {service_class!r}") from exc

        ride = RideRequest(
            passenger=passenger.passenger_snapshot(),
            pickup=pickup,
            destination=destination,
            service_class=service_class,
            price=float(price),
            options=options or RideOptions(),
            status=RideStatus.SEARCHING,
            city=passenger.city or self.default_city,
            target_driver_id=target_driver_id or None,
            created_at=self.clock(),
        )
        await self.rides.add(ride)
        logger.info(
            "Ride %s requested by %s in %s (target=%s)",
            ride.id,
            passenger.id,
            ride.city,
            ride.target_driver_id,
        )
        return ride

    # ── Driver side ───────────────────────────────────────────────────

    async def accept(self, ride_id: str, driver_id: str) -> RideRequest:
        """Assign *driver_id* to an open request.  At most one driver ever wins."""

        async def mutation(tx: Transaction) -> RideRequest:
            ride = await self.rides.read(tx, ride_id)
            driver = await self.users.read(tx, driver_id)
            if ride.status != RideStatus.SEARCHING:
                raise AlreadyTaken(f"Ride {ride_id} is no longer available")
            await self._check_can_accept(tx, ride, driver)

            ride.assign_driver(driver.driver_snapshot(), self.clock())
            driver.active_ride_id = ride.id
            if driver.availability == Availability.AVAILABLE:
                driver.availability = Availability.BUSY

            self.rides.stage(tx, ride)
            self.users.stage(tx, driver, "active_ride_id", "availability")
            return ride

        ride = await self.store.transact(
            [ride_ref(ride_id), user_ref(driver_id)], mutation
        )
        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        return ride

    async def advance(self, ride_id: str, next_status: RideStatus) -> RideRequest:
        """Move a ride along the state machine.

        COMPLETED and CANCELLED are routed through ``complete`` / ``cancel``
        so their side effects always run.
        """
        try:
            next_status = RideStatus(next_status)
        except ValueError as exc:
            raise InvalidTransition(f"Unknown ride status {next_status!r}") from exc

        if next_status == RideStatus.COMPLETED:
            ride = await self.get_ride(ride_id)
            if ride.status != RideStatus.IN_PROGRESS or ride.driver is None:
                raise InvalidTransition(
                    f"Cannot transition from {ride.status.value} to COMPLETED"
                )
            return await self.complete(ride_id, ride.passenger.id, ride.driver.id)
        if next_status == RideStatus.CANCELLED:
            return await self.cancel(ride_id)
        if next_status == RideStatus.ACCEPTED:
            raise InvalidTransition("Rides are only accepted through accept()")

        async def mutation(tx: Transaction) -> RideRequest:
            ride = await self.rides.read(tx, ride_id)
            ride.transition_to(next_status)
            self.rides.stage(tx, ride)
            return ride

        ride = await self.store.transact([ride_ref(ride_id)], mutation)
        logger.info("Ride %s -> %s", ride_id, next_status.value)
        return ride

    async def complete(
        self, ride_id: str, passenger_id: str, driver_id: str
    ) -> RideRequest:
        """Finish the trip and count it for both parties, atomically."""

        async def mutation(tx: Transaction) -> RideRequest:
            ride = await self.rides.read(tx, ride_id)
            if ride.status != RideStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Cannot transition from {ride.status.value} to COMPLETED"
                )
            if (
                ride.passenger is None
                or ride.passenger.id != passenger_id
                or ride.driver is None
                or ride.driver.id != driver_id
            ):
                raise InvalidInput(
                    f"Passenger {passenger_id} / driver {driver_id} do not match ride {ride_id}"
                )
            passenger = await self.users.read(tx, passenger_id)
            driver = await self.users.read(tx, driver_id)

            ride.mark_completed(self.clock())
            passenger.completed_trips += 1
            driver.completed_trips += 1
            _release_driver(driver, ride.id)

            self.rides.stage(tx, ride)
            self.users.stage(tx, passenger, "completed_trips")
            self.users.stage(
                tx, driver, "completed_trips", "active_ride_id", "availability"
            )
            return ride

        ride = await self.store.transact(
            [ride_ref(ride_id), user_ref(passenger_id), user_ref(driver_id)],
            mutation,
        )
        logger.info("Ride %s completed (passenger=%s driver=%s)", ride_id, passenger_id, driver_id)
        return ride

    async def cancel(self, ride_id: str, reason: Optional[str] = None) -> RideRequest:
        """Cancel before pickup (SEARCHING or ACCEPTED only)."""

        async def mutation(tx: Transaction) -> RideRequest:
            ride = await self.rides.read(tx, ride_id)
            ride.mark_cancelled(self.clock(), reason)
            self.rides.stage(tx, ride)
            await self._release_assigned_driver(tx, ride)
            return ride

        ride = await self.store.transact([ride_ref(ride_id)], mutation)
        logger.info("Ride %s cancelled (reason=%s)", ride_id, reason)
        return ride

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_ride(self, ride_id: str) -> RideRequest:
        return await self.rides.require(ride_id)

    async def watch_ride(self, ride_id: str) -> AsyncIterator[RideRequest]:
        """Live snapshots of one ride, pushed on every write to it."""
        await self.rides.require(ride_id)
        query = Query(RIDES).where("id", "==", ride_id)
        async with aclosing(self.store.watch(query)) as results:
            async for docs in results:
                if docs:
                    yield ride_from_document(docs[0])

    # ── Expiry ────────────────────────────────────────────────────────

    async def expire_stale_requests(self, now: Optional[datetime] = None) -> int:
        """Cancel SEARCHING requests nobody accepted within ``search_expiry``."""
        if not self.search_expiry:
            return 0
        cutoff = (now or self.clock()) - self.search_expiry
        stale = [
            ride
            for ride in await self.rides.list(status=RideStatus.SEARCHING)
            if ride.created_at is not None and ride.created_at <= cutoff
        ]

        expired = 0
        for ride in stale:
            if await self._expire(ride.id):
                expired += 1
        if expired:
            logger.info("Expired %d unaccepted ride request(s)", expired)
        return expired

    async def _expire(self, ride_id: str) -> bool:
        async def mutation(tx: Transaction) -> bool:
            ride = await self.rides.read(tx, ride_id)
            if ride.status != RideStatus.SEARCHING:
                # accepted or cancelled since the scan
                return False
            ride.mark_cancelled(self.clock(), EXPIRED_REASON)
            self.rides.stage(tx, ride)
            return True

        return await self.store.transact([ride_ref(ride_id)], mutation)

    # ── Internals ─────────────────────────────────────────────────────

    async def _check_can_accept(
        self, tx: Transaction, ride: RideRequest, driver: User
    ) -> None:
        if not driver.is_driver:
            raise NotEligible(f"User {driver.id} is not a driver")
        if not driver.is_verified:
            raise NotEligible(f"Driver {driver.id} is not verified")
        if ride.target_driver_id is not None and ride.target_driver_id != driver.id:
            raise NotEligible(f"Ride {ride.id} is reserved for another driver")
        if ride.city != driver.city:
            raise NotEligible(f"Ride {ride.id} is outside driver {driver.id}'s city")
        if self.enforce_single_active_ride and driver.active_ride_id:
            current = await self.rides.read_optional(tx, driver.active_ride_id)
            if current is not None and not current.is_terminal:
                raise DriverBusy(
                    f"Driver {driver.id} is already on ride {current.id}"
                )

    async def _release_assigned_driver(
        self, tx: Transaction, ride: RideRequest
    ) -> None:
        if ride.driver is None:
            return
        driver = await self.users.read_optional(tx, ride.driver.id)
        if driver is None:
            logger.warning("Driver %s of ride %s no longer exists", ride.driver.id, ride.id)
            return
        _release_driver(driver, ride.id)
        self.users.stage(tx, driver, "active_ride_id", "availability")


def _release_driver(driver: User, ride_id: str) -> None:
    if driver.active_ride_id == ride_id:
        driver.active_ride_id = None
    if driver.availability == Availability.BUSY and driver.active_ride_id is None:
        driver.availability = Availability.AVAILABLE


def _require_coordinates(name: str, place: Optional[Place]) -> None:
    if place is None or place.location is None:
        raise InvalidInput(f"{name} coordinates are required")
    loc = place.location
    if loc.lat is None or loc.lng is None:
        raise InvalidInput(f"{name} coordinates are required")
    if not (-90 <= loc.lat <= 90 and -180 <= loc.lng <= 180):
        raise InvalidInput(f"{name} coordinates are out of range")
