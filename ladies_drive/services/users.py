"""
User profiles: registration, driver verification, availability and location.

Drivers register UNVERIFIED, submit an application (PENDING) and are
approved (VERIFIED) or rejected (REJECTED) by an admin.  Only a VERIFIED
driver may go online; the lifecycle checks the same flag on accept.

Rating, ``completedTrips`` and ``activeRideId`` are never written here;
they belong to the lifecycle and rating transactions.  Every update below
is a partial write inside a transaction so it cannot clobber them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from ladies_drive.domain.entities import (
    REQUIRED_DRIVER_DOCUMENTS,
    Location,
    User,
    VehicleInfo,
)
from ladies_drive.domain.enums import Availability, UserRole, VerificationStatus
from ladies_drive.domain.errors import InvalidInput, InvalidTransition, NotEligible
from ladies_drive.infrastructure.repositories import UserRepository, user_ref
from ladies_drive.infrastructure.store import DocumentStore, Transaction

from .lifecycle import utcnow

logger = logging.getLogger(__name__)


class UserService:
    def __init__(
        self, store: DocumentStore, clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.users = UserRepository(store)
        self.clock = clock

    async def register(
        self,
        *,
        name: str,
        role: UserRole = UserRole.PASSENGER,
        city: Optional[str] = None,
        avatar_url: str = "",
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        vehicle: Optional[VehicleInfo] = None,
    ) -> User:
        if not name or not name.strip():
            raise InvalidInput("name is required")
        role = UserRole(role)
        user = User(
            name=name.strip(),
            role=role,
            avatar_url=avatar_url,
            email=email,
            phone_number=phone_number,
            city=city,
            vehicle=vehicle if role == UserRole.DRIVER else None,
            # drivers start offline until they go online themselves
            availability=Availability.OFFLINE if role == UserRole.DRIVER else None,
            verification_status=(
                VerificationStatus.UNVERIFIED if role == UserRole.DRIVER else None
            ),
            created_at=self.clock(),
        )
        await self.users.add(user)
        logger.info("Registered %s %s (%s)", role.value.lower(), user.id, city)
        return user

    async def get(self, user_id: str) -> User:
        return await self.users.require(user_id)

    async def list_users(
        self,
        *,
        role: Optional[UserRole] = None,
        city: Optional[str] = None,
        verification: Optional[VerificationStatus] = None,
    ) -> list[User]:
        return await self.users.list(role=role, city=city, verification=verification)

    # ── Verification ──────────────────────────────────────────────────

    async def submit_application(
        self,
        driver_id: str,
        documents: dict[str, str],
        *,
        vehicle: Optional[VehicleInfo] = None,
        city: Optional[str] = None,
    ) -> User:
        """Send the driver's documents for review.  The driver becomes PENDING."""
        missing = [k for k in REQUIRED_DRIVER_DOCUMENTS if not documents.get(k)]
        if missing:
            raise InvalidInput(f"Missing driver documents: {', '.join(missing)}")

        async def mutation(tx: Transaction) -> User:
            driver = await self._read_driver(tx, driver_id)
            if driver.is_verified:
                raise InvalidTransition(f"Driver {driver_id} is already verified")
            driver.documents = {**driver.documents, **documents}
            driver.verification_status = VerificationStatus.PENDING
            if vehicle is not None:
                driver.vehicle = vehicle
            if city:
                driver.city = city
            self.users.stage(
                tx, driver, "documents", "verification_status", "vehicle", "city"
            )
            return driver

        driver = await self.store.transact([user_ref(driver_id)], mutation)
        logger.info("Driver %s submitted an application", driver_id)
        return driver

    async def approve_driver(self, driver_id: str) -> User:
        """Admin decision: the driver may go online from now on."""

        async def mutation(tx: Transaction) -> User:
            driver = await self._read_driver(tx, driver_id)
            driver.verification_status = VerificationStatus.VERIFIED
            self.users.stage(tx, driver, "verification_status")
            return driver

        driver = await self.store.transact([user_ref(driver_id)], mutation)
        logger.info("Driver %s approved", driver_id)
        return driver

    async def reject_driver(self, driver_id: str) -> User:
        """Admin decision: reject an application or suspend a driver.

        The driver is taken offline at once.  A ride already in progress is
        left to finish.
        """

        async def mutation(tx: Transaction) -> User:
            driver = await self._read_driver(tx, driver_id)
            driver.verification_status = VerificationStatus.REJECTED
            driver.availability = Availability.OFFLINE
            self.users.stage(tx, driver, "verification_status", "availability")
            return driver

        driver = await self.store.transact([user_ref(driver_id)], mutation)
        logger.info("Driver %s rejected", driver_id)
        return driver

    # ── Availability and location ─────────────────────────────────────

    async def set_availability(
        self, driver_id: str, availability: Availability
    ) -> User:
        """Go online (AVAILABLE) or offline.  BUSY is managed by the lifecycle."""
        availability = Availability(availability)
        if availability == Availability.BUSY:
            raise InvalidInput("BUSY is set automatically while a ride is active")

        async def mutation(tx: Transaction) -> User:
            driver = await self._read_driver(tx, driver_id)
            if availability == Availability.AVAILABLE and not driver.is_verified:
                raise NotEligible(f"Driver {driver_id} is not verified")
            if availability == Availability.AVAILABLE and driver.active_ride_id:
                driver.availability = Availability.BUSY
            else:
                driver.availability = availability
            self.users.stage(tx, driver, "availability")
            return driver

        driver = await self.store.transact([user_ref(driver_id)], mutation)
        logger.info("Driver %s is now %s", driver_id, driver.availability.value)
        return driver

    async def update_location(self, driver_id: str, lat: float, lng: float) -> User:
        if lat is None or lng is None or not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise InvalidInput(f"Invalid coordinates ({lat}, {lng})")

        async def mutation(tx: Transaction) -> User:
            driver = await self._read_driver(tx, driver_id)
            driver.current_location = Location(lat=lat, lng=lng)
            driver.last_location_update = self.clock()
            self.users.stage(tx, driver, "current_location", "last_location_update")
            return driver

        return await self.store.transact([user_ref(driver_id)], mutation)

    async def _read_driver(self, tx: Transaction, driver_id: str) -> User:
        driver = await self.users.read(tx, driver_id)
        if not driver.is_driver:
            raise NotEligible(f"User {driver_id} is not a driver")
        return driver
