"""
Repository Pattern -- keeps document shapes out of the services.

Each repository wraps a ``DocumentStore`` and speaks entities.  The
``read`` / ``stage`` pair is used inside ``DocumentStore.transact``
mutations; the other methods are plain, non-transactional reads.
"""

from __future__ import annotations

from typing import Optional

from ladies_drive.domain.entities import RideRequest, User
from ladies_drive.domain.enums import (
    Availability,
    RideStatus,
    UserRole,
    VerificationStatus,
)
from ladies_drive.domain.errors import RideNotFound, UserNotFound

from .documents import (
    ride_from_document,
    ride_to_document,
    user_fields,
    user_from_document,
    user_to_document,
)
from .store import DocRef, DocumentStore, Query, Transaction

RIDES = "rides"
USERS = "users"
RATINGS = "ratings"


def ride_ref(ride_id: str) -> DocRef:
    return DocRef(RIDES, ride_id)


def user_ref(user_id: str) -> DocRef:
    return DocRef(USERS, user_id)


def rating_ref(ride_id: str, rater_id: str) -> DocRef:
    """One rating per rater per ride; the id itself enforces it."""
    return DocRef(RATINGS, f"{ride_id}:{rater_id}")


class RideRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def add(self, ride: RideRequest) -> RideRequest:
        ride.id = await self.store.insert(RIDES, ride_to_document(ride), ride.id)
        return ride

    async def get_by_id(self, ride_id: str) -> Optional[RideRequest]:
        doc = await self.store.get(ride_ref(ride_id))
        return ride_from_document(doc) if doc else None

    async def require(self, ride_id: str) -> RideRequest:
        ride = await self.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    @staticmethod
    def query(
        status: Optional[RideStatus] = None, city: Optional[str] = None
    ) -> Query:
        q = Query(RIDES)
        if status is not None:
            q = q.where("status", "==", status)
        if city is not None:
            q = q.where("city", "==", city)
        return q

    async def list(
        self, *, status: Optional[RideStatus] = None, city: Optional[str] = None
    ) -> list[RideRequest]:
        docs = await self.store.query(self.query(status, city))
        return [ride_from_document(d) for d in docs]

    # transactional helpers

    @staticmethod
    async def read(tx: Transaction, ride_id: str) -> RideRequest:
        doc = await tx.get(ride_ref(ride_id))
        if doc is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride_from_document(doc)

    @staticmethod
    async def read_optional(tx: Transaction, ride_id: str) -> Optional[RideRequest]:
        doc = await tx.get(ride_ref(ride_id))
        return ride_from_document(doc) if doc else None

    @staticmethod
    def stage(tx: Transaction, ride: RideRequest) -> None:
        tx.set(ride_ref(ride.id), ride_to_document(ride))


class UserRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def add(self, user: User) -> User:
        user.id = await self.store.insert(USERS, user_to_document(user), user.id)
        return user

    async def get_by_id(self, user_id: str) -> Optional[User]:
        doc = await self.store.get(user_ref(user_id))
        return user_from_document(doc) if doc else None

    async def require(self, user_id: str) -> User:
        user = await self.get_by_id(user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    @staticmethod
    def query(
        role: Optional[UserRole] = None,
        city: Optional[str] = None,
        availability: Optional[Availability] = None,
        verification: Optional[VerificationStatus] = None,
    ) -> Query:
        q = Query(USERS)
        if role is not None:
            q = q.where("role", "==", role)
        if city is not None:
            q = q.where("city", "==", city)
        if availability is not None:
            q = q.where("availabilityStatus", "==", availability)
        if verification is not None:
            q = q.where("verificationStatus", "==", verification)
        return q

    async def list(
        self,
        *,
        role: Optional[UserRole] = None,
        city: Optional[str] = None,
        availability: Optional[Availability] = None,
        verification: Optional[VerificationStatus] = None,
    ) -> list[User]:
        docs = await self.store.query(
            self.query(role, city, availability, verification)
        )
        return [user_from_document(d) for d in docs]

    # transactional helpers

    @staticmethod
    async def read(tx: Transaction, user_id: str) -> User:
        doc = await tx.get(user_ref(user_id))
        if doc is None:
            raise UserNotFound(f"User {user_id} not found")
        return user_from_document(doc)

    @staticmethod
    async def read_optional(tx: Transaction, user_id: str) -> Optional[User]:
        doc = await tx.get(user_ref(user_id))
        return user_from_document(doc) if doc else None

    @staticmethod
    def stage(tx: Transaction, user: User, *attrs: str) -> None:
        """Write only the fields behind *attrs*; the rest of the profile is kept."""
        tx.update(user_ref(user.id), user_fields(user, *attrs))
