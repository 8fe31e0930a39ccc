"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``RideRequest``: enforces valid lifecycle transitions
  (SEARCHING -> ACCEPTED -> ARRIVED -> IN_PROGRESS -> COMPLETED | CANCELLED).
- Passenger and driver data embedded in a ride are **snapshots**: copies of
  the profile taken at request / acceptance time, never refreshed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    ASSIGNED_STATUSES,
    RIDE_TRANSITIONS,
    TERMINAL_STATUSES,
    Availability,
    RideStatus,
    ServiceClass,
    UserRole,
    VerificationStatus,
)
from .errors import InvalidTransition

DEFAULT_PASSENGER_RATING = 5.0
DEFAULT_DRIVER_RATING = 4.9

# uploads a driver application must include, keyed as the client sends them
REQUIRED_DRIVER_DOCUMENTS = (
    "licenseUrl",
    "nationalIdUrl",
    "personalPhotoUrl",
    "criminalRecordUrl",
    "insuranceUrl",
)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass(frozen=True)
class Place:
    """A free-text label plus the coordinates it was resolved to."""

    label: str
    location: Optional[Location] = None


@dataclass(frozen=True)
class RideOptions:
    quiet: bool = False
    luggage: bool = False
    assistance: bool = False
    wait: bool = False


@dataclass(frozen=True)
class VehicleInfo:
    make: str = ""
    model: str = ""
    year: str = ""
    color: str = ""
    plate_number: str = ""


@dataclass(frozen=True)
class PassengerSnapshot:
    id: str
    name: str
    avatar_url: str = ""
    rating: float = DEFAULT_PASSENGER_RATING


@dataclass(frozen=True)
class DriverSnapshot:
    id: str
    name: str
    avatar_url: str = ""
    vehicle: Optional[VehicleInfo] = None
    rating: float = DEFAULT_DRIVER_RATING
    phone: Optional[str] = None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class User:
    id: Optional[str] = None
    name: str = ""
    role: UserRole = UserRole.PASSENGER
    avatar_url: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    rating: Optional[float] = None
    rating_count: int = 0
    completed_trips: int = 0
    city: Optional[str] = None

    # Driver specific
    availability: Optional[Availability] = None
    current_location: Optional[Location] = None
    last_location_update: Optional[datetime] = None
    vehicle: Optional[VehicleInfo] = None
    active_ride_id: Optional[str] = None
    verification_status: Optional[VerificationStatus] = None
    documents: dict[str, str] = field(default_factory=dict)

    created_at: Optional[datetime] = None

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_verified(self) -> bool:
        """Only verified drivers may go online or take rides."""
        return self.verification_status == VerificationStatus.VERIFIED

    def passenger_snapshot(self) -> PassengerSnapshot:
        return PassengerSnapshot(
            id=self.id,
            name=self.name,
            avatar_url=self.avatar_url,
            rating=self.rating or DEFAULT_PASSENGER_RATING,
        )

    def driver_snapshot(self) -> DriverSnapshot:
        return DriverSnapshot(
            id=self.id,
            name=self.name,
            avatar_url=self.avatar_url,
            vehicle=self.vehicle,
            rating=self.rating or DEFAULT_DRIVER_RATING,
            phone=self.phone_number,
        )


@dataclass
class RideRequest:
    id: Optional[str] = None
    passenger: Optional[PassengerSnapshot] = None
    pickup: Place = field(default_factory=lambda: Place(""))
    destination: Place = field(default_factory=lambda: Place(""))
    service_class: ServiceClass = ServiceClass.REGULAR
    price: float = 0.0
    options: RideOptions = field(default_factory=RideOptions)
    status: RideStatus = RideStatus.SEARCHING
    city: str = "Unknown"
    target_driver_id: Optional[str] = None
    driver: Optional[DriverSnapshot] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_assigned(self) -> bool:
        return self.status in ASSIGNED_STATUSES

    def can_transition_to(self, new_status: RideStatus) -> bool:
        return new_status in RIDE_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if not self.can_transition_to(new_status):
            raise InvalidTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def assign_driver(self, driver: DriverSnapshot, at: datetime) -> None:
        """Attach *driver* and move to ACCEPTED.  A ride gets one driver, once."""
        if self.driver is not None:
            raise InvalidTransition(f"Ride {self.id} already has a driver")
        self.transition_to(RideStatus.ACCEPTED)
        self.driver = driver
        self.accepted_at = at

    def mark_completed(self, at: datetime) -> None:
        self.transition_to(RideStatus.COMPLETED)
        self.completed_at = at

    def mark_cancelled(self, at: datetime, reason: Optional[str] = None) -> None:
        self.transition_to(RideStatus.CANCELLED)
        self.cancelled_at = at
        self.cancel_reason = reason
