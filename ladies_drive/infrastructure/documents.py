"""
Entity <-> document mapping.

Documents use the camelCase field names of the hosted document database
(``targetDriverId``, ``completedTrips`` ...); entities use snake_case.
Timestamps are ISO-8601 strings, enums their values.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ladies_drive.domain.entities import (
    DriverSnapshot,
    Location,
    PassengerSnapshot,
    Place,
    RideOptions,
    RideRequest,
    User,
    VehicleInfo,
)
from ladies_drive.domain.enums import (
    Availability,
    RideStatus,
    ServiceClass,
    UserRole,
    VerificationStatus,
)

Document = dict[str, Any]


# ── Scalars ───────────────────────────────────────────────────────────


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _location(value: Optional[Location]) -> Optional[Document]:
    return {"lat": value.lat, "lng": value.lng} if value is not None else None


def _parse_location(value: Optional[Document]) -> Optional[Location]:
    if not value or value.get("lat") is None or value.get("lng") is None:
        return None
    return Location(lat=float(value["lat"]), lng=float(value["lng"]))


def _vehicle(value: Optional[VehicleInfo]) -> Optional[Document]:
    if value is None:
        return None
    return {
        "make": value.make,
        "model": value.model,
        "year": value.year,
        "color": value.color,
        "plateNumber": value.plate_number,
    }


def _parse_vehicle(value: Optional[Document]) -> Optional[VehicleInfo]:
    if not value:
        return None
    return VehicleInfo(
        make=value.get("make", ""),
        model=value.get("model", ""),
        year=str(value.get("year", "")),
        color=value.get("color", ""),
        plate_number=value.get("plateNumber", ""),
    )


# ── Rides ─────────────────────────────────────────────────────────────


def ride_to_document(ride: RideRequest) -> Document:
    passenger = ride.passenger
    driver = ride.driver
    return {
        "passenger": None
        if passenger is None
        else {
            "id": passenger.id,
            "name": passenger.name,
            "avatarUrl": passenger.avatar_url,
            "rating": passenger.rating,
        },
        "pickup": ride.pickup.label,
        "pickupLocation": _location(ride.pickup.location),
        "destination": ride.destination.label,
        "destinationLocation": _location(ride.destination.location),
        "type": ride.service_class.value,
        "price": ride.price,
        "options": {
            "quiet": ride.options.quiet,
            "luggage": ride.options.luggage,
            "assistance": ride.options.assistance,
            "wait": ride.options.wait,
        },
        "status": ride.status.value,
        "city": ride.city,
        "targetDriverId": ride.target_driver_id,
        "driver": None
        if driver is None
        else {
            "id": driver.id,
            "name": driver.name,
            "avatarUrl": driver.avatar_url,
            "vehicle": _vehicle(driver.vehicle),
            "rating": driver.rating,
            "phone": driver.phone,
        },
        "createdAt": _ts(ride.created_at),
        "acceptedAt": _ts(ride.accepted_at),
        "completedAt": _ts(ride.completed_at),
        "cancelledAt": _ts(ride.cancelled_at),
        "cancelReason": ride.cancel_reason,
    }


def ride_from_document(doc: Document) -> RideRequest:
    passenger = doc.get("passenger")
    driver = doc.get("driver")
    options = doc.get("options") or {}
    return RideRequest(
        id=doc.get("id"),
        passenger=None
        if not passenger
        else PassengerSnapshot(
            id=passenger["id"],
            name=passenger.get("name", ""),
            avatar_url=passenger.get("avatarUrl", ""),
            rating=passenger.get("rating") or 5.0,
        ),
        pickup=Place(doc.get("pickup", ""), _parse_location(doc.get("pickupLocation"))),
        destination=Place(
            doc.get("destination", ""), _parse_location(doc.get("destinationLocation"))
        ),
        service_class=ServiceClass(doc.get("type", ServiceClass.REGULAR.value)),
        price=float(doc.get("price", 0.0)),
        options=RideOptions(
            quiet=bool(options.get("quiet", False)),
            luggage=bool(options.get("luggage", False)),
            assistance=bool(options.get("assistance", False)),
            wait=bool(options.get("wait", False)),
        ),
        status=RideStatus(doc.get("status", RideStatus.SEARCHING.value)),
        city=doc.get("city") or "Unknown",
        target_driver_id=doc.get("targetDriverId"),
        driver=None
        if not driver
        else DriverSnapshot(
            id=driver["id"],
            name=driver.get("name", ""),
            avatar_url=driver.get("avatarUrl", ""),
            vehicle=_parse_vehicle(driver.get("vehicle")),
            rating=driver.get("rating") or 4.9,
            phone=driver.get("phone"),
        ),
        created_at=_parse_ts(doc.get("createdAt")),
        accepted_at=_parse_ts(doc.get("acceptedAt")),
        completed_at=_parse_ts(doc.get("completedAt")),
        cancelled_at=_parse_ts(doc.get("cancelledAt")),
        cancel_reason=doc.get("cancelReason"),
    )


# ── Users ─────────────────────────────────────────────────────────────

# entity attribute -> document field
USER_FIELDS = {
    "name": "name",
    "role": "role",
    "avatar_url": "avatarUrl",
    "email": "email",
    "phone_number": "phoneNumber",
    "rating": "rating",
    "rating_count": "ratingCount",
    "completed_trips": "completedTrips",
    "city": "city",
    "availability": "availabilityStatus",
    "current_location": "currentLocation",
    "last_location_update": "lastLocationUpdate",
    "vehicle": "vehicle",
    "active_ride_id": "activeRideId",
    "verification_status": "verificationStatus",
    "documents": "documents",
    "created_at": "createdAt",
}


def user_to_document(user: User) -> Document:
    return {
        "name": user.name,
        "role": user.role.value,
        "avatarUrl": user.avatar_url,
        "email": user.email,
        "phoneNumber": user.phone_number,
        "rating": user.rating,
        "ratingCount": user.rating_count,
        "completedTrips": user.completed_trips,
        "city": user.city,
        "availabilityStatus": user.availability.value if user.availability else None,
        "currentLocation": _location(user.current_location),
        "lastLocationUpdate": _ts(user.last_location_update),
        "vehicle": _vehicle(user.vehicle),
        "activeRideId": user.active_ride_id,
        "verificationStatus": (
            user.verification_status.value if user.verification_status else None
        ),
        "documents": dict(user.documents),
        "createdAt": _ts(user.created_at),
    }


def user_fields(user: User, *attrs: str) -> Document:
    """The document fields backing *attrs*, for partial updates."""
    doc = user_to_document(user)
    return {USER_FIELDS[attr]: doc[USER_FIELDS[attr]] for attr in attrs}


def user_from_document(doc: Document) -> User:
    availability = doc.get("availabilityStatus")
    verification = doc.get("verificationStatus")
    return User(
        id=doc.get("id"),
        name=doc.get("name", ""),
        role=UserRole(doc.get("role", UserRole.PASSENGER.value)),
        avatar_url=doc.get("avatarUrl") or "",
        email=doc.get("email"),
        phone_number=doc.get("phoneNumber"),
        rating=doc.get("rating"),
        rating_count=doc.get("ratingCount") or 0,
        completed_trips=doc.get("completedTrips") or 0,
        city=doc.get("city"),
        availability=Availability(availability) if availability else None,
        current_location=_parse_location(doc.get("currentLocation")),
        last_location_update=_parse_ts(doc.get("lastLocationUpdate")),
        vehicle=_parse_vehicle(doc.get("vehicle")),
        active_ride_id=doc.get("activeRideId"),
        verification_status=VerificationStatus(verification) if verification else None,
        documents=dict(doc.get("documents") or {}),
        created_at=_parse_ts(doc.get("createdAt")),
    )
