"""Pydantic request / response schemas for the REST and WebSocket API."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ladies_drive.domain.entities import Location, Place, RideOptions, VehicleInfo
from ladies_drive.domain.enums import (
    Availability,
    RideStatus,
    ServiceClass,
    UserRole,
    VerificationStatus,
)


# ── Shared ────────────────────────────────────────────────────────────


class LocationSchema(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class VehicleSchema(BaseModel):
    make: str = ""
    model: str = ""
    year: str = ""
    color: str = ""
    plate_number: str = ""

    def to_domain(self) -> VehicleInfo:
        return VehicleInfo(**self.model_dump())


class RideOptionsSchema(BaseModel):
    quiet: bool = False
    luggage: bool = False
    assistance: bool = False
    wait: bool = False

    def to_domain(self) -> RideOptions:
        return RideOptions(**self.model_dump())


# ── Requests ──────────────────────────────────────────────────────────


class PlaceRequest(BaseModel):
    label: str = ""
    # optional here so a missing coordinate surfaces as InvalidInput
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    def to_domain(self) -> Place:
        location = None
        if self.lat is not None and self.lng is not None:
            location = Location(lat=self.lat, lng=self.lng)
        return Place(label=self.label, location=location)


class RideCreateRequest(BaseModel):
    passenger_id: str
    pickup: PlaceRequest
    destination: PlaceRequest
    service_class: ServiceClass = ServiceClass.REGULAR
    price: float = Field(..., ge=0)
    options: RideOptionsSchema = Field(default_factory=RideOptionsSchema)
    target_driver_id: Optional[str] = Field(
        None, description="Pin the request to the driver the passenger picked."
    )


class AcceptRequest(BaseModel):
    driver_id: str


class StatusUpdateRequest(BaseModel):
    status: RideStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class RatingRequest(BaseModel):
    rater_id: str
    rating: Optional[int] = Field(
        None, description="1-5 stars; null skips the rating."
    )


class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    role: UserRole = UserRole.PASSENGER
    city: Optional[str] = None
    avatar_url: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    vehicle: Optional[VehicleSchema] = None


class AvailabilityRequest(BaseModel):
    status: Availability


class DriverApplicationRequest(BaseModel):
    documents: dict[str, str] = Field(
        ...,
        description=(
            "Uploaded document URLs: licenseUrl, nationalIdUrl, "
            "personalPhotoUrl, criminalRecordUrl and insuranceUrl."
        ),
    )
    vehicle: Optional[VehicleSchema] = None
    city: Optional[str] = None


# ── Responses ─────────────────────────────────────────────────────────


class PlaceResponse(BaseModel):
    label: str
    location: Optional[LocationSchema] = None


class PassengerSnapshotResponse(BaseModel):
    id: str
    name: str
    avatar_url: str = ""
    rating: float


class DriverSnapshotResponse(BaseModel):
    id: str
    name: str
    avatar_url: str = ""
    vehicle: Optional[VehicleSchema] = None
    rating: float
    phone: Optional[str] = None


class RideResponse(BaseModel):
    id: str
    passenger: Optional[PassengerSnapshotResponse] = None
    pickup: PlaceResponse
    destination: PlaceResponse
    service_class: ServiceClass
    price: float
    options: RideOptionsSchema
    status: RideStatus
    city: str
    target_driver_id: Optional[str] = None
    driver: Optional[DriverSnapshotResponse] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    name: str
    role: UserRole
    avatar_url: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    rating: Optional[float] = None
    rating_count: int = 0
    completed_trips: int = 0
    city: Optional[str] = None
    availability: Optional[Availability] = None
    current_location: Optional[LocationSchema] = None
    last_location_update: Optional[datetime] = None
    vehicle: Optional[VehicleSchema] = None
    active_ride_id: Optional[str] = None
    verification_status: Optional[VerificationStatus] = None
    documents: dict[str, str] = {}
    created_at: Optional[datetime] = None


class DispatchViewResponse(BaseModel):
    driver_id: str
    active_ride: Optional[RideResponse] = None
    candidates: list[RideResponse] = []


class RatingResponse(BaseModel):
    skipped: bool
    user_id: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    error: Optional[str] = None


# ── WebSocket payloads ────────────────────────────────────────────────


def _payload(model: type[BaseModel], entity: Any) -> dict:
    return model.model_validate(dataclasses.asdict(entity)).model_dump(mode="json")


def ride_payload(ride) -> dict:
    return {"type": "ride", "ride": _payload(RideResponse, ride)}


def dispatch_payload(view) -> dict:
    return {"type": "dispatch", "view": _payload(DispatchViewResponse, view)}
