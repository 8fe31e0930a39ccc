"""
Ride endpoints
==============

POST  /api/v1/rides                    -- request a ride (SEARCHING)
GET   /api/v1/rides/{ride_id}          -- current ride snapshot
POST  /api/v1/rides/{ride_id}/accept   -- driver accepts; first one wins
PATCH /api/v1/rides/{ride_id}/status   -- ARRIVED / IN_PROGRESS / ...
PATCH /api/v1/rides/{ride_id}/complete -- finish and count the trip
PATCH /api/v1/rides/{ride_id}/cancel   -- cancel before pickup
POST  /api/v1/rides/{ride_id}/rating   -- rate the other party
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ladies_drive.api.dependencies import (
    get_lifecycle,
    get_ratings,
    get_user_service,
)
from ladies_drive.api.middleware import limiter
from ladies_drive.api.schemas import (
    AcceptRequest,
    CancelRequest,
    RatingRequest,
    RatingResponse,
    RideCreateRequest,
    RideResponse,
    StatusUpdateRequest,
)
from ladies_drive.config import settings
from ladies_drive.domain.errors import InvalidTransition
from ladies_drive.services.lifecycle import RideLifecycleManager
from ladies_drive.services.rating import RatingAggregator
from ladies_drive.services.users import UserService

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    responses={201: {"description": "Ride request is SEARCHING for a driver."}},
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
    users: UserService = Depends(get_user_service),
):
    passenger = await users.get(body.passenger_id)
    return await lifecycle.request_ride(
        passenger,
        body.pickup.to_domain(),
        body.destination.to_domain(),
        service_class=body.service_class,
        price=body.price,
        options=body.options.to_domain(),
        target_driver_id=body.target_driver_id,
    )


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: str,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.get_ride(ride_id)


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a ride request",
    description=(
        "Assigns the driver if the ride is still SEARCHING.  Concurrent "
        "accepts are serialized; every loser gets 409 AlreadyTaken."
    ),
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: str,
    body: AcceptRequest,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.accept(ride_id, body.driver_id)


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Advance the ride state",
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    ride_id: str,
    body: StatusUpdateRequest,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.advance(ride_id, body.status)


@router.patch(
    "/{ride_id}/complete",
    response_model=RideResponse,
    summary="Complete a ride",
    description=(
        "IN_PROGRESS -> COMPLETED and +1 completed trip for both passenger "
        "and driver, in a single transaction."
    ),
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: str,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
):
    ride = await lifecycle.get_ride(ride_id)
    if ride.driver is None or ride.passenger is None:
        raise InvalidTransition(
            f"Cannot transition from {ride.status.value} to COMPLETED"
        )
    return await lifecycle.complete(ride_id, ride.passenger.id, ride.driver.id)


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description="Allowed while SEARCHING or ACCEPTED; frees the assigned driver.",
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: Optional[CancelRequest] = None,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.cancel(ride_id, body.reason if body else None)


@router.post(
    "/{ride_id}/rating",
    response_model=RatingResponse,
    summary="Rate the other party of a completed ride",
)
@limiter.limit(settings.rate_limit)
async def rate_ride(
    request: Request,
    ride_id: str,
    body: RatingRequest,
    ratings: RatingAggregator = Depends(get_ratings),
):
    user = await ratings.rate_counterparty(ride_id, body.rater_id, body.rating)
    if user is None:
        return RatingResponse(skipped=True)
    return RatingResponse(
        skipped=False,
        user_id=user.id,
        rating=user.rating,
        rating_count=user.rating_count,
    )
