"""
Driver endpoints
================

GET   /api/v1/drivers/available?city=          -- drivers a passenger can pick
GET   /api/v1/drivers/{driver_id}/requests     -- dispatch view (polling form)
PATCH /api/v1/drivers/{driver_id}/availability -- go online / offline
PATCH /api/v1/drivers/{driver_id}/location     -- report current position
POST  /api/v1/drivers/{driver_id}/application  -- send documents for verification

The live form of the dispatch view is the WebSocket in ``routes.live``;
skips there are remembered per connection.  Over REST the client sends
its skipped ride ids back as ``exclude``.
"""

from fastapi import APIRouter, Depends, Query, Request

from ladies_drive.api.dependencies import get_dispatch, get_user_service
from ladies_drive.api.middleware import limiter
from ladies_drive.api.schemas import (
    AvailabilityRequest,
    DispatchViewResponse,
    DriverApplicationRequest,
    LocationSchema,
    UserResponse,
)
from ladies_drive.config import settings
from ladies_drive.services.dispatch import DispatchCoordinator
from ladies_drive.services.users import UserService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/available",
    response_model=list[UserResponse],
    summary="Available drivers in a city",
)
@limiter.limit(settings.rate_limit)
async def list_available_drivers(
    request: Request,
    city: str = Query(..., min_length=1),
    dispatch: DispatchCoordinator = Depends(get_dispatch),
):
    return await dispatch.available_drivers(city)


@router.get(
    "/{driver_id}/requests",
    response_model=DispatchViewResponse,
    summary="What the driver should see right now",
    description=(
        "The driver's assigned ride if there is one, otherwise the open "
        "requests they may accept, oldest first."
    ),
)
@limiter.limit(settings.rate_limit)
async def get_dispatch_view(
    request: Request,
    driver_id: str,
    exclude: list[str] = Query(default=[]),
    dispatch: DispatchCoordinator = Depends(get_dispatch),
):
    return await dispatch.view_for(driver_id, frozenset(exclude))


@router.patch(
    "/{driver_id}/availability",
    response_model=UserResponse,
    summary="Go online or offline",
)
@limiter.limit(settings.rate_limit)
async def set_availability(
    request: Request,
    driver_id: str,
    body: AvailabilityRequest,
    users: UserService = Depends(get_user_service),
):
    return await users.set_availability(driver_id, body.status)


@router.patch(
    "/{driver_id}/location",
    response_model=UserResponse,
    summary="Update the driver's position",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    driver_id: str,
    body: LocationSchema,
    users: UserService = Depends(get_user_service),
):
    return await users.update_location(driver_id, body.lat, body.lng)


@router.post(
    "/{driver_id}/application",
    response_model=UserResponse,
    summary="Submit documents for verification",
    description=(
        "Moves the driver to PENDING until an admin approves or rejects "
        "the application.  Only VERIFIED drivers can go online."
    ),
)
@limiter.limit(settings.rate_limit)
async def submit_application(
    request: Request,
    driver_id: str,
    body: DriverApplicationRequest,
    users: UserService = Depends(get_user_service),
):
    return await users.submit_application(
        driver_id,
        body.documents,
        vehicle=body.vehicle.to_domain() if body.vehicle else None,
        city=body.city,
    )
