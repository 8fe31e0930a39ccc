"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/rides   -- rides filtered by status and city
GET  /api/v1/admin/users   -- users filtered by role and city
GET  /api/v1/admin/health  -- simple health check
GET  /api/v1/admin/drivers -- drivers filtered by verification status
POST /api/v1/admin/drivers/{driver_id}/approve -- mark a driver VERIFIED
POST /api/v1/admin/drivers/{driver_id}/reject  -- reject or suspend a driver
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ladies_drive.api.dependencies import get_lifecycle, get_user_service
from ladies_drive.api.middleware import limiter
from ladies_drive.api.schemas import HealthResponse, RideResponse, UserResponse
from ladies_drive.config import settings
from ladies_drive.domain.enums import RideStatus, UserRole, VerificationStatus
from ladies_drive.services.lifecycle import RideLifecycleManager
from ladies_drive.services.users import UserService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/rides",
    response_model=list[RideResponse],
    summary="List rides by status and city",
)
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    status: Optional[RideStatus] = None,
    city: Optional[str] = None,
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.rides.list(status=status, city=city)


@router.get(
    "/users",
    response_model=list[UserResponse],
    summary="List users by role and city",
)
@limiter.limit(settings.rate_limit)
async def list_users(
    request: Request,
    role: Optional[UserRole] = None,
    city: Optional[str] = None,
    users: UserService = Depends(get_user_service),
):
    return await users.list_users(role=role, city=city)


@router.get(
    "/drivers",
    response_model=list[UserResponse],
    summary="List drivers by verification status",
)
@limiter.limit(settings.rate_limit)
async def list_drivers(
    request: Request,
    verification: Optional[VerificationStatus] = None,
    city: Optional[str] = None,
    users: UserService = Depends(get_user_service),
):
    return await users.list_users(
        role=UserRole.DRIVER, city=city, verification=verification
    )


@router.post(
    "/drivers/{driver_id}/approve",
    response_model=UserResponse,
    summary="Approve a driver application",
)
@limiter.limit(settings.rate_limit)
async def approve_driver(
    request: Request,
    driver_id: str,
    users: UserService = Depends(get_user_service),
):
    return await users.approve_driver(driver_id)


@router.post(
    "/drivers/{driver_id}/reject",
    response_model=UserResponse,
    summary="Reject or suspend a driver",
    description="The driver is taken offline and cannot go online again.",
)
@limiter.limit(settings.rate_limit)
async def reject_driver(
    request: Request,
    driver_id: str,
    users: UserService = Depends(get_user_service),
):
    return await users.reject_driver(driver_id)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
