"""
User endpoints
==============

POST /api/v1/users           -- register a passenger or driver
GET  /api/v1/users/{user_id} -- profile with rating and completed trips
"""

from fastapi import APIRouter, Depends, Request

from ladies_drive.api.dependencies import get_user_service
from ladies_drive.api.middleware import limiter
from ladies_drive.api.schemas import UserCreateRequest, UserResponse
from ladies_drive.config import settings
from ladies_drive.services.users import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    status_code=201,
    response_model=UserResponse,
    summary="Register a user",
)
@limiter.limit(settings.rate_limit)
async def create_user(
    request: Request,
    body: UserCreateRequest,
    users: UserService = Depends(get_user_service),
):
    return await users.register(
        name=body.name,
        role=body.role,
        city=body.city,
        avatar_url=body.avatar_url,
        email=body.email,
        phone_number=body.phone_number,
        vehicle=body.vehicle.to_domain() if body.vehicle else None,
    )


@router.get("/{user_id}", response_model=UserResponse, summary="Get a user")
@limiter.limit(settings.rate_limit)
async def get_user(
    request: Request,
    user_id: str,
    users: UserService = Depends(get_user_service),
):
    return await users.get(user_id)
