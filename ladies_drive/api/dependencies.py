"""FastAPI dependency injection helpers.

Services are built once in ``create_app`` and parked on ``app.state``.
"""

from fastapi import Request

from ladies_drive.services.dispatch import DispatchCoordinator
from ladies_drive.services.lifecycle import RideLifecycleManager
from ladies_drive.services.rating import RatingAggregator
from ladies_drive.services.users import UserService


def get_lifecycle(request: Request) -> RideLifecycleManager:
    return request.app.state.lifecycle


def get_dispatch(request: Request) -> DispatchCoordinator:
    return request.app.state.dispatch


def get_ratings(request: Request) -> RatingAggregator:
    return request.app.state.ratings


def get_user_service(request: Request) -> UserService:
    return request.app.state.users
