"""Maps the ride error taxonomy onto HTTP status codes."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ladies_drive.domain.errors import (
    AlreadyRated,
    AlreadyTaken,
    DriverBusy,
    InvalidInput,
    InvalidRating,
    InvalidTransition,
    NotEligible,
    NotFound,
    RideError,
    TransactionFailed,
)
from ladies_drive.infrastructure.store import StoreError

logger = logging.getLogger(__name__)

# first match wins, so subclasses come before their bases
STATUS_CODES: list[tuple[type[RideError], int]] = [
    (NotFound, 404),
    (InvalidInput, 422),
    (InvalidRating, 422),
    (DriverBusy, 409),
    (NotEligible, 403),
    (AlreadyTaken, 409),
    (AlreadyRated, 409),
    (InvalidTransition, 409),
    (TransactionFailed, 503),
]


def status_for(exc: RideError) -> int:
    for cls, code in STATUS_CODES:
        if isinstance(exc, cls):
            return code
    return 400


async def ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    code = status_for(exc)
    logger.info("%s %s -> %d %s: %s", request.method, request.url.path, code, type(exc).__name__, exc)
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("%s %s -> store failure: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable", "error": "StoreError"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RideError, ride_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)
