"""
Live update endpoints (WebSocket)
=================================

WS /api/v1/live/rides/{ride_id}              -- passenger tracks one ride
WS /api/v1/live/drivers/{driver_id}/requests -- driver dispatch view
WS /api/v1/live/drivers/available?city=      -- passenger driver picker

Every socket pushes a fresh payload whenever the underlying documents
change.  The dispatch socket also accepts ``{"action": "skip",
"ride_id": ...}``; skips live as long as the connection does.
"""

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ladies_drive.api.schemas import UserResponse, dispatch_payload, ride_payload
from ladies_drive.domain.errors import RideError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/live", tags=["live"])


@router.websocket("/rides/{ride_id}")
async def ride_updates(websocket: WebSocket, ride_id: str):
    lifecycle = websocket.app.state.lifecycle
    await websocket.accept()
    await _serve(websocket, lifecycle.watch_ride(ride_id), ride_payload)


@router.websocket("/drivers/{driver_id}/requests")
async def dispatch_updates(websocket: WebSocket, driver_id: str):
    session = websocket.app.state.dispatch.open_session(driver_id)
    await websocket.accept()

    async def on_message(message: dict) -> None:
        if message.get("action") == "skip" and message.get("ride_id"):
            session.skip(str(message["ride_id"]))
            await websocket.send_json(dispatch_payload(await session.view()))

    await _serve(websocket, session.views(), dispatch_payload, on_message)


@router.websocket("/drivers/available")
async def available_driver_updates(websocket: WebSocket, city: str = Query(...)):
    dispatch = websocket.app.state.dispatch
    await websocket.accept()

    def payload(drivers) -> dict:
        return {
            "type": "drivers",
            "drivers": [
                UserResponse.model_validate(dataclasses.asdict(d)).model_dump(mode="json")
                for d in drivers
            ],
        }

    await _serve(websocket, dispatch.watch_available_drivers(city), payload)


# ── Internals ─────────────────────────────────────────────────────────


async def _serve(
    websocket: WebSocket,
    stream: AsyncIterator,
    to_payload: Callable[[object], dict],
    on_message: Optional[Callable[[dict], Awaitable[None]]] = None,
) -> None:
    """Pump *stream* to the socket until either side goes away."""

    async def sender() -> None:
        try:
            async for item in stream:
                await websocket.send_json(to_payload(item))
        except RideError as exc:
            await websocket.send_json(
                {"type": "error", "error": type(exc).__name__, "detail": str(exc)}
            )
            await websocket.close(code=1008)

    task = asyncio.create_task(sender())
    try:
        while True:
            message = await websocket.receive_json()
            if on_message is not None and isinstance(message, dict):
                await on_message(message)
    except WebSocketDisconnect:
        logger.debug("WebSocket %s disconnected", websocket.url.path)
    finally:
        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, WebSocketDisconnect):
            pass
        await stream.aclose()
