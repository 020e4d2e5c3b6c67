# ridehail/api/websocket.py
"""
WebSocket шлюз реального времени.

WebSocket endpoints:
- /ws/customer/{user_id}: для клиентов
- /ws/driver/{user_id}: для водителей

Входящие кадры:
- {"type": "ping"}
- {"type": "location_update", "lat": 31.95, "lng": 35.91, "speed": 40.0, "heading": 90.0}
- {"type": "ride_request_response", "request_id": "...", "accepted": true}
- {"type": "driver_arrived" | "trip_started", "ride_id": "..."}
- {"type": "trip_completed", "ride_id": "...", "distance_km": 5.2, "duration_minutes": 14}
- {"type": "ride_cancelled", "ride_id": "...", "reason": "..."}
"""

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError

from ridehail.api.dependencies import Container
from ridehail.common.constants import UserRole
from ridehail.common.logger import log_error
from ridehail.core.rides.errors import OperationResult, RideError
from ridehail.core.rides.models import Ride
from ridehail.realtime import events
from ridehail.realtime.events import (
    DRIVER_ONLY_FRAMES,
    DriverArrivedFrame,
    LocationUpdateFrame,
    PingFrame,
    RideCancelledFrame,
    RideRequestResponseFrame,
    TripCompletedFrame,
    TripStartedFrame,
    parse_client_frame,
)

router = APIRouter()


async def _send_error(websocket: WebSocket, container: Container, user_id: int, code: str, message: str) -> None:
    event = events.error(code, message, container.clock.now(), user_id=user_id)
    await websocket.send_json(event.to_wire())


@router.websocket("/ws/{role}/{user_id}")
async def ride_socket(websocket: WebSocket, role: str, user_id: int) -> None:
    """Сессия клиента или водителя."""
    container: Container = websocket.app.state.container
    try:
        user_role = UserRole(role)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    registry = container.registry
    connection_id = await registry.register(user_id, user_role, websocket)

    try:
        await websocket.send_json(
            events.connection_status(connection_id, user_id, user_role.value, container.clock.now()).to_wire()
        )
        while True:
            text = await websocket.receive_text()
            await registry.touch(connection_id)
            await _handle_text(websocket, container, user_id, user_role, text)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        await log_error(
            f"Ошибка WebSocket сессии {connection_id}: {e}",
            extra={"user_id": user_id, "role": user_role.value},
        )
    finally:
        await registry.unregister(connection_id)


async def _handle_text(
    websocket: WebSocket,
    container: Container,
    user_id: int,
    role: UserRole,
    text: str,
) -> None:
    """Разбирает кадр и выполняет команду. Ошибки отправляются событием error."""
    try:
        frame = parse_client_frame(json.loads(text))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        await _send_error(websocket, container, user_id, "invalid_frame", f"malformed frame: {e}")
        return

    if frame.type in DRIVER_ONLY_FRAMES and role != UserRole.DRIVER:
        await _send_error(
            websocket, container, user_id, "forbidden", f"{frame.type} is available to drivers only"
        )
        return

    try:
        result = await _dispatch_frame(websocket, container, user_id, frame)
    except RideError as e:
        await _send_error(websocket, container, user_id, e.code.value, e.message)
        return

    if result is None:
        return
    if not result.ok:
        assert result.error is not None
        await _send_error(websocket, container, user_id, result.error.code.value, result.error.message)
    elif isinstance(result.value, Ride):
        await websocket.send_json(
            events.ride_status_changed(result.value, container.clock.now()).to_wire()
        )


async def _dispatch_frame(
    websocket: WebSocket,
    container: Container,
    user_id: int,
    frame: Any,
) -> Optional[OperationResult[Any]]:
    orchestrator = container.orchestrator
    match frame:
        case PingFrame():
            await websocket.send_json(events.pong(container.clock.now()).to_wire())
            return None
        case LocationUpdateFrame(lat=lat, lng=lng, speed=speed, heading=heading):
            return await orchestrator.update_driver_location(user_id, lat, lng, speed, heading)
        case RideRequestResponseFrame(request_id=request_id, accepted=accepted):
            return await orchestrator.respond_to_request(request_id, user_id, accepted)
        case DriverArrivedFrame(ride_id=ride_id):
            return await orchestrator.driver_arrived(ride_id, actor_id=user_id)
        case TripStartedFrame(ride_id=ride_id):
            return await orchestrator.start_ride(ride_id, actor_id=user_id)
        case TripCompletedFrame(ride_id=ride_id, distance_km=distance_km, duration_minutes=duration):
            return await orchestrator.complete_ride(ride_id, distance_km, duration, actor_id=user_id)
        case RideCancelledFrame(ride_id=ride_id, reason=reason):
            return await orchestrator.cancel_ride(ride_id, reason, actor_id=user_id)
    return None
