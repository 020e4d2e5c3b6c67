# ridehail/api/routes.py
"""
REST endpoints поездок, заявок и водителей.

Ошибки домена выбрасываются через OperationResult.unwrap() и
превращаются в HTTP-ответы обработчиком из app.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ridehail.api.dependencies import Container, get_container, get_orchestrator, get_pricing
from ridehail.common.geo import calculate_distance
from ridehail.core.pricing.service import PricingService
from ridehail.core.rides.models import (
    DriverPosition,
    FareEstimate,
    Location,
    Ride,
    RidePage,
    RideRequest,
    RideTracking,
)
from ridehail.core.rides.orchestrator import RideOrchestrator


# === MODELS ===

class CreateRideRequest(BaseModel):
    customer_id: int = Field(..., gt=0)
    pickup: Location
    dropoff: Location
    notes: Optional[str] = Field(None, max_length=500)


class EstimateRequest(BaseModel):
    pickup: Location
    dropoff: Location


class AcceptRideRequest(BaseModel):
    driver_id: int = Field(..., gt=0)


class ActorRequest(BaseModel):
    actor_id: Optional[int] = None


class CompleteRideRequest(BaseModel):
    distance_km: float = Field(..., ge=0.0)
    duration_minutes: int = Field(..., ge=0)
    actor_id: Optional[int] = None


class CancelRideRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    actor_id: Optional[int] = None


class RespondRequest(BaseModel):
    driver_id: int = Field(..., gt=0)
    accepted: bool


class ExpireResponse(BaseModel):
    expired: int


class DriverLocationRequest(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    speed: Optional[float] = Field(None, ge=0.0)
    heading: Optional[float] = Field(None, ge=0.0, lt=360.0)


class DriverStatusRequest(BaseModel):
    online: bool


class DriverStatusResponse(BaseModel):
    driver_id: int
    online: bool


# === RIDES ===

rides_router = APIRouter(prefix="/rides", tags=["Rides"])


@rides_router.post("", response_model=Ride, status_code=201)
async def create_ride(
    request: CreateRideRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.create_ride(
        request.customer_id, request.pickup, request.dropoff, request.notes
    )
    return result.unwrap()


@rides_router.post("/estimate", response_model=FareEstimate)
async def estimate_fare(
    request: EstimateRequest,
    pricing: PricingService = Depends(get_pricing),
    container: Container = Depends(get_container),
) -> FareEstimate:
    """Оценка стоимости без создания поездки."""
    distance = calculate_distance(
        request.pickup.lat, request.pickup.lng, request.dropoff.lat, request.dropoff.lng
    )
    return pricing.estimate(distance, container.clock.now())


# Статические пути объявлены раньше /{ride_id}
@rides_router.get("/active", response_model=Optional[Ride])
async def get_active_ride(
    user_id: int = Query(..., gt=0),
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Optional[Ride]:
    result = await orchestrator.get_active_ride(user_id)
    return result.unwrap()


@rides_router.get("/history", response_model=RidePage)
async def get_ride_history(
    user_id: int = Query(..., gt=0),
    page_size: int = Query(20),
    page_number: int = Query(1),
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> RidePage:
    result = await orchestrator.get_ride_history(user_id, page_size, page_number)
    return result.unwrap()


@rides_router.get("/{ride_id}", response_model=Ride)
async def get_ride(
    ride_id: str,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.get_ride(ride_id)
    return result.unwrap()


@rides_router.get("/{ride_id}/tracking", response_model=RideTracking)
async def get_ride_tracking(
    ride_id: str,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> RideTracking:
    """Маршрут водителя по поездке и пройденное расстояние."""
    result = await orchestrator.get_ride_tracking(ride_id)
    return result.unwrap()


@rides_router.post("/{ride_id}/accept", response_model=Ride)
async def accept_ride(
    ride_id: str,
    request: AcceptRideRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.accept_ride(ride_id, request.driver_id)
    return result.unwrap()


@rides_router.post("/{ride_id}/arrived", response_model=Ride)
async def driver_arrived(
    ride_id: str,
    request: ActorRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.driver_arrived(ride_id, request.actor_id)
    return result.unwrap()


@rides_router.post("/{ride_id}/start", response_model=Ride)
async def start_ride(
    ride_id: str,
    request: ActorRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.start_ride(ride_id, request.actor_id)
    return result.unwrap()


@rides_router.post("/{ride_id}/complete", response_model=Ride)
async def complete_ride(
    ride_id: str,
    request: CompleteRideRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.complete_ride(
        ride_id, request.distance_km, request.duration_minutes, request.actor_id
    )
    return result.unwrap()


@rides_router.post("/{ride_id}/cancel", response_model=Ride)
async def cancel_ride(
    ride_id: str,
    request: CancelRideRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> Ride:
    result = await orchestrator.cancel_ride(ride_id, request.reason, request.actor_id)
    return result.unwrap()


# === RIDE REQUESTS ===

requests_router = APIRouter(prefix="/ride-requests", tags=["Ride Requests"])


@requests_router.get("/pending", response_model=list[RideRequest])
async def get_pending_requests(
    driver_id: int = Query(..., gt=0),
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> list[RideRequest]:
    result = await orchestrator.get_pending_requests(driver_id)
    return result.unwrap()


@requests_router.get("/ride/{ride_id}", response_model=list[RideRequest])
async def get_ride_requests(
    ride_id: str,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> list[RideRequest]:
    result = await orchestrator.get_ride_requests(ride_id)
    return result.unwrap()


@requests_router.post("/expire-old", response_model=ExpireResponse)
async def expire_old_requests(
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> ExpireResponse:
    result = await orchestrator.expire_old_requests()
    return ExpireResponse(expired=result.unwrap())


@requests_router.post("/{request_id}/respond", response_model=RideRequest)
async def respond_to_request(
    request_id: str,
    request: RespondRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> RideRequest:
    result = await orchestrator.respond_to_request(request_id, request.driver_id, request.accepted)
    return result.unwrap()


# === DRIVERS ===

drivers_router = APIRouter(prefix="/drivers", tags=["Drivers"])


@drivers_router.post("/{driver_id}/location", response_model=DriverPosition)
async def update_driver_location(
    driver_id: int,
    request: DriverLocationRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> DriverPosition:
    result = await orchestrator.update_driver_location(
        driver_id, request.lat, request.lng, request.speed, request.heading
    )
    return result.unwrap()


@drivers_router.post("/{driver_id}/status", response_model=DriverStatusResponse)
async def set_driver_status(
    driver_id: int,
    request: DriverStatusRequest,
    orchestrator: RideOrchestrator = Depends(get_orchestrator),
) -> DriverStatusResponse:
    result = await orchestrator.set_driver_online(driver_id, request.online)
    return DriverStatusResponse(driver_id=driver_id, online=result.unwrap())


routers = [rides_router, requests_router, drivers_router]
