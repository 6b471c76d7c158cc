"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from taxidispatch.domain.enums import (
    Direction,
    RequestStatus,
    RequestType,
    TaxiStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideRequestCreate(BaseModel):
    starting_stop: str = Field(..., min_length=1, max_length=120)
    destination_stop: str = Field(..., min_length=1, max_length=120)


class PickupRequestCreate(BaseModel):
    starting_stop: str = Field(..., min_length=1, max_length=120)


class TaxiCreate(BaseModel):
    number_plate: str = Field(..., min_length=1, max_length=32)
    route_name: str = Field(..., min_length=1, max_length=120)
    capacity: int = Field(..., gt=0)
    current_stop: str = Field(..., min_length=1, max_length=120)
    allow_return_pickups: bool = False


class TaxiDetailsUpdate(BaseModel):
    route_name: Optional[str] = Field(None, min_length=1, max_length=120)
    capacity: Optional[int] = None
    allow_return_pickups: Optional[bool] = None


# Enum-typed bodies are kept as plain strings so an unknown value reaches
# the service and comes back with the list of allowed values.


class StatusUpdate(BaseModel):
    status: str


class StopUpdate(BaseModel):
    current_stop: str


class LoadUpdate(BaseModel):
    current_load: int


class DirectionUpdate(BaseModel):
    direction: str


# ── Responses ─────────────────────────────────────────────────────────


class StopResponse(BaseModel):
    name: str
    order: int

    model_config = {"from_attributes": True}


class RouteResponse(BaseModel):
    id: int
    name: str
    stops: list[StopResponse] = []

    model_config = {"from_attributes": True}


class TaxiResponse(BaseModel):
    id: int
    number_plate: str
    status: TaxiStatus
    current_stop: str
    current_load: int
    capacity: int
    direction: Direction
    allow_return_pickups: bool
    driver_id: str
    route_id: int
    route_name: str
    next_stop: str
    stops: list[StopResponse] = []
    updated_at: Optional[datetime] = None


class TaxiStopsResponse(BaseModel):
    direction: Direction
    stops: list[StopResponse]


class RideRequestResponse(BaseModel):
    id: int
    passenger_id: str
    route_id: int
    request_type: RequestType
    starting_stop: str
    destination_stop: str = ""
    status: RequestStatus
    taxi_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CreatedRequestResponse(BaseModel):
    request: RideRequestResponse
    route_name: str
    notified_drivers: int


class NearbyRequestsResponse(BaseModel):
    ride_requests: list[RideRequestResponse] = []
    pickup_requests: list[RideRequestResponse] = []

    model_config = {"from_attributes": True}


class AcceptedTaxiResponse(BaseModel):
    message: Optional[str] = None
    request: Optional[RideRequestResponse] = None
    taxi: Optional[TaxiResponse] = None


class AcceptedPassengerResponse(BaseModel):
    request: RideRequestResponse
    route_name: str


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    connections: int = 0


class ErrorResponse(BaseModel):
    detail: str
