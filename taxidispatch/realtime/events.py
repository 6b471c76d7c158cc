"""Realtime event names and payload builders."""

from __future__ import annotations

from typing import Optional

from taxidispatch.domain.entities import RideRequest, Route, Taxi, TaxiState
from taxidispatch.domain.enums import RequestType

NEW_RIDE_REQUEST = "newRideRequest"
NEW_PICKUP_REQUEST = "newPickupRequest"
REQUEST_ACCEPTED = "requestAccepted"
PASSENGER_CANCELLED = "passengerCancelled"
DRIVER_CANCELLED = "driverCancelled"
TAXI_UPDATE = "taxiUpdate"
TAXI_DELETED = "taxiDeleted"
TAXI_ERROR = "taxiError"


def new_request_event(request: RideRequest) -> str:
    if request.request_type == RequestType.PICKUP:
        return NEW_PICKUP_REQUEST
    return NEW_RIDE_REQUEST


def new_request_payload(request: RideRequest, route: Route) -> dict:
    payload = {
        "request_id": request.id,
        "request_type": request.request_type.value,
        "starting_stop": request.starting_stop,
        "route_id": route.id,
        "route": route.name,
        "passenger_id": request.passenger_id,
    }
    if request.request_type == RequestType.RIDE:
        payload["destination_stop"] = request.destination_stop
    return payload


def request_accepted_payload(request: RideRequest, taxi: Taxi) -> dict:
    return {
        "request_id": request.id,
        "driver_id": taxi.driver_id,
        "taxi_id": taxi.id,
        "taxi_number_plate": taxi.number_plate,
        "message": (
            f"Your {request.request_type.value} request has been accepted "
            f"by taxi {taxi.number_plate}!"
        ),
    }


def passenger_cancelled_payload(request: RideRequest) -> dict:
    return {
        "request_id": request.id,
        "message": (
            "Passenger cancelled the request starting at "
            f"{request.starting_stop}."
        ),
    }


def driver_cancelled_payload(
    request: RideRequest, message: Optional[str] = None
) -> dict:
    return {
        "request_id": request.id,
        "message": message
        or "The driver cancelled your request. We are looking for another driver.",
    }


def taxi_update_payload(state: TaxiState) -> dict:
    return state.view()


def taxi_deleted_payload(taxi_id: int) -> dict:
    return {"taxi_id": taxi_id}
