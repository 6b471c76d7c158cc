"""
Ride request endpoints
======================

POST   /api/v1/ride-requests/ride                  -- request a ride (passenger)
POST   /api/v1/ride-requests/pickup                -- request a pickup (passenger)
GET    /api/v1/ride-requests/nearby                -- driver's nearby view
GET    /api/v1/ride-requests/accepted-taxi         -- passenger's accepted taxi
GET    /api/v1/ride-requests/accepted-passengers   -- driver's accepted requests
GET    /api/v1/ride-requests/{request_id}          -- one request
PATCH  /api/v1/ride-requests/{request_id}/accept   -- accept (driver)
PATCH  /api/v1/ride-requests/{request_id}/cancel   -- give back to pending (driver)
DELETE /api/v1/ride-requests/{request_id}          -- cancel (passenger)

Acceptance is first-wins: when two drivers race, the loser gets
``400 Request is no longer pending.``
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from taxidispatch.api.dependencies import (
    DRIVER,
    Principal,
    get_dispatch_service,
    get_principal,
    require_driver,
    require_passenger,
)
from taxidispatch.api.schemas import (
    AcceptedPassengerResponse,
    AcceptedTaxiResponse,
    CreatedRequestResponse,
    MessageResponse,
    NearbyRequestsResponse,
    PickupRequestCreate,
    RideRequestCreate,
    RideRequestResponse,
    TaxiResponse,
)
from taxidispatch.services.dispatch import CreatedRequest, DispatchService

router = APIRouter(prefix="/ride-requests", tags=["ride-requests"])


def _created(created: CreatedRequest) -> CreatedRequestResponse:
    return CreatedRequestResponse(
        request=RideRequestResponse.model_validate(created.request),
        route_name=created.route.name,
        notified_drivers=created.notified_drivers,
    )


@router.post(
    "/ride",
    status_code=201,
    response_model=CreatedRequestResponse,
    summary="Request a ride between two stops",
)
async def create_ride_request(
    body: RideRequestCreate,
    principal: Principal = Depends(require_passenger),
    service: DispatchService = Depends(get_dispatch_service),
):
    created = await service.create_ride_request(
        principal.user_id, body.starting_stop, body.destination_stop
    )
    return _created(created)


@router.post(
    "/pickup",
    status_code=201,
    response_model=CreatedRequestResponse,
    summary="Request a pickup at a stop",
)
async def create_pickup_request(
    body: PickupRequestCreate,
    principal: Principal = Depends(require_passenger),
    service: DispatchService = Depends(get_dispatch_service),
):
    created = await service.create_pickup_request(principal.user_id, body.starting_stop)
    return _created(created)


@router.get(
    "/nearby",
    response_model=NearbyRequestsResponse,
    summary="Pending requests the driver's taxi can serve now",
)
async def nearby_requests(
    principal: Principal = Depends(require_driver),
    service: DispatchService = Depends(get_dispatch_service),
):
    nearby = await service.nearby_requests(principal.user_id)
    return NearbyRequestsResponse.model_validate(nearby)


@router.get(
    "/accepted-taxi",
    response_model=AcceptedTaxiResponse,
    summary="The taxi that accepted the passenger's request",
)
async def accepted_taxi(
    principal: Principal = Depends(require_passenger),
    service: DispatchService = Depends(get_dispatch_service),
):
    accepted = await service.accepted_taxi_for_passenger(principal.user_id)
    if accepted is None:
        return AcceptedTaxiResponse(message="Your ride request is still pending.")
    return AcceptedTaxiResponse(
        request=RideRequestResponse.model_validate(accepted.request),
        taxi=TaxiResponse(**accepted.taxi.view()),
    )


@router.get(
    "/accepted-passengers",
    response_model=list[AcceptedPassengerResponse],
    summary="Requests the driver's taxi has accepted",
)
async def accepted_passengers(
    principal: Principal = Depends(require_driver),
    service: DispatchService = Depends(get_dispatch_service),
):
    accepted = await service.accepted_passengers_for_driver(principal.user_id)
    return [
        AcceptedPassengerResponse(
            request=RideRequestResponse.model_validate(a.request),
            route_name=a.route.name,
        )
        for a in accepted
    ]


@router.get(
    "/{request_id}",
    response_model=RideRequestResponse,
    summary="Get a ride request",
)
async def get_request(
    request_id: int,
    principal: Principal = Depends(get_principal),
    service: DispatchService = Depends(get_dispatch_service),
):
    request = await service.get_request(request_id)
    if request.passenger_id != principal.user_id and not (
        principal.has_role(DRIVER) or principal.is_admin
    ):
        raise HTTPException(status_code=403, detail="Not allowed to view this request.")
    return RideRequestResponse.model_validate(request)


@router.patch(
    "/{request_id}/accept",
    response_model=RideRequestResponse,
    summary="Accept a pending request",
)
async def accept_request(
    request_id: int,
    principal: Principal = Depends(require_driver),
    service: DispatchService = Depends(get_dispatch_service),
):
    request = await service.accept(request_id, principal.user_id)
    return RideRequestResponse.model_validate(request)


@router.patch(
    "/{request_id}/cancel",
    response_model=RideRequestResponse,
    summary="Give an accepted request back to pending",
)
async def cancel_by_driver(
    request_id: int,
    principal: Principal = Depends(require_driver),
    service: DispatchService = Depends(get_dispatch_service),
):
    request = await service.cancel_by_driver(request_id, principal.user_id)
    return RideRequestResponse.model_validate(request)


@router.delete(
    "/{request_id}",
    response_model=MessageResponse,
    summary="Cancel a request",
)
async def cancel_by_passenger(
    request_id: int,
    principal: Principal = Depends(require_passenger),
    service: DispatchService = Depends(get_dispatch_service),
):
    await service.cancel_by_passenger(request_id, principal.user_id)
    return MessageResponse(message="Ride request cancelled successfully.")
