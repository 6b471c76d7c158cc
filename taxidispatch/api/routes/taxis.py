"""
Taxi registry endpoints
=======================

POST   /api/v1/taxis                              -- register a taxi (driver)
GET    /api/v1/taxis/mine                         -- the caller's taxis (driver)
GET    /api/v1/taxis/search?start=..&end=..       -- taxis for a trip
GET    /api/v1/taxis/{taxi_id}                    -- full taxi view
GET    /api/v1/taxis/{taxi_id}/stops              -- stops in travel direction
PUT    /api/v1/taxis/{taxi_id}/status             -- set status
PUT    /api/v1/taxis/{taxi_id}/current-stop       -- set current stop
POST   /api/v1/taxis/{taxi_id}/current-stop/next  -- advance one stop
PUT    /api/v1/taxis/{taxi_id}/load               -- set load (re-derives status)
PUT    /api/v1/taxis/{taxi_id}/direction          -- set direction
PATCH  /api/v1/taxis/{taxi_id}                    -- route / capacity / return pickups
DELETE /api/v1/taxis/{taxi_id}                    -- remove (owner or admin)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from taxidispatch.api.dependencies import (
    Principal,
    get_principal,
    get_taxi_service,
    require_driver,
)
from taxidispatch.api.schemas import (
    DirectionUpdate,
    LoadUpdate,
    MessageResponse,
    StatusUpdate,
    StopResponse,
    StopUpdate,
    TaxiCreate,
    TaxiDetailsUpdate,
    TaxiResponse,
    TaxiStopsResponse,
)
from taxidispatch.domain.entities import TaxiState
from taxidispatch.services.taxis import TaxiService

router = APIRouter(prefix="/taxis", tags=["taxis"])


def _view(state: TaxiState) -> TaxiResponse:
    return TaxiResponse(**state.view())


@router.post(
    "",
    status_code=201,
    response_model=TaxiResponse,
    summary="Register a taxi",
)
async def create_taxi(
    body: TaxiCreate,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    state = await service.create(
        driver_id=principal.user_id,
        number_plate=body.number_plate,
        route_name=body.route_name,
        capacity=body.capacity,
        current_stop=body.current_stop,
        allow_return_pickups=body.allow_return_pickups,
    )
    return _view(state)


@router.get("/mine", response_model=list[TaxiResponse], summary="List my taxis")
async def list_my_taxis(
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    return [_view(s) for s in await service.list_for_driver(principal.user_id)]


@router.get(
    "/search",
    response_model=list[TaxiResponse],
    summary="Find taxis serving a trip",
    description=(
        "Forward trips match forward taxis that have not passed the start "
        "stop.  Return trips match return taxis that allow return pickups."
    ),
)
async def search_taxis(
    start: str = Query(..., min_length=1),
    end: str = Query(..., min_length=1),
    _: Principal = Depends(get_principal),
    service: TaxiService = Depends(get_taxi_service),
):
    return [_view(s) for s in await service.search(start, end)]


@router.get("/{taxi_id}", response_model=TaxiResponse, summary="Get a taxi")
async def get_taxi(
    taxi_id: int,
    _: Principal = Depends(get_principal),
    service: TaxiService = Depends(get_taxi_service),
):
    return _view(await service.get(taxi_id))


@router.get(
    "/{taxi_id}/stops",
    response_model=TaxiStopsResponse,
    summary="Stops in the taxi's direction of travel",
)
async def get_taxi_stops(
    taxi_id: int,
    _: Principal = Depends(get_principal),
    service: TaxiService = Depends(get_taxi_service),
):
    direction, stops = await service.stops_for_taxi(taxi_id)
    return TaxiStopsResponse(
        direction=direction,
        stops=[StopResponse(name=s.name, order=s.order) for s in stops],
    )


@router.put("/{taxi_id}/status", response_model=TaxiResponse, summary="Set status")
async def update_status(
    taxi_id: int,
    body: StatusUpdate,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    return _view(await service.update_status(taxi_id, principal.user_id, body.status))


@router.put(
    "/{taxi_id}/current-stop",
    response_model=TaxiResponse,
    summary="Set the current stop",
)
async def update_stop(
    taxi_id: int,
    body: StopUpdate,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    return _view(
        await service.update_stop(taxi_id, principal.user_id, body.current_stop)
    )


@router.post(
    "/{taxi_id}/current-stop/next",
    response_model=TaxiResponse,
    summary="Advance to the next stop",
)
async def advance_stop(
    taxi_id: int,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    return _view(await service.advance_stop(taxi_id, principal.user_id))


@router.put("/{taxi_id}/load", response_model=TaxiResponse, summary="Set the load")
async def update_load(
    taxi_id: int,
    body: LoadUpdate,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    return _view(
        await service.update_load(taxi_id, principal.user_id, body.current_load)
    )


@router.put(
    "/{taxi_id}/direction",
    response_model=TaxiResponse,
    summary="Set the direction of travel",
)
async def update_direction(
    taxi_id: int,
    body: DirectionUpdate,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    return _view(
        await service.update_direction(taxi_id, principal.user_id, body.direction)
    )


@router.patch("/{taxi_id}", response_model=TaxiResponse, summary="Edit taxi details")
async def update_details(
    taxi_id: int,
    body: TaxiDetailsUpdate,
    principal: Principal = Depends(require_driver),
    service: TaxiService = Depends(get_taxi_service),
):
    state = await service.update_details(
        taxi_id,
        principal.user_id,
        route_name=body.route_name,
        capacity=body.capacity,
        allow_return_pickups=body.allow_return_pickups,
    )
    return _view(state)


@router.delete(
    "/{taxi_id}",
    response_model=MessageResponse,
    summary="Delete a taxi",
    description=(
        "Requests the taxi had accepted return to pending and are offered "
        "to other drivers."
    ),
)
async def delete_taxi(
    taxi_id: int,
    principal: Principal = Depends(get_principal),
    service: TaxiService = Depends(get_taxi_service),
):
    number_plate = await service.delete(
        taxi_id, principal.user_id, is_admin=principal.is_admin
    )
    return MessageResponse(message=f"Taxi {number_plate} deleted successfully.")
