"""
Route catalog endpoints (read-only)
===================================

GET /api/v1/routes            -- all routes with their ordered stops
GET /api/v1/routes/{route_id} -- one route
"""

from fastapi import APIRouter, Depends

from taxidispatch.api.dependencies import get_catalog, get_principal
from taxidispatch.api.schemas import RouteResponse
from taxidispatch.services.catalog import RouteCatalog

router = APIRouter(
    prefix="/routes", tags=["routes"], dependencies=[Depends(get_principal)]
)


@router.get("", response_model=list[RouteResponse], summary="List routes")
async def list_routes(catalog: RouteCatalog = Depends(get_catalog)):
    return [RouteResponse.model_validate(r) for r in await catalog.list_routes()]


@router.get("/{route_id}", response_model=RouteResponse, summary="Get a route")
async def get_route(route_id: int, catalog: RouteCatalog = Depends(get_catalog)):
    return RouteResponse.model_validate(await catalog.get_route(route_id))
