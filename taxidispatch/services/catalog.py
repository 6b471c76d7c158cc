"""Read-only access to the route catalog."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxidispatch.domain.entities import Route
from taxidispatch.domain.errors import NotFoundError
from taxidispatch.infrastructure.repositories import RouteRepository


async def find_route_containing_stops(
    session: AsyncSession, stop_names: Iterable[str]
) -> Route:
    names = list(stop_names)
    routes = await RouteRepository(session).find_containing_stops(names)
    if not routes:
        if len(names) > 1:
            raise NotFoundError("No route found containing both stops.")
        raise NotFoundError("No route found containing the starting stop.")
    return routes[0].to_entity()


async def load_route(session: AsyncSession, route_id: int) -> Route:
    route = await RouteRepository(session).get_by_id(route_id)
    if route is None:
        raise NotFoundError(f"Route {route_id} not found.")
    return route.to_entity()


class RouteCatalog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def list_routes(self) -> list[Route]:
        async with self._sessions() as session:
            routes = await RouteRepository(session).list_all()
            return [r.to_entity() for r in routes]

    async def get_route(self, route_id: int) -> Route:
        async with self._sessions() as session:
            return await load_route(session, route_id)

    async def find_route_containing_stops(self, stop_names: Iterable[str]) -> Route:
        async with self._sessions() as session:
            return await find_route_containing_stops(session, stop_names)

    @staticmethod
    def get_stop_order(route: Route, stop_name: str) -> int:
        order = route.stop_order(stop_name)
        if order is None:
            raise NotFoundError(
                f"Stop '{stop_name}' does not exist on route '{route.name}'."
            )
        return order
