"""
Taxi Registry
=============

Driver-facing mutations of a taxi's externally visible state (status,
current stop, load, direction) plus registration, detail edits, deletion
and the passenger search.

Every mutation is one unit of work: load, validate, write, commit.  Only
after the commit is the new taxi view broadcast to the taxi's room, so a
failed delivery never affects the stored state.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxidispatch.config import settings
from taxidispatch.domain.eligibility import search_candidates
from taxidispatch.domain.entities import Stop, TaxiState
from taxidispatch.domain.enums import Direction, TaxiStatus
from taxidispatch.domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from taxidispatch.domain.load_policy import derive_status, validate_load
from taxidispatch.infrastructure.models import TaxiModel
from taxidispatch.infrastructure.repositories import (
    RideRequestRepository,
    RouteRepository,
    TaxiRepository,
)
from taxidispatch.realtime import events
from taxidispatch.realtime.fanout import RealtimeFanout
from taxidispatch.services.announcer import RequestAnnouncer

logger = logging.getLogger(__name__)


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {allowed}."
        ) from None


def _state(taxi: TaxiModel) -> TaxiState:
    return TaxiState(taxi=taxi.to_entity(), route=taxi.route.to_entity())


class TaxiService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fanout: RealtimeFanout,
        announcer: RequestAnnouncer,
        almost_full_ratio: float = settings.almost_full_ratio,
    ):
        self._sessions = session_factory
        self._fanout = fanout
        self._announcer = announcer
        self._ratio = almost_full_ratio

    # ── Helpers ───────────────────────────────────────────────────

    @staticmethod
    async def _owned(
        session: AsyncSession, taxi_id: int, driver_id: str
    ) -> TaxiModel:
        taxi = await TaxiRepository(session).get_by_id(taxi_id)
        if taxi is None:
            raise NotFoundError(f"Taxi with ID '{taxi_id}' not found.")
        if taxi.driver_id != str(driver_id):
            raise ForbiddenError("You are not authorized to update this taxi.")
        return taxi

    async def _commit_and_publish(
        self, session: AsyncSession, taxi: TaxiModel
    ) -> TaxiState:
        await session.flush()
        await session.refresh(taxi)
        state = _state(taxi)
        await session.commit()
        await self._fanout.broadcast_to_room(
            taxi.id, events.TAXI_UPDATE, events.taxi_update_payload(state)
        )
        return state

    # ── Registration & queries ────────────────────────────────────

    async def create(
        self,
        driver_id: str,
        number_plate: str,
        route_name: str,
        capacity: int,
        current_stop: str,
        allow_return_pickups: bool = False,
    ) -> TaxiState:
        if not number_plate or not route_name or not current_stop:
            raise ValidationError(
                "numberPlate, routeName, capacity, and currentStop are required."
            )
        if capacity is None or capacity <= 0:
            raise ValidationError("Capacity must be a positive number.")

        async with self._sessions() as session:
            repo = TaxiRepository(session)
            if await repo.get_by_plate(number_plate):
                raise ConflictError(
                    f"Taxi with number plate '{number_plate}' already exists."
                )
            route = await RouteRepository(session).get_by_name(route_name)
            if route is None:
                raise NotFoundError(f"Route '{route_name}' not found.")
            route.to_entity().require_stop_order(current_stop)

            taxi = await repo.create(
                TaxiModel(
                    number_plate=number_plate,
                    route_id=route.id,
                    route=route,
                    driver_id=str(driver_id),
                    capacity=capacity,
                    current_load=0,
                    current_stop=current_stop,
                    direction=Direction.FORWARD,
                    allow_return_pickups=bool(allow_return_pickups),
                    status=TaxiStatus.NOT_AVAILABLE,
                )
            )
            await session.refresh(taxi)
            state = _state(taxi)
            await session.commit()

        logger.info(
            "Taxi %s (%s) registered by driver %s on route %s",
            state.taxi.id,
            number_plate,
            driver_id,
            route_name,
        )
        return state

    async def get(self, taxi_id: int) -> TaxiState:
        async with self._sessions() as session:
            taxi = await TaxiRepository(session).get_by_id(taxi_id)
            if taxi is None:
                raise NotFoundError(f"Taxi with ID '{taxi_id}' not found.")
            return _state(taxi)

    async def list_for_driver(self, driver_id: str) -> list[TaxiState]:
        async with self._sessions() as session:
            taxis = await TaxiRepository(session).list_for_driver(str(driver_id))
            return [_state(t) for t in taxis]

    async def stops_for_taxi(self, taxi_id: int) -> tuple[Direction, list[Stop]]:
        """Stops of the taxi's route in its current direction of travel."""
        state = await self.get(taxi_id)
        return state.taxi.direction, state.route.ordered_stops(state.taxi.direction)

    async def search(self, start: str, end: str) -> list[TaxiState]:
        if not start or not end:
            raise ValidationError(
                "Both startLocation and endLocation are required."
            )
        if start == end:
            raise ValidationError("Start and end locations cannot be the same.")

        async with self._sessions() as session:
            routes = await RouteRepository(session).find_containing_stops([start, end])
            if not routes:
                raise NotFoundError(
                    f"No routes found covering both '{start}' and '{end}'."
                )
            repo = TaxiRepository(session)
            found: list[TaxiState] = []
            for route_model in routes:
                route = route_model.to_entity()
                taxis = [t.to_entity() for t in await repo.list_on_route(route.id)]
                for taxi in search_candidates(route, taxis, start, end):
                    found.append(TaxiState(taxi=taxi, route=route))

        if not found:
            raise NotFoundError(
                "No taxis found heading in the right direction or allowing "
                "pickups for your trip."
            )
        return found

    # ── Mutations ─────────────────────────────────────────────────

    async def update_status(
        self, taxi_id: int, driver_id: str, status: Union[TaxiStatus, str]
    ) -> TaxiState:
        new_status = _parse_enum(TaxiStatus, status, "status")
        async with self._sessions() as session:
            taxi = await self._owned(session, taxi_id, driver_id)
            taxi.status = new_status
            return await self._commit_and_publish(session, taxi)

    async def update_stop(
        self, taxi_id: int, driver_id: str, stop_name: str
    ) -> TaxiState:
        if not stop_name:
            raise ValidationError("'currentStop' name is required.")
        async with self._sessions() as session:
            taxi = await self._owned(session, taxi_id, driver_id)
            route = taxi.route.to_entity()
            if route.stop_order(stop_name) is None:
                raise ValidationError(
                    f"Stop '{stop_name}' is not a valid stop on this taxi's "
                    f"route ('{route.name}')."
                )
            taxi.current_stop = stop_name
            return await self._commit_and_publish(session, taxi)

    async def advance_stop(self, taxi_id: int, driver_id: str) -> TaxiState:
        """Move the taxi one stop along its current direction."""
        async with self._sessions() as session:
            taxi = await self._owned(session, taxi_id, driver_id)
            route = taxi.route.to_entity()
            direction = Direction(taxi.direction)
            if route.stop_order(taxi.current_stop) is None:
                raise ValidationError(
                    "Taxi's current stop is inconsistent with its route."
                )
            next_stop = route.next_stop(taxi.current_stop, direction)
            if next_stop is None:
                raise ConflictError(
                    f"Already at the end of the route ({direction.value})."
                )
            taxi.current_stop = next_stop
            return await self._commit_and_publish(session, taxi)

    async def update_load(
        self, taxi_id: int, driver_id: str, load: int
    ) -> TaxiState:
        if load is None:
            raise ValidationError("Invalid or missing 'currentLoad' value.")
        async with self._sessions() as session:
            taxi = await self._owned(session, taxi_id, driver_id)
            validate_load(load, taxi.capacity)
            previous = TaxiStatus(taxi.status)
            taxi.current_load = load
            taxi.status = derive_status(previous, load, taxi.capacity, self._ratio)
            if taxi.status != previous:
                logger.info(
                    "Taxi %s status derived from load %d/%d: %s -> %s",
                    taxi.id,
                    load,
                    taxi.capacity,
                    previous.value,
                    TaxiStatus(taxi.status).value,
                )
            return await self._commit_and_publish(session, taxi)

    async def update_direction(
        self, taxi_id: int, driver_id: str, direction: Union[Direction, str]
    ) -> TaxiState:
        new_direction = _parse_enum(Direction, direction, "direction")
        async with self._sessions() as session:
            taxi = await self._owned(session, taxi_id, driver_id)
            if Direction(taxi.direction) == new_direction:
                return _state(taxi)
            taxi.direction = new_direction
            return await self._commit_and_publish(session, taxi)

    async def update_details(
        self,
        taxi_id: int,
        driver_id: str,
        route_name: Optional[str] = None,
        capacity: Optional[int] = None,
        allow_return_pickups: Optional[bool] = None,
    ) -> TaxiState:
        async with self._sessions() as session:
            taxi = await self._owned(session, taxi_id, driver_id)
            changed = False

            if route_name and route_name != taxi.route.name:
                route = await RouteRepository(session).get_by_name(route_name)
                if route is None:
                    raise NotFoundError(f"Route '{route_name}' not found.")
                if route.to_entity().stop_order(taxi.current_stop) is None:
                    raise ValidationError(
                        f"Current stop '{taxi.current_stop}' is not valid on the "
                        f"new route '{route_name}'. Please update the stop first "
                        "or choose a different route."
                    )
                held = await RideRequestRepository(session).count_for_taxi(taxi.id)
                if held:
                    raise ConflictError(
                        "Cannot change route while ride requests are assigned "
                        "to this taxi."
                    )
                taxi.route_id = route.id
                taxi.route = route
                changed = True

            if capacity is not None and capacity != taxi.capacity:
                if capacity <= 0:
                    raise ValidationError("Capacity must be a positive number.")
                if capacity < taxi.current_load:
                    raise ValidationError(
                        f"Capacity ({capacity}) cannot be below the current "
                        f"load ({taxi.current_load})."
                    )
                taxi.capacity = capacity
                changed = True

            if (
                allow_return_pickups is not None
                and bool(allow_return_pickups) != taxi.allow_return_pickups
            ):
                taxi.allow_return_pickups = bool(allow_return_pickups)
                changed = True

            if not changed:
                return _state(taxi)
            return await self._commit_and_publish(session, taxi)

    async def delete(
        self, taxi_id: int, user_id: str, is_admin: bool = False
    ) -> str:
        """
        Remove a taxi.  Requests it had accepted go back to pending in the
        same transaction; their passengers are told and the requests are
        re-announced once the deletion has committed.
        """
        async with self._sessions() as session:
            repo = TaxiRepository(session)
            # Locked so an accept in flight commits before the cascade reads
            taxi = await repo.get_by_id(taxi_id, for_update=True)
            if taxi is None:
                raise NotFoundError(f"Taxi with ID '{taxi_id}' not found.")
            if not is_admin and taxi.driver_id != str(user_id):
                raise ForbiddenError("You are not authorized to delete this taxi.")

            requests_repo = RideRequestRepository(session)
            held = {
                r.id: (r.to_entity(), r.route.to_entity())
                for r in await requests_repo.list_accepted_for_taxi(taxi.id)
            }
            reverted_ids = await requests_repo.revert_all_for_taxi(taxi.id)
            number_plate = taxi.number_plate
            driver_id = taxi.driver_id
            await repo.delete(taxi)
            await session.commit()

        logger.info(
            "Taxi %s (%s) deleted; %d request(s) reverted to pending",
            taxi_id,
            number_plate,
            len(reverted_ids),
        )
        await self._fanout.broadcast_to_room(
            taxi_id, events.TAXI_DELETED, events.taxi_deleted_payload(taxi_id)
        )

        for request_id in reverted_ids:
            if request_id not in held:
                logger.warning(
                    "Request %s referenced deleted taxi %s without being accepted",
                    request_id,
                    taxi_id,
                )
                continue
            request, route = held[request_id]
            request.revert()
            await self._fanout.notify_user(
                request.passenger_id,
                events.DRIVER_CANCELLED,
                events.driver_cancelled_payload(
                    request,
                    "The assigned taxi was removed. We are looking for another driver.",
                ),
            )
            await self._announcer.announce(request, route, exclude_driver_id=driver_id)
        return number_plate

