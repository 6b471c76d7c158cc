"""
Dispatch Transition Engine
==========================

Ride request lifecycle::

    create ──► PENDING ──accept──► ACCEPTED
                  ▲                   │
                  └──driver cancel────┘
    passenger cancel (PENDING or ACCEPTED) ──► row deleted

Concurrency safety
------------------
* **Accept** is ``UPDATE ... SET accepted WHERE id = :id AND status =
  'pending'``.  Two drivers racing on one request both pass validation,
  but only one UPDATE matches a row; the loser gets
  ``RequestNoLongerPending``.
  The same UPDATE also requires the taxi to still exist on the route in
  the status that was validated; the taxi row is locked for the accept so
  a concurrent taxi deletion either waits for it or makes it lose.
* **Creation** relies on a unique (passenger, route) constraint: two
  racing creates for one passenger cannot both insert.
* **Driver cancel** reverts with ``WHERE status = 'accepted' AND taxi_id =
  :taxi`` and **passenger cancel** deletes with ``WHERE status =
  <observed>``, so whichever of two racing cancels commits first wins and
  the other gets a not-found / conflict error.
* Pickup acceptance and pickup cancellation flip the taxi between ROAMING
  and ON_TRIP with the same compare-and-set pattern, inside the request's
  transaction.

Notifications are sent only after the commit.  They are best-effort and
never roll a transition back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxidispatch.domain.eligibility import check_acceptance, nearby_requests_for_taxi
from taxidispatch.domain.entities import (
    NearbyRequests,
    RideRequest,
    Route,
    Taxi,
    TaxiState,
)
from taxidispatch.domain.enums import (
    REQUIRED_TAXI_STATUS,
    RequestStatus,
    RequestType,
    TaxiStatus,
)
from taxidispatch.domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RequestNoLongerPending,
    ValidationError,
)
from taxidispatch.infrastructure.models import RideRequestModel, TaxiModel
from taxidispatch.infrastructure.repositories import (
    RideRequestRepository,
    TaxiRepository,
)
from taxidispatch.realtime import events
from taxidispatch.realtime.fanout import RealtimeFanout
from taxidispatch.services.announcer import RequestAnnouncer
from taxidispatch.services.catalog import find_route_containing_stops, load_route

logger = logging.getLogger(__name__)

ACTIVE_REQUEST_EXISTS = (
    "You already have an active ride or pickup request on this route."
)


@dataclass
class CreatedRequest:
    request: RideRequest
    route: Route
    notified_drivers: int


@dataclass
class AcceptedTaxi:
    request: RideRequest
    taxi: TaxiState


@dataclass
class AcceptedPassenger:
    request: RideRequest
    route: Route


class DispatchService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fanout: RealtimeFanout,
        announcer: RequestAnnouncer,
    ):
        self._sessions = session_factory
        self._fanout = fanout
        self._announcer = announcer

    # ── Helpers ───────────────────────────────────────────────────

    @staticmethod
    async def _request(session: AsyncSession, request_id: int) -> RideRequestModel:
        request = await RideRequestRepository(session).get_by_id(request_id)
        if request is None:
            raise NotFoundError("Ride request not found.")
        return request

    @staticmethod
    async def _driver_taxi(
        session: AsyncSession, driver_id: str, for_update: bool = False
    ) -> TaxiModel:
        taxi = await TaxiRepository(session).get_for_driver(
            str(driver_id), for_update=for_update
        )
        if taxi is None:
            raise NotFoundError("Taxi for this driver not found.")
        return taxi

    @staticmethod
    async def _accept_lost(
        requests: RideRequestRepository,
        taxis: TaxiRepository,
        request_id: int,
        taxi_id: int,
    ) -> None:
        """Raise the error explaining why the conditional accept matched no row."""
        status = await requests.current_status(request_id)
        if status is None:
            raise NotFoundError("Ride request not found.")
        if status != RequestStatus.PENDING:
            raise RequestNoLongerPending()
        if not await taxis.exists(taxi_id):
            raise NotFoundError("Taxi for this driver not found.")
        raise ConflictError("Taxi changed while accepting; please refresh.")

    async def _publish_taxi(self, state: TaxiState) -> None:
        await self._fanout.broadcast_to_room(
            state.taxi.id, events.TAXI_UPDATE, events.taxi_update_payload(state)
        )

    # ── Creation ──────────────────────────────────────────────────

    async def create_ride_request(
        self, passenger_id: str, starting_stop: str, destination_stop: str
    ) -> CreatedRequest:
        if not starting_stop or not destination_stop:
            raise ValidationError(
                "Both starting and destination stops are required for a ride request."
            )
        return await self._create(
            str(passenger_id), RequestType.RIDE, starting_stop, destination_stop
        )

    async def create_pickup_request(
        self, passenger_id: str, starting_stop: str
    ) -> CreatedRequest:
        if not starting_stop:
            raise ValidationError("Starting stop is required for pickup requests.")
        return await self._create(str(passenger_id), RequestType.PICKUP, starting_stop, "")

    async def _create(
        self,
        passenger_id: str,
        request_type: RequestType,
        starting_stop: str,
        destination_stop: str,
    ) -> CreatedRequest:
        stops = [starting_stop]
        if request_type == RequestType.RIDE:
            stops.append(destination_stop)

        async with self._sessions() as session:
            route = await find_route_containing_stops(session, stops)
            if request_type == RequestType.RIDE and (
                route.require_stop_order(destination_stop)
                <= route.require_stop_order(starting_stop)
            ):
                raise ValidationError("Invalid stop order for ride request.")

            repo = RideRequestRepository(session)
            if await repo.get_active_for_passenger(passenger_id, route.id):
                raise ConflictError(ACTIVE_REQUEST_EXISTS)

            try:
                model = await repo.create(
                    RideRequestModel(
                        passenger_id=passenger_id,
                        route_id=route.id,
                        request_type=request_type,
                        starting_stop=starting_stop,
                        destination_stop=destination_stop,
                        status=RequestStatus.PENDING,
                    )
                )
                request = model.to_entity()
                await session.commit()
            except IntegrityError as exc:
                # A concurrent create for the same passenger and route won
                raise ConflictError(ACTIVE_REQUEST_EXISTS) from exc

        logger.info(
            "Passenger %s created %s request %s on route %s",
            passenger_id,
            request_type.value,
            request.id,
            route.name,
        )
        notified = await self._announcer.announce(request, route)
        return CreatedRequest(request=request, route=route, notified_drivers=notified)

    # ── Accept ────────────────────────────────────────────────────

    async def accept(self, request_id: int, driver_id: str) -> RideRequest:
        async with self._sessions() as session:
            model = await self._request(session, request_id)
            if RequestStatus(model.status) != RequestStatus.PENDING:
                raise RequestNoLongerPending()
            request = model.to_entity()

            # Row lock on PostgreSQL: a concurrent delete waits for this accept
            taxi_model = await self._driver_taxi(session, driver_id, for_update=True)
            taxi = taxi_model.to_entity()
            route = await load_route(session, request.route_id)

            check_acceptance(request, route, taxi)

            requests = RideRequestRepository(session)
            taxis = TaxiRepository(session)
            try:
                if not await requests.mark_accepted(
                    request.id, taxi.id, REQUIRED_TAXI_STATUS[request.request_type]
                ):
                    await self._accept_lost(requests, taxis, request.id, taxi.id)

                taxi_changed = False
                if request.request_type == RequestType.PICKUP:
                    # The taxi starts its trip at the pickup stop
                    if not await taxis.compare_and_set_status(
                        taxi.id,
                        TaxiStatus.ROAMING,
                        TaxiStatus.ON_TRIP,
                        current_stop=request.starting_stop,
                    ):
                        raise ConflictError("Taxi is not available for pickup requests.")
                    taxi_changed = True

                request.accept(taxi.id)
                if taxi_changed:
                    await session.refresh(taxi_model)
                    taxi = taxi_model.to_entity()
                await session.commit()
            except IntegrityError as exc:
                logger.warning(
                    "Accept of request %s by taxi %s rejected by the database: %s",
                    request.id,
                    taxi.id,
                    exc.orig,
                )
                raise ConflictError(
                    "Taxi changed while accepting; please refresh."
                ) from exc

        logger.info(
            "Request %s accepted by driver %s (taxi %s)",
            request.id,
            driver_id,
            taxi.id,
        )
        await self._fanout.notify_user(
            request.passenger_id,
            events.REQUEST_ACCEPTED,
            events.request_accepted_payload(request, taxi),
        )
        if taxi_changed:
            await self._publish_taxi(TaxiState(taxi=taxi, route=route))
        return request

    # ── Cancellation ──────────────────────────────────────────────

    async def cancel_by_passenger(self, request_id: int, passenger_id: str) -> None:
        passenger_id = str(passenger_id)
        async with self._sessions() as session:
            model = await self._request(session, request_id)
            if model.passenger_id != passenger_id:
                raise ForbiddenError("You are not authorized to cancel this request.")
            request = model.to_entity()
            requests = RideRequestRepository(session)
            if not await requests.delete_if(request.id, passenger_id, request.status):
                if await requests.current_status(request.id) is None:
                    raise NotFoundError("Ride request not found.")
                raise ConflictError(
                    "Ride request changed while cancelling; please refresh."
                )

            driver_id: Optional[str] = None
            if request.status == RequestStatus.ACCEPTED:
                if request.taxi_id is None:
                    logger.warning(
                        "Inconsistency: accepted request %s had no taxi", request.id
                    )
                else:
                    taxi = await TaxiRepository(session).get_by_id(request.taxi_id)
                    driver_id = taxi.driver_id if taxi else None
            await session.commit()

        logger.info("Passenger %s cancelled request %s", passenger_id, request.id)
        if driver_id:
            await self._fanout.notify_user(
                driver_id,
                events.PASSENGER_CANCELLED,
                events.passenger_cancelled_payload(request),
            )

    async def cancel_by_driver(self, request_id: int, driver_id: str) -> RideRequest:
        driver_id = str(driver_id)
        async with self._sessions() as session:
            model = await self._request(session, request_id)
            request = model.to_entity()
            if request.status != RequestStatus.ACCEPTED:
                raise ConflictError(
                    "Only accepted requests can be cancelled by the driver."
                )
            if request.taxi_id is None:
                logger.warning(
                    "Inconsistency: accepted request %s has no taxi assigned",
                    request.id,
                )
                raise ConflictError("Accepted request has no taxi assigned.")

            taxis = TaxiRepository(session)
            taxi_model = await taxis.get_by_id(request.taxi_id)
            if taxi_model is None or taxi_model.driver_id != driver_id:
                raise ForbiddenError("You are not authorized to cancel this request.")

            requests = RideRequestRepository(session)
            if not await requests.revert_to_pending(request.id, taxi_model.id):
                if await requests.current_status(request.id) is None:
                    raise NotFoundError("Ride request not found.")
                raise ConflictError(
                    "Ride request changed while cancelling; please refresh."
                )
            request.revert()

            taxi_state: Optional[TaxiState] = None
            if request.request_type == RequestType.PICKUP:
                if await taxis.compare_and_set_status(
                    taxi_model.id, TaxiStatus.ON_TRIP, TaxiStatus.ROAMING
                ):
                    await session.refresh(taxi_model)
                    taxi_state = TaxiState(
                        taxi=taxi_model.to_entity(), route=taxi_model.route.to_entity()
                    )
                else:
                    logger.warning(
                        "Inconsistency: taxi %s was %s when cancelling pickup "
                        "request %s; expected on_trip",
                        taxi_model.id,
                        TaxiStatus(taxi_model.status).value,
                        request.id,
                    )
            route = await load_route(session, request.route_id)
            await session.commit()

        logger.info(
            "Driver %s cancelled request %s; back to pending", driver_id, request.id
        )
        await self._fanout.notify_user(
            request.passenger_id,
            events.DRIVER_CANCELLED,
            events.driver_cancelled_payload(request),
        )
        if taxi_state is not None:
            await self._publish_taxi(taxi_state)
        await self._announcer.announce(request, route, exclude_driver_id=driver_id)
        return request

    # ── Queries ───────────────────────────────────────────────────

    async def get_request(self, request_id: int) -> RideRequest:
        async with self._sessions() as session:
            return (await self._request(session, request_id)).to_entity()

    async def nearby_requests(self, driver_id: str) -> NearbyRequests:
        async with self._sessions() as session:
            taxi_model = await self._driver_taxi(session, driver_id)
            taxi: Taxi = taxi_model.to_entity()
            if taxi.status not in (TaxiStatus.ROAMING, TaxiStatus.ON_TRIP):
                return NearbyRequests()
            route = taxi_model.route.to_entity()
            request_type = (
                RequestType.PICKUP
                if taxi.status == TaxiStatus.ROAMING
                else RequestType.RIDE
            )
            pending = await RideRequestRepository(session).list_pending_on_route(
                route.id, request_type
            )
            return nearby_requests_for_taxi(
                taxi, route, [r.to_entity() for r in pending]
            )

    async def accepted_taxi_for_passenger(
        self, passenger_id: str
    ) -> Optional[AcceptedTaxi]:
        """The passenger's accepted request and its taxi; None while pending."""
        passenger_id = str(passenger_id)
        async with self._sessions() as session:
            requests = RideRequestRepository(session)
            model = await requests.get_accepted_for_passenger(passenger_id)
            if model is None:
                if await requests.has_pending_for_passenger(passenger_id):
                    return None
                raise NotFoundError("No accepted ride request found.")
            request = model.to_entity()
            taxi = (
                await TaxiRepository(session).get_by_id(request.taxi_id)
                if request.taxi_id is not None
                else None
            )
            if taxi is None:
                logger.warning(
                    "Inconsistency: accepted request %s has no taxi record",
                    request.id,
                )
                raise NotFoundError(
                    "Taxi details not available for this accepted request."
                )
            return AcceptedTaxi(
                request=request,
                taxi=TaxiState(taxi=taxi.to_entity(), route=taxi.route.to_entity()),
            )

    async def accepted_passengers_for_driver(
        self, driver_id: str
    ) -> list[AcceptedPassenger]:
        async with self._sessions() as session:
            taxi = await self._driver_taxi(session, driver_id)
            models = await RideRequestRepository(session).list_accepted_for_taxi(
                taxi.id
            )
            return [
                AcceptedPassenger(request=m.to_entity(), route=m.route.to_entity())
                for m in models
            ]
