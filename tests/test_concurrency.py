"""
Concurrency safety tests.

Demonstrates:
1. Two drivers racing to accept one request: exactly one wins.
2. A stale read cannot overwrite a committed acceptance (compare-and-set).
3. Racing cancellations: the first commit wins, the loser gets an error.
4. The assignment invariant is backed by the database itself.
5. A taxi deleted or changed while an accept is in flight makes it lose.
6. Racing creates cannot give a passenger two requests on one route.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from taxidispatch.domain.enums import RequestStatus, RequestType, TaxiStatus
from taxidispatch.domain.errors import (
    ConflictError,
    NotFoundError,
    RequestNoLongerPending,
)
from taxidispatch.infrastructure.models import RideRequestModel, TaxiModel
from taxidispatch.infrastructure.repositories import (
    RideRequestRepository,
    TaxiRepository,
)
from taxidispatch.realtime import events
from taxidispatch.services.dispatch import CreatedRequest


class TestAcceptRace:
    @pytest.mark.asyncio
    async def test_concurrent_accepts_have_one_winner(
        self, dispatch_service, make_taxi, connect, transport
    ):
        taxi_1 = await make_taxi("d1", "A")
        taxi_2 = await make_taxi("d2", "A")
        await connect("p1")
        created = await dispatch_service.create_ride_request("p1", "B", "D")

        results = await asyncio.gather(
            dispatch_service.accept(created.request.id, "d1"),
            dispatch_service.accept(created.request.id, "d2"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], RequestNoLongerPending)

        stored = await dispatch_service.get_request(created.request.id)
        assert stored.status == RequestStatus.ACCEPTED
        assert stored.taxi_id == winners[0].taxi_id
        assert stored.taxi_id in (taxi_1.id, taxi_2.id)
        assert transport.events_for("conn-p1") == [events.REQUEST_ACCEPTED]

    @pytest.mark.asyncio
    async def test_stale_read_cannot_overwrite_acceptance(
        self, session_factory, dispatch_service, make_taxi
    ):
        taxi_1 = await make_taxi("d1", "A")
        taxi_2 = await make_taxi("d2", "A")
        created = await dispatch_service.create_ride_request("p1", "B", "D")

        async with session_factory() as session:
            repo = RideRequestRepository(session)
            seen = await repo.get_by_id(created.request.id)
            assert seen.status == RequestStatus.PENDING

            # another driver commits first
            await dispatch_service.accept(created.request.id, "d1")

            assert await repo.mark_accepted(
                created.request.id, taxi_2.id, TaxiStatus.ON_TRIP
            ) is False
            await session.rollback()

        stored = await dispatch_service.get_request(created.request.id)
        assert stored.taxi_id == taxi_1.id

    @pytest.mark.asyncio
    async def test_pickup_acceptance_rolled_back_when_taxi_left_roaming(
        self, session_factory, dispatch_service, make_taxi
    ):
        """The taxi compare-and-set fails: the request must stay pending."""
        taxi = await make_taxi("d1", "A", status=TaxiStatus.ROAMING)
        created = await dispatch_service.create_pickup_request("p1", "B")

        async with session_factory() as session:
            repo = RideRequestRepository(session)
            assert await repo.mark_accepted(
                created.request.id, taxi.id, TaxiStatus.ROAMING
            )
            assert not await TaxiRepository(session).compare_and_set_status(
                taxi.id, TaxiStatus.ON_TRIP, TaxiStatus.ROAMING
            )
            await session.rollback()

        stored = await dispatch_service.get_request(created.request.id)
        assert stored.status == RequestStatus.PENDING
        assert stored.taxi_id is None


class TestCancelRace:
    @pytest.mark.asyncio
    async def test_driver_cancel_after_passenger_cancel(
        self, dispatch_service, make_taxi
    ):
        await make_taxi("d1", "A")
        created = await dispatch_service.create_ride_request("p1", "B", "D")
        await dispatch_service.accept(created.request.id, "d1")

        await dispatch_service.cancel_by_passenger(created.request.id, "p1")
        with pytest.raises(NotFoundError):
            await dispatch_service.cancel_by_driver(created.request.id, "d1")

    @pytest.mark.asyncio
    async def test_passenger_delete_guarded_by_observed_status(
        self, session_factory, dispatch_service, make_taxi
    ):
        """A passenger who saw 'pending' cannot delete a request accepted since."""
        await make_taxi("d1", "A")
        created = await dispatch_service.create_ride_request("p1", "B", "D")
        await dispatch_service.accept(created.request.id, "d1")

        async with session_factory() as session:
            deleted = await RideRequestRepository(session).delete_if(
                created.request.id, "p1", RequestStatus.PENDING
            )
            await session.commit()

        assert deleted is False
        stored = await dispatch_service.get_request(created.request.id)
        assert stored.status == RequestStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_concurrent_driver_cancels_revert_once(
        self, dispatch_service, make_taxi, connect, transport
    ):
        await make_taxi("d1", "A")
        await connect("p1")
        created = await dispatch_service.create_ride_request("p1", "B", "D")
        await dispatch_service.accept(created.request.id, "d1")
        transport.clear()

        results = await asyncio.gather(
            dispatch_service.cancel_by_driver(created.request.id, "d1"),
            dispatch_service.cancel_by_driver(created.request.id, "d1"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        assert transport.events_for("conn-p1") == [events.DRIVER_CANCELLED]


class TestAssignmentInvariant:
    @pytest.mark.asyncio
    async def test_accepted_without_taxi_rejected_by_database(
        self, session_factory, routes
    ):
        async with session_factory() as session:
            session.add(
                RideRequestModel(
                    passenger_id="p1",
                    route_id=routes["R1"].id,
                    request_type=RequestType.RIDE,
                    starting_stop="A",
                    destination_stop="B",
                    status=RequestStatus.ACCEPTED,
                    taxi_id=None,
                )
            )
            with pytest.raises(IntegrityError):
                await session.flush()

    @pytest.mark.asyncio
    async def test_load_above_capacity_rejected_by_database(
        self, session_factory, routes
    ):
        async with session_factory() as session:
            session.add(
                TaxiModel(
                    number_plate="X",
                    route_id=routes["R1"].id,
                    driver_id="d1",
                    capacity=4,
                    current_load=5,
                    current_stop="A",
                )
            )
            with pytest.raises(IntegrityError):
                await session.flush()


def _before_accept_write(monkeypatch, action):
    """Run *action* after the accept validated the taxi, right before it writes."""
    original = RideRequestRepository.mark_accepted

    async def mark_accepted(self, *args, **kwargs):
        await action()
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(RideRequestRepository, "mark_accepted", mark_accepted)


class TestAcceptAgainstTaxiChanges:
    @pytest.mark.asyncio
    async def test_taxi_deleted_mid_accept_leaves_request_pending(
        self, monkeypatch, dispatch_service, taxi_service, make_taxi
    ):
        taxi = await make_taxi("d1", "A")
        created = await dispatch_service.create_ride_request("p1", "B", "D")
        _before_accept_write(monkeypatch, lambda: taxi_service.delete(taxi.id, "d1"))

        with pytest.raises(NotFoundError, match="Taxi for this driver"):
            await dispatch_service.accept(created.request.id, "d1")

        stored = await dispatch_service.get_request(created.request.id)
        assert stored.status == RequestStatus.PENDING
        assert stored.taxi_id is None

    @pytest.mark.asyncio
    async def test_taxi_status_change_mid_accept_is_a_conflict(
        self, monkeypatch, dispatch_service, taxi_service, make_taxi
    ):
        taxi = await make_taxi("d1", "A")
        created = await dispatch_service.create_ride_request("p1", "B", "D")
        _before_accept_write(
            monkeypatch,
            lambda: taxi_service.update_status(taxi.id, "d1", "not_available"),
        )

        with pytest.raises(ConflictError, match="changed while accepting"):
            await dispatch_service.accept(created.request.id, "d1")

        stored = await dispatch_service.get_request(created.request.id)
        assert stored.status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_database_rejection_is_a_conflict(
        self, monkeypatch, dispatch_service, make_taxi
    ):
        await make_taxi("d1", "A")
        created = await dispatch_service.create_ride_request("p1", "B", "D")

        async def rejected(self, *args, **kwargs):
            raise IntegrityError(
                "UPDATE ride_requests", {}, Exception("foreign key violation")
            )

        monkeypatch.setattr(RideRequestRepository, "mark_accepted", rejected)
        with pytest.raises(ConflictError, match="changed while accepting"):
            await dispatch_service.accept(created.request.id, "d1")

        stored = await dispatch_service.get_request(created.request.id)
        assert stored.status == RequestStatus.PENDING


class TestOneActiveRequestPerRoute:
    @pytest.mark.asyncio
    async def test_concurrent_creates_have_one_winner(self, dispatch_service):
        results = await asyncio.gather(
            dispatch_service.create_ride_request("p1", "A", "C"),
            dispatch_service.create_ride_request("p1", "B", "D"),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, CreatedRequest)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(created) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)

    @pytest.mark.asyncio
    async def test_create_slipping_past_the_read_check_is_a_conflict(
        self, monkeypatch, dispatch_service
    ):
        await dispatch_service.create_ride_request("p1", "A", "C")

        async def nothing_active(self, passenger_id, route_id):
            return None

        monkeypatch.setattr(
            RideRequestRepository, "get_active_for_passenger", nothing_active
        )
        with pytest.raises(ConflictError, match="already have an active"):
            await dispatch_service.create_pickup_request("p1", "B")

    @pytest.mark.asyncio
    async def test_second_active_request_rejected_by_database(
        self, session_factory, routes
    ):
        async with session_factory() as session:
            for start in ("A", "B"):
                session.add(
                    RideRequestModel(
                        passenger_id="p1",
                        route_id=routes["R1"].id,
                        request_type=RequestType.PICKUP,
                        starting_stop=start,
                        status=RequestStatus.PENDING,
                    )
                )
            with pytest.raises(IntegrityError):
                await session.flush()
