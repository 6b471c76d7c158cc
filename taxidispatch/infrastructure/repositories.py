"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Compare-and-set
---------------
State transitions that can race (accept, driver revert, passenger delete,
pickup taxi status flips) are single conditional statements of the form
``UPDATE ... WHERE id = :id AND status = :expected``.  The row count tells
the caller whether it won; nothing is read-then-written.  Accepting also
requires the taxi row to still match what was validated, so a concurrent
taxi deletion or status change makes the accept lose instead of pointing
the request at a taxi that is gone.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RideRequestModel, RouteModel, RouteStopModel, TaxiModel
from taxidispatch.domain.enums import RequestStatus, RequestType, TaxiStatus


class RouteRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> list[RouteModel]:
        result = await self.session.execute(
            select(RouteModel).order_by(RouteModel.name)
        )
        return list(result.scalars().all())

    async def get_by_id(self, route_id: int) -> Optional[RouteModel]:
        return await self.session.get(RouteModel, route_id)

    async def get_by_name(self, name: str) -> Optional[RouteModel]:
        result = await self.session.execute(
            select(RouteModel).where(RouteModel.name == name)
        )
        return result.scalar_one_or_none()

    async def find_containing_stops(
        self, stop_names: Iterable[str]
    ) -> list[RouteModel]:
        """Routes whose stop list includes every name in *stop_names*."""
        names = set(stop_names)
        route_ids = (
            select(RouteStopModel.route_id)
            .where(RouteStopModel.name.in_(names))
            .group_by(RouteStopModel.route_id)
            .having(func.count(func.distinct(RouteStopModel.name)) == len(names))
        )
        result = await self.session.execute(
            select(RouteModel)
            .where(RouteModel.id.in_(route_ids))
            .order_by(RouteModel.id)
        )
        return list(result.scalars().all())


class TaxiRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, taxi: TaxiModel) -> TaxiModel:
        self.session.add(taxi)
        await self.session.flush()
        return taxi

    async def get_by_id(
        self, taxi_id: int, for_update: bool = False
    ) -> Optional[TaxiModel]:
        return await self.session.get(TaxiModel, taxi_id, with_for_update=for_update)

    async def exists(self, taxi_id: int) -> bool:
        """Whether the row is stored right now, bypassing the identity map."""
        result = await self.session.execute(
            select(TaxiModel.id).where(TaxiModel.id == taxi_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_plate(self, number_plate: str) -> Optional[TaxiModel]:
        result = await self.session.execute(
            select(TaxiModel).where(TaxiModel.number_plate == number_plate)
        )
        return result.scalar_one_or_none()

    async def get_for_driver(
        self, driver_id: str, for_update: bool = False
    ) -> Optional[TaxiModel]:
        """The driver's active taxi: the most recently updated one."""
        query = (
            select(TaxiModel)
            .where(TaxiModel.driver_id == driver_id)
            .order_by(TaxiModel.updated_at.desc(), TaxiModel.id.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_driver(self, driver_id: str) -> list[TaxiModel]:
        result = await self.session.execute(
            select(TaxiModel)
            .where(TaxiModel.driver_id == driver_id)
            .order_by(TaxiModel.id)
        )
        return list(result.scalars().all())

    async def list_on_route(
        self, route_id: int, status: Optional[TaxiStatus] = None
    ) -> list[TaxiModel]:
        query = select(TaxiModel).where(TaxiModel.route_id == route_id)
        if status is not None:
            query = query.where(TaxiModel.status == status)
        result = await self.session.execute(query.order_by(TaxiModel.id))
        return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        taxi_id: int,
        expected: TaxiStatus,
        new: TaxiStatus,
        **values,
    ) -> bool:
        """Set *new* status (and any extra *values*) only if still *expected*."""
        result = await self.session.execute(
            update(TaxiModel)
            .where(TaxiModel.id == taxi_id, TaxiModel.status == expected)
            .values(status=new, **values)
        )
        return result.rowcount == 1

    async def delete(self, taxi: TaxiModel) -> None:
        await self.session.delete(taxi)
        await self.session.flush()


class RideRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: RideRequestModel) -> RideRequestModel:
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_by_id(self, request_id: int) -> Optional[RideRequestModel]:
        return await self.session.get(RideRequestModel, request_id)

    async def current_status(self, request_id: int) -> Optional[RequestStatus]:
        """Status as stored right now, bypassing the identity map."""
        result = await self.session.execute(
            select(RideRequestModel.status).where(RideRequestModel.id == request_id)
        )
        status = result.scalar_one_or_none()
        return RequestStatus(status) if status is not None else None

    async def get_active_for_passenger(
        self, passenger_id: str, route_id: int
    ) -> Optional[RideRequestModel]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.passenger_id == passenger_id,
                RideRequestModel.route_id == route_id,
                RideRequestModel.status.in_(
                    [RequestStatus.PENDING, RequestStatus.ACCEPTED]
                ),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_accepted_for_passenger(
        self, passenger_id: str
    ) -> Optional[RideRequestModel]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.passenger_id == passenger_id,
                RideRequestModel.status == RequestStatus.ACCEPTED,
            )
            .order_by(RideRequestModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def has_pending_for_passenger(self, passenger_id: str) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideRequestModel)
            .where(
                RideRequestModel.passenger_id == passenger_id,
                RideRequestModel.status == RequestStatus.PENDING,
            )
        )
        return (result.scalar() or 0) > 0

    async def list_pending_on_route(
        self, route_id: int, request_type: Optional[RequestType] = None
    ) -> list[RideRequestModel]:
        query = select(RideRequestModel).where(
            RideRequestModel.route_id == route_id,
            RideRequestModel.status == RequestStatus.PENDING,
        )
        if request_type is not None:
            query = query.where(RideRequestModel.request_type == request_type)
        result = await self.session.execute(
            query.order_by(RideRequestModel.created_at)
        )
        return list(result.scalars().all())

    async def list_accepted_for_taxi(self, taxi_id: int) -> list[RideRequestModel]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.taxi_id == taxi_id,
                RideRequestModel.status == RequestStatus.ACCEPTED,
            )
            .order_by(RideRequestModel.created_at)
        )
        return list(result.scalars().all())

    async def count_for_taxi(self, taxi_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideRequestModel)
            .where(RideRequestModel.taxi_id == taxi_id)
        )
        return result.scalar() or 0

    # ── Conditional transitions ───────────────────────────────────

    async def mark_accepted(
        self, request_id: int, taxi_id: int, taxi_status: TaxiStatus
    ) -> bool:
        """
        ``SET accepted WHERE status = pending`` and the taxi still exists on
        the request's route in *taxi_status*.  False if either no longer
        holds: another driver won, or the taxi was deleted, moved to another
        route or changed status since it was validated.
        """
        taxi_ready = (
            select(TaxiModel.id)
            .where(
                TaxiModel.id == taxi_id,
                TaxiModel.route_id == RideRequestModel.route_id,
                TaxiModel.status == taxi_status,
            )
            .correlate(RideRequestModel)
            .exists()
        )
        result = await self.session.execute(
            update(RideRequestModel)
            .where(
                RideRequestModel.id == request_id,
                RideRequestModel.status == RequestStatus.PENDING,
                taxi_ready,
            )
            .values(status=RequestStatus.ACCEPTED, taxi_id=taxi_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revert_to_pending(self, request_id: int, taxi_id: int) -> bool:
        """Unassign *taxi_id* only while the request is still accepted by it."""
        result = await self.session.execute(
            update(RideRequestModel)
            .where(
                RideRequestModel.id == request_id,
                RideRequestModel.status == RequestStatus.ACCEPTED,
                RideRequestModel.taxi_id == taxi_id,
            )
            .values(status=RequestStatus.PENDING, taxi_id=None)
        )
        return result.rowcount == 1

    async def revert_all_for_taxi(self, taxi_id: int) -> list[int]:
        """Unassign every request held by *taxi_id*; returns their ids."""
        result = await self.session.execute(
            update(RideRequestModel)
            .where(RideRequestModel.taxi_id == taxi_id)
            .values(status=RequestStatus.PENDING, taxi_id=None)
            .returning(RideRequestModel.id)
            .execution_options(synchronize_session=False)
        )
        return [row[0] for row in result.all()]

    async def delete_if(
        self,
        request_id: int,
        passenger_id: str,
        expected: RequestStatus,
    ) -> bool:
        """Delete the request only if it is still owned and in *expected*."""
        result = await self.session.execute(
            delete(RideRequestModel)
            .where(
                RideRequestModel.id == request_id,
                RideRequestModel.passenger_id == passenger_id,
                RideRequestModel.status == expected,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
