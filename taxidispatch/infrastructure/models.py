"""
SQLAlchemy ORM models.

Tables
------
* ``routes``         -- named routes (read-only for the dispatch core)
* ``route_stops``    -- ordered stops of each route
* ``taxis``          -- vehicles with capacity, position and status
* ``ride_requests``  -- passenger ride / pickup requests

Constraints
-----------
* ``ck_taxis_load_within_capacity``   -- ``0 <= current_load <= capacity``
* ``ck_ride_requests_assignment``     -- ``taxi_id`` set iff status is accepted
* ``uq_ride_requests_passenger_route`` -- one active request per passenger per
  route (cancelled requests are deleted, so every row is active)

Indexes
-------
* **B-Tree** on ``taxis(route_id, status)`` and
  ``ride_requests(route_id, status, request_type)`` for the matcher's
  snapshot queries, plus ``driver_id``, ``passenger_id`` and ``taxi_id``.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base
from taxidispatch.domain.entities import RideRequest, Route, Stop, Taxi
from taxidispatch.domain.enums import (
    Direction,
    RequestStatus,
    RequestType,
    TaxiStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    """Store enum *values* (``"on_trip"``), not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )


class RouteModel(Base):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    stops = relationship(
        "RouteStopModel",
        order_by="RouteStopModel.order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def to_entity(self) -> Route:
        return Route(
            id=self.id,
            name=self.name,
            stops=tuple(Stop(name=s.name, order=s.order) for s in self.stops),
        )


class RouteStopModel(Base):
    __tablename__ = "route_stops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False)
    name = Column(String(120), nullable=False)
    order = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("route_id", "name", name="uq_route_stops_name"),
        UniqueConstraint("route_id", "order", name="uq_route_stops_order"),
        Index("idx_route_stops_name", "name"),
    )


class TaxiModel(Base):
    __tablename__ = "taxis"

    id = Column(Integer, primary_key=True, autoincrement=True)
    number_plate = Column(String(32), unique=True, nullable=False)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False)
    driver_id = Column(String(64), nullable=False)
    capacity = Column(Integer, nullable=False)
    current_load = Column(Integer, default=0, nullable=False)
    current_stop = Column(String(120), nullable=False)
    direction = Column(
        _enum(Direction, "taxi_direction"),
        default=Direction.FORWARD,
        nullable=False,
    )
    allow_return_pickups = Column(Boolean, default=False, nullable=False)
    status = Column(
        _enum(TaxiStatus, "taxi_status"),
        default=TaxiStatus.NOT_AVAILABLE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    route = relationship("RouteModel", lazy="selectin")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_taxis_capacity_positive"),
        CheckConstraint(
            "current_load >= 0 AND current_load <= capacity",
            name="ck_taxis_load_within_capacity",
        ),
        Index("idx_taxis_route_status", "route_id", "status"),
        Index("idx_taxis_driver", "driver_id"),
    )

    def to_entity(self) -> Taxi:
        return Taxi(
            id=self.id,
            number_plate=self.number_plate,
            route_id=self.route_id,
            driver_id=self.driver_id,
            capacity=self.capacity,
            current_load=self.current_load,
            current_stop=self.current_stop,
            direction=Direction(self.direction),
            allow_return_pickups=bool(self.allow_return_pickups),
            status=TaxiStatus(self.status),
            updated_at=self.updated_at,
        )


class RideRequestModel(Base):
    __tablename__ = "ride_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(String(64), nullable=False)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False)
    request_type = Column(_enum(RequestType, "request_type"), nullable=False)
    starting_stop = Column(String(120), nullable=False)
    destination_stop = Column(String(120), default="", nullable=False)
    status = Column(
        _enum(RequestStatus, "request_status"),
        default=RequestStatus.PENDING,
        nullable=False,
    )
    taxi_id = Column(Integer, ForeignKey("taxis.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    route = relationship("RouteModel", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "(status = 'accepted') = (taxi_id IS NOT NULL)",
            name="ck_ride_requests_assignment",
        ),
        UniqueConstraint(
            "passenger_id", "route_id", name="uq_ride_requests_passenger_route"
        ),
        Index(
            "idx_ride_requests_route_status",
            "route_id",
            "status",
            "request_type",
        ),
        Index("idx_ride_requests_passenger", "passenger_id"),
        Index("idx_ride_requests_taxi", "taxi_id"),
    )

    def to_entity(self) -> RideRequest:
        return RideRequest(
            id=self.id,
            passenger_id=self.passenger_id,
            route_id=self.route_id,
            request_type=RequestType(self.request_type),
            starting_stop=self.starting_stop,
            destination_stop=self.destination_stop or "",
            status=RequestStatus(self.status),
            taxi_id=self.taxi_id,
            created_at=self.created_at,
        )
