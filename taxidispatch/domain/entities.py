"""
Domain entities with business logic.

Patterns used
-------------
- **Value objects** ``Stop`` and ``Route``: a route is an immutable ordered
  stop sequence; every position comparison goes through ``stop_order``.
- **State Pattern** on ``RideRequest``: enforces valid lifecycle transitions
  (PENDING <-> ACCEPTED) and the assignment invariant
  ``taxi_id is set <=> status == ACCEPTED``.
- ``TaxiState`` pairs a taxi with its route and renders the full view that
  is broadcast to subscribers and returned by the API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    REQUEST_TRANSITIONS,
    Direction,
    RequestStatus,
    RequestType,
    TaxiStatus,
)
from .errors import ConflictError, ValidationError

END_OF_ROUTE = "End of the route"


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Stop:
    name: str
    order: int


@dataclass(frozen=True)
class Route:
    id: int
    name: str
    stops: tuple[Stop, ...] = ()

    def stop_order(self, name: Optional[str]) -> Optional[int]:
        for stop in self.stops:
            if stop.name == name:
                return stop.order
        return None

    def require_stop_order(self, name: Optional[str]) -> int:
        order = self.stop_order(name)
        if order is None:
            raise ValidationError(
                f"Stop '{name}' does not exist on route '{self.name}'."
            )
        return order

    def has_stops(self, *names: str) -> bool:
        return all(self.stop_order(n) is not None for n in names)

    def ordered_stops(
        self, direction: Direction = Direction.FORWARD
    ) -> list[Stop]:
        stops = sorted(self.stops, key=lambda s: s.order)
        if direction == Direction.RETURN:
            stops.reverse()
        return stops

    def next_stop(self, current: str, direction: Direction) -> Optional[str]:
        """The stop after *current* when travelling in *direction*, or None."""
        stops = self.ordered_stops(direction)
        names = [s.name for s in stops]
        if current not in names:
            return None
        idx = names.index(current)
        if idx + 1 >= len(names):
            return None
        return names[idx + 1]


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Taxi:
    id: Optional[int] = None
    number_plate: str = ""
    route_id: int = 0
    driver_id: str = ""
    capacity: int = 1
    current_load: int = 0
    current_stop: str = ""
    direction: Direction = Direction.FORWARD
    allow_return_pickups: bool = False
    status: TaxiStatus = TaxiStatus.NOT_AVAILABLE
    updated_at: Optional[datetime] = None

    def has_room(self) -> bool:
        return self.current_load < self.capacity


@dataclass
class RideRequest:
    id: Optional[int] = None
    passenger_id: str = ""
    route_id: int = 0
    request_type: RequestType = RequestType.RIDE
    starting_stop: str = ""
    destination_stop: str = ""
    status: RequestStatus = RequestStatus.PENDING
    taxi_id: Optional[int] = None
    created_at: Optional[datetime] = None

    def accept(self, taxi_id: int) -> None:
        self._transition_to(RequestStatus.ACCEPTED)
        self.taxi_id = taxi_id

    def revert(self) -> None:
        self._transition_to(RequestStatus.PENDING)
        self.taxi_id = None

    def is_consistent(self) -> bool:
        return (self.taxi_id is not None) == (
            self.status == RequestStatus.ACCEPTED
        )

    def _transition_to(self, new_status: RequestStatus) -> None:
        allowed = REQUEST_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise ConflictError(
                f"Cannot transition request from {self.status.value} "
                f"to {new_status.value}"
            )
        self.status = new_status


@dataclass(frozen=True)
class TaxiState:
    taxi: Taxi
    route: Route

    @property
    def next_stop(self) -> str:
        if self.route.stop_order(self.taxi.current_stop) is None:
            return "Stop not found"
        return (
            self.route.next_stop(self.taxi.current_stop, self.taxi.direction)
            or END_OF_ROUTE
        )

    def view(self) -> dict:
        """Full JSON-ready taxi view."""
        t = self.taxi
        return {
            "id": t.id,
            "number_plate": t.number_plate,
            "status": t.status.value,
            "current_stop": t.current_stop,
            "current_load": t.current_load,
            "capacity": t.capacity,
            "direction": t.direction.value,
            "allow_return_pickups": t.allow_return_pickups,
            "driver_id": t.driver_id,
            "route_id": self.route.id,
            "route_name": self.route.name,
            "next_stop": self.next_stop,
            "stops": [
                {"name": s.name, "order": s.order}
                for s in self.route.ordered_stops()
            ],
            "updated_at": t.updated_at.isoformat() if t.updated_at else None,
        }


@dataclass
class NearbyRequests:
    ride_requests: list[RideRequest] = field(default_factory=list)
    pickup_requests: list[RideRequest] = field(default_factory=list)
