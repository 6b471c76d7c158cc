"""
Stop-Order Eligibility Matcher
==============================

Decides which taxis hear about a request and which pending requests a
driver sees.  Everything here is pure: callers pass in the route and the
current snapshot of taxis / requests.

Position rule
-------------
A taxi is *ahead of* a stop when it has not yet reached it in its
direction of travel::

    forward:  order(taxi.current_stop)  <  order(stop)
    return:   order(taxi.current_stop)  >  order(stop)

The two directions are mirror images.  Three call sites use it with
different strictness:

1. **Creation-time fanout** (``eligible_taxis_for_request``) -- strict.
   Only taxis that are still approaching the stop are notified.
2. **Driver "nearby" view** (``nearby_requests_for_taxi``) -- inclusive,
   a taxi standing at the passenger's stop still sees the request.
3. **Acceptance** (``check_acceptance``) -- strict again, and re-checks
   status and route so a stale notification cannot be acted upon.

Pickup requests fan out to every ROAMING taxi on the route, but a driver
only sees the pickups waiting at the stop the taxi is standing at.

Complexity
----------
Let T = taxis on the route, R = pending requests, S = stops per route.
Every stop lookup is O(S), so fanout is O(T x S) and the nearby view is
O(R x S).  S is small (tens) for minibus routes.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .entities import NearbyRequests, RideRequest, Route, Taxi
from .enums import (
    REQUIRED_TAXI_STATUS,
    SEARCHABLE_TAXI_STATUSES,
    Direction,
    RequestStatus,
    RequestType,
    TaxiStatus,
)
from .errors import ConflictError, ValidationError


def is_ahead_of_stop(
    taxi_order: int,
    stop_order: int,
    direction: Direction,
    inclusive: bool = False,
) -> bool:
    """True when a taxi at *taxi_order* has not yet passed *stop_order*."""
    if direction == Direction.FORWARD:
        return taxi_order <= stop_order if inclusive else taxi_order < stop_order
    return taxi_order >= stop_order if inclusive else taxi_order > stop_order


def _taxi_ahead(
    taxi: Taxi, route: Route, stop_order: int, inclusive: bool
) -> bool:
    taxi_order = route.stop_order(taxi.current_stop)
    if taxi_order is None:
        return False
    return is_ahead_of_stop(taxi_order, stop_order, taxi.direction, inclusive)


def eligible_taxis_for_request(
    request: RideRequest,
    route: Route,
    taxis: Iterable[Taxi],
    exclude_driver_id: Optional[str] = None,
) -> list[Taxi]:
    """Taxis whose drivers should be told about *request* right now."""
    required = REQUIRED_TAXI_STATUS[request.request_type]
    candidates = [
        t
        for t in taxis
        if t.route_id == route.id
        and t.status == required
        and t.driver_id != exclude_driver_id
    ]
    if request.request_type == RequestType.PICKUP:
        return candidates

    start = route.stop_order(request.starting_stop)
    if start is None:
        return []
    return [t for t in candidates if _taxi_ahead(t, route, start, inclusive=False)]


def nearby_requests_for_taxi(
    taxi: Taxi, route: Route, requests: Iterable[RideRequest]
) -> NearbyRequests:
    """Pending requests on the taxi's route that its driver can act on."""
    result = NearbyRequests()
    if taxi.route_id != route.id:
        return result

    pending = [
        r
        for r in requests
        if r.route_id == route.id and r.status == RequestStatus.PENDING
    ]

    if taxi.status == TaxiStatus.ROAMING:
        result.pickup_requests = [
            r
            for r in pending
            if r.request_type == RequestType.PICKUP
            and r.starting_stop == taxi.current_stop
        ]
    elif taxi.status == TaxiStatus.ON_TRIP:
        if route.stop_order(taxi.current_stop) is None:
            raise ValidationError(
                "Taxi's current stop is invalid for this route."
            )
        for r in pending:
            if r.request_type != RequestType.RIDE:
                continue
            start = route.stop_order(r.starting_stop)
            if start is not None and _taxi_ahead(taxi, route, start, inclusive=True):
                result.ride_requests.append(r)
    return result


def check_acceptance(request: RideRequest, route: Route, taxi: Taxi) -> None:
    """Raise if *taxi* may not accept *request* in its current state."""
    if taxi.route_id != request.route_id or route.id != request.route_id:
        raise ConflictError("Taxi is not on the correct route.")

    if request.request_type == RequestType.PICKUP:
        if taxi.status != TaxiStatus.ROAMING:
            raise ConflictError("Taxi is not available for pickup requests.")
        return

    if taxi.status != TaxiStatus.ON_TRIP:
        raise ConflictError("Taxi must be 'on_trip' to accept ride requests.")
    if not taxi.current_stop:
        raise ValidationError("Taxi's current location (stop) is unknown.")

    taxi_order = route.stop_order(taxi.current_stop)
    start = route.stop_order(request.starting_stop)
    if taxi_order is None or start is None:
        raise ValidationError("Invalid route stops data for comparison.")
    if not is_ahead_of_stop(taxi_order, start, taxi.direction):
        raise ConflictError(
            "Taxi has already passed the passenger's starting stop."
        )


def travel_direction(route: Route, start: str, end: str) -> Direction:
    return (
        Direction.FORWARD
        if route.require_stop_order(start) < route.require_stop_order(end)
        else Direction.RETURN
    )


def search_candidates(
    route: Route, taxis: Iterable[Taxi], start: str, end: str
) -> list[Taxi]:
    """
    Taxis on *route* a passenger travelling start -> end could flag down.

    A forward trip matches forward taxis at or before the start stop; a
    return trip matches return taxis that allow return pickups and are at
    or beyond the start stop.
    """
    wanted = travel_direction(route, start, end)
    start_order = route.require_stop_order(start)
    result = []
    for t in taxis:
        if t.route_id != route.id or t.status not in SEARCHABLE_TAXI_STATUSES:
            continue
        if not t.has_room() or t.direction != wanted:
            continue
        if wanted == Direction.RETURN and not t.allow_return_pickups:
            continue
        if _taxi_ahead(t, route, start_order, inclusive=True):
            result.append(t)
    return result
