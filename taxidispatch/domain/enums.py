"""Domain enumerations and state-transition rules."""

import enum


class TaxiStatus(str, enum.Enum):
    WAITING = "waiting"
    AVAILABLE = "available"
    ROAMING = "roaming"
    ALMOST_FULL = "almost_full"
    FULL = "full"
    ON_TRIP = "on_trip"
    NOT_AVAILABLE = "not_available"


class Direction(str, enum.Enum):
    FORWARD = "forward"  # increasing stop order
    RETURN = "return"  # decreasing stop order


class RequestType(str, enum.Enum):
    RIDE = "ride"
    PICKUP = "pickup"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


# State machine: maps current status -> set of valid next statuses.
# Passenger cancellation deletes the row, so it has no target status here.
REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.ACCEPTED},
    RequestStatus.ACCEPTED: {RequestStatus.PENDING},
}

# Taxi status a driver must be in to accept each request type.
REQUIRED_TAXI_STATUS: dict[RequestType, TaxiStatus] = {
    RequestType.RIDE: TaxiStatus.ON_TRIP,
    RequestType.PICKUP: TaxiStatus.ROAMING,
}

# Statuses a passenger search may return.
SEARCHABLE_TAXI_STATUSES: frozenset[TaxiStatus] = frozenset(
    {
        TaxiStatus.WAITING,
        TaxiStatus.AVAILABLE,
        TaxiStatus.ROAMING,
        TaxiStatus.ALMOST_FULL,
        TaxiStatus.ON_TRIP,
    }
)
