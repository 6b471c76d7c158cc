"""
Load -> status derivation
=========================

Applied only when a driver reports a new passenger count; manual status
changes never pass through here.

Rules (``ratio`` defaults to 0.8)
---------------------------------
* ``load >= capacity``                     -> FULL
* ``capacity*ratio <= load < capacity``    -> ALMOST_FULL (FULL stays FULL)
* ``0 < load < capacity*ratio``            -> ROAMING if previously AVAILABLE
  or WAITING, otherwise unchanged
* ``load == 0``                            -> AVAILABLE unless NOT_AVAILABLE

Complexity: O(1).
"""

from __future__ import annotations

from .enums import TaxiStatus
from .errors import ValidationError

ALMOST_FULL_RATIO = 0.8


def validate_load(load: int, capacity: int) -> None:
    if capacity <= 0:
        raise ValidationError("Capacity must be a positive number.")
    if load < 0:
        raise ValidationError("Load must be a non-negative number.")
    if load > capacity:
        raise ValidationError(
            f"Load ({load}) cannot exceed capacity ({capacity})."
        )


def derive_status(
    previous: TaxiStatus,
    load: int,
    capacity: int,
    ratio: float = ALMOST_FULL_RATIO,
) -> TaxiStatus:
    """Return the status a taxi should have after its load becomes *load*."""
    validate_load(load, capacity)

    if load >= capacity:
        return TaxiStatus.FULL
    if load >= capacity * ratio:
        if previous == TaxiStatus.FULL:
            return previous
        return TaxiStatus.ALMOST_FULL
    if load > 0:
        if previous in (TaxiStatus.AVAILABLE, TaxiStatus.WAITING):
            return TaxiStatus.ROAMING
        return previous
    if previous == TaxiStatus.NOT_AVAILABLE:
        return previous
    return TaxiStatus.AVAILABLE
