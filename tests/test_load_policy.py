"""
Unit tests for the load -> status derivation.

Capacity 10 with the default ratio puts the ALMOST_FULL threshold at 8.
"""

import pytest

from taxidispatch.domain.enums import TaxiStatus
from taxidispatch.domain.errors import ValidationError
from taxidispatch.domain.load_policy import derive_status, validate_load


class TestFullAndAlmostFull:
    def test_full_at_capacity(self):
        assert derive_status(TaxiStatus.ON_TRIP, 10, 10) == TaxiStatus.FULL

    def test_full_regardless_of_previous(self):
        assert derive_status(TaxiStatus.NOT_AVAILABLE, 10, 10) == TaxiStatus.FULL

    def test_almost_full_at_threshold(self):
        assert derive_status(TaxiStatus.ROAMING, 8, 10) == TaxiStatus.ALMOST_FULL

    def test_almost_full_just_below_capacity(self):
        assert derive_status(TaxiStatus.ON_TRIP, 9, 10) == TaxiStatus.ALMOST_FULL

    def test_full_stays_full_when_dropping_into_almost_full_band(self):
        assert derive_status(TaxiStatus.FULL, 9, 10) == TaxiStatus.FULL

    def test_custom_ratio(self):
        assert derive_status(TaxiStatus.ROAMING, 5, 10, ratio=0.5) == TaxiStatus.ALMOST_FULL
        assert derive_status(TaxiStatus.ROAMING, 4, 10, ratio=0.5) == TaxiStatus.ROAMING


class TestPartialLoad:
    @pytest.mark.parametrize("previous", [TaxiStatus.AVAILABLE, TaxiStatus.WAITING])
    def test_idle_taxi_starts_roaming(self, previous):
        assert derive_status(previous, 3, 10) == TaxiStatus.ROAMING

    @pytest.mark.parametrize(
        "previous",
        [
            TaxiStatus.ON_TRIP,
            TaxiStatus.ROAMING,
            TaxiStatus.ALMOST_FULL,
            TaxiStatus.FULL,
            TaxiStatus.NOT_AVAILABLE,
        ],
    )
    def test_other_statuses_unchanged(self, previous):
        assert derive_status(previous, 3, 10) == previous


class TestEmpty:
    def test_empty_taxi_becomes_available(self):
        assert derive_status(TaxiStatus.ON_TRIP, 0, 10) == TaxiStatus.AVAILABLE

    def test_not_available_stays_not_available(self):
        assert derive_status(TaxiStatus.NOT_AVAILABLE, 0, 10) == TaxiStatus.NOT_AVAILABLE


class TestValidation:
    def test_negative_load_rejected(self):
        with pytest.raises(ValidationError):
            derive_status(TaxiStatus.ON_TRIP, -1, 10)

    def test_load_above_capacity_rejected(self):
        with pytest.raises(ValidationError, match="cannot exceed capacity"):
            validate_load(11, 10)

    def test_non_positive_capacity_rejected(self):
        with pytest.raises(ValidationError):
            validate_load(0, 0)
