"""Tests for haversine distance and Position validation."""

import pytest

from ridematch.core.exceptions import ValidationError
from ridematch.geo import Position, haversine_distance_km
from tests.helpers import MARKET_ST, NEAR_MARKET_ST, OAKLAND


@pytest.mark.unit
class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_distance_km(*MARKET_ST, *MARKET_ST) == 0.0

    def test_known_distance_sf_to_oakland(self):
        # ~13.4 km straight line between downtown SF and downtown Oakland
        distance = haversine_distance_km(*MARKET_ST, *OAKLAND)
        assert 13.0 < distance < 14.0

    def test_short_distance(self):
        distance = haversine_distance_km(*MARKET_ST, *NEAR_MARKET_ST)
        assert 0.030 < distance < 0.045

    def test_symmetric(self):
        assert haversine_distance_km(*MARKET_ST, *OAKLAND) == pytest.approx(
            haversine_distance_km(*OAKLAND, *MARKET_ST)
        )

    def test_antipodal_points_do_not_fail(self):
        distance = haversine_distance_km(0.0, 0.0, 0.0, 180.0)
        assert distance == pytest.approx(20015.1, rel=1e-3)


@pytest.mark.unit
class TestPosition:
    def test_from_tuple(self):
        position = Position.from_tuple(MARKET_ST)
        assert position.as_tuple() == MARKET_ST

    def test_from_tuple_passes_positions_through(self):
        position = Position(1.0, 2.0)
        assert Position.from_tuple(position) is position

    @pytest.mark.parametrize("lat,lon", [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.1), (0.0, -181.0)])
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(ValidationError):
            Position(lat, lon)

    def test_positions_are_hashable_values(self):
        assert {Position(*MARKET_ST), Position(*MARKET_ST)} == {Position(*MARKET_ST)}
