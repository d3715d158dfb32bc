from __future__ import annotations

import math

import pytest

from pylivetrack.geo import (
    EARTH_RADIUS_M,
    EstimatorState,
    derive_speed_kmh,
    distance_meters,
    initial_bearing_deg,
    mps_to_kmh,
)

GANDHIPURAM = (11.0168, 76.9558)
RS_PURAM = (11.0045, 76.9612)


class TestDistanceMeters:
    @pytest.mark.parametrize(
        "point",
        [(0.0, 0.0), GANDHIPURAM, (-33.8688, 151.2093), (89.9, -179.9)],
    )
    def test_same_point_is_zero(self, point: tuple[float, float]) -> None:
        assert distance_meters(*point, *point) == 0.0

    def test_symmetric_and_non_negative(self) -> None:
        forward = distance_meters(*GANDHIPURAM, *RS_PURAM)
        backward = distance_meters(*RS_PURAM, *GANDHIPURAM)
        assert forward > 0
        assert forward == pytest.approx(backward, rel=1e-12)

    def test_one_degree_of_latitude_at_equator(self) -> None:
        expected = 2 * math.pi * EARTH_RADIUS_M / 360.0
        assert distance_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected, rel=1e-3)
        assert expected == pytest.approx(111_195, abs=1)

    def test_route_stops_are_about_one_and_a_half_km_apart(self) -> None:
        assert distance_meters(*GANDHIPURAM, *RS_PURAM) == pytest.approx(1489.3, abs=1.0)

    def test_antipodal_points(self) -> None:
        assert distance_meters(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_M)


class TestInitialBearing:
    def test_cardinal_directions(self) -> None:
        assert initial_bearing_deg(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0)
        assert initial_bearing_deg(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0)
        assert initial_bearing_deg(0.0, 0.0, -1.0, 0.0) == pytest.approx(180.0)
        assert initial_bearing_deg(0.0, 0.0, 0.0, -1.0) == pytest.approx(270.0)


class TestDeriveSpeed:
    def test_first_fix_returns_provider_speed(self) -> None:
        speed, state = derive_speed_kmh(EstimatorState(), GANDHIPURAM, 1_000, provider_speed_kmh=36.04)
        assert speed == 36.0
        assert state == EstimatorState(previous_coord=GANDHIPURAM, previous_timestamp_ms=1_000)
        assert state.is_seeded
        assert not EstimatorState().is_seeded

    @pytest.mark.parametrize("provider_speed", [None, -1.0, float("nan")])
    def test_first_fix_without_usable_provider_speed_is_zero(self, provider_speed: float | None) -> None:
        speed, _state = derive_speed_kmh(EstimatorState(), GANDHIPURAM, 1_000, provider_speed_kmh=provider_speed)
        assert speed == 0.0

    def test_scenario_two_stops_three_seconds_apart(self) -> None:
        _speed, state = derive_speed_kmh(EstimatorState(), GANDHIPURAM, 1_000)
        speed, state = derive_speed_kmh(state, RS_PURAM, 4_000)

        expected = round(distance_meters(*GANDHIPURAM, *RS_PURAM) / 3.0 * 3.6, 1)
        assert speed == expected
        assert speed == pytest.approx(1787.1, abs=0.5)
        assert state.previous_coord == RS_PURAM
        assert state.previous_timestamp_ms == 4_000

    @pytest.mark.parametrize("now_ms", [1_000, 999, 0])
    def test_non_positive_elapsed_time_is_zero(self, now_ms: int) -> None:
        _speed, state = derive_speed_kmh(EstimatorState(), GANDHIPURAM, 1_000)
        speed, state = derive_speed_kmh(state, RS_PURAM, now_ms)

        assert speed == 0.0
        assert not math.isnan(speed)
        # State still advances so the next tick measures from here.
        assert state.previous_coord == RS_PURAM
        assert state.previous_timestamp_ms == now_ms

    def test_identical_coordinates_are_zero(self) -> None:
        _speed, state = derive_speed_kmh(EstimatorState(), GANDHIPURAM, 1_000)
        speed, _state = derive_speed_kmh(state, GANDHIPURAM, 6_000)
        assert speed == 0.0

    def test_speed_is_rounded_to_one_decimal(self) -> None:
        _speed, state = derive_speed_kmh(EstimatorState(), (0.0, 0.0), 0)
        speed, _state = derive_speed_kmh(state, (0.0001, 0.0), 7_000)
        assert speed == round(speed, 1)
        assert speed == pytest.approx(distance_meters(0.0, 0.0, 0.0001, 0.0) / 7.0 * 3.6, abs=0.05)


def test_mps_to_kmh() -> None:
    assert mps_to_kmh(10.0) == pytest.approx(36.0)
    assert mps_to_kmh(None) is None
