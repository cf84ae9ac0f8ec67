import math

import pytest

from navigation.tracking.geo_utils import haversine_distance
from navigation.tracking.location_filter import KalmanLocationFilter
from navigation.tracking.nav_config import NavConfig


def test_first_update_passes_through():
    kf = KalmanLocationFilter()
    assert kf.current_estimate() is None

    assert kf.update(39.92, 32.85, 8.0) == (39.92, 32.85)
    assert kf.is_initialized
    assert kf.state.variance_p == 8.0


@pytest.mark.parametrize("accuracy, expected_p", [(1.0, 5.0), (500.0, 100.0), (None, 100.0)])
def test_accuracy_is_clamped(accuracy, expected_p):
    kf = KalmanLocationFilter()
    kf.update(39.92, 32.85, accuracy)
    assert kf.state.variance_p == expected_p


def test_converges_to_constant_measurement():
    kf = KalmanLocationFilter()
    target = (39.9200, 32.8500)
    kf.update(39.9210, 32.8510, 10.0)

    last = haversine_distance(39.9210, 32.8510, *target)
    for _ in range(50):
        lat, lon = kf.update(*target, 10.0)
        dist = haversine_distance(lat, lon, *target)
        assert dist <= last
        last = dist
    assert last < 5.0


def test_less_accurate_fix_moves_estimate_less():
    start, moved = (39.9200, 32.8500), (39.9205, 32.8500)

    coarse = KalmanLocationFilter()
    coarse.update(*start, 50.0)
    coarse_lat, _ = coarse.update(*moved, 50.0)

    fine = KalmanLocationFilter()
    fine.update(*start, 5.0)
    fine_lat, _ = fine.update(*moved, 5.0)

    assert coarse_lat - start[0] < fine_lat - start[0]


def test_reset_forgets_state():
    kf = KalmanLocationFilter(config=NavConfig(process_noise=0.5))
    kf.update(39.92, 32.85, 5.0)
    kf.update(39.93, 32.86, 5.0)
    kf.reset()

    assert not kf.is_initialized
    assert kf.current_estimate() is None
    assert kf.update(10.0, 20.0, 5.0) == (10.0, 20.0)


def test_explicit_arguments_override_config():
    kf = KalmanLocationFilter(process_noise=2.0, min_accuracy=1.0, config=NavConfig())
    assert kf.process_noise == 2.0
    assert kf.min_accuracy == 1.0
    assert kf.max_accuracy == NavConfig().max_accuracy_m


@pytest.mark.parametrize("bad_accuracy", [math.nan, math.inf, -math.inf])
def test_non_finite_accuracy_is_treated_as_worst_case(bad_accuracy):
    kf = KalmanLocationFilter()
    kf.update(39.9200, 32.8500, 10.0)

    lat, lon = kf.update(39.9201, 32.8501, bad_accuracy)
    assert math.isfinite(lat) and math.isfinite(lon)
    assert math.isfinite(kf.state.variance_p)

    # the filter keeps working on the next good fix
    lat, lon = kf.update(39.9202, 32.8502, 5.0)
    assert math.isfinite(lat) and math.isfinite(lon)
    assert haversine_distance(lat, lon, 39.9202, 32.8502) < 30.0


def test_non_finite_first_fix_passes_through():
    kf = KalmanLocationFilter()
    assert kf.update(39.92, 32.85, math.nan) == (39.92, 32.85)
    assert kf.state.variance_p == 100.0
