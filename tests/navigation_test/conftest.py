# conftest.py
# Shared fixtures: puts src/ on the import path and builds synthetic routes.

import math
import sys
from pathlib import Path
from typing import List, Sequence

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from navigation.tracking.geo_utils import METERS_PER_DEG, destination_point, polyline_length
from navigation.tracking.models import (
    Coord,
    Fix,
    Maneuver,
    NavigationRoute,
    RouteSummary,
    coords_to_array,
    load_route,
)

ORIGIN = Coord(39.9208, 32.8541)   # Kızılay, Ankara


def _line(count: int, spacing_m: float, bearing: float = 0.0, origin: Coord = ORIGIN) -> List[Coord]:
    """count points spacing_m apart on a straight line; bearing 0 keeps the longitude exact."""
    theta = math.radians(bearing)
    d_lat = spacing_m * math.cos(theta) / METERS_PER_DEG
    d_lon = spacing_m * math.sin(theta) / (METERS_PER_DEG * math.cos(math.radians(origin.lat)))
    return [Coord(origin.lat + i * d_lat, origin.lon + i * d_lon) for i in range(count)]


def _offset(coord: Coord, bearing: float, distance_m: float) -> Coord:
    lat, lon = destination_point(coord.lat, coord.lon, bearing, distance_m)
    return Coord(lat, lon)


def _route(points: Sequence[Coord], maneuver_indices: Sequence[int] = (0,)) -> NavigationRoute:
    maneuvers = [
        Maneuver(
            distance_meters=0.0,
            duration_seconds=0.0,
            instruction_text=f"step {n}",
            point_index=index,
        )
        for n, index in enumerate(maneuver_indices)
    ]
    total = polyline_length(coords_to_array(points))
    summary = RouteSummary(
        total_distance_meters=total,
        total_duration_seconds=total / 10.0,
        start_location=points[0],
        end_location=points[-1],
    )
    return load_route(points, maneuvers, summary)


def _fix(coord: Coord, accuracy: float = 5.0, heading=None, speed=None) -> Fix:
    return Fix(coord.lat, coord.lon, accuracy_meters=accuracy, heading_deg=heading, speed_mps=speed)


@pytest.fixture
def origin():
    return ORIGIN


@pytest.fixture
def line():
    return _line


@pytest.fixture
def offset():
    return _offset


@pytest.fixture
def make_route():
    return _route


@pytest.fixture
def fix_at():
    return _fix
