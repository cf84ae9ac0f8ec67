# models.py
# Shared data structures and error types used across all modules.

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from .geo_utils import cumulative_distances


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class NavigationError(Exception):
    """Base class for errors raised by the tracking core."""


class InvalidRouteError(NavigationError, ValueError):
    """Route points or maneuvers violate the route invariants."""


class InvalidFixError(NavigationError, ValueError):
    """A position fix has a NaN or out-of-range coordinate."""


class ListenerFailure(NavigationError):
    """A registered listener raised while an event was being dispatched."""

    def __init__(self, listener, event: str, cause: BaseException) -> None:
        super().__init__(f"{event} listener {listener!r} failed: {cause!r}")
        self.listener = listener
        self.event = event
        self.cause = cause


# ---------------------------------------------------------------------------
# Coordinate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coord:
    """Immutable geographic coordinate."""
    lat: float
    lon: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.lat) and math.isfinite(self.lon)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lon <= 180.0
        )

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon}

    @staticmethod
    def from_dict(d: dict) -> "Coord":
        return Coord(float(d["lat"]), float(d["lon"]))


CoordLike = Union[Coord, Tuple[float, float]]


def as_coord(value: CoordLike) -> Coord:
    """Accept a Coord or a (lat, lon) pair."""
    if isinstance(value, Coord):
        return value
    lat, lon = value
    return Coord(float(lat), float(lon))


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Maneuver:
    """A turn/instruction event anchored to a route point index."""
    distance_meters: float
    duration_seconds: float
    instruction_text: str
    point_index: int
    type_code: int = 0

    def to_dict(self) -> dict:
        return {
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "instruction_text": self.instruction_text,
            "point_index": self.point_index,
            "type_code": self.type_code,
        }

    @staticmethod
    def from_dict(d: dict) -> "Maneuver":
        return Maneuver(
            distance_meters=d["distance_meters"],
            duration_seconds=d["duration_seconds"],
            instruction_text=d["instruction_text"],
            point_index=d["point_index"],
            type_code=d.get("type_code", 0),
        )


@dataclass(frozen=True)
class RouteSummary:
    """Route totals. Only distance, duration and endpoints matter to tracking."""
    total_distance_meters: float
    total_duration_seconds: float
    start_location: Coord
    end_location: Coord
    toll_fare: float = 0.0
    fuel_price: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_distance_meters": self.total_distance_meters,
            "total_duration_seconds": self.total_duration_seconds,
            "start_location": self.start_location.to_dict(),
            "end_location": self.end_location.to_dict(),
            "toll_fare": self.toll_fare,
            "fuel_price": self.fuel_price,
        }

    @staticmethod
    def from_dict(d: dict) -> "RouteSummary":
        return RouteSummary(
            total_distance_meters=d["total_distance_meters"],
            total_duration_seconds=d["total_duration_seconds"],
            start_location=Coord.from_dict(d["start_location"]),
            end_location=Coord.from_dict(d["end_location"]),
            toll_fare=d.get("toll_fare", 0.0),
            fuel_price=d.get("fuel_price", 0.0),
        )


@dataclass(frozen=True, eq=False)
class NavigationRoute:
    """
    Immutable route: polyline points, maneuver list and summary.

    Equality is identity, so a reloaded route counts as a new route even when
    its content is the same. Build instances with load_route().
    """
    points: Tuple[Coord, ...]
    maneuvers: Tuple[Maneuver, ...]
    summary: RouteSummary
    # cumulative_m[i] = distance along the polyline from point 0 to point i
    cumulative_m: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "cumulative_m", cumulative_distances(coords_to_array(self.points))
        )

    def maneuver(self, index: int) -> Optional[Maneuver]:
        if 0 <= index < len(self.maneuvers):
            return self.maneuvers[index]
        return None

    def leg_bounds(self, maneuver_index: int) -> Tuple[int, int]:
        """[start, end) point indices of the leg that begins at a maneuver."""
        current = self.maneuver(maneuver_index)
        if current is None:
            return 0, 0
        following = self.maneuver(maneuver_index + 1)
        end = following.point_index if following else len(self.points)
        end = min(end, len(self.points))
        return min(current.point_index, end), end

    def distance_between(self, start_index: int, end_index: int) -> float:
        """Polyline length between two point indices (0 if end <= start)."""
        last = len(self.points) - 1
        start_index = max(0, min(start_index, last))
        end_index = max(0, min(end_index, last))
        if end_index <= start_index:
            return 0.0
        return float(self.cumulative_m[end_index] - self.cumulative_m[start_index])

    @property
    def length_meters(self) -> float:
        return float(self.cumulative_m[-1]) if len(self.points) else 0.0

    def to_dict(self) -> dict:
        return {
            "points": [p.to_dict() for p in self.points],
            "maneuvers": [m.to_dict() for m in self.maneuvers],
            "summary": self.summary.to_dict(),
        }

    @staticmethod
    def from_dict(d: dict) -> "NavigationRoute":
        return load_route(
            [Coord.from_dict(p) for p in d["points"]],
            [Maneuver.from_dict(m) for m in d["maneuvers"]],
            RouteSummary.from_dict(d["summary"]),
        )


def load_route(
    points: Iterable[CoordLike],
    maneuvers: Iterable[Maneuver],
    summary: RouteSummary,
) -> NavigationRoute:
    """
    Validate route parts and build an immutable NavigationRoute.

    Raises:
        InvalidRouteError: no points, an invalid coordinate, or maneuver
            point indices outside [0, len(points)] or decreasing.
    """
    try:
        coords = tuple(as_coord(p) for p in points)
    except (TypeError, ValueError) as e:
        raise InvalidRouteError(f"Route points are malformed: {e}") from e
    steps = tuple(maneuvers)

    if not coords:
        raise InvalidRouteError("Route must contain at least one point.")
    for i, c in enumerate(coords):
        if not c.is_valid():
            raise InvalidRouteError(f"Route point {i} is not a valid coordinate: {c}")

    previous = 0
    for i, m in enumerate(steps):
        if not 0 <= m.point_index <= len(coords):
            raise InvalidRouteError(
                f"Maneuver {i} point_index {m.point_index} outside [0, {len(coords)}]."
            )
        if m.point_index < previous:
            raise InvalidRouteError(
                f"Maneuver {i} point_index {m.point_index} is before {previous}."
            )
        previous = m.point_index

    return NavigationRoute(points=coords, maneuvers=steps, summary=summary)


# ---------------------------------------------------------------------------
# Position fixes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Fix:
    """A raw or filtered position sample."""
    lat: float
    lon: float
    accuracy_meters: Optional[float] = None
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = None
    timestamp_ms: Optional[int] = None
    provider: Optional[str] = None

    @property
    def coord(self) -> Coord:
        return Coord(self.lat, self.lon)

    def validate(self) -> "Fix":
        """Return self, or raise InvalidFixError for unusable coordinates."""
        if not self.coord.is_valid():
            raise InvalidFixError(f"Invalid fix coordinate: ({self.lat}, {self.lon})")
        return self

    def to_dict(self) -> dict:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "accuracy_meters": self.accuracy_meters,
            "speed_mps": self.speed_mps,
            "heading_deg": self.heading_deg,
            "timestamp_ms": self.timestamp_ms,
            "provider": self.provider,
        }


@dataclass(frozen=True)
class FilterState:
    """Snapshot of a KalmanLocationFilter."""
    lat: float
    lon: float
    variance_p: float
    initialized: bool


# ---------------------------------------------------------------------------
# Per-update results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SnapResult:
    """Projection of a position onto a polyline."""
    coord: Coord
    polyline_index: int
    heading_deg: Optional[float] = None
    distance_meters: float = 0.0     # input position -> coord
    segment_index: int = 0           # index of the segment start within the searched points


@dataclass(frozen=True, eq=False)
class ProgressRecord:
    """Progress of one update. Rebuilt every update, never mutated."""
    route: NavigationRoute
    polyline_index: int
    maneuver_index: int
    distance_remaining: float
    current_leg_points: Tuple[Coord, ...]
    next_leg_points: Optional[Tuple[Coord, ...]]
    leg_distance_remaining: float
    leg_distance_traveled: float = 0.0
    snapped: Optional[SnapResult] = None

    @property
    def current_maneuver(self) -> Optional[Maneuver]:
        return self.route.maneuver(self.maneuver_index)

    @property
    def upcoming_maneuver(self) -> Optional[Maneuver]:
        return self.route.maneuver(self.maneuver_index + 1)

    @property
    def distance_traveled(self) -> float:
        return max(0.0, self.route.summary.total_distance_meters - self.distance_remaining)

    @property
    def fraction_traveled(self) -> float:
        total = self.route.summary.total_distance_meters
        if total <= 0:
            return 1.0
        return max(0.0, self.distance_traveled / total)

    @property
    def duration_remaining(self) -> float:
        return (1.0 - self.fraction_traveled) * self.route.summary.total_duration_seconds

    def to_dict(self) -> dict:
        return {
            "polyline_index": self.polyline_index,
            "maneuver_index": self.maneuver_index,
            "distance_remaining": round(self.distance_remaining, 2),
            "leg_distance_remaining": round(self.leg_distance_remaining, 2),
            "leg_distance_traveled": round(self.leg_distance_traveled, 2),
            "fraction_traveled": round(self.fraction_traveled, 4),
        }


@dataclass(frozen=True)
class OffRouteDecision:
    """Result of OffRouteDetector.evaluate()."""
    is_off_route: bool
    should_reroute: bool
    reason: str

    def to_dict(self) -> dict:
        return {
            "is_off_route": self.is_off_route,
            "should_reroute": self.should_reroute,
            "reason": self.reason,
        }


def coords_to_array(points: Sequence[Coord]) -> np.ndarray:
    """(N, 2) float array of [lat, lon] rows."""
    if not points:
        return np.empty((0, 2), dtype=float)
    return np.array([[p.lat, p.lon] for p in points], dtype=float)
