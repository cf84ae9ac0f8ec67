# snapper.py
# Projects positions onto the route polyline.
#
#   snap_to_leg()    nearest point on the current leg (used every update)
#   snap_to_route()  weighted search over the whole route (re-localisation)
#   snap_location()  location published to listeners, heading taken from the route

import logging
from dataclasses import replace
from typing import Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString, Point

from .geo_utils import (
    along,
    calculate_bearing,
    distance_to_segment,
    from_local_xy,
    haversine_array,
    haversine_distance,
    shortest_angle_diff,
    to_local_xy,
)
from .models import Coord, Fix, ProgressRecord, SnapResult, coords_to_array
from .spatial_index import PathSpatialIndex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Weighted search tuning
# ---------------------------------------------------------------------------

RELOCATE_DISTANCE_M = 60.0        # beyond this the whole route is searched, backward moves barely penalised
RELOCATE_RADIUS_M = 1000.0
HEADING_WEIGHT = 0.1              # score per degree of heading mismatch
SHORT_SEGMENT_M = 10.0
SHORT_SEGMENT_BONUS = -2.0
MIN_POINTS_FOR_INDEX_LOOKUP = 100

# (speed above m/s, points searched ahead, spatial radius m)
SPEED_WINDOWS: Tuple[Tuple[float, int, float], ...] = (
    (33.3, 500, 1000.0),   # 120 km/h
    (27.8, 400, 800.0),    # 100 km/h
    (13.9, 200, 500.0),    # 50 km/h
    (4.2, 100, 300.0),     # 15 km/h
)
SLOW_WINDOW: Tuple[int, float] = (50, 150.0)


def _search_window(speed: float) -> Tuple[int, float]:
    for threshold, window, radius in SPEED_WINDOWS:
        if speed > threshold:
            return window, radius
    return SLOW_WINDOW


def _backward_multiplier(distance_to_path: float, candidate_distance: float) -> float:
    if distance_to_path > RELOCATE_DISTANCE_M:
        return 0.5
    if candidate_distance > 100.0:
        return 1.5
    return 10.0


def _speed_bonus(speed: float, candidate_distance: float) -> float:
    if speed > 33.3 and candidate_distance < 150.0:
        return -8.0
    if speed > 27.8 and candidate_distance < 120.0:
        return -6.0
    if speed > 10.0 and candidate_distance < 100.0:
        return -5.0
    if speed < 1.0 and candidate_distance > 50.0:
        return 20.0
    return 0.0


def _heading_penalty(bearing: Optional[float], p1: np.ndarray, p2: np.ndarray) -> float:
    # bearing 0 is what most sources report when they have no heading
    if bearing is None or bearing <= 0.0:
        return 0.0
    path_bearing = calculate_bearing(p1[0], p1[1], p2[0], p2[1])
    return abs(shortest_angle_diff(bearing, path_bearing)) * HEADING_WEIGHT


def _segment_heading(points: np.ndarray, segment: int) -> Optional[float]:
    """Bearing of a segment, skipping zero-length ones (backward first)."""
    order = list(range(segment, -1, -1)) + list(range(segment + 1, len(points) - 1))
    for i in order:
        p1, p2 = points[i], points[i + 1]
        if p1[0] != p2[0] or p1[1] != p2[1]:
            return calculate_bearing(p1[0], p1[1], p2[0], p2[1])
    return None


class RouteSnapper:
    """
    Stateless projections plus the last published heading.

    The heading memory is only used by snap_location() when the route gives
    no usable direction (for example a single-point leg). Call reset() at the
    start of every session.
    """

    def __init__(self) -> None:
        self._last_heading: Optional[float] = None

    def reset(self) -> None:
        self._last_heading = None

    @property
    def last_heading(self) -> Optional[float]:
        return self._last_heading

    # ------------------------------------------------------------------
    # Leg-local projection
    # ------------------------------------------------------------------

    def snap_to_leg(
        self,
        position: Coord,
        leg_points: Sequence[Coord],
        leg_start_index: int = 0,
    ) -> SnapResult:
        """
        Nearest point on the leg polyline.

        Projection runs in a local metric plane anchored at the first leg
        point, so a position lying on a segment maps back onto itself.

        Args:
            position:        Position to project (usually the filtered fix).
            leg_points:      Points of the current leg, in route order.
            leg_start_index: Route index of leg_points[0].

        Returns:
            SnapResult whose polyline_index is the route index of the start of
            the closest segment and whose heading follows that segment.
        """
        if not leg_points:
            return SnapResult(position, leg_start_index)
        if len(leg_points) == 1:
            only = leg_points[0]
            distance = haversine_distance(position.lat, position.lon, only.lat, only.lon)
            return SnapResult(only, leg_start_index, None, distance, 0)

        points = coords_to_array(leg_points)
        origin_lat, origin_lon = points[0]
        xy = to_local_xy(points, origin_lat, origin_lon)

        seg_lengths = np.hypot(*np.diff(xy, axis=0).T)
        cumulative = np.concatenate(([0.0], np.cumsum(seg_lengths)))
        if cumulative[-1] == 0.0:
            # every point identical
            first = leg_points[0]
            distance = haversine_distance(position.lat, position.lon, first.lat, first.lon)
            return SnapResult(first, leg_start_index, None, distance, 0)

        line = LineString(xy)
        target = to_local_xy([[position.lat, position.lon]], origin_lat, origin_lon)[0]
        offset = line.project(Point(target))
        projected = line.interpolate(offset)

        segment = int(np.searchsorted(cumulative, offset, side="right")) - 1
        segment = min(max(segment, 0), len(points) - 2)

        lat, lon = from_local_xy(projected.x, projected.y, origin_lat, origin_lon)
        snapped = Coord(lat, lon)
        return SnapResult(
            coord=snapped,
            polyline_index=leg_start_index + segment,
            heading_deg=_segment_heading(points, segment),
            distance_meters=haversine_distance(position.lat, position.lon, lat, lon),
            segment_index=segment,
        )

    # ------------------------------------------------------------------
    # Whole-route weighted projection
    # ------------------------------------------------------------------

    def snap_to_route(
        self,
        position: Coord,
        points: Sequence[Coord],
        start_index: int,
        bearing: Optional[float] = None,
        speed: Optional[float] = 0.0,
        spatial_index: Optional[PathSpatialIndex] = None,
    ) -> SnapResult:
        """
        Best route point for a position, scored against the last known index.

        Each candidate segment and point is scored by distance, heading
        mismatch, backward movement from start_index and a speed term; the
        lowest score wins and segment winners resolve to their nearer end.

        Args:
            position:      Filtered position.
            points:        Full route polyline.
            start_index:   Last known route index.
            bearing:       Current direction of travel in degrees, if known.
            speed:         Current speed in m/s.
            spatial_index: Optional index bounding the candidate set.

        Returns:
            SnapResult on a route vertex.
        """
        n = len(points)
        if n == 0:
            return SnapResult(position, start_index)
        if n < 2 or not 0 <= start_index < n:
            first = points[0]
            distance = haversine_distance(position.lat, position.lon, first.lat, first.lon)
            return SnapResult(first, 0, None, distance, 0)

        speed = speed or 0.0
        arr = coords_to_array(points)
        point_dist = haversine_array(position.lat, position.lon, arr[:, 0], arr[:, 1])
        distance_to_path = float(point_dist.min())
        relocating = distance_to_path > RELOCATE_DISTANCE_M

        window, radius = _search_window(speed)
        if relocating:
            radius = RELOCATE_RADIUS_M

        use_index = (
            spatial_index is not None
            and spatial_index.is_available
            and n >= MIN_POINTS_FOR_INDEX_LOOKUP
        )
        search_end = n if relocating else min(start_index + window, n)

        if use_index:
            nearby = spatial_index.find_nearby(
                position, radius, min_index=0 if relocating else start_index,
            )
            if not relocating:
                nearby = [i for i in nearby if start_index <= i < search_end]
            point_candidates = nearby
            segment_candidates = [i for i in nearby if i < n - 1]
        else:
            point_candidates = range(search_end)
            segment_candidates = range(search_end - 1)

        best_score = float("inf")
        best_index = int(point_dist.argmin())

        for i in segment_candidates:
            p1, p2 = arr[i], arr[i + 1]
            d = distance_to_segment(position.lat, position.lon, p1[0], p1[1], p2[0], p2[1])
            score = d + _heading_penalty(bearing, p1, p2)
            if i < start_index:
                score += (start_index - i) * _backward_multiplier(distance_to_path, d)
            score += _speed_bonus(speed, d)
            seg_len = haversine_distance(p1[0], p1[1], p2[0], p2[1])
            if seg_len < SHORT_SEGMENT_M and d < 20.0:
                score += SHORT_SEGMENT_BONUS

            if score < best_score:
                best_score = score
                best_index = i if point_dist[i] < point_dist[i + 1] else i + 1

        for i in point_candidates:
            d = float(point_dist[i])
            score = d
            if i < start_index:
                score += (start_index - i) * _backward_multiplier(distance_to_path, d)
            if i < n - 1:
                score += _heading_penalty(bearing, arr[i], arr[i + 1])

            if score < best_score:
                best_score = score
                best_index = i

        best_index = min(max(best_index, 0), n - 1)
        snapped = points[best_index]
        if best_index < n - 1:
            heading = calculate_bearing(snapped.lat, snapped.lon, arr[best_index + 1, 0], arr[best_index + 1, 1])
        elif best_index > 0:
            heading = calculate_bearing(arr[best_index - 1, 0], arr[best_index - 1, 1], snapped.lat, snapped.lon)
        else:
            heading = None

        logger.debug(
            f"snap_to_route: start={start_index}, best={best_index}, score={best_score:.1f}, "
            f"off_path={distance_to_path:.1f}m, indexed={use_index}"
        )
        return SnapResult(
            coord=snapped,
            polyline_index=best_index,
            heading_deg=heading,
            distance_meters=float(point_dist[best_index]),
            segment_index=best_index,
        )

    # ------------------------------------------------------------------
    # Published location
    # ------------------------------------------------------------------

    def snap_location(self, fix: Fix, progress: ProgressRecord) -> Fix:
        """
        Location to publish for an update: the fix moved onto the current leg.

        The heading looks 1 m ahead of the traveled distance along the leg
        (or into the next leg at its end), then falls back to the leg segment
        direction, the last published heading and finally the fix heading.
        """
        snap = self.snap_to_leg(fix.coord, progress.current_leg_points)
        heading = self._progress_heading(progress)
        if heading is None:
            heading = snap.heading_deg
        if heading is not None:
            self._last_heading = heading
        elif self._last_heading is not None:
            heading = self._last_heading
        else:
            heading = fix.heading_deg

        return replace(fix, lat=snap.coord.lat, lon=snap.coord.lon, heading_deg=heading)

    @staticmethod
    def _progress_heading(progress: ProgressRecord) -> Optional[float]:
        leg = coords_to_array(progress.current_leg_points)
        current = along(leg, progress.leg_distance_traveled)
        if current is None:
            return None

        if progress.leg_distance_remaining > 1.0:
            future = along(leg, progress.leg_distance_traveled + 1.0)
        else:
            upcoming = progress.next_leg_points
            if not upcoming:
                return None
            future = along(coords_to_array(upcoming), 1.0)

        if future is None or future == current:
            return None
        return calculate_bearing(current[0], current[1], future[0], future[1])
