# progress_processor.py
# Turns a position into a ProgressRecord and advances the maneuver index.
# Call build_progress() on every update; a new route object restarts state.

import logging
from typing import Optional

import numpy as np

from .geo_utils import haversine_array, haversine_distance
from .models import Coord, Fix, NavigationRoute, ProgressRecord, coords_to_array
from .nav_config import NavConfig
from .off_route import OffRouteDetector
from .snapper import RouteSnapper

logger = logging.getLogger(__name__)


class RouteProgressProcessor:
    """
    Stateful maneuver tracker for a single navigation session.

    The only state is the route, the maneuver index (never decreases within a
    route) and the last two records. Snapping is delegated to a RouteSnapper
    and each record is built from scratch.

    Usage:
        processor = RouteProgressProcessor(RouteSnapper(), OffRouteDetector())

        # Inside GPS loop:
        progress = processor.build_progress(route, filtered_fix)
    """

    def __init__(
        self,
        snapper: Optional[RouteSnapper] = None,
        off_route_detector: Optional[OffRouteDetector] = None,
        step_completion_m: Optional[float] = None,
        config: Optional[NavConfig] = None,
    ) -> None:
        config = config or NavConfig()
        self.snapper = snapper or RouteSnapper()
        self.off_route_detector = off_route_detector or OffRouteDetector(config=config)
        self.step_completion_m = (
            config.step_completion_m if step_completion_m is None else step_completion_m
        )

        self._route: Optional[NavigationRoute] = None
        self._maneuver_index: int = 0
        self._progress: Optional[ProgressRecord] = None
        self._previous: Optional[ProgressRecord] = None

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def route(self) -> Optional[NavigationRoute]:
        return self._route

    @property
    def maneuver_index(self) -> int:
        return self._maneuver_index

    @property
    def route_progress(self) -> Optional[ProgressRecord]:
        return self._progress

    @property
    def previous_progress(self) -> Optional[ProgressRecord]:
        return self._previous

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def start_new_route(self, route: NavigationRoute, fix: Fix) -> ProgressRecord:
        """Adopt a route, rewind to the first maneuver and build its first record."""
        self._route = route
        self._maneuver_index = 0
        self._previous = None
        self.off_route_detector.reset()
        logger.info(
            f"New route: {len(route.points)} points, {len(route.maneuvers)} maneuvers"
        )
        self._progress = self._build_record(route, fix.coord)
        return self._progress

    def reset(self) -> None:
        """Forget the route so the next build_progress() starts over."""
        self._route = None
        self._maneuver_index = 0
        self._progress = None
        self._previous = None

    # ------------------------------------------------------------------
    # Core method, called on every GPS update
    # ------------------------------------------------------------------

    def build_progress(self, route: NavigationRoute, fix: Fix) -> ProgressRecord:
        """
        Compute progress for a position on the given route.

        Leg completion is judged on a record built under the current maneuver
        index; the returned record is then rebuilt under the possibly
        advanced index.

        Args:
            route: Active route. A different object than last time restarts.
            fix:   Position to evaluate (normally the filtered fix).

        Returns:
            New immutable ProgressRecord.
        """
        if route is not self._route:
            return self.start_new_route(route, fix)

        position = fix.coord
        candidate = self._build_record(route, position)
        self._check_step_completion(route, candidate)

        self._previous = self._progress
        self._progress = self._build_record(route, position)
        return self._progress

    def _check_step_completion(self, route: NavigationRoute, record: ProgressRecord) -> None:
        if route.maneuver(self._maneuver_index + 1) is None:
            return

        remaining = record.leg_distance_remaining
        old_index = self._maneuver_index
        if remaining <= self.step_completion_m:
            self._maneuver_index += 1
            logger.info(
                f"Step completed: maneuver {old_index} -> {self._maneuver_index} "
                f"(leg remaining={remaining:.1f}m)"
            )
        elif remaining <= 0.0:
            self._maneuver_index += 1
            logger.info(f"Step completed (forced): maneuver {old_index} -> {self._maneuver_index}")

    # ------------------------------------------------------------------
    # Record construction
    # ------------------------------------------------------------------

    def _build_record(self, route: NavigationRoute, position: Coord) -> ProgressRecord:
        index = self._maneuver_index
        start, end = route.leg_bounds(index)
        current_leg = route.points[start:end]

        upcoming = route.maneuver(index + 1)
        next_leg = None
        if upcoming is not None:
            next_start, next_end = route.leg_bounds(index + 1)
            next_leg = route.points[next_start:next_end]

        snap = self.snapper.snap_to_leg(position, current_leg, start)

        polyline_index = self._nearest_vertex(route, snap.coord, start, end)
        traveled = self._leg_distance_traveled(route, current_leg, start, snap.segment_index, snap.coord)
        leg_remaining = self._leg_distance_remaining(route, current_leg, upcoming, polyline_index)
        distance_remaining = route.distance_between(polyline_index, len(route.points) - 1)

        logger.debug(
            f"Progress: maneuver={index}, index={polyline_index}, "
            f"leg traveled={traveled:.1f}m, leg remaining={leg_remaining:.1f}m, "
            f"total remaining={distance_remaining:.1f}m"
        )
        return ProgressRecord(
            route=route,
            polyline_index=polyline_index,
            maneuver_index=index,
            distance_remaining=distance_remaining,
            current_leg_points=current_leg,
            next_leg_points=next_leg,
            leg_distance_remaining=leg_remaining,
            leg_distance_traveled=traveled,
            snapped=snap,
        )

    @staticmethod
    def _nearest_vertex(route: NavigationRoute, point: Coord, start: int, end: int) -> int:
        """Route index of the leg vertex closest to a point; an empty leg stays at its start."""
        if end <= start:
            return min(start, len(route.points) - 1)
        leg = coords_to_array(route.points[start:end])
        dist = haversine_array(point.lat, point.lon, leg[:, 0], leg[:, 1])
        return start + int(np.argmin(dist))

    @staticmethod
    def _leg_distance_traveled(route, leg, start: int, segment: int, snapped: Coord) -> float:
        if len(leg) < 2:
            return 0.0
        segment_start = route.points[start + segment]
        return (
            route.distance_between(start, start + segment)
            + haversine_distance(segment_start.lat, segment_start.lon, snapped.lat, snapped.lon)
        )

    @staticmethod
    def _leg_distance_remaining(route, leg, upcoming, snapped_index: int) -> float:
        if len(leg) < 2 or upcoming is None:
            return 0.0
        if upcoming.point_index >= len(route.points):
            return 0.0
        if snapped_index >= upcoming.point_index:
            return 0.0
        return route.distance_between(snapped_index, upcoming.point_index)
