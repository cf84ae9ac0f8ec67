# off_route.py
# Hysteresis state machine deciding "off route" and "request a new route".
# Counters persist across calls within one session.

import logging
from typing import Optional

from .geo_utils import haversine_distance
from .models import Coord, OffRouteDecision
from .nav_config import NavConfig

logger = logging.getLogger(__name__)


class OffRouteDetector:
    """
    Debounced off-route / reroute decision from the raw-to-snapped distance.

    A deviation must be seen on confirm_count_required consecutive fixes
    before it counts. Once a reroute is requested, fixes within
    min_distance_after_reroute_m of that spot are ignored so the next route
    has a chance to load.

    Args:
        off_route_threshold_m:        Distance from the route that counts as off.
        reroute_threshold_m:          Distance that also asks for a new route.
        min_distance_after_reroute_m: Quiet radius around the last reroute.
        confirm_count_required:       Consecutive off fixes needed to confirm.
    """

    def __init__(
        self,
        off_route_threshold_m: Optional[float] = None,
        reroute_threshold_m: Optional[float] = None,
        min_distance_after_reroute_m: Optional[float] = None,
        confirm_count_required: Optional[int] = None,
        config: Optional[NavConfig] = None,
    ) -> None:
        config = config or NavConfig()
        self.off_route_threshold_m = (
            config.off_route_threshold_m if off_route_threshold_m is None else off_route_threshold_m
        )
        self.reroute_threshold_m = (
            config.reroute_threshold_m if reroute_threshold_m is None else reroute_threshold_m
        )
        self.min_distance_after_reroute_m = (
            config.min_distance_after_reroute_m
            if min_distance_after_reroute_m is None else min_distance_after_reroute_m
        )
        self.confirm_count_required = (
            config.confirm_count_required if confirm_count_required is None else confirm_count_required
        )

        self._confirm_counter = 0
        self._last_reroute_position: Optional[Coord] = None

    @property
    def confirm_counter(self) -> int:
        return self._confirm_counter

    @property
    def last_reroute_position(self) -> Optional[Coord]:
        return self._last_reroute_position

    def reset(self) -> None:
        """Clear the confirm counter; the last reroute position is kept."""
        self._confirm_counter = 0

    def clear_reroute_protection(self) -> None:
        self._last_reroute_position = None

    def evaluate(self, raw: Coord, snapped: Coord) -> OffRouteDecision:
        """
        Decide whether the user left the route.

        Args:
            raw:     Unfiltered position of the fix.
            snapped: Position of the fix projected onto the route.

        Returns:
            OffRouteDecision with a reason code.
        """
        dist_to_route = haversine_distance(raw.lat, raw.lon, snapped.lat, snapped.lon)

        # 1. Just rerouted here: let the new route settle
        if self._last_reroute_position is not None:
            last = self._last_reroute_position
            from_last = haversine_distance(raw.lat, raw.lon, last.lat, last.lon)
            if from_last < self.min_distance_after_reroute_m:
                self._confirm_counter = 0
                return OffRouteDecision(False, False, "recent_reroute_protection")

        # 2. Close enough
        if dist_to_route < self.off_route_threshold_m:
            self._confirm_counter = 0
            return OffRouteDecision(False, False, "within_threshold")

        # 3. Needs N consecutive fixes
        self._confirm_counter += 1
        if self._confirm_counter < self.confirm_count_required:
            logger.debug(
                f"Off-route candidate: {dist_to_route:.1f}m, "
                f"count={self._confirm_counter}/{self.confirm_count_required}"
            )
            return OffRouteDecision(False, False, f"waiting_confirm_{self._confirm_counter}")

        # 4. Confirmed. Far enough away means the route was abandoned.
        should_reroute = dist_to_route >= self.reroute_threshold_m
        if should_reroute:
            self._last_reroute_position = raw
            self._confirm_counter = 0
            logger.info(f"Reroute requested: {dist_to_route:.1f}m from route")
        else:
            logger.info(f"Off route: {dist_to_route:.1f}m from route")

        return OffRouteDecision(
            is_off_route=True,
            should_reroute=should_reroute,
            reason="reroute" if should_reroute else "offroute_hold",
        )
