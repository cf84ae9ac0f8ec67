# nav_config.py
# All tuneable constants in one place.
# Pass a NavConfig instance to every module that needs settings.

import os
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Defaults shared by modules that can also be built without a NavConfig
# ---------------------------------------------------------------------------

PROCESS_NOISE: float = 0.1
MIN_ACCURACY_M: float = 5.0
MAX_ACCURACY_M: float = 100.0

GRID_SIZE_DEG: float = 0.01            # ~1.1 km per cell
MIN_POINTS_FOR_INDEX: int = 100

STEP_COMPLETION_M: float = 10.0

OFF_ROUTE_THRESHOLD_M: float = 30.0
REROUTE_THRESHOLD_M: float = 70.0
MIN_DISTANCE_AFTER_REROUTE_M: float = 50.0
CONFIRM_COUNT_REQUIRED: int = 2


# ---------------------------------------------------------------------------
# Main config
# ---------------------------------------------------------------------------

@dataclass
class NavConfig:
    # Location filter
    process_noise: float = PROCESS_NOISE
    min_accuracy_m: float = MIN_ACCURACY_M    # below this a fix is not trusted more
    max_accuracy_m: float = MAX_ACCURACY_M    # above this a fix is not trusted less

    # Spatial index
    grid_size_deg: float = GRID_SIZE_DEG
    min_points_for_index: int = MIN_POINTS_FOR_INDEX

    # Step tracking
    step_completion_m: float = STEP_COMPLETION_M

    # Off-route detection
    off_route_threshold_m: float = OFF_ROUTE_THRESHOLD_M
    reroute_threshold_m: float = REROUTE_THRESHOLD_M
    min_distance_after_reroute_m: float = MIN_DISTANCE_AFTER_REROUTE_M
    confirm_count_required: int = CONFIRM_COUNT_REQUIRED

    # Engine
    snap_to_route: bool = True             # publish snapped instead of raw locations
    simulation_interval_s: float = 1.0     # delay between simulated fixes

    # Logging
    log_dir: str = "."                     # directory for saved JSON files
    route_filename: str = "active_route.json"
    session_filename: str = "nav_session.jsonl"

    @property
    def route_filepath(self) -> str:
        return os.path.join(self.log_dir, self.route_filename)

    @property
    def session_filepath(self) -> str:
        return os.path.join(self.log_dir, self.session_filename)
