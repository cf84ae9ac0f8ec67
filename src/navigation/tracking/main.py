# main.py
# Entry point: simulates a drive along a demo route through NavigationEngine.
# In production, replace SimulatedFixSource with a QueueFixSource fed by real GPS.
#
# Run from src/:  python -m navigation.tracking.main

import logging
import math
import time
from typing import List, Tuple

from .engine import NavigationEngine
from .fix_source import SimulatedFixSource
from .geo_utils import calculate_bearing, get_turn_instruction, haversine_distance
from .models import Coord, Fix, Maneuver, NavigationRoute, ProgressRecord, RouteSummary
from .nav_config import NavConfig
from .nav_logger import NavLogger

# ------------------------------------------------------------------
# Logging setup: configure once here, all modules inherit
# ------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

# ------------------------------------------------------------------
# Config: tweak thresholds or paths here, not inside the modules
# ------------------------------------------------------------------
config = NavConfig(
    off_route_threshold_m=30.0,
    reroute_threshold_m=70.0,
    simulation_interval_s=0.05,
    log_dir="logs",
)

# ------------------------------------------------------------------
# Demo route corners (Sıhhiye → Kurtuluş, Ankara)
# ------------------------------------------------------------------
CORNERS = [
    Coord(39.92409, 32.845382),
    Coord(39.9240467, 32.8451522),
    Coord(39.9232599, 32.8441792),
    Coord(39.9240102, 32.8452347),
    Coord(39.9249406, 32.8462865),
    Coord(39.9254588, 32.8477125),
    Coord(39.9208164, 32.8533392),
    Coord(39.920927, 32.8533893),
    Coord(39.9210086, 32.8529793),
]

SPACING_M = 10.0          # distance between generated route points
WALKING_SPEED_MPS = 1.4


def build_demo_route(corners: List[Coord]) -> NavigationRoute:
    """Densify corner points and put a maneuver on every corner."""
    points: List[Coord] = [corners[0]]
    corner_indices: List[int] = [0]
    for a, b in zip(corners, corners[1:]):
        steps = max(1, math.ceil(haversine_distance(a.lat, a.lon, b.lat, b.lon) / SPACING_M))
        for k in range(1, steps + 1):
            t = k / steps
            points.append(Coord(a.lat + (b.lat - a.lat) * t, a.lon + (b.lon - a.lon) * t))
        corner_indices.append(len(points) - 1)

    maneuvers: List[Maneuver] = []
    for n, index in enumerate(corner_indices):
        text, leg_m = _describe_corner(corners, n)
        maneuvers.append(Maneuver(
            distance_meters=leg_m,
            duration_seconds=leg_m / WALKING_SPEED_MPS,
            instruction_text=text,
            point_index=index,
            type_code=n,
        ))

    total_m = sum(m.distance_meters for m in maneuvers)
    summary = RouteSummary(
        total_distance_meters=total_m,
        total_duration_seconds=total_m / WALKING_SPEED_MPS,
        start_location=points[0],
        end_location=points[-1],
    )
    return NavigationEngine.load_route(points, maneuvers, summary)


def _describe_corner(corners: List[Coord], n: int) -> Tuple[str, float]:
    if n == len(corners) - 1:
        return "You have reached your destination", 0.0

    a, b = corners[n], corners[n + 1]
    leg_m = haversine_distance(a.lat, a.lon, b.lat, b.lon)
    if n == 0:
        return "Navigation starting", leg_m

    prev = corners[n - 1]
    b1 = calculate_bearing(prev.lat, prev.lon, a.lat, a.lon)
    b2 = calculate_bearing(a.lat, a.lon, b.lat, b.lon)
    return get_turn_instruction(b2 - b1), leg_m


def main() -> None:
    # 1. Build the route and the engine
    route = build_demo_route(CORNERS)
    engine = NavigationEngine(config)
    nav_logger = NavLogger(config)
    nav_logger.save_route(route)

    # 2. Listeners
    def on_progress(location: Fix, progress: ProgressRecord) -> None:
        maneuver = progress.current_maneuver
        print(
            f"  [{progress.maneuver_index}] {maneuver.instruction_text if maneuver else '-'}"
            f" | leg {progress.leg_distance_remaining:6.1f} m"
            f" | total {progress.distance_remaining:7.1f} m"
            f" | heading {location.heading_deg or 0:5.1f}"
        )
        nav_logger.log_event(location, progress)

    def on_off_route(location: Fix) -> None:
        print(f"  ⚠  Off-route at ({location.lat:.6f}, {location.lon:.6f})")

    engine.add_progress_listener(on_progress)
    engine.add_off_route_listener(on_off_route)

    # 3. Simulated GPS loop, replace with real GPS feed in production
    print("\n--- Simulation Active ---")
    engine.start(route, fix_source=SimulatedFixSource(route, interval_s=config.simulation_interval_s))
    while engine.is_running():
        time.sleep(0.1)
    engine.close()

    print("\n--- Session complete ---")
    print(f"    Log files written to: {config.log_dir}/")


if __name__ == "__main__":
    main()
