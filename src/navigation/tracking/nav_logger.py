# nav_logger.py
# Handles all file I/O for the tracking system.
# Saves route snapshots as JSON and per-update events as JSON lines.

import json
import os
import logging
from datetime import datetime
from typing import Optional

from .models import Fix, NavigationRoute, OffRouteDecision, ProgressRecord
from .nav_config import NavConfig

logger = logging.getLogger(__name__)


class NavLogger:
    """
    Persists route data and navigation events to JSON files.

    log_event() matches the progress listener signature, so an instance can
    be registered directly:

        engine.add_progress_listener(nav_logger.log_event)

    Args:
        config: NavConfig instance for file paths and directories.
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        os.makedirs(self.config.log_dir, exist_ok=True)

    # ------------------------------------------------------------------
    # Route persistence
    # ------------------------------------------------------------------

    def save_route(self, route: NavigationRoute) -> bool:
        """
        Serialize a route to JSON.

        Args:
            route: Route to save.

        Returns:
            True on success, False on failure.
        """
        filepath = self.config.route_filepath
        try:
            data = {
                "saved_at": datetime.now().isoformat(),
                "point_count": len(route.points),
                "maneuver_count": len(route.maneuvers),
                "route": route.to_dict(),
            }
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            logger.info(f"Route saved to {filepath} ({len(route.points)} points).")
            return True
        except IOError as e:
            logger.error(f"Failed to save route to {filepath}: {e}")
            return False

    def load_route(self, filepath: Optional[str] = None) -> Optional[NavigationRoute]:
        """
        Load a previously saved route from JSON.

        Args:
            filepath: Path override; uses config default if omitted.

        Returns:
            Validated NavigationRoute, or None if loading failed.
        """
        path = filepath or self.config.route_filepath
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            route = NavigationRoute.from_dict(data["route"])
            logger.info(f"Route loaded from {path} ({len(route.points)} points).")
            return route
        except (IOError, KeyError, ValueError) as e:  # InvalidRouteError is a ValueError
            logger.error(f"Failed to load route from {path}: {e}")
            return None

    # ------------------------------------------------------------------
    # Session event logging
    # ------------------------------------------------------------------

    def log_event(
        self,
        location: Fix,
        progress: ProgressRecord,
        decision: Optional[OffRouteDecision] = None,
    ) -> None:
        """
        Append a single navigation event to the session log file.

        Args:
            location: Published (snapped or filtered) location.
            progress: ProgressRecord of the same update.
            decision: Off-route decision, when available.
        """
        entry = {
            "timestamp": datetime.now().isoformat(),
            "lat": location.lat,
            "lon": location.lon,
            "heading": location.heading_deg,
            "progress": progress.to_dict(),
            "off_route": decision.to_dict() if decision else None,
        }
        try:
            with open(self.config.session_filepath, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except IOError as e:
            logger.error(f"Failed to write event log: {e}")
