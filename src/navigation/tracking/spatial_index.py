# spatial_index.py
# Coarse lat/lon grid over route points for proximity queries on long routes.
# Built once per route and read-only afterwards.

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .geo_utils import METERS_PER_DEG
from .models import Coord, coords_to_array
from .nav_config import NavConfig

logger = logging.getLogger(__name__)

GridKey = Tuple[int, int]


class PathSpatialIndex:
    """
    Buckets polyline indices into square cells of grid_size degrees.

    Routes shorter than min_points are not indexed because a linear scan is
    cheaper; find_nearby() then returns every index from min_index on, which
    is also what callers get on any unavailable index.

    Args:
        points:    Route polyline.
        grid_size: Cell edge in degrees (0.01 deg is about 1.1 km).
        min_points: Minimum polyline size worth indexing.
    """

    def __init__(
        self,
        points: Sequence[Coord],
        grid_size: Optional[float] = None,
        min_points: Optional[int] = None,
        config: Optional[NavConfig] = None,
    ) -> None:
        config = config or NavConfig()
        self.grid_size = config.grid_size_deg if grid_size is None else grid_size
        self.min_points = config.min_points_for_index if min_points is None else min_points
        self._size = len(points)
        self._grid: Dict[GridKey, List[int]] = {}
        self._built = False
        self._build(points)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _build(self, points: Sequence[Coord]) -> None:
        if self._size < self.min_points:
            logger.debug(f"Path too small ({self._size} points) - skipping spatial index")
            return

        started = time.perf_counter()
        cells = np.floor(coords_to_array(points) / self.grid_size).astype(np.int64)
        grid: Dict[GridKey, List[int]] = defaultdict(list)
        for index, (gx, gy) in enumerate(cells):
            grid[(int(gx), int(gy))].append(index)
        self._grid = dict(grid)
        self._built = True

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Spatial index built: {len(self._grid)} cells, {self._size} points, {elapsed_ms:.1f}ms"
        )

    def _key(self, lat: float, lon: float) -> GridKey:
        return int(np.floor(lat / self.grid_size)), int(np.floor(lon / self.grid_size))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_available(self) -> bool:
        return self._built

    @property
    def cell_count(self) -> int:
        return len(self._grid)

    def find_nearby(self, center: Coord, radius_meters: float, min_index: int = 0) -> List[int]:
        """
        Polyline indices in the cells around center.

        Args:
            center:        Query position.
            radius_meters: Search radius; converted to a whole number of cells.
            min_index:     Indices below this are dropped (direction of travel).

        Returns:
            Ascending list of unique indices.
        """
        min_index = max(0, min_index)
        if not self._built:
            return list(range(min_index, self._size))

        cell_radius = int((radius_meters / METERS_PER_DEG) / self.grid_size) + 1
        cx, cy = self._key(center.lat, center.lon)

        nearby = set()
        for dx in range(-cell_radius, cell_radius + 1):
            for dy in range(-cell_radius, cell_radius + 1):
                for index in self._grid.get((cx + dx, cy + dy), ()):
                    if index >= min_index:
                        nearby.add(index)

        result = sorted(nearby)
        logger.debug(
            f"Spatial index search: radius={int(radius_meters)}m, "
            f"found {len(result)} points (from {self._size} total)"
        )
        return result
