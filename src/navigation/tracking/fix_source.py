# fix_source.py
# Position fix sources consumed by NavigationEngine.
# A source is iterated on the engine's worker thread; close() ends iteration.

import logging
import queue
import threading
import time
from typing import Iterator, Optional

from .geo_utils import calculate_bearing, haversine_distance
from .models import Fix, NavigationRoute

logger = logging.getLogger(__name__)

_STOP = object()


class FixSource:
    """
    Base class: an iterable of Fix objects that can be closed.

    Sources are single-use. Once closed they yield nothing further, so a new
    session needs a new source.
    """

    is_simulated: bool = False

    def __iter__(self) -> Iterator[Fix]:
        raise NotImplementedError

    def last_fix(self) -> Optional[Fix]:
        return None

    def close(self) -> None:
        pass

    @property
    def closed(self) -> bool:
        return False


class QueueFixSource(FixSource):
    """
    Push-style source: producers call push(), the engine iterates.

    Usage:
        source = QueueFixSource()
        engine.start(route, fix_source=source)
        source.push(Fix(lat, lon, accuracy_meters=8.0))
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._last: Optional[Fix] = None

    def push(self, fix: Fix) -> None:
        if self._closed.is_set():
            logger.warning("Fix pushed to a closed source was dropped.")
            return
        self._last = fix
        self._queue.put(fix)

    def last_fix(self) -> Optional[Fix]:
        return self._last

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_STOP)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[Fix]:
        # fixes pushed before close() are still delivered
        while True:
            item = self._queue.get()
            if item is _STOP:
                self._queue.put(_STOP)
                break
            yield item


class SimulatedFixSource(FixSource):
    """
    Walks the route polyline one point per interval.

    Each fix carries 5 m accuracy, the bearing to the next point and the
    speed implied by the previous hop. The first point is available from
    last_fix() before iteration starts.

    Args:
        route:      Route to follow.
        interval_s: Delay between fixes (0 = as fast as possible).
        accuracy_m: Accuracy reported on every fix.
    """

    is_simulated = True

    def __init__(self, route: NavigationRoute, interval_s: float = 1.0, accuracy_m: float = 5.0) -> None:
        self.route = route
        self.interval_s = interval_s
        self.accuracy_m = accuracy_m
        self._stop = threading.Event()
        self._last: Optional[Fix] = self._make_fix(0, speed=0.0) if route.points else None

    def last_fix(self) -> Optional[Fix]:
        return self._last

    def close(self) -> None:
        self._stop.set()

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def __iter__(self) -> Iterator[Fix]:
        points = self.route.points
        logger.debug(f"Simulation started: {len(points)} points, interval={self.interval_s}s")

        for index in range(len(points)):
            if self._stop.is_set():
                break
            speed = 0.0
            if index > 0 and self.interval_s > 0:
                prev, curr = points[index - 1], points[index]
                speed = haversine_distance(prev.lat, prev.lon, curr.lat, curr.lon) / self.interval_s

            fix = self._make_fix(index, speed)
            self._last = fix
            yield fix

            if index < len(points) - 1 and self._stop.wait(self.interval_s):
                break

        logger.debug("Simulation completed")

    def _make_fix(self, index: int, speed: float) -> Fix:
        points = self.route.points
        point = points[index]
        if index < len(points) - 1:
            nxt = points[index + 1]
            bearing = calculate_bearing(point.lat, point.lon, nxt.lat, nxt.lon)
        elif index > 0:
            prev = points[index - 1]
            bearing = calculate_bearing(prev.lat, prev.lon, point.lat, point.lon)
        else:
            bearing = 0.0

        return Fix(
            lat=point.lat,
            lon=point.lon,
            accuracy_meters=self.accuracy_m,
            speed_mps=speed,
            heading_deg=bearing,
            timestamp_ms=int(time.time() * 1000),
            provider="simulated",
        )
