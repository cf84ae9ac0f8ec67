# engine.py
# Public entry point for route progress tracking.
# Sequences filter -> progress -> off-route -> snap -> notify for every fix.

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Iterable, Optional, Tuple

from .dispatcher import NavigationEventDispatcher, OffRouteListener, ProgressListener
from .fix_source import FixSource
from .location_filter import KalmanLocationFilter
from .models import (
    Coord,
    CoordLike,
    Fix,
    InvalidFixError,
    Maneuver,
    NavigationRoute,
    OffRouteDecision,
    ProgressRecord,
    RouteSummary,
    SnapResult,
    load_route,
)
from .nav_config import NavConfig
from .off_route import OffRouteDetector
from .progress_processor import RouteProgressProcessor
from .snapper import RouteSnapper
from .spatial_index import PathSpatialIndex

logger = logging.getLogger(__name__)

UpdateResult = Tuple[Fix, ProgressRecord, OffRouteDecision]


class NavigationEngine:
    """
    Navigation session facade.

    Typical lifecycle:
        engine = NavigationEngine(config)
        route = engine.load_route(points, maneuvers, summary)
        engine.add_progress_listener(on_progress)
        engine.start(route, fix_source=SimulatedFixSource(route))
        ...
        engine.stop()

    Without a fix source the engine runs in push mode and on_fix() drives it.

    Fixes are processed one at a time under a lock. Listeners are called on a
    single notification thread, in the order the updates were computed.
    After stop() returns no listener is called for that session.

    Args:
        config:             Optional NavConfig; defaults to NavConfig().
        fix_source:         Default source used by start().
        dispatcher:         Listener registry (shared registries are allowed).
        snapper:            RouteSnapper used for progress and published locations.
        off_route_detector: OffRouteDetector for the session.
        location_filter:    KalmanLocationFilter applied to raw fixes.
    """

    def __init__(
        self,
        config: Optional[NavConfig] = None,
        fix_source: Optional[FixSource] = None,
        dispatcher: Optional[NavigationEventDispatcher] = None,
        snapper: Optional[RouteSnapper] = None,
        off_route_detector: Optional[OffRouteDetector] = None,
        location_filter: Optional[KalmanLocationFilter] = None,
    ) -> None:
        self.config = config or NavConfig()
        self.dispatcher = dispatcher or NavigationEventDispatcher()
        self.snapper = snapper or RouteSnapper()
        self.off_route_detector = off_route_detector or OffRouteDetector(config=self.config)
        self.location_filter = location_filter or KalmanLocationFilter(config=self.config)
        self._processor = RouteProgressProcessor(
            self.snapper, self.off_route_detector, config=self.config,
        )
        self._default_source = fix_source

        self._lock = threading.Lock()
        self._route: Optional[NavigationRoute] = None
        self._spatial_index: Optional[PathSpatialIndex] = None
        self._source: Optional[FixSource] = None
        self._worker: Optional[threading.Thread] = None
        self._last_decision: Optional[OffRouteDecision] = None
        self._active = False
        self._session = 0

        self._closed = False
        self._notifier_ident: Optional[int] = None
        self._notifier = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="nav-dispatch",
            initializer=self._mark_notifier_thread,
        )

    # ------------------------------------------------------------------
    # Route loading
    # ------------------------------------------------------------------

    @staticmethod
    def load_route(
        points: Iterable[CoordLike],
        maneuvers: Iterable[Maneuver],
        summary: RouteSummary,
    ) -> NavigationRoute:
        """Validate route parts; raises InvalidRouteError without side effects."""
        route = load_route(points, maneuvers, summary)
        logger.info(f"Route loaded: {len(route.points)} points, {len(route.maneuvers)} maneuvers.")
        return route

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def start(self, route: NavigationRoute, fix_source: Optional[FixSource] = None) -> ProgressRecord:
        """
        Begin (or restart) tracking a route.

        Any running session is stopped first. The initial fix is the source's
        last known fix, or the route's start location when there is none.

        Returns:
            The initial ProgressRecord.
        """
        self.stop()
        source = fix_source or self._default_source
        if source is not None and source.closed:
            logger.warning("Fix source is already closed; no fixes will arrive this session.")

        with self._lock:
            self._session += 1
            self._route = route
            self._spatial_index = PathSpatialIndex(route.points, config=self.config)
            self._source = source
            self._last_decision = None
            self.location_filter.reset()
            self.snapper.reset()
            self._processor.reset()
            self._active = True

            initial = self._initial_fix(route, source)
            logger.info(f"Navigation started at ({initial.lat:.6f}, {initial.lon:.6f})")
            _, progress, _ = self._process(initial, self._session)

            if source is not None:
                # its first fix waits here until the lock is released
                self._worker = threading.Thread(
                    target=self._run, args=(source, self._session),
                    name="nav-fixes", daemon=True,
                )
                self._worker.start()
        return progress

    def stop(self) -> None:
        """
        End the session. Idempotent and callable from any thread, listeners included.

        Closes the fix source, waits for the worker thread and drains queued
        notifications, so nothing is dispatched after this returns.
        """
        with self._lock:
            was_active = self._active
            self._active = False
            self._session += 1
            source, self._source = self._source, None
            worker, self._worker = self._worker, None
            self.location_filter.reset()

        if source is not None:
            source.close()
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        self.flush()

        if was_active:
            logger.info("Navigation stopped.")

    def close(self) -> None:
        """Stop and release the notification thread. The engine is unusable afterwards."""
        self.stop()
        self._closed = True
        self._notifier.shutdown(wait=True)

    def is_running(self) -> bool:
        with self._lock:
            if not self._active:
                return False
            return self._worker is None or self._worker.is_alive()

    def flush(self) -> None:
        """Block until every queued notification has been delivered."""
        if self._closed or threading.get_ident() == self._notifier_ident:
            return
        self._notifier.submit(lambda: None).result()

    # ------------------------------------------------------------------
    # GPS update (push mode, also used by the worker thread)
    # ------------------------------------------------------------------

    def on_fix(self, fix: Fix) -> Optional[UpdateResult]:
        """
        Process one raw fix.

        Raises:
            InvalidFixError: NaN or out-of-range coordinates. No state changes.

        Returns:
            (published location, progress, off-route decision), or None when
            no session is running.
        """
        fix.validate()
        with self._lock:
            return self._handle(fix, self._session)

    def _run(self, source: FixSource, session: int) -> None:
        try:
            for fix in source:
                try:
                    fix.validate()
                except InvalidFixError as e:
                    logger.warning(f"Dropped fix: {e}")
                    continue
                with self._lock:
                    if session != self._session:
                        break
                    self._handle(fix, session)
        except Exception:
            logger.exception("Fix source failed; session loop ended.")
        logger.debug("Fix loop finished.")

    def _handle(self, fix: Fix, session: int) -> Optional[UpdateResult]:
        if not self._active or self._route is None or session != self._session:
            logger.debug("Fix ignored: navigation is not running.")
            return None
        return self._process(fix, session)

    def _process(self, raw: Fix, session: int) -> UpdateResult:
        # Caller holds self._lock
        lat, lon = self.location_filter.update(raw.lat, raw.lon, raw.accuracy_meters)
        filtered = replace(raw, lat=lat, lon=lon)

        progress = self._processor.build_progress(self._route, filtered)
        decision = self.off_route_detector.evaluate(raw.coord, self._route_reference(raw, progress))
        self._last_decision = decision

        location = self._published_location(filtered, progress, decision)
        logger.debug(
            f"Update: index={progress.polyline_index}, maneuver={progress.maneuver_index}, "
            f"remaining={progress.distance_remaining:.1f}m, off_route={decision.reason}"
        )
        self._notifier.submit(self._notify, session, location, progress, decision)
        return location, progress, decision

    def _route_reference(self, raw: Fix, progress: ProgressRecord) -> Coord:
        """Raw fix projected onto the current and next legs (whole route if both are empty)."""
        lookahead = progress.current_leg_points + (progress.next_leg_points or ())
        if not lookahead:
            lookahead = progress.route.points
        return self.snapper.snap_to_leg(raw.coord, lookahead).coord

    def _published_location(self, filtered: Fix, progress: ProgressRecord, decision: OffRouteDecision) -> Fix:
        simulated = bool(self._source is not None and self._source.is_simulated)
        if self.config.snap_to_route and (not decision.is_off_route or simulated):
            return self.snapper.snap_location(filtered, progress)
        return filtered

    def _notify(self, session: int, location: Fix, progress: ProgressRecord, decision: OffRouteDecision) -> None:
        if session != self._session:
            return
        self.dispatcher.on_progress_change(location, progress)
        if decision.is_off_route:
            self.dispatcher.on_user_off_route(location)

    def _mark_notifier_thread(self) -> None:
        self._notifier_ident = threading.get_ident()

    @staticmethod
    def _initial_fix(route: NavigationRoute, source: Optional[FixSource]) -> Fix:
        fix = source.last_fix() if source is not None else None
        if fix is not None:
            try:
                return fix.validate()
            except InvalidFixError as e:
                logger.warning(f"Ignoring invalid initial fix: {e}")
        start = route.summary.start_location
        return Fix(lat=start.lat, lon=start.lon)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_progress(self) -> Optional[ProgressRecord]:
        with self._lock:
            return self._processor.route_progress

    def previous_progress(self) -> Optional[ProgressRecord]:
        with self._lock:
            return self._processor.previous_progress

    def last_decision(self) -> Optional[OffRouteDecision]:
        with self._lock:
            return self._last_decision

    @property
    def route(self) -> Optional[NavigationRoute]:
        with self._lock:
            return self._route

    @property
    def spatial_index(self) -> Optional[PathSpatialIndex]:
        return self._spatial_index

    def relocalize(self, fix: Fix) -> Optional[SnapResult]:
        """
        Search the whole route for a fix using the weighted snapper.

        The search starts from the last known route index and uses the fix
        speed and heading. Returns None when no route is active.
        """
        fix.validate()
        with self._lock:
            if self._route is None:
                return None
            progress = self._processor.route_progress
            start_index = progress.polyline_index if progress else 0
            return self.snapper.snap_to_route(
                fix.coord,
                self._route.points,
                start_index,
                bearing=fix.heading_deg,
                speed=fix.speed_mps,
                spatial_index=self._spatial_index,
            )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_progress_listener(self, listener: ProgressListener) -> bool:
        return self.dispatcher.add_progress_listener(listener)

    def remove_progress_listener(self, listener: Optional[ProgressListener] = None) -> None:
        self.dispatcher.remove_progress_listener(listener)

    def add_off_route_listener(self, listener: OffRouteListener) -> bool:
        return self.dispatcher.add_off_route_listener(listener)

    def remove_off_route_listener(self, listener: Optional[OffRouteListener] = None) -> None:
        self.dispatcher.remove_off_route_listener(listener)
