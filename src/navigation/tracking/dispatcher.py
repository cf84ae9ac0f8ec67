# dispatcher.py
# Listener registry for progress and off-route events.
# Listeners are plain callables; registration is safe during dispatch.

import logging
import threading
from typing import Callable, List, Optional

from .models import Fix, ListenerFailure, ProgressRecord

logger = logging.getLogger(__name__)

ProgressListener = Callable[[Fix, ProgressRecord], None]
OffRouteListener = Callable[[Fix], None]


class NavigationEventDispatcher:
    """
    Fans events out to registered listeners.

    Each dispatch iterates a snapshot of the listener list, so listeners may
    add or remove listeners (or be removed from another thread) mid-dispatch.
    A listener that raises is logged and skipped; the rest still run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._progress_listeners: List[ProgressListener] = []
        self._off_route_listeners: List[OffRouteListener] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_progress_listener(self, listener: ProgressListener) -> bool:
        """Register a listener; returns False (and warns) if already registered."""
        return self._add(self._progress_listeners, listener, "Progress")

    def remove_progress_listener(self, listener: Optional[ProgressListener] = None) -> None:
        """Remove one listener, or all of them when listener is None."""
        self._remove(self._progress_listeners, listener)

    def add_off_route_listener(self, listener: OffRouteListener) -> bool:
        return self._add(self._off_route_listeners, listener, "Off-route")

    def remove_off_route_listener(self, listener: Optional[OffRouteListener] = None) -> None:
        self._remove(self._off_route_listeners, listener)

    def _add(self, listeners: list, listener, kind: str) -> bool:
        with self._lock:
            if listener in listeners:
                logger.warning(f"{kind} listener already added: {listener!r}")
                return False
            listeners.append(listener)
            return True

    def _remove(self, listeners: list, listener) -> None:
        with self._lock:
            if listener is None:
                listeners.clear()
            elif listener in listeners:
                listeners.remove(listener)

    @property
    def progress_listener_count(self) -> int:
        with self._lock:
            return len(self._progress_listeners)

    @property
    def off_route_listener_count(self) -> int:
        with self._lock:
            return len(self._off_route_listeners)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def on_progress_change(self, location: Fix, progress: ProgressRecord) -> List[ListenerFailure]:
        with self._lock:
            listeners = list(self._progress_listeners)
        return self._notify(listeners, "progress", location, progress)

    def on_user_off_route(self, location: Fix) -> List[ListenerFailure]:
        with self._lock:
            listeners = list(self._off_route_listeners)
        return self._notify(listeners, "off-route", location)

    @staticmethod
    def _notify(listeners: list, event: str, *args) -> List[ListenerFailure]:
        failures: List[ListenerFailure] = []
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                failure = ListenerFailure(listener, event, e)
                logger.exception(str(failure))
                failures.append(failure)
        return failures
