# location_filter.py
# Scalar Kalman filter that smooths successive GPS fixes.
# One instance per navigation session; call reset() when the session ends.

import logging
import math
from typing import Optional, Tuple

from .models import FilterState
from .nav_config import NavConfig

logger = logging.getLogger(__name__)


class KalmanLocationFilter:
    """
    Smooths raw (lat, lon) fixes with a single shared variance.

    The measurement noise is the fix accuracy clamped into
    [min_accuracy, max_accuracy], so a fix claiming 0 m accuracy is not
    followed blindly and a 500 m fix is not ignored outright.

    Usage:
        kf = KalmanLocationFilter()
        lat, lon = kf.update(raw.lat, raw.lon, raw.accuracy_meters)
    """

    def __init__(
        self,
        process_noise: Optional[float] = None,
        min_accuracy: Optional[float] = None,
        max_accuracy: Optional[float] = None,
        config: Optional[NavConfig] = None,
    ) -> None:
        config = config or NavConfig()
        self.process_noise = config.process_noise if process_noise is None else process_noise
        self.min_accuracy = config.min_accuracy_m if min_accuracy is None else min_accuracy
        self.max_accuracy = config.max_accuracy_m if max_accuracy is None else max_accuracy

        self._lat = 0.0
        self._lon = 0.0
        self._p = 1.0
        self._initialized = False

    def update(self, lat: float, lon: float, accuracy: Optional[float]) -> Tuple[float, float]:
        """
        Feed one measurement and return the filtered position.

        Args:
            lat, lon: Measured position in decimal degrees.
            accuracy: Reported horizontal accuracy in metres (None or non-finite = worst case).

        Returns:
            (lat, lon) estimate. The first call returns the input unchanged.
        """
        r = self.max_accuracy if accuracy is None or not math.isfinite(accuracy) else accuracy
        r = min(max(r, self.min_accuracy), self.max_accuracy)

        if not self._initialized:
            self._lat, self._lon = lat, lon
            self._p = r
            self._initialized = True
            logger.debug(f"Kalman filter initialized: lat={lat}, lon={lon}, accuracy={r}")
            return self._lat, self._lon

        # Predict
        p_pred = self._p + self.process_noise

        # Update
        k = p_pred / (p_pred + r)
        self._lat += k * (lat - self._lat)
        self._lon += k * (lon - self._lon)
        self._p = (1.0 - k) * p_pred

        logger.debug(f"Kalman filter: k={k:.3f}, p={self._p:.2f}, accuracy={r}")
        return self._lat, self._lon

    def reset(self) -> None:
        """Forget all state (navigation start/stop)."""
        self._lat = 0.0
        self._lon = 0.0
        self._p = 1.0
        self._initialized = False
        logger.debug("Kalman filter reset")

    def current_estimate(self) -> Optional[Tuple[float, float]]:
        return (self._lat, self._lon) if self._initialized else None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def state(self) -> FilterState:
        return FilterState(self._lat, self._lon, self._p, self._initialized)
