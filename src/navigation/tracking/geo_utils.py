# geo_utils.py
# Pure mathematical / geographic helper functions.
# No side effects, no imports from other project modules.
# Every function is total over valid coordinates: degenerate input
# (zero-length segments, empty or single-point lines) returns a fallback.

import math
from typing import Optional, Tuple

import numpy as np


EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEG = math.pi * EARTH_RADIUS_M / 180.0   # ~111.2 km


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in metres.

    Args:
        lat1, lon1: Origin in decimal degrees.
        lat2, lon2: Destination in decimal degrees.

    Returns:
        Distance in metres.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_array(lat1, lon1, lat2, lon2) -> np.ndarray:
    """Vectorised haversine_distance over numpy arrays (metres)."""
    lat1, lon1, lat2, lon2 = (np.radians(np.asarray(v, dtype=float)) for v in (lat1, lon1, lat2, lon2))
    a = (
        np.sin((lat2 - lat1) / 2) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0.0, None)))


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Forward azimuth (bearing) from point 1 to point 2 in degrees [0, 360).

    Args:
        lat1, lon1: Origin in decimal degrees.
        lat2, lon2: Destination in decimal degrees.

    Returns:
        Bearing in degrees.
    """
    rlat1, rlon1 = math.radians(lat1), math.radians(lon1)
    rlat2, rlon2 = math.radians(lat2), math.radians(lon2)
    d_lon = rlon2 - rlon1
    y = math.sin(d_lon) * math.cos(rlat2)
    x = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(d_lon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def get_turn_instruction(bearing_diff: float) -> str:
    """
    Human-readable turn instruction derived from the change in bearing.

    Args:
        bearing_diff: Difference between consecutive bearings in degrees.

    Returns:
        Turn instruction string.
    """
    diff = (bearing_diff + 180) % 360 - 180
    if diff > 45:
        return "Turn sharp right"
    elif diff > 10:
        return "Turn right"
    elif diff < -45:
        return "Turn sharp left"
    elif diff < -10:
        return "Turn left"
    return "Go straight"


def shortest_angle_diff(angle1: float, angle2: float) -> float:
    """Signed difference angle2 - angle1 folded into [-180, 180)."""
    return (angle2 - angle1 + 180.0) % 360.0 - 180.0


def destination_point(lat: float, lon: float, bearing: float, distance_m: float) -> Tuple[float, float]:
    """
    Point reached by travelling distance_m along a great circle.

    Args:
        lat, lon:   Origin in decimal degrees.
        bearing:    Initial bearing in degrees.
        distance_m: Distance in metres.

    Returns:
        (lat, lon) of the destination.
    """
    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing)
    rlat = math.radians(lat)
    rlon = math.radians(lon)

    new_lat = math.asin(
        math.sin(rlat) * math.cos(delta)
        + math.cos(rlat) * math.sin(delta) * math.cos(theta)
    )
    new_lon = rlon + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(rlat),
        math.cos(delta) - math.sin(rlat) * math.sin(new_lat),
    )
    return math.degrees(new_lat), (math.degrees(new_lon) + 540.0) % 360.0 - 180.0


# ---------------------------------------------------------------------------
# Segment projection
# ---------------------------------------------------------------------------

def nearest_point_on_segment(
    lat: float, lon: float,
    lat1: float, lon1: float,
    lat2: float, lon2: float,
) -> Tuple[float, float, float]:
    """
    Clamped perpendicular projection of a point onto a segment.

    Longitude is scaled by cos(latitude) so the projection is perpendicular
    on the ground rather than in raw degrees.

    Returns:
        (lat, lon, t) where t in [0, 1] is the position along the segment.
        A zero-length segment returns its start with t = 0.
    """
    k = math.cos(math.radians((lat1 + lat2) / 2))
    dx, dy = (lon2 - lon1) * k, lat2 - lat1
    len_sq = dx * dx + dy * dy
    if len_sq == 0.0:
        return lat1, lon1, 0.0

    t = ((lon - lon1) * k * dx + (lat - lat1) * dy) / len_sq
    t = max(0.0, min(1.0, t))
    return lat1 + t * (lat2 - lat1), lon1 + t * (lon2 - lon1), t


def distance_to_segment(
    lat: float, lon: float,
    lat1: float, lon1: float,
    lat2: float, lon2: float,
) -> float:
    """Metres from a point to the closest point of a segment."""
    p_lat, p_lon, _ = nearest_point_on_segment(lat, lon, lat1, lon1, lat2, lon2)
    return haversine_distance(lat, lon, p_lat, p_lon)


# ---------------------------------------------------------------------------
# Polylines (numpy arrays of [lat, lon] rows)
# ---------------------------------------------------------------------------

def cumulative_distances(points: np.ndarray) -> np.ndarray:
    """
    Distance from the first point to every point along a polyline.

    Args:
        points: (N, 2) array of [lat, lon] rows.

    Returns:
        (N,) array; empty for an empty polyline.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    if len(points) == 0:
        return np.zeros(0)
    seg = haversine_array(points[:-1, 0], points[:-1, 1], points[1:, 0], points[1:, 1])
    return np.concatenate(([0.0], np.cumsum(seg)))


def polyline_length(points: np.ndarray) -> float:
    dist = cumulative_distances(points)
    return float(dist[-1]) if len(dist) else 0.0


def along(points: np.ndarray, distance_m: float) -> Optional[Tuple[float, float]]:
    """
    Point at a given distance along a polyline.

    Args:
        points:     (N, 2) array of [lat, lon] rows.
        distance_m: Distance from the first point in metres.

    Returns:
        (lat, lon); the first point for distance <= 0, the last point when
        distance exceeds the length, None for an empty polyline.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    if len(points) == 0:
        return None
    if len(points) == 1 or distance_m <= 0:
        return float(points[0, 0]), float(points[0, 1])

    cum = cumulative_distances(points)
    if distance_m >= cum[-1]:
        return float(points[-1, 0]), float(points[-1, 1])

    i = int(np.searchsorted(cum, distance_m, side="right")) - 1
    seg_len = cum[i + 1] - cum[i]
    ratio = (distance_m - cum[i]) / seg_len if seg_len > 0 else 0.0
    lat = points[i, 0] + (points[i + 1, 0] - points[i, 0]) * ratio
    lon = points[i, 1] + (points[i + 1, 1] - points[i, 1]) * ratio
    return float(lat), float(lon)


# ---------------------------------------------------------------------------
# Local metric plane (equirectangular around an origin)
# ---------------------------------------------------------------------------

def to_local_xy(points: np.ndarray, origin_lat: float, origin_lon: float) -> np.ndarray:
    """Project [lat, lon] rows to metres east/north of the origin."""
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    k = math.cos(math.radians(origin_lat))
    x = (points[:, 1] - origin_lon) * METERS_PER_DEG * k
    y = (points[:, 0] - origin_lat) * METERS_PER_DEG
    return np.column_stack((x, y))


def from_local_xy(x: float, y: float, origin_lat: float, origin_lon: float) -> Tuple[float, float]:
    """Inverse of to_local_xy for a single point."""
    k = math.cos(math.radians(origin_lat))
    lat = origin_lat + y / METERS_PER_DEG
    lon = origin_lon + (x / (METERS_PER_DEG * k) if k else 0.0)
    return lat, lon
