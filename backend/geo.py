"""Riskmap Backend — Great-circle distance helpers"""

import math

import numpy as np

from config import EARTH_RADIUS_KM


def to_radians(degrees: float) -> float:
    return degrees * (math.pi / 180)


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres (Haversine formula)."""
    dlat = to_radians(lat2 - lat1)
    dlon = to_radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2
         + math.cos(to_radians(lat1))
         * math.cos(to_radians(lat2))
         * math.sin(dlon / 2) ** 2)
    # Clamp `a` to [0, 1] to guard against floating-point overshoot
    a = max(0.0, min(1.0, a))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def distance_km_array(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Distances from one point to many, same formula as distance_km.

    NaN coordinates propagate as NaN distances, which never satisfy a
    radius comparison.
    """
    lat_r = np.radians(lat)
    lats_r = np.radians(lats)
    dlat = lats_r - lat_r
    dlon = np.radians(lons - lon)
    a = np.sin(dlat / 2) ** 2 + np.cos(lat_r) * np.cos(lats_r) * np.sin(dlon / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
