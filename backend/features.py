"""Riskmap Backend — Feature extraction around a target point

The feature vector is consumed positionally by the refinement model, so
its field order is part of the contract:

    idx  field                  meaning
    0    incident_density       in-radius incidents per km² (count / πr²)
    1    recent_activity        share of in-radius incidents from the last 24h
    2    very_recent_activity   share from the last hour
    3    night_ratio            share that happened 22:00–06:59
    4    weekend_ratio          share that happened on Saturday/Sunday
    5    type_diversity         distinct incident types / count
    6    avg_time_risk          mean time_risk() of the incidents' own timestamps
    7    current_time_risk      time_risk(now)
    8    is_weekend             1.0 when "now" is a weekend day
    9    current_hour           now.hour / 24
    10   current_day_of_week    now.weekday() / 6  (Monday = 0)

All ratios are 0 when nothing falls inside the radius.
"""

import math
from datetime import datetime, timedelta
from typing import NamedTuple, Sequence

import numpy as np

from config import DEFAULT_RADIUS_KM, FEATURE_NAMES
from geo import distance_km_array
from models import IncidentRecord
from temporal import is_night_hour, is_weekend, time_risk


class FeatureVector(NamedTuple):
    incident_density: float
    recent_activity: float
    very_recent_activity: float
    night_ratio: float
    weekend_ratio: float
    type_diversity: float
    avg_time_risk: float
    current_time_risk: float
    is_weekend: float
    current_hour: float
    current_day_of_week: float

    def as_array(self) -> np.ndarray:
        return np.array([self], dtype=np.float32)

    def as_dict(self) -> dict[str, float]:
        return {name: float(v) for name, v in zip(FEATURE_NAMES, self)}


class LocalFeatures(NamedTuple):
    features: FeatureVector
    incident_count: int
    recent_count: int


class IncidentSnapshot:
    """Per-incident arrays computed once for a fixed incident list and "now".

    A map scan extracts features at thousands of grid points against the
    same snapshot; everything that does not depend on the target point is
    hoisted here.
    """

    def __init__(self, incidents: Sequence[IncidentRecord], now: datetime):
        self.incidents = incidents
        self.now = now

        day_ago = now - timedelta(hours=24)
        hour_ago = now - timedelta(hours=1)
        timestamps = [inc.timestamp for inc in incidents]

        self.lats = np.array([inc.latitude for inc in incidents], dtype=np.float64)
        self.lons = np.array([inc.longitude for inc in incidents], dtype=np.float64)
        self.recent = np.array([ts >= day_ago for ts in timestamps], dtype=bool)
        self.very_recent = np.array([ts >= hour_ago for ts in timestamps], dtype=bool)
        self.night = np.array([is_night_hour(ts.hour) for ts in timestamps], dtype=bool)
        self.weekend = np.array([is_weekend(ts) for ts in timestamps], dtype=bool)
        self.time_risk = np.array([time_risk(ts) for ts in timestamps], dtype=np.float64)

        type_codes: dict[str, int] = {}
        self.type_codes = np.array(
            [type_codes.setdefault(inc.type, len(type_codes)) for inc in incidents],
            dtype=np.int64,
        )

        # Query-time features are the same for every target point
        self._current_time_risk = time_risk(now)
        self._is_weekend = 1.0 if is_weekend(now) else 0.0
        self._current_hour = now.hour / 24
        self._current_dow = now.weekday() / 6

    def __len__(self) -> int:
        return len(self.incidents)

    def extract(self, lat: float, lon: float, radius_km: float = DEFAULT_RADIUS_KM) -> LocalFeatures:
        if len(self.incidents):
            mask = distance_km_array(lat, lon, self.lats, self.lons) <= radius_km
        else:
            mask = np.zeros(0, dtype=bool)

        count = int(mask.sum())
        recent = int(self.recent[mask].sum())
        denom = max(count, 1)

        features = FeatureVector(
            incident_density=count / (math.pi * radius_km * radius_km),
            recent_activity=recent / denom,
            very_recent_activity=int(self.very_recent[mask].sum()) / denom,
            night_ratio=int(self.night[mask].sum()) / denom,
            weekend_ratio=int(self.weekend[mask].sum()) / denom,
            type_diversity=len(np.unique(self.type_codes[mask])) / denom,
            # fsum keeps the result independent of incident order
            avg_time_risk=math.fsum(self.time_risk[mask]) / denom,
            current_time_risk=self._current_time_risk,
            is_weekend=self._is_weekend,
            current_hour=self._current_hour,
            current_day_of_week=self._current_dow,
        )
        return LocalFeatures(features, count, recent)


def extract_features(
    lat: float,
    lon: float,
    incidents: Sequence[IncidentRecord],
    now: datetime,
    radius_km: float = DEFAULT_RADIUS_KM,
) -> LocalFeatures:
    """Feature vector for a single target point."""
    return IncidentSnapshot(incidents, now).extract(lat, lon, radius_km)
