"""Riskmap Backend — Sample grid over a bounding box"""

import math
from typing import Iterator, NamedTuple, Optional, Sequence

from config import AUTO_BOUNDS_PADDING_DEG, GRID_STEP_DEG
from models import BoundingBox, IncidentRecord

# Admits the far edge when (north - south) / step lands a hair under an integer
_EDGE_TOLERANCE = 1e-9


class GridPoint(NamedTuple):
    lat: float
    lon: float


class Grid:
    """Evenly spaced points from south→north (outer) and west→east (inner).

    Both edges are inclusive. Coordinates are computed as ``edge + i * step``
    rather than by repeated addition, so long rows don't drift. Iterating
    twice yields the same points.
    """

    def __init__(self, bounds: BoundingBox, step: float = GRID_STEP_DEG):
        if not step > 0:
            raise ValueError(f"Grid step must be positive, got {step}")
        self.bounds = bounds
        self.step = step
        if bounds.north <= bounds.south or bounds.east <= bounds.west:
            self.n_lat = self.n_lon = 0
        else:
            self.n_lat = math.floor((bounds.north - bounds.south) / step + _EDGE_TOLERANCE) + 1
            self.n_lon = math.floor((bounds.east - bounds.west) / step + _EDGE_TOLERANCE) + 1

    def __len__(self) -> int:
        return self.n_lat * self.n_lon

    def __iter__(self) -> Iterator[GridPoint]:
        south, west, step = self.bounds.south, self.bounds.west, self.step
        for i in range(self.n_lat):
            lat = south + i * step
            for j in range(self.n_lon):
                yield GridPoint(lat, west + j * step)


def generate_grid(bounds: BoundingBox, step: float = GRID_STEP_DEG) -> Grid:
    return Grid(bounds, step)


def bounds_from_incidents(
    incidents: Sequence[IncidentRecord],
    padding: float = AUTO_BOUNDS_PADDING_DEG,
) -> Optional[BoundingBox]:
    """Coordinate extrema of the incident set, widened by ``padding`` degrees."""
    if not incidents:
        return None
    lats = [i.latitude for i in incidents]
    lons = [i.longitude for i in incidents]
    return BoundingBox(
        north=max(lats) + padding,
        south=min(lats) - padding,
        east=max(lons) + padding,
        west=min(lons) - padding,
    )
