"""
Great-circle distances and station interpolation.

Distances use the haversine formula on a spherical Earth (R = 6371 km),
vectorised with numpy so distance-to-nearest-facility over many points is a
single array expression.
"""

from dataclasses import dataclass, field
from typing import Sequence, Union

import numpy as np

EARTH_RADIUS_KM = 6371.0
EXACT_HIT_KM = 0.01

NumericType = Union[float, np.ndarray]


@dataclass
class Station:
    """A measurement station (or facility) with optional numeric readings."""

    lon: float
    lat: float
    values: dict[str, float] = field(default_factory=dict)


def haversine_km(lat1: NumericType, lon1: NumericType, lat2: NumericType, lon2: NumericType) -> NumericType:
    """Great-circle distance in km; broadcasts over array inputs."""
    lat1, lon1, lat2, lon2 = (np.radians(np.asarray(v, dtype=np.float64)) for v in (lat1, lon1, lat2, lon2))
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    d = EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    if d.ndim == 0:
        return float(d)
    return d


def nearest_distance_km(lat: float, lon: float, points: Sequence[Station]) -> float:
    """Distance to the closest point, or inf when there are none."""
    if not points:
        return float("inf")
    lats = np.array([p.lat for p in points])
    lons = np.array([p.lon for p in points])
    return float(np.min(haversine_km(lat, lon, lats, lons)))


def idw_interpolate_point(
    lat: float,
    lon: float,
    stations: Sequence[Station],
    num_nearest: int = 3,
    power: float = 2.0,
) -> dict[str, float]:
    """
    Inverse-distance-weighted station values at one point.

    Uses the ``num_nearest`` closest stations with weights ``1 / d**power``.
    A station closer than 10 m is returned as-is. Keys are taken from the
    nearest station.

    Returns:
        Interpolated values (empty dict when there are no stations)
    """
    if not stations:
        return {}

    lats = np.array([s.lat for s in stations])
    lons = np.array([s.lon for s in stations])
    dist = np.atleast_1d(haversine_km(lat, lon, lats, lons))
    order = np.argsort(dist, kind="stable")[:num_nearest]

    nearest = stations[int(order[0])]
    if dist[order[0]] < EXACT_HIT_KM:
        return dict(nearest.values)

    weights = 1.0 / dist[order] ** power
    total = weights.sum()
    result = {}
    for key in nearest.values:
        vals = np.array([stations[int(i)].values.get(key, np.nan) for i in order], dtype=np.float64)
        result[key] = float(np.sum(weights * vals) / total)
    return result
