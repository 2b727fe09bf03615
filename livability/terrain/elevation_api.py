"""
Bulk elevation point fetch from the Open-Meteo elevation API.

Used by administrative paths that need an N x N elevation grid rather than
slippy-map tiles. Requests go out in chunks with a courtesy delay between
them and retry on rate limits (see tile_fetch.get_with_retry).
"""

import logging
import time
from typing import Callable, Optional

import numpy as np
import requests

from livability import config
from livability.bounds import Bounds
from livability.terrain.tile_fetch import RetryPolicy, TileDecodeError, get_with_retry

logger = logging.getLogger(__name__)


def grid_coordinates(bounds: Bounds, n: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Row-major lat/lon arrays for an n x n grid, north row first.

    Returns:
        Tuple of (lats, lons), each flat with n*n entries
    """
    if n < 2:
        raise ValueError(f"Grid resolution must be >= 2, got {n}")
    lat_axis = np.linspace(bounds.north, bounds.south, n)
    lon_axis = np.linspace(bounds.west, bounds.east, n)
    lons, lats = np.meshgrid(lon_axis, lat_axis)
    return lats.ravel(), lons.ravel()


def fetch_elevation_grid(
    bounds: Bounds,
    n: int,
    session: Optional[requests.Session] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
    policy: Optional[RetryPolicy] = None,
    chunk_size: int = config.ELEVATION_API_CHUNK,
    courtesy_delay: float = config.ELEVATION_API_COURTESY_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> np.ndarray:
    """
    Fetch elevations for an n x n grid covering ``bounds``.

    Args:
        bounds: Area to sample
        n: Samples per side
        session: requests session (a new one is created if None)
        on_progress: Called with (fetched, total) after each chunk
        policy: Retry schedule for each chunk
        chunk_size: Points per request
        courtesy_delay: Seconds to pause between chunks
        sleep: Sleep function (injected by tests)

    Returns:
        (n, n) float64 array, north row first; missing values are NaN
    """
    lats, lons = grid_coordinates(bounds, n)
    total = lats.size
    elevations = np.full(total, np.nan)
    session = session or requests.Session()

    logger.info(f"Fetching {total} elevation points in chunks of {chunk_size}")
    start_time = time.time()

    for start in range(0, total, chunk_size):
        stop = min(start + chunk_size, total)
        params = {
            "latitude": ",".join(f"{v:.6f}" for v in lats[start:stop]),
            "longitude": ",".join(f"{v:.6f}" for v in lons[start:stop]),
        }
        response = get_with_retry(
            session, config.ELEVATION_API_URL, params=params, policy=policy, sleep=sleep
        )
        try:
            values = response.json()["elevation"]
        except (ValueError, KeyError) as e:
            raise TileDecodeError(f"Malformed elevation response: {e}") from e

        chunk = np.array([np.nan if v is None else float(v) for v in values], dtype=float)
        chunk = chunk[: stop - start]
        elevations[start:start + chunk.size] = chunk

        if on_progress is not None:
            on_progress(stop, total)
        if stop < total and courtesy_delay > 0:
            sleep(courtesy_delay)

    elapsed = time.time() - start_time
    logger.info(f"Fetched elevation grid {n}x{n} ({elapsed:.2f}s)")
    return elevations.reshape(n, n)
