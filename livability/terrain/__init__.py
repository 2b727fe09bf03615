"""
Terrain package: elevation tiles and Horn-kernel derivatives.

Core functionality:
- Tile maths and RGB elevation codecs (mapbox, terrarium)
- HTTP tile fetch with bounded retry/backoff
- Merged coarse grid, fine tile cache and on-disk grid cache
- TerrainProvider for point and viewport sampling
"""

from .derivatives import (
    ASPECT_FLAT,
    ASPECT_LABELS,
    FLAT_BEARING,
    horn_components,
    horn_kernel,
    horn_slope_grid,
)
from .dem_grid import FineTileCache, MergedElevationGrid
from .provider import PointSample, TerrainProvider, TerrainSamples
from .tile_fetch import RateLimitError, TileDecodeError, TileFetchError, TileSource

__all__ = [
    "ASPECT_FLAT",
    "ASPECT_LABELS",
    "FLAT_BEARING",
    "horn_components",
    "horn_kernel",
    "horn_slope_grid",
    "FineTileCache",
    "MergedElevationGrid",
    "PointSample",
    "TerrainProvider",
    "TerrainSamples",
    "RateLimitError",
    "TileDecodeError",
    "TileFetchError",
    "TileSource",
]
