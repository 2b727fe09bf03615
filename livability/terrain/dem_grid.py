"""
In-memory elevation rasters.

- MergedElevationGrid: the always-resident coarse grid stitched from every
  coarse tile covering the region, addressed by grid-relative pixels.
- FineTileCache: demand-loaded fine tiles keyed by packed integer tile keys.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from rasterio import Affine

from livability import config
from livability.bounds import Bounds
from livability.terrain.tiles import (
    lat_to_world_py,
    lon_to_world_px,
    pack_tile_key,
    tile_range,
)

logger = logging.getLogger(__name__)


@dataclass
class MergedElevationGrid:
    """
    Coarse elevation grid covering a whole tile range.

    Attributes:
        data: (height, width) float32 elevations, NaN = no data
        tx0: Tile x index of the left-most tile column
        ty0: Tile y index of the top-most tile row
        zoom: Tile zoom of the grid
        tile_size: Tile edge length in pixels
    """

    data: np.ndarray
    tx0: int
    ty0: int
    zoom: int = config.COARSE_ZOOM
    tile_size: int = config.TILE_SIZE
    _padded: Optional[np.ndarray] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(f"Elevation grid must be 2D, got shape {self.data.shape}")

    @classmethod
    def empty(
        cls,
        extent: Bounds,
        zoom: int = config.COARSE_ZOOM,
        tile_size: int = config.TILE_SIZE,
    ) -> "MergedElevationGrid":
        """NaN-filled grid sized to the tiles covering ``extent``."""
        min_tx, max_tx, min_ty, max_ty = tile_range(extent, zoom)
        height = (max_ty - min_ty + 1) * tile_size
        width = (max_tx - min_tx + 1) * tile_size
        data = np.full((height, width), np.nan, dtype=np.float32)
        return cls(data=data, tx0=min_tx, ty0=min_ty, zoom=zoom, tile_size=tile_size)

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def transform(self) -> Affine:
        """Grid pixel -> world pixel (at ``zoom``) transform."""
        return Affine.translation(self.tx0 * self.tile_size, self.ty0 * self.tile_size)

    @property
    def padded(self) -> np.ndarray:
        """Copy of ``data`` with a one-pixel NaN border, built on first use."""
        if self._padded is None:
            self._padded = np.pad(self.data, 1, mode="constant", constant_values=np.nan)
        return self._padded

    def write_tile(self, tx: int, ty: int, tile: np.ndarray) -> None:
        """Copy a decoded tile into its slot in the grid."""
        off_y = (ty - self.ty0) * self.tile_size
        off_x = (tx - self.tx0) * self.tile_size
        self.data[off_y:off_y + self.tile_size, off_x:off_x + self.tile_size] = tile
        self._padded = None

    def lon_to_px(self, lon):
        """Longitude to integer grid column (may fall outside the grid)."""
        wpx = lon_to_world_px(lon, self.zoom, self.tile_size)
        return np.floor(wpx - self.tx0 * self.tile_size).astype(np.int64)

    def lat_to_py(self, lat):
        """Latitude to integer grid row (may fall outside the grid)."""
        wpy = lat_to_world_py(lat, self.zoom, self.tile_size)
        return np.floor(wpy - self.ty0 * self.tile_size).astype(np.int64)


class FineTileCache:
    """
    Demand-loaded fine elevation tiles keyed by packed integer tile keys.

    Tiles are immutable once stored. Haloed copies (tile plus a one-pixel
    border read from neighbouring tiles) are memoised per tile and dropped
    whenever a neighbour arrives.
    """

    def __init__(self, tile_size: int = config.TILE_SIZE):
        self.tile_size = tile_size
        self._tiles: dict[int, np.ndarray] = {}
        self._halos: dict[int, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, key: int) -> bool:
        return key in self._tiles

    def has(self, zoom: int, x: int, y: int) -> bool:
        return pack_tile_key(zoom, x, y) in self._tiles

    def get(self, zoom: int, x: int, y: int) -> Optional[np.ndarray]:
        return self._tiles.get(pack_tile_key(zoom, x, y))

    def put(self, zoom: int, x: int, y: int, tile: np.ndarray) -> None:
        """Store a decoded tile and drop halos that border it."""
        if tile.shape != (self.tile_size, self.tile_size):
            raise ValueError(f"Tile must be {self.tile_size}x{self.tile_size}, got {tile.shape}")
        self._tiles[pack_tile_key(zoom, x, y)] = tile
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                self._halos.pop(pack_tile_key(zoom, x + dx, y + dy), None)

    def clear(self) -> None:
        self._tiles.clear()
        self._halos.clear()

    def haloed(self, zoom: int, x: int, y: int) -> Optional[np.ndarray]:
        """
        Tile with a one-pixel border taken from its eight neighbours.

        Border cells whose neighbour tile is not cached are NaN.

        Returns:
            (tile_size + 2, tile_size + 2) float32 array, or None if the tile is absent
        """
        key = pack_tile_key(zoom, x, y)
        tile = self._tiles.get(key)
        if tile is None:
            return None
        halo = self._halos.get(key)
        if halo is not None:
            return halo

        size = self.tile_size
        halo = np.full((size + 2, size + 2), np.nan, dtype=np.float32)
        halo[1:-1, 1:-1] = tile
        # (destination slice, source slice) for each neighbour direction
        spans = {-1: (slice(0, 1), slice(-1, None)), 0: (slice(1, -1), slice(None)), 1: (slice(-1, None), slice(0, 1))}
        for dy, (dst_rows, src_rows) in spans.items():
            for dx, (dst_cols, src_cols) in spans.items():
                if dx == 0 and dy == 0:
                    continue
                neighbour = self._tiles.get(pack_tile_key(zoom, x + dx, y + dy))
                if neighbour is not None:
                    halo[dst_rows, dst_cols] = neighbour[src_rows, src_cols]

        self._halos[key] = halo
        return halo
