"""
Terrain derivative provider.

Serves slope, elevation and aspect at a single coordinate or over a whole
viewport grid. Two tiers of elevation data are used:

- a coarse merged grid covering the full region (always resident once loaded)
- fine tiles demand-loaded per viewport at zoom 12-14

Each pixel takes the finest zoom with a cached tile at that pixel, so one
viewport can mix zooms. Fine data wins where its centre sample is valid;
otherwise the coarse grid is used; otherwise the sample has no data.

Point queries and the viewport sampler share one vectorised code path, so
a click on a pixel reports exactly what the heatmap used for it.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional

import numpy as np
import requests
from tqdm import tqdm

from livability import config
from livability.bounds import Bounds
from livability.terrain.cache import ElevationGridCache
from livability.terrain.dem_grid import FineTileCache, MergedElevationGrid
from livability.terrain.derivatives import (
    ASPECT_FLAT,
    NEIGHBOUR_OFFSETS,
    bearing_to_aspect_code,
    bearing_to_label,
    horn_components,
)
from livability.terrain.tile_fetch import RetryPolicy, TileFetchError, TileSource, fetch_tile
from livability.terrain.tiles import (
    cell_size_m,
    fine_dem_zoom,
    lat_to_world_py,
    lon_to_world_px,
    pack_tile_key,
    tile_range,
)

logger = logging.getLogger(__name__)

DEFAULT_FINE_SOURCE = TileSource(config.DEFAULT_FINE_DEM_URL, "mapbox")


@dataclass
class TerrainSamples:
    """
    Per-pixel terrain samples for a viewport grid, row-major.

    Attributes:
        slope: float32 slope in degrees (NaN = no data)
        elevation: float32 elevation in metres (NaN = no data)
        aspect: uint8 aspect codes (ASPECT_FLAT for flat or no data)
        has_data: bool validity mask
        rows: Grid rows
        cols: Grid columns
    """

    slope: np.ndarray
    elevation: np.ndarray
    aspect: np.ndarray
    has_data: np.ndarray
    rows: int
    cols: int

    @classmethod
    def empty(cls, rows: int, cols: int) -> "TerrainSamples":
        n = rows * cols
        return cls(
            slope=np.full(n, np.nan, dtype=np.float32),
            elevation=np.full(n, np.nan, dtype=np.float32),
            aspect=np.full(n, ASPECT_FLAT, dtype=np.uint8),
            has_data=np.zeros(n, dtype=bool),
            rows=rows,
            cols=cols,
        )


@dataclass
class PointSample:
    """Terrain at one coordinate; None fields mean no data."""

    lon: float
    lat: float
    slope: Optional[float]
    elevation: Optional[float]
    bearing: Optional[float]
    aspect_label: Optional[str]
    source: Optional[str]


class TerrainProvider:
    """
    Owns the coarse merged grid and the fine tile cache for one tile source.

    Attributes:
        source: Coarse tile source (None until configured)
        fine_source: Fine tile source (always mapbox-encoded)
        extent: Region covered by the coarse grid
        failed_tiles: Packed keys of tiles whose fetch failed for this source
    """

    def __init__(
        self,
        source: Optional[TileSource] = None,
        fine_source: Optional[TileSource] = DEFAULT_FINE_SOURCE,
        extent: Optional[Bounds] = None,
        coarse_zoom: int = config.COARSE_ZOOM,
        session: Optional[requests.Session] = None,
        cache: Optional[ElevationGridCache] = None,
        max_workers: int = config.TILE_FETCH_WORKERS,
        retry_policy: Optional[RetryPolicy] = None,
        fine_zooms: tuple = config.FINE_ZOOMS,
        tile_size: int = config.TILE_SIZE,
        show_progress: bool = False,
    ):
        self.source = source
        self.fine_source = fine_source
        self.extent = extent or Bounds.from_tuple(config.REGION_EXTENT)
        self.coarse_zoom = coarse_zoom
        self.session = session or requests.Session()
        self.cache = cache
        self.max_workers = max_workers
        self.retry_policy = retry_policy
        self.fine_zooms = tuple(fine_zooms)
        self.tile_size = tile_size
        self.show_progress = show_progress

        self.failed_tiles: set[int] = set()
        self._grid: Optional[MergedElevationGrid] = None
        self._fine = FineTileCache(tile_size)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @property
    def grid(self) -> Optional[MergedElevationGrid]:
        return self._grid

    @property
    def fine_tiles(self) -> FineTileCache:
        return self._fine

    @property
    def is_loaded(self) -> bool:
        return self._grid is not None

    def configure(self, source: TileSource) -> bool:
        """
        Set the coarse tile source.

        Returns:
            True if the source changed and the merged grid was dropped
        """
        if self.source == source:
            return False
        logger.info(f"Configuring elevation source {source.url_template} ({source.encoding})")
        self.source = source
        self._grid = None
        self.failed_tiles.clear()
        return True

    def set_grid(self, grid: MergedElevationGrid) -> None:
        """Install an already-built coarse grid."""
        self._grid = grid

    def load(self) -> MergedElevationGrid:
        """
        Build the coarse merged grid, fetching every tile that covers the extent.

        Idempotent: a loaded grid is returned as is. Tiles that fail to fetch
        stay NaN and are recorded in ``failed_tiles``.

        Raises:
            ValueError: No tile source configured
        """
        if self._grid is not None:
            return self._grid
        if self.source is None:
            raise ValueError("No elevation tile source configured")

        source_hash = None
        if self.cache is not None:
            source_hash = self.cache.compute_source_hash(self.source, self.coarse_zoom, self.extent)
            cached = self.cache.load_cache(source_hash)
            if cached is not None:
                self._grid = cached
                return cached

        grid = MergedElevationGrid.empty(self.extent, self.coarse_zoom, self.tile_size)
        min_tx, max_tx, min_ty, max_ty = tile_range(self.extent, self.coarse_zoom)
        coords = [(tx, ty) for ty in range(min_ty, max_ty + 1) for tx in range(min_tx, max_tx + 1)]

        logger.info(
            f"Loading {len(coords)} elevation tiles at z{self.coarse_zoom} "
            f"(grid {grid.width}x{grid.height})"
        )
        start_time = time.time()
        loaded = self._fetch_tiles(self.source, self.coarse_zoom, coords, grid.write_tile)

        self._grid = grid
        elapsed = time.time() - start_time
        logger.info(f"Loaded {loaded}/{len(coords)} elevation tiles ({elapsed:.2f}s)")

        if self.cache is not None and loaded == len(coords):
            self.cache.save_cache(grid, source_hash)
        return grid

    def load_viewport_tiles(
        self,
        bounds: Bounds,
        target_m: float,
        max_tiles: int = config.MAX_FINE_TILES_PER_VIEWPORT,
    ) -> bool:
        """
        Demand-load the fine tiles covering ``bounds`` for a target resolution.

        Already cached and previously failed tiles are skipped.

        Returns:
            True when at least one new tile was stored
        """
        if self.fine_source is None:
            return False
        bounds = bounds.clamp_to(self.extent)
        if bounds.is_degenerate():
            return False

        zoom = fine_dem_zoom(target_m)
        min_tx, max_tx, min_ty, max_ty = tile_range(bounds, zoom)
        coords = [
            (tx, ty)
            for ty in range(min_ty, max_ty + 1)
            for tx in range(min_tx, max_tx + 1)
            if not self._fine.has(zoom, tx, ty) and pack_tile_key(zoom, tx, ty) not in self.failed_tiles
        ]
        if not coords:
            return False
        if len(coords) > max_tiles:
            logger.warning(
                f"Viewport needs {len(coords)} fine tiles at z{zoom} (limit {max_tiles}), skipping"
            )
            return False

        def store(tx, ty, tile):
            self._fine.put(zoom, tx, ty, tile)

        loaded = self._fetch_tiles(self.fine_source, zoom, coords, store)
        logger.debug(f"Loaded {loaded}/{len(coords)} fine tiles at z{zoom}")
        return loaded > 0

    def put_fine_tile(self, zoom: int, x: int, y: int, tile: np.ndarray) -> None:
        """Store an already-decoded fine tile."""
        self._fine.put(zoom, x, y, np.asarray(tile, dtype=np.float32))

    def _fetch_tiles(self, source: TileSource, zoom: int, coords: list, store) -> int:
        """
        Fetch tiles concurrently; ``store(tx, ty, tile)`` runs on this thread only.

        Returns:
            Number of tiles stored
        """
        loaded = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_map = {
                executor.submit(
                    fetch_tile, self.session, source, zoom, tx, ty, self.retry_policy, self.tile_size
                ): (tx, ty)
                for tx, ty in coords
            }
            with tqdm(
                total=len(future_map),
                desc=f"Fetching z{zoom} tiles",
                disable=not self.show_progress,
            ) as pbar:
                for future in as_completed(future_map):
                    tx, ty = future_map[future]
                    try:
                        tile = future.result()
                    except TileFetchError as e:
                        logger.warning(f"Tile {zoom}/{tx}/{ty} unavailable: {e}")
                        self.failed_tiles.add(pack_tile_key(zoom, tx, ty))
                    else:
                        store(tx, ty, tile)
                        loaded += 1
                    pbar.update(1)
        return loaded

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def best_fine_zoom_at(self, lon: float, lat: float) -> Optional[int]:
        """Finest zoom with a cached fine tile at the coordinate, or None."""
        if not len(self._fine):
            return None
        for zoom in self.fine_zooms:
            tx = int(np.floor(lon_to_world_px(lon, zoom) / self.tile_size))
            ty = int(np.floor(lat_to_world_py(lat, zoom) / self.tile_size))
            if self._fine.has(zoom, tx, ty):
                return zoom
        return None

    def _sample(self, lons: np.ndarray, lats: np.ndarray):
        """
        Horn-kernel sampling on the grid formed by ``lats`` (rows) x ``lons`` (cols).

        Trigonometric terms are computed once per row and once per column.

        Returns:
            Tuple of (slope, elevation, bearing, valid, fine_mask), each (rows, cols)
        """
        lons = np.asarray(lons, dtype=np.float64).ravel()
        lats = np.asarray(lats, dtype=np.float64).ravel()
        rows, cols = lats.size, lons.size
        size = self.tile_size

        window = np.full((9, rows, cols), np.nan)
        cell_w = np.full((rows, cols), np.nan)
        cell_h = np.full((rows, cols), np.nan)
        fine_mask = np.zeros((rows, cols), dtype=bool)
        # Pixels covered by a cached tile at a finer zoom; a NaN centre there
        # falls through to the coarse grid, not to a coarser fine zoom
        claimed = np.zeros((rows, cols), dtype=bool)

        zooms = self.fine_zooms if len(self._fine) else ()
        for zoom in zooms:
            wpx = lon_to_world_px(lons, zoom, size)
            wpy = lat_to_world_py(lats, zoom, size)
            col_tx = np.floor(wpx / size).astype(np.int64)
            row_ty = np.floor(wpy / size).astype(np.int64)
            col_lx = np.floor(wpx - col_tx * size).astype(np.int64) + 1
            row_ly = np.floor(wpy - row_ty * size).astype(np.int64) + 1
            row_cw, row_ch = cell_size_m(lats, zoom, size)

            col_groups = [(int(tx), np.flatnonzero(col_tx == tx)) for tx in np.unique(col_tx)]
            for ty in np.unique(row_ty):
                r_idx = np.flatnonzero(row_ty == ty)
                for tx, c_idx in col_groups:
                    if not self._fine.has(zoom, tx, int(ty)):
                        continue
                    block = np.ix_(r_idx, c_idx)
                    fresh = ~claimed[block]
                    if not fresh.any():
                        continue
                    halo = self._fine.haloed(zoom, tx, int(ty))
                    ly = row_ly[r_idx][:, None]
                    lx = col_lx[c_idx][None, :]
                    for k, (dy, dx) in enumerate(NEIGHBOUR_OFFSETS):
                        window[k][block] = np.where(fresh, halo[ly + dy, lx + dx], window[k][block])
                    fine_mask[block] |= fresh & ~np.isnan(window[4][block])
                    cell_w[block] = np.where(fresh, row_cw[r_idx][:, None], cell_w[block])
                    cell_h[block] = np.where(fresh, row_ch[r_idx][:, None], cell_h[block])
                    claimed[block] = True

        use_coarse = np.zeros((rows, cols), dtype=bool)
        grid = self._grid
        if grid is not None:
            px = grid.lon_to_px(lons)
            py = grid.lat_to_py(lats)
            inside = ((py >= 0) & (py < grid.height))[:, None] & ((px >= 0) & (px < grid.width))[None, :]
            use_coarse = inside & ~fine_mask
            if use_coarse.any():
                padded = grid.padded
                pyc = np.clip(py, 0, grid.height - 1) + 1
                pxc = np.clip(px, 0, grid.width - 1) + 1
                for k, (dy, dx) in enumerate(NEIGHBOUR_OFFSETS):
                    values = padded[(pyc + dy)[:, None], (pxc + dx)[None, :]]
                    window[k] = np.where(use_coarse, values, window[k])
                row_cw, row_ch = cell_size_m(lats, grid.zoom, grid.tile_size)
                cell_w = np.where(use_coarse, row_cw[:, None], cell_w)
                cell_h = np.where(use_coarse, row_ch[:, None], cell_h)

        window[4] = np.where(fine_mask | use_coarse, window[4], np.nan)
        slope, bearing, valid = horn_components(window, cell_w, cell_h)
        elevation = np.where(valid, window[4], np.nan)
        return slope, elevation, bearing, valid, fine_mask & valid

    def sample_viewport(self, bounds: Bounds, cols: int, rows: int) -> TerrainSamples:
        """
        Sample slope, elevation and aspect at every cell centre of a viewport grid.

        Assumes needed tiles are already resident; gaps come back as no data.

        Args:
            bounds: Viewport rectangle
            cols: Grid columns
            rows: Grid rows

        Returns:
            TerrainSamples with flat row-major buffers
        """
        if cols <= 0 or rows <= 0:
            raise ValueError(f"Raster dimensions must be positive, got {cols}x{rows}")
        if self._grid is None and not len(self._fine):
            return TerrainSamples.empty(rows, cols)

        dx = (bounds.east - bounds.west) / cols
        dy = (bounds.north - bounds.south) / rows
        lons = bounds.west + (np.arange(cols) + 0.5) * dx
        lats = bounds.north - (np.arange(rows) + 0.5) * dy

        slope, elevation, bearing, valid, _ = self._sample(lons, lats)
        return TerrainSamples(
            slope=slope.astype(np.float32).ravel(),
            elevation=elevation.astype(np.float32).ravel(),
            aspect=bearing_to_aspect_code(bearing).ravel(),
            has_data=valid.ravel(),
            rows=rows,
            cols=cols,
        )

    def sample_point(self, lon: float, lat: float) -> PointSample:
        """Slope, elevation and aspect at one coordinate."""
        slope, elevation, bearing, valid, fine = self._sample(np.array([lon]), np.array([lat]))
        if not valid[0, 0]:
            return PointSample(lon, lat, None, None, None, None, None)
        b = float(bearing[0, 0])
        return PointSample(
            lon=lon,
            lat=lat,
            slope=float(slope[0, 0]),
            elevation=float(elevation[0, 0]),
            bearing=b,
            aspect_label=bearing_to_label(b),
            source="fine" if fine[0, 0] else "coarse",
        )

    def elevation_at(self, lon: float, lat: float) -> Optional[float]:
        return self.sample_point(lon, lat).elevation

    def slope_at(self, lon: float, lat: float) -> Optional[float]:
        return self.sample_point(lon, lat).slope

    def aspect_at(self, lon: float, lat: float) -> Optional[float]:
        """Downhill bearing in degrees, FLAT_BEARING when flat, None without data."""
        return self.sample_point(lon, lat).bearing
