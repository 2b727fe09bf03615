"""
On-disk cache for the merged coarse elevation grid.

Implements .npz-based caching with hash validation so the coarse tile set
is only fetched once per tile source and extent.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from rasterio import Affine

from livability import config
from livability.bounds import Bounds
from livability.terrain.dem_grid import MergedElevationGrid
from livability.terrain.tile_fetch import TileSource

logger = logging.getLogger(__name__)


class ElevationGridCache:
    """
    Stores merged coarse grids keyed by a hash of their tile source.

    The cache stores:
    - elevation array and grid-to-world transform as a .npz file
    - metadata (source, zoom, extent, value range) as JSON

    Attributes:
        cache_dir: Where grid and metadata files live
        enabled: When False every call is a no-op
    """

    def __init__(self, cache_dir: Optional[Path] = None, enabled: bool = True):
        """
        Set up the cache directory.

        Args:
            cache_dir: Grid directory (default: config.ELEVATION_CACHE)
            enabled: Create the directory and read/write files
        """
        if cache_dir is None:
            cache_dir = config.ELEVATION_CACHE

        self.cache_dir = Path(cache_dir)
        self.enabled = enabled

        if self.enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Elevation cache initialized at: {self.cache_dir}")

    def compute_source_hash(self, source: TileSource, zoom: int, extent: Bounds) -> str:
        """
        Hash of everything that determines the merged grid contents.

        The hash changes when the URL template, encoding, zoom or extent change.

        Returns:
            SHA256 hex digest
        """
        parts = [source.url_template, source.encoding, str(zoom)]
        parts.extend(f"{v:.6f}" for v in extent.to_tuple())
        return hashlib.sha256("|".join(parts).encode()).hexdigest()

    def get_cache_path(self, source_hash: str, cache_name: str = "elevation") -> Path:
        return self.cache_dir / f"{cache_name}_{source_hash}.npz"

    def get_metadata_path(self, source_hash: str, cache_name: str = "elevation") -> Path:
        return self.cache_dir / f"{cache_name}_{source_hash}_meta.json"

    def save_cache(
        self,
        grid: MergedElevationGrid,
        source_hash: str,
        cache_name: str = "elevation",
    ) -> Tuple[Optional[Path], Optional[Path]]:
        """
        Save a merged grid to the cache.

        Returns:
            Tuple of (cache_file_path, metadata_file_path), or (None, None) when disabled
        """
        if not self.enabled:
            return None, None

        cache_path = self.get_cache_path(source_hash, cache_name)
        metadata_path = self.get_metadata_path(source_hash, cache_name)
        start_time = time.time()

        transform = grid.transform
        transform_list = [transform.a, transform.b, transform.c, transform.d, transform.e, transform.f]
        np.savez_compressed(
            cache_path,
            elevation=grid.data,
            transform_data=np.array(transform_list, dtype=np.float64),
            grid_info=np.array([grid.zoom, grid.tile_size], dtype=np.int64),
        )

        finite = np.isfinite(grid.data)
        metadata = {
            "source_hash": source_hash,
            "shape": list(grid.data.shape),
            "dtype": str(grid.data.dtype),
            "zoom": grid.zoom,
            "tile_size": grid.tile_size,
            "elev_min": float(grid.data[finite].min()) if finite.any() else None,
            "elev_max": float(grid.data[finite].max()) if finite.any() else None,
            "nodata_fraction": float(1.0 - finite.mean()) if grid.data.size else 1.0,
            "cache_time": time.time(),
            "transform": transform_list,
        }
        metadata_path.write_text(json.dumps(metadata, indent=2))

        elapsed = time.time() - start_time
        logger.info(f"Cached elevation grid to {cache_path.name} ({elapsed:.2f}s)")
        return cache_path, metadata_path

    def load_cache(
        self,
        source_hash: str,
        cache_name: str = "elevation",
    ) -> Optional[MergedElevationGrid]:
        """
        Load a cached merged grid.

        Returns:
            MergedElevationGrid, or None on a miss or an unreadable file
        """
        if not self.enabled:
            return None

        cache_path = self.get_cache_path(source_hash, cache_name)
        if not cache_path.exists():
            logger.debug(f"No cached grid at {cache_path.name}")
            return None

        try:
            start_time = time.time()
            with np.load(cache_path) as cache_data:
                data = cache_data["elevation"].astype(np.float32)
                transform = Affine(*tuple(cache_data["transform_data"]))
                zoom, tile_size = (int(v) for v in cache_data["grid_info"])
        except (OSError, KeyError, ValueError) as e:
            logger.warning(f"Unreadable cached grid {cache_path.name} ({e}), tiles will be refetched")
            return None

        grid = MergedElevationGrid(
            data=data,
            tx0=int(round(transform.c / tile_size)),
            ty0=int(round(transform.f / tile_size)),
            zoom=zoom,
            tile_size=tile_size,
        )
        elapsed = time.time() - start_time
        logger.info(f"Loaded elevation grid from cache ({elapsed:.2f}s)")
        logger.debug(f"Grid shape: {data.shape}, origin tile ({grid.tx0}, {grid.ty0})")
        return grid

    def clear_cache(self, cache_name: str = "elevation") -> int:
        """
        Delete every grid and metadata file written under ``cache_name``.

        Returns:
            Number of files deleted
        """
        if not self.enabled:
            return 0

        deleted_count = 0
        for cache_file in sorted(self.cache_dir.glob(f"{cache_name}_*")):
            try:
                cache_file.unlink()
                deleted_count += 1
                logger.debug(f"Removed {cache_file.name}")
            except OSError as e:
                logger.warning(f"Could not remove {cache_file.name}: {e}")

        logger.info(f"Removed {deleted_count} '{cache_name}' cache files")
        return deleted_count
