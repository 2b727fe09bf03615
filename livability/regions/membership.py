"""
Region membership rasters.

For each raster cell, find the region whose polygon contains the cell
centroid, or OUTSIDE. Region bounding boxes prune the candidates per row
so each cell only meets the few regions whose box spans it; the first
containing region in index order wins.

Rasters are memoised by (viewport bounds, dimensions, region count, region
revision). Scoring configuration is not part of the key, so weight or curve
edits reuse the cached raster.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

import numpy as np
import shapely

from livability import config
from livability.bounds import Bounds
from livability.regions.geometry import RegionSet

logger = logging.getLogger(__name__)

OUTSIDE = -1


@dataclass(frozen=True)
class RasterSpec:
    """Viewport bounds plus raster dimensions."""

    bounds: Bounds
    cols: int
    rows: int

    def __post_init__(self):
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError(f"Raster dimensions must be positive, got {self.cols}x{self.rows}")

    def cell_centres(self) -> tuple[np.ndarray, np.ndarray]:
        """Per-column longitudes and per-row latitudes of cell centres (north row first)."""
        b = self.bounds
        dx = (b.east - b.west) / self.cols
        dy = (b.north - b.south) / self.rows
        lons = b.west + (np.arange(self.cols) + 0.5) * dx
        lats = b.north - (np.arange(self.rows) + 0.5) * dy
        return lons, lats


def membership_dims(
    cols: int,
    rows: int,
    max_cols: int = config.MEMBER_MAX_COLS,
    max_rows: int = config.MEMBER_MAX_ROWS,
) -> tuple[int, int]:
    """Membership raster size for a score raster, capped at (max_cols, max_rows)."""
    return min(cols, max_cols), min(rows, max_rows)


def pixel_to_member_index(cols: int, rows: int, m_cols: int, m_rows: int) -> np.ndarray:
    """
    Flat membership-cell index for every score-raster pixel (row-major).

    Uses integer-ratio mapping: ``(row * m_rows // rows) * m_cols + col * m_cols // cols``.
    """
    member_rows = (np.arange(rows, dtype=np.int64) * m_rows) // rows
    member_cols = (np.arange(cols, dtype=np.int64) * m_cols) // cols
    return (member_rows[:, None] * m_cols + member_cols[None, :]).ravel()


class MembershipIndex:
    """
    Owned, versioned cache of region bounding boxes and membership rasters.

    Attributes:
        max_cols: Column cap for membership rasters
        max_rows: Row cap for membership rasters
        max_entries: Number of rasters kept (least recently used dropped first)
        hits: Raster cache hits
        misses: Raster cache misses (rebuilds)
        bbox_builds: Number of times region bounding boxes were recomputed
    """

    def __init__(
        self,
        max_cols: int = config.MEMBER_MAX_COLS,
        max_rows: int = config.MEMBER_MAX_ROWS,
        max_entries: int = 8,
    ):
        self.max_cols = max_cols
        self.max_rows = max_rows
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0
        self.bbox_builds = 0
        self._bbox_key: Optional[tuple] = None
        self._bboxes: Optional[np.ndarray] = None
        self._rasters: "OrderedDict[tuple, np.ndarray]" = OrderedDict()

    @staticmethod
    def _region_key(regions: RegionSet) -> tuple[int, int]:
        return (len(regions), regions.revision)

    def bboxes(self, regions: RegionSet) -> np.ndarray:
        """Per-region (minx, miny, maxx, maxy), rebuilt only when the region set changes."""
        key = self._region_key(regions)
        if self._bbox_key != key:
            self._bboxes = regions.bbox_array()
            self._bbox_key = key
            self.bbox_builds += 1
            logger.debug(f"Built bounding boxes for {len(regions)} regions")
        return self._bboxes

    def invalidate(self) -> None:
        """Drop every cached raster and bounding box."""
        self._rasters.clear()
        self._bbox_key = None
        self._bboxes = None

    def stats(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "bbox_builds": self.bbox_builds,
            "entries": len(self._rasters),
        }

    def membership(self, regions: RegionSet, spec: RasterSpec) -> np.ndarray:
        """
        Membership raster at exactly ``spec`` resolution.

        Returns:
            Flat int32 array of region indices (OUTSIDE = -1), row-major.
            The cached array is shared; callers must not modify it.
        """
        key = (spec.bounds.to_tuple(), spec.cols, spec.rows) + self._region_key(regions)
        cached = self._rasters.get(key)
        if cached is not None:
            self.hits += 1
            self._rasters.move_to_end(key)
            return cached

        self.misses += 1
        start_time = time.time()
        raster = self._build(regions, spec)
        raster.setflags(write=False)

        self._rasters[key] = raster
        while len(self._rasters) > self.max_entries:
            self._rasters.popitem(last=False)

        elapsed = time.time() - start_time
        logger.debug(
            f"Built membership raster {spec.cols}x{spec.rows} for {len(regions)} regions "
            f"({elapsed:.3f}s, {int((raster >= 0).sum())} cells inside)"
        )
        return raster

    def membership_for(
        self, regions: RegionSet, bounds: Bounds, cols: int, rows: int
    ) -> tuple[np.ndarray, int, int]:
        """
        Membership raster for a score raster of ``cols`` x ``rows``, at capped resolution.

        Returns:
            Tuple of (raster, m_cols, m_rows)
        """
        m_cols, m_rows = membership_dims(cols, rows, self.max_cols, self.max_rows)
        return self.membership(regions, RasterSpec(bounds, m_cols, m_rows)), m_cols, m_rows

    def region_at(self, regions: RegionSet, lon: float, lat: float) -> int:
        """Index of the first region containing (lon, lat), or OUTSIDE."""
        boxes = self.bboxes(regions)
        if boxes.size == 0:
            return OUTSIDE
        candidates = np.flatnonzero(
            (boxes[:, 0] <= lon) & (boxes[:, 2] >= lon) & (boxes[:, 1] <= lat) & (boxes[:, 3] >= lat)
        )
        for idx in candidates:
            if regions[int(idx)].contains(lon, lat):
                return int(idx)
        return OUTSIDE

    def _build(self, regions: RegionSet, spec: RasterSpec) -> np.ndarray:
        raster = np.full((spec.rows, spec.cols), OUTSIDE, dtype=np.int32)
        boxes = self.bboxes(regions)
        if boxes.size == 0:
            return raster.ravel()

        lons, lats = spec.cell_centres()
        # Only regions overlapping the viewport can own any cell
        in_view = np.flatnonzero(
            (boxes[:, 2] >= lons[0]) & (boxes[:, 0] <= lons[-1])
            & (boxes[:, 3] >= lats[-1]) & (boxes[:, 1] <= lats[0])
        )
        if in_view.size == 0:
            return raster.ravel()
        view_boxes = boxes[in_view]

        for r, lat in enumerate(lats):
            row_hits = np.flatnonzero((view_boxes[:, 1] <= lat) & (view_boxes[:, 3] >= lat))
            if row_hits.size == 0:
                continue
            row = raster[r]
            for hit in row_hits:
                minx, _, maxx, _ = view_boxes[hit]
                c0 = np.searchsorted(lons, minx, side="left")
                c1 = np.searchsorted(lons, maxx, side="right")
                if c0 >= c1:
                    continue
                open_cols = c0 + np.flatnonzero(row[c0:c1] == OUTSIDE)
                if open_cols.size == 0:
                    continue
                region_index = int(in_view[hit])
                inside = shapely.contains_xy(regions[region_index].geometry, lons[open_cols], lat)
                row[open_cols[inside]] = region_index

        return raster.ravel()
