"""
Viewport heatmap rendering.

Pipeline for one viewport:

1. viewport_spec_for_zoom: clamp bounds to the region and pick a raster size
2. TerrainProvider.sample_viewport: slope/elevation/aspect per pixel
3. MembershipIndex.membership_for: capped-resolution region raster
4. AttributeLookup.luts: per-region attribute values
5. CompositeScorer.score_raster: composite score per pixel
6. scores_to_rgba: colour the scores

Renders are synchronous; a caller that pans again simply issues a new render
and discards the old result.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from livability import config
from livability.bounds import Bounds
from livability.buffer_pool import BufferPool
from livability.regions.attributes import AttributeLookup
from livability.regions.geometry import RegionSet
from livability.regions.membership import MembershipIndex, pixel_to_member_index
from livability.render.color_mapping import encode_image, frame_range, scores_to_rgba
from livability.scoring.combiner import CompositeScorer
from livability.scoring.layers import ScoringConfig
from livability.terrain.provider import TerrainProvider

logger = logging.getLogger(__name__)

M_PER_DEG_LON_EQUATOR = 111_320.0
M_PER_DEG_LAT = 110_540.0


@dataclass(frozen=True)
class ViewportSpec:
    """Bounds and pixel size of one heatmap raster."""

    bounds: Bounds
    cols: int
    rows: int
    target_m: Optional[float] = None


def overview_spec(extent: Optional[Bounds] = None) -> ViewportSpec:
    """The whole region at overview resolution."""
    extent = extent or Bounds.from_tuple(config.REGION_EXTENT)
    return ViewportSpec(extent, config.OVERVIEW_COLS, config.OVERVIEW_ROWS)


def target_pixel_size_m(zoom: float) -> float:
    """Ground size of one heatmap pixel at a map zoom; halves per zoom step."""
    return float(max(5, min(800, round(4000 / 2 ** (zoom - 8)))))


def viewport_spec_for_zoom(bounds: Bounds, zoom: float, extent: Optional[Bounds] = None) -> ViewportSpec:
    """
    Raster spec for a map viewport.

    Bounds are clamped to the region extent; a viewport with nothing left
    after clamping gets the overview spec. Pixel counts follow the target
    ground size and stay within [MIN_RASTER_COLS/ROWS, MAX_RASTER_DIM].
    """
    extent = extent or Bounds.from_tuple(config.REGION_EXTENT)
    clamped = bounds.clamp_to(extent)
    if clamped.is_degenerate():
        return overview_spec(extent)

    lat_mid = (clamped.south + clamped.north) / 2
    m_per_deg_lon = M_PER_DEG_LON_EQUATOR * math.cos(math.radians(lat_mid))
    target_m = target_pixel_size_m(zoom)

    cols = math.ceil(clamped.width * m_per_deg_lon / target_m)
    rows = math.ceil(clamped.height * M_PER_DEG_LAT / target_m)
    cols = min(config.MAX_RASTER_DIM, max(config.MIN_RASTER_COLS, cols))
    rows = min(config.MAX_RASTER_DIM, max(config.MIN_RASTER_ROWS, rows))
    return ViewportSpec(clamped, cols, rows, target_m)


@dataclass
class RenderResult:
    """
    One rendered heatmap.

    Attributes:
        rgba: uint8 (rows, cols, 4) image
        scores: Flat float64 scores (NaN / DISQUALIFIED sentinels kept)
        bounds: Geographic bounds of the image, for overlay placement
        min_score: Lowest in-range score (NaN when none)
        max_score: Highest in-range score (NaN when none)
        elapsed: Render time in seconds
    """

    rgba: np.ndarray
    scores: np.ndarray
    bounds: Bounds
    min_score: float
    max_score: float
    elapsed: float

    @property
    def rows(self) -> int:
        return self.rgba.shape[0]

    @property
    def cols(self) -> int:
        return self.rgba.shape[1]

    def to_png(self) -> bytes:
        return encode_image(self.rgba, "PNG")


class HeatmapRenderer:
    """
    Renders livability heatmaps for map viewports.

    Caches (membership rasters, region bounding boxes, attribute LUTs, terrain
    grid) are owned by the injected objects, so two renderers never share
    state unless they are given the same instances.
    """

    def __init__(
        self,
        provider: TerrainProvider,
        regions: RegionSet,
        lookup: AttributeLookup,
        scoring_config: ScoringConfig,
        membership_index: Optional[MembershipIndex] = None,
        pool: Optional[BufferPool] = None,
        disqualified_mode: str = "black",
        normalisation: str = "global",
        formula: Optional[str] = None,
    ):
        self.provider = provider
        self.regions = regions
        self.lookup = lookup
        self.membership_index = membership_index or MembershipIndex()
        self.pool = pool or BufferPool()
        self.formula = formula
        self.scorer = CompositeScorer(scoring_config, self.pool, formula)
        self.disqualified_mode = disqualified_mode
        self.normalisation = normalisation

    @property
    def scoring_config(self) -> ScoringConfig:
        return self.scorer.config

    def set_scoring_config(self, scoring_config: ScoringConfig) -> None:
        """Swap weights/curves; membership and LUT caches stay valid."""
        self.scorer = CompositeScorer(scoring_config, self.pool, self.formula)

    def set_formula(self, formula: Optional[str]) -> None:
        """Score with a custom formula instead of the weighted average (None to clear)."""
        self.scorer = CompositeScorer(self.scoring_config, self.pool, formula)
        self.formula = formula

    def set_regions(self, regions: RegionSet) -> None:
        self.regions = regions

    def render(self, bounds: Bounds, cols: int, rows: int) -> RenderResult:
        """
        Render a heatmap for ``bounds`` at ``cols`` x ``rows`` pixels.

        Bounds are clamped to the provider extent; when nothing is left the
        overview of the whole extent is rendered instead. The result carries
        the bounds actually rendered. Uses whatever terrain is resident;
        missing terrain shows as no data.
        """
        if cols <= 0 or rows <= 0:
            raise ValueError(f"Raster dimensions must be positive, got {cols}x{rows}")
        start_time = time.time()

        extent = self.provider.extent
        clamped = bounds.clamp_to(extent)
        if clamped.is_degenerate():
            logger.warning(f"Viewport {bounds.to_tuple()} has no area inside the extent, rendering overview")
            spec = overview_spec(extent)
            bounds, cols, rows = spec.bounds, spec.cols, spec.rows
        else:
            bounds = clamped

        samples = self.provider.sample_viewport(bounds, cols, rows)
        membership, m_cols, m_rows = self.membership_index.membership_for(self.regions, bounds, cols, rows)
        index_map = None
        if (m_cols, m_rows) != (cols, rows):
            index_map = pixel_to_member_index(cols, rows, m_cols, m_rows)

        variables = self.scorer.attribute_variables()
        luts = self.lookup.luts(self.regions, variables)
        scores = self.scorer.score_raster(samples, membership, luts, index_map)

        rgba = scores_to_rgba(
            scores,
            rows,
            cols,
            disqualified_mode=self.disqualified_mode,
            normalisation=self.normalisation,
        )

        in_range = ~np.isnan(scores) & (scores != config.DISQUALIFIED)
        if in_range.any():
            min_score, max_score = frame_range(scores)
        else:
            min_score = max_score = float("nan")

        elapsed = time.time() - start_time
        logger.info(
            f"Rendered {cols}x{rows} heatmap ({int(in_range.sum())} scored pixels, "
            f"membership {m_cols}x{m_rows}, {elapsed:.3f}s)"
        )
        return RenderResult(rgba, scores, bounds, min_score, max_score, elapsed)

    def render_spec(self, spec: ViewportSpec, load_fine_tiles: bool = False) -> RenderResult:
        """Render a ViewportSpec, optionally demand-loading fine terrain first."""
        if load_fine_tiles and spec.target_m is not None:
            self.provider.load_viewport_tiles(spec.bounds, spec.target_m)
        return self.render(spec.bounds, spec.cols, spec.rows)

    def render_viewport(self, bounds: Bounds, zoom: float, load_fine_tiles: bool = False) -> RenderResult:
        """Render the map viewport ``bounds`` at map zoom ``zoom``."""
        spec = viewport_spec_for_zoom(bounds, zoom, self.provider.extent)
        return self.render_spec(spec, load_fine_tiles)
