"""
Composite scoring: weighted average of layer sub-scores with mandatory vetoes.

Provides:
- LayerInputs: raw inputs for one evaluation (terrain per sample, attributes per region)
- RegionScore: composite result for one region
- CompositeScorer: per-region, per-pixel and per-point evaluation

Formula, per sample:

    score = sum(sub_score * weight) / sum(weight)    over layers with data

A NaN sub-score is skipped entirely (it neither counts as zero nor adds to the
denominator). Any mandatory layer scoring at its floor replaces the result with
the DISQUALIFIED sentinel. With no contributing layers the result is neutral.

A custom formula (see ``livability.scoring.formula``) replaces the weighted
average for samples that are not disqualified; mandatory layers still veto.

Every entry point funnels through ``_accumulate`` so region, raster and
point results can never disagree.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

import numpy as np

from livability import config
from livability.buffer_pool import BufferPool
from livability.regions.attributes import VARIABLES, AttributeLookup
from livability.regions.geometry import RegionSet
from livability.scoring.aspect import (
    build_aspect_score_lut,
    damp_aspect_score,
    score_aspect,
    score_aspect_codes,
)
from livability.scoring.formula import evaluate_formula, formula_variables, normalize_name, parse_formula
from livability.scoring.layers import LayerKind, LayerSpec, ScoringConfig
from livability.scoring.transforms import evaluate_grid, is_disqualified
from livability.terrain.derivatives import aspect_code_to_bearing
from livability.terrain.provider import TerrainSamples

logger = logging.getLogger(__name__)

# Terrain values a custom formula can read
FORMULA_TERRAIN_VARIABLES = ("slope", "elevation", "aspect")

# Region-level terrain summaries used when scoring whole regions
REGION_TERRAIN_VARIABLES = {
    LayerKind.SLOPE: "terrain_slope",
    LayerKind.ELEVATION: "terrain_elevation",
    LayerKind.ASPECT: "terrain_aspect",
}


@dataclass
class LayerInputs:
    """
    Raw layer inputs, all arrays sharing one shape.

    Attributes:
        slope: Slope in degrees
        elevation: Elevation in metres
        aspect_bearing: Downhill bearing in degrees (negative = flat)
        aspect_code: uint8 aspect codes; used instead of bearings when set
        attributes: Attribute variable -> values
    """

    slope: Optional[np.ndarray] = None
    elevation: Optional[np.ndarray] = None
    aspect_bearing: Optional[np.ndarray] = None
    aspect_code: Optional[np.ndarray] = None
    attributes: Mapping[str, np.ndarray] = field(default_factory=dict)


@dataclass
class RegionScore:
    """Composite score of one region; disqualified regions score 0."""

    index: int
    key: str
    score: float
    disqualified: bool
    layer_scores: dict[str, float] = field(default_factory=dict)


def _missing(shape) -> np.ndarray:
    return np.full(shape, np.nan)


def _resolve_slope(scorer, layer, inputs, shape):
    if inputs.slope is None:
        return _missing(shape)
    return evaluate_grid(inputs.slope, layer.transfer)


def _resolve_elevation(scorer, layer, inputs, shape):
    if inputs.elevation is None:
        return _missing(shape)
    return evaluate_grid(inputs.elevation, layer.transfer)


def _resolve_aspect(scorer, layer, inputs, shape):
    if inputs.aspect_code is not None:
        return score_aspect_codes(inputs.aspect_code, scorer.aspect_lut)
    if inputs.aspect_bearing is None:
        return _missing(shape)
    raw = score_aspect(np.asarray(inputs.aspect_bearing, dtype=np.float64), scorer.config.aspect_preferences)
    return damp_aspect_score(raw, scorer.config.aspect_damping)


def _resolve_attribute(scorer, layer, inputs, shape):
    values = inputs.attributes.get(layer.variable)
    if values is None:
        return _missing(shape)
    return evaluate_grid(values, layer.transfer)


# One resolver per layer kind: (scorer, layer, inputs, shape) -> sub-scores
RESOLVERS: dict[LayerKind, Callable] = {
    LayerKind.SLOPE: _resolve_slope,
    LayerKind.ELEVATION: _resolve_elevation,
    LayerKind.ASPECT: _resolve_aspect,
    LayerKind.ATTRIBUTE: _resolve_attribute,
}


class CompositeScorer:
    """
    Evaluates a ScoringConfig over regions, rasters or single points.

    Attributes:
        config: Layer configuration
        pool: Buffer pool for per-render accumulators
        formula: Parsed custom formula, or None for the weighted average
    """

    def __init__(
        self,
        config: ScoringConfig,
        pool: Optional[BufferPool] = None,
        formula: Optional[str] = None,
    ):
        self.config = config
        self.pool = pool or BufferPool()
        self.formula = parse_formula(formula) if formula and formula.strip() else None
        self.aspect_lut = build_aspect_score_lut(config.aspect_preferences, config.aspect_damping)

    def resolve(self, layer: LayerSpec, inputs: LayerInputs, shape) -> np.ndarray:
        """Sub-scores of one layer; NaN where its input is missing."""
        scores = RESOLVERS[layer.kind](self, layer, inputs, shape)
        return np.broadcast_to(np.asarray(scores, dtype=np.float64), shape)

    def _accumulate(
        self,
        layers: list[LayerSpec],
        inputs: LayerInputs,
        weighted_sum: np.ndarray,
        total_weight: np.ndarray,
        disqualified: np.ndarray,
        layer_scores: Optional[dict] = None,
    ) -> None:
        """Add each layer's weighted sub-scores into the accumulators in place."""
        shape = weighted_sum.shape
        for layer in layers:
            scores = self.resolve(layer, inputs, shape)
            present = ~np.isnan(scores)
            weight = layer.effective_weight
            weighted_sum += np.where(present, scores * weight, 0.0)
            total_weight += np.where(present, weight, 0.0)
            if layer.mandatory:
                disqualified |= is_disqualified(scores, layer.transfer)
            if layer_scores is not None:
                layer_scores[layer.id] = scores

    def attribute_variables(self) -> list[str]:
        """Attribute variables read by the enabled layers and the custom formula."""
        names = [layer.variable for layer in self.config.attribute_layers()]
        if self.formula is not None:
            wanted = formula_variables(self.formula)
            names += [v for v in VARIABLES if normalize_name(v) in wanted and v not in names]
        return names

    @staticmethod
    def formula_values(inputs: LayerInputs) -> dict[str, np.ndarray]:
        """Raw values a custom formula can read: slope, elevation, aspect and attributes."""
        values = dict(inputs.attributes)
        if inputs.slope is not None:
            values["slope"] = inputs.slope
        if inputs.elevation is not None:
            values["elevation"] = inputs.elevation
        if inputs.aspect_code is not None:
            values["aspect"] = aspect_code_to_bearing(inputs.aspect_code)
        elif inputs.aspect_bearing is not None:
            values["aspect"] = inputs.aspect_bearing
        return values

    def _finalise(self, weighted_sum, total_weight, disqualified, values=None) -> np.ndarray:
        if self.formula is not None and values is not None:
            score = evaluate_formula(self.formula, values, weighted_sum.shape)
            return np.where(disqualified, config.DISQUALIFIED, score)
        with np.errstate(invalid="ignore", divide="ignore"):
            score = np.where(total_weight > 0, weighted_sum / total_weight, config.NEUTRAL_SCORE)
        return np.where(disqualified, config.DISQUALIFIED, score)

    def score_values(self, inputs: LayerInputs, shape=()) -> tuple[np.ndarray, np.ndarray, dict]:
        """
        Score arbitrary inputs of a common shape.

        Returns:
            Tuple of (scores, disqualified, layer_scores); scores hold the
            DISQUALIFIED sentinel where disqualified
        """
        weighted_sum = np.zeros(shape)
        total_weight = np.zeros(shape)
        disqualified = np.zeros(shape, dtype=bool)
        layer_scores: dict = {}
        self._accumulate(
            self.config.enabled_layers(), inputs, weighted_sum, total_weight, disqualified, layer_scores
        )
        scores = self._finalise(weighted_sum, total_weight, disqualified, self.formula_values(inputs))
        return scores, disqualified, layer_scores

    def score_regions(self, regions: RegionSet, lookup: AttributeLookup) -> list[RegionScore]:
        """
        Composite score and disqualification flag per region.

        Terrain layers use each region's terrain summary (average slope and
        elevation, dominant aspect).
        """
        luts = lookup.luts(regions)
        inputs = LayerInputs(
            slope=luts[REGION_TERRAIN_VARIABLES[LayerKind.SLOPE]],
            elevation=luts[REGION_TERRAIN_VARIABLES[LayerKind.ELEVATION]],
            aspect_bearing=luts[REGION_TERRAIN_VARIABLES[LayerKind.ASPECT]],
            attributes=luts,
        )
        scores, disqualified, layer_scores = self.score_values(inputs, (len(regions),))

        results = []
        for region in regions:
            i = region.index
            results.append(
                RegionScore(
                    index=i,
                    key=region.key,
                    score=0.0 if disqualified[i] else float(scores[i]),
                    disqualified=bool(disqualified[i]),
                    layer_scores={k: float(v[i]) for k, v in layer_scores.items()},
                )
            )
        return results

    def score_raster(
        self,
        samples: TerrainSamples,
        membership: np.ndarray,
        region_luts: Mapping[str, np.ndarray],
        index_map: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Score every pixel of a viewport raster.

        Attribute sub-scores are computed once per region and gathered per
        pixel; terrain sub-scores are computed per pixel.

        Args:
            samples: Terrain samples for the raster
            membership: Flat region-index raster (negative = outside)
            region_luts: Attribute variable -> per-region values
            index_map: Pixel -> membership-cell mapping when the membership
                raster is coarser than the score raster

        Returns:
            Flat float64 raster: scores in [0, 1], DISQUALIFIED, or NaN for
            pixels outside every region or lacking required terrain
        """
        start_time = time.time()
        n_pixels = samples.rows * samples.cols
        region_idx = membership if index_map is None else membership[index_map]
        if region_idx.size != n_pixels:
            raise ValueError(f"Membership covers {region_idx.size} pixels, raster has {n_pixels}")
        inside = region_idx >= 0

        attribute_layers = self.config.attribute_layers()
        terrain_layers = self.config.terrain_layers()

        weighted_sum = self.pool.acquire(n_pixels)
        total_weight = self.pool.acquire(n_pixels)
        try:
            disqualified = np.zeros(n_pixels, dtype=bool)

            if region_luts:
                n_regions = len(next(iter(region_luts.values())))
            else:
                n_regions = int(region_idx.max(initial=-1)) + 1
            # Trailing slot stands for "outside" and stays empty
            padded = {k: np.append(np.asarray(v, dtype=np.float64), np.nan) for k, v in region_luts.items()}
            gather = np.where(inside, region_idx, n_regions)

            if attribute_layers:
                r_sum = np.zeros(n_regions + 1)
                r_weight = np.zeros(n_regions + 1)
                r_disq = np.zeros(n_regions + 1, dtype=bool)
                self._accumulate(attribute_layers, LayerInputs(attributes=padded), r_sum, r_weight, r_disq)

                weighted_sum += r_sum[gather]
                total_weight += r_weight[gather]
                disqualified |= r_disq[gather]

            terrain = LayerInputs(
                slope=samples.slope,
                elevation=samples.elevation,
                aspect_code=samples.aspect,
            )
            if terrain_layers:
                self._accumulate(terrain_layers, terrain, weighted_sum, total_weight, disqualified)

            values = None
            needs_terrain = bool(terrain_layers)
            if self.formula is not None:
                terrain.attributes = {k: v[gather] for k, v in padded.items()}
                values = self.formula_values(terrain)
                needs_terrain |= bool(formula_variables(self.formula) & set(FORMULA_TERRAIN_VARIABLES))

            result = self._finalise(weighted_sum, total_weight, disqualified, values)
            missing = ~inside
            if needs_terrain:
                missing |= ~samples.has_data
            result[missing] = np.nan
        finally:
            self.pool.release(weighted_sum, total_weight)

        logger.debug(
            f"Scored {samples.cols}x{samples.rows} raster with {len(attribute_layers)} attribute "
            f"and {len(terrain_layers)} terrain layers ({time.time() - start_time:.3f}s)"
        )
        return result
