"""
Scoring module for livability analysis.

Provides transfer functions and the composite combiner that turns terrain
samples and per-region attributes into one score per pixel or region.

Transfer function shapes:
- sin / invsin: plateau, half-cosine transition, floor (or the mirror)
- linear / invlinear: same boundaries with a straight-line transition

Combination:
- LayerSpec / ScoringConfig: enabled layers with weights and curves
- CompositeScorer: weighted average with mandatory-layer disqualification

Custom formulas:
- parse_formula / evaluate_formula: arithmetic over raw layer values using
  the same transfer function and aspect evaluation
- config_to_formula: the formula equivalent to a ScoringConfig
"""

from livability.scoring.transforms import (
    TransferFunction,
    evaluate,
    evaluate_grid,
    is_disqualified,
)
from livability.scoring.aspect import (
    AspectPreferences,
    build_aspect_score_lut,
    damp_aspect_score,
    score_aspect,
)
from livability.scoring.stats import DataStats, compute_data_stats, variable_stats
from livability.scoring.layers import LayerKind, LayerSpec, ScoringConfig
from livability.scoring.formula import (
    FormulaError,
    config_to_formula,
    evaluate_formula,
    formula_variables,
    parse_formula,
    serialize,
)
from livability.scoring.combiner import CompositeScorer, LayerInputs, RegionScore

__all__ = [
    # Transforms
    "TransferFunction",
    "evaluate",
    "evaluate_grid",
    "is_disqualified",
    # Aspect
    "AspectPreferences",
    "build_aspect_score_lut",
    "damp_aspect_score",
    "score_aspect",
    # Stats
    "DataStats",
    "compute_data_stats",
    "variable_stats",
    # Layers and combiner
    "LayerKind",
    "LayerSpec",
    "ScoringConfig",
    # Formulas
    "FormulaError",
    "config_to_formula",
    "evaluate_formula",
    "formula_variables",
    "parse_formula",
    "serialize",
    "CompositeScorer",
    "LayerInputs",
    "RegionScore",
]
