"""
Rendering: score rasters to pixels, viewport heatmaps and point queries.

- color_mapping: reversed Turbo score ramp, hypsometric elevation ramp, image encoding
- heatmap: ViewportSpec, viewport_spec_for_zoom, HeatmapRenderer
- point_analysis: score_point
"""

from livability.render.color_mapping import (
    TURBO_LUT,
    elevation_to_rgb,
    encode_image,
    normalise_scores,
    score_to_css_color,
    score_to_rgba,
    scores_to_rgba,
)
from livability.render.heatmap import (
    HeatmapRenderer,
    RenderResult,
    ViewportSpec,
    overview_spec,
    viewport_spec_for_zoom,
)
from livability.render.point_analysis import PointScore, score_point

__all__ = [
    "TURBO_LUT",
    "elevation_to_rgb",
    "encode_image",
    "normalise_scores",
    "score_to_css_color",
    "score_to_rgba",
    "scores_to_rgba",
    "HeatmapRenderer",
    "RenderResult",
    "ViewportSpec",
    "overview_spec",
    "viewport_spec_for_zoom",
    "PointScore",
    "score_point",
]
