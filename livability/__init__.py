"""
Livability raster engine.

Renders a continuous per-pixel livability score over a region by combining
per-municipality attributes with elevation-derived terrain layers.

Subpackages:
- terrain: elevation tiles, merged grid, Horn slope/aspect, terrain provider
- scoring: transfer functions, aspect preferences, layer config, composite scorer
- regions: polygon membership raster, attribute lookup tables, spatial helpers
- render: viewport specs, colour ramps, heatmap renderer, point analysis

buffer_pool holds the reusable accumulators shared by scoring and rendering.
"""

__version__ = "0.1.0"
