#!/usr/bin/env python3
"""
Render a livability heatmap for a map viewport.

Loads municipality polygons and attribute tables, loads the coarse elevation
grid (or builds a synthetic one with --mock-data), scores the viewport and
writes a PNG overlay plus its bounds.

Usage:
    # Synthetic terrain and regions, no network
    python examples/render_viewport.py --mock-data

    # Real data for a viewport around Vic at map zoom 11
    python examples/render_viewport.py \\
        --regions data/municipalities.geojson \\
        --attributes data/attributes.json \\
        --bounds 2.1 41.85 2.4 42.05 --zoom 11 --fine-tiles

    # Get help
    python examples/render_viewport.py --help
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from livability import config
from livability.bounds import Bounds
from livability.regions import AttributeData, AttributeLookup, RegionPolygon, RegionSet
from livability.render import HeatmapRenderer, elevation_to_rgb, encode_image, viewport_spec_for_zoom
from livability.scoring import FormulaError, config_to_formula, parse_formula, variable_stats
from livability.scoring.configs import create_default_config
from livability.terrain import MergedElevationGrid, TerrainProvider, TileSource
from livability.terrain.cache import ElevationGridCache

logging.basicConfig(
    level=config.DEFAULT_LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_mock_provider(extent: Bounds) -> TerrainProvider:
    """Coarse grid with a ridge running north-east across the region."""
    provider = TerrainProvider(fine_source=None, extent=extent)
    grid = MergedElevationGrid.empty(extent, config.COARSE_ZOOM, config.TILE_SIZE)
    yy, xx = np.mgrid[0 : grid.height, 0 : grid.width]
    ridge = np.exp(-(((xx - yy) / (0.15 * grid.width)) ** 2))
    grid.data[:] = (50 + 1800 * ridge + 20 * np.sin(xx / 7.0)).astype(np.float32)
    provider.set_grid(grid)
    return provider


def build_mock_regions(extent: Bounds, n_cols: int = 6, n_rows: int = 5) -> tuple[RegionSet, AttributeData]:
    """Rectangular regions tiling the extent with pseudo-random attributes."""
    rng = np.random.default_rng(42)
    dx = extent.width / n_cols
    dy = extent.height / n_rows
    regions = []
    transit, forest = {}, {}
    for r in range(n_rows):
        for c in range(n_cols):
            index = r * n_cols + c
            w, s = extent.west + c * dx, extent.south + r * dy
            ring = [(w, s), (w + dx, s), (w + dx, s + dy), (w, s + dy), (w, s)]
            key = f"{index:05d}"
            regions.append(RegionPolygon.from_rings(index, key, [[ring]], name=f"Region {index}"))
            transit[key] = float(rng.uniform(0.5, 40))
            forest[key] = {"forest_pct": float(rng.uniform(0, 95))}
    return RegionSet(regions), AttributeData({"transit_dist_km": transit, "forest": forest})


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Render a livability heatmap for a map viewport",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--regions", type=Path, help="GeoJSON FeatureCollection of municipalities")
    parser.add_argument("--attributes", type=Path, help="JSON object of attribute tables")
    parser.add_argument(
        "--bounds",
        type=float,
        nargs=4,
        metavar=("WEST", "SOUTH", "EAST", "NORTH"),
        help="Viewport bounds (default: whole region)",
    )
    parser.add_argument("--zoom", type=float, default=8.0, help="Map zoom level (default: 8)")
    parser.add_argument("--dem-url", default=config.DEFAULT_COARSE_DEM_URL, help="Coarse DEM tile URL template")
    parser.add_argument(
        "--dem-encoding",
        choices=["mapbox", "terrarium"],
        default=config.DEFAULT_COARSE_DEM_ENCODING,
        help="Coarse DEM encoding",
    )
    parser.add_argument("--fine-tiles", action="store_true", help="Demand-load fine DEM tiles for the viewport")
    parser.add_argument(
        "--disqualified",
        choices=["black", "transparent"],
        default="black",
        help="How disqualified pixels are drawn",
    )
    parser.add_argument("--normalisation", choices=["global", "frame"], default="global")
    parser.add_argument(
        "--formula",
        help="Custom scoring formula, e.g. \"(slope < 20) * SIN(slope, 5, 20)\" (default: weighted average)",
    )
    parser.add_argument("--mock-data", action="store_true", help="Use synthetic terrain and regions")
    parser.add_argument("--output-dir", type=Path, default=Path("outputs"), help="Output directory")
    args = parser.parse_args()

    if not args.mock_data and not args.regions:
        parser.error("Must specify either --regions or --mock-data")
    if args.formula:
        try:
            parse_formula(args.formula)
        except FormulaError as e:
            parser.error(f"Invalid --formula: {e}")

    args.output_dir.mkdir(parents=True, exist_ok=True)
    extent = Bounds.from_tuple(config.REGION_EXTENT)

    if args.mock_data:
        provider = build_mock_provider(extent)
        regions, data = build_mock_regions(extent)
    else:
        with open(args.regions) as f:
            regions = RegionSet.from_geojson(json.load(f))
        tables = {}
        if args.attributes:
            with open(args.attributes) as f:
                tables = json.load(f)
        data = AttributeData(tables)
        provider = TerrainProvider(
            TileSource(args.dem_url, args.dem_encoding),
            extent=extent,
            cache=ElevationGridCache(),
            show_progress=True,
        )
        provider.load()

    scoring_config = create_default_config()
    for layer in scoring_config.attribute_layers():
        stats = variable_stats(data, layer.variable)
        logger.info(f"{layer.id}: {stats.count} values, median {stats.median:.2f} {stats.unit}")

    renderer = HeatmapRenderer(
        provider,
        regions,
        AttributeLookup(data),
        scoring_config,
        disqualified_mode=args.disqualified,
        normalisation=args.normalisation,
        formula=args.formula,
    )
    if not args.formula:
        logger.info(f"Scoring formula: {config_to_formula(scoring_config)}")

    bounds = Bounds.from_tuple(args.bounds) if args.bounds else extent
    spec = viewport_spec_for_zoom(bounds, args.zoom, extent)
    result = renderer.render_spec(spec, load_fine_tiles=args.fine_tiles)

    heatmap_path = args.output_dir / "heatmap.png"
    heatmap_path.write_bytes(result.to_png())
    (args.output_dir / "heatmap_bounds.json").write_text(json.dumps(result.bounds.to_dict(), indent=2))
    logger.info(f"Saved {result.cols}x{result.rows} heatmap to {heatmap_path}")
    logger.info(f"Score range: {result.min_score:.3f} - {result.max_score:.3f}")

    samples = provider.sample_viewport(spec.bounds, spec.cols, spec.rows)
    elevation = samples.elevation.reshape(spec.rows, spec.cols)
    rgba = np.dstack([elevation_to_rgb(elevation), np.where(np.isnan(elevation), 0, 255).astype(np.uint8)])
    (args.output_dir / "elevation.png").write_bytes(encode_image(rgba))

    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
