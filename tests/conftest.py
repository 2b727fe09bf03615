"""Pytest configuration and fixtures for livability tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from unittest.mock import MagicMock

import numpy as np
import pytest

from livability.bounds import Bounds
from livability.regions.attributes import AttributeData, AttributeLookup
from livability.regions.geometry import RegionPolygon, RegionSet
from livability.terrain.dem_grid import MergedElevationGrid
from livability.terrain.provider import TerrainProvider


def _rect(west, south, east, north):
    return [(west, south), (east, south), (east, north), (west, north), (west, south)]


@pytest.fixture
def small_extent():
    """A 0.2 x 0.2 degree patch near Barcelona."""
    return Bounds(2.0, 41.5, 2.2, 41.7)


@pytest.fixture
def ramp_grid(small_extent):
    """Coarse z9 grid whose elevation rises 3 m per pixel towards the east."""
    grid = MergedElevationGrid.empty(small_extent, zoom=9)
    cols = np.arange(grid.width, dtype=np.float32)
    grid.data[:] = 200.0 + 3.0 * cols[None, :]
    return grid


@pytest.fixture
def ramp_provider(small_extent, ramp_grid):
    """TerrainProvider holding the ramp grid, no fine source, no network."""
    provider = TerrainProvider(extent=small_extent, fine_source=None, session=MagicMock())
    provider.set_grid(ramp_grid)
    return provider


@pytest.fixture
def empty_provider(small_extent):
    """TerrainProvider with no elevation data at all."""
    return TerrainProvider(extent=small_extent, fine_source=None, session=MagicMock())


@pytest.fixture
def regions():
    """
    Three regions over the small extent.

    0 "08001": west half, a plain rectangle
    1 "08002": east half with a rectangular hole
    2 "08003": two parts, one inside the hole of region 1 and one off to the east
    """
    west = RegionPolygon.from_rings(0, "08001", [[_rect(2.0, 41.5, 2.1, 41.7)]], name="West")
    east = RegionPolygon.from_rings(
        1,
        "08002",
        [[_rect(2.1, 41.5, 2.2, 41.7), _rect(2.13, 41.55, 2.17, 41.65)]],
        name="East",
    )
    islands = RegionPolygon.from_rings(
        2,
        "08003",
        [[_rect(2.14, 41.58, 2.16, 41.62)], [_rect(2.3, 41.5, 2.4, 41.6)]],
        name="Islands",
    )
    return RegionSet([west, east, islands])


@pytest.fixture
def attribute_data():
    """Attribute tables for the three test regions."""
    return AttributeData(
        {
            "transit_dist_km": {"08001": 2.0, "08002": 30.0, "08003": None},
            "forest": {"08001": {"forest_pct": 90.0}, "08002": {"forest_pct": 5.0}},
            "terrain": {
                "08001": {"avg_slope_deg": 3.0, "avg_elevation_m": 400.0, "dominant_aspect": "S"},
                "08002": {"avg_slope_deg": 25.0, "avg_elevation_m": 900.0, "dominant_aspect": "N"},
            },
        }
    )


@pytest.fixture
def attribute_lookup(attribute_data):
    return AttributeLookup(attribute_data)


@pytest.fixture
def cache_dir(tmp_path):
    """Temporary cache directory for tests."""
    cache = tmp_path / "cache"
    cache.mkdir()
    return cache


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent
