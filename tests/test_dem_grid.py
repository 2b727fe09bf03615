"""Tests for the merged coarse grid and the fine tile cache."""

import numpy as np
import pytest


# =============================================================================
# MERGED ELEVATION GRID
# =============================================================================


class TestMergedElevationGrid:
    """Test coarse grid sizing, tile placement and addressing."""

    def test_empty_grid_covers_tile_range(self, small_extent):
        from livability.terrain.dem_grid import MergedElevationGrid
        from livability.terrain.tiles import tile_range

        grid = MergedElevationGrid.empty(small_extent, zoom=9)
        min_tx, max_tx, min_ty, max_ty = tile_range(small_extent, 9)

        assert grid.width == (max_tx - min_tx + 1) * 256
        assert grid.height == (max_ty - min_ty + 1) * 256
        assert (grid.tx0, grid.ty0) == (min_tx, min_ty)
        assert grid.data.dtype == np.float32
        assert np.isnan(grid.data).all()

    def test_rejects_non_2d_data(self):
        from livability.terrain.dem_grid import MergedElevationGrid

        with pytest.raises(ValueError, match="2D"):
            MergedElevationGrid(np.zeros(16, dtype=np.float32), 0, 0)

    def test_write_tile(self):
        from livability.terrain.dem_grid import MergedElevationGrid

        grid = MergedElevationGrid(np.full((8, 8), np.nan, dtype=np.float32), tx0=10, ty0=20, zoom=5, tile_size=4)
        grid.write_tile(11, 21, np.full((4, 4), 7.0))

        assert (grid.data[4:, 4:] == 7.0).all()
        assert np.isnan(grid.data[:4, :]).all()

    def test_padded_has_nan_border_and_follows_writes(self):
        from livability.terrain.dem_grid import MergedElevationGrid

        grid = MergedElevationGrid(np.zeros((4, 4), dtype=np.float32), tx0=0, ty0=0, zoom=2, tile_size=4)
        padded = grid.padded

        assert padded.shape == (6, 6)
        assert np.isnan(padded[0]).all()
        assert np.isnan(padded[:, -1]).all()

        grid.write_tile(0, 0, np.full((4, 4), 3.0))
        assert grid.padded[1, 1] == 3.0

    def test_transform_origin(self):
        from livability.terrain.dem_grid import MergedElevationGrid

        grid = MergedElevationGrid(np.zeros((4, 4), dtype=np.float32), tx0=258, ty0=190, zoom=9)

        assert grid.transform.c == 258 * 256
        assert grid.transform.f == 190 * 256

    def test_lon_lat_to_grid_pixels(self, small_extent):
        from livability.terrain.dem_grid import MergedElevationGrid

        grid = MergedElevationGrid.empty(small_extent, zoom=9)
        world = 512 * 256
        lon = (grid.tx0 * 256 + 10.5) * 360.0 / world - 180.0

        assert int(grid.lon_to_px(lon)) == 10
        assert int(grid.lat_to_py(small_extent.north)) >= 0
        assert int(grid.lat_to_py(small_extent.south)) < grid.height


# =============================================================================
# FINE TILE CACHE
# =============================================================================


class TestFineTileCache:
    """Test demand-loaded tile storage and haloes."""

    def test_put_and_get(self):
        from livability.terrain.dem_grid import FineTileCache
        from livability.terrain.tiles import pack_tile_key

        cache = FineTileCache(tile_size=4)
        tile = np.ones((4, 4), dtype=np.float32)
        cache.put(14, 100, 200, tile)

        assert len(cache) == 1
        assert cache.has(14, 100, 200)
        assert pack_tile_key(14, 100, 200) in cache
        assert cache.get(14, 100, 200) is tile
        assert cache.get(14, 101, 200) is None

    def test_wrong_shape_rejected(self):
        from livability.terrain.dem_grid import FineTileCache

        cache = FineTileCache(tile_size=4)
        with pytest.raises(ValueError, match="4x4"):
            cache.put(14, 0, 0, np.zeros((3, 4)))

    def test_halo_reads_neighbours(self):
        from livability.terrain.dem_grid import FineTileCache

        cache = FineTileCache(tile_size=4)
        cache.put(14, 5, 5, np.full((4, 4), 1.0, dtype=np.float32))
        east = np.full((4, 4), 2.0, dtype=np.float32)
        east[:, 0] = 20.0
        cache.put(14, 6, 5, east)
        cache.put(14, 6, 6, np.full((4, 4), 3.0, dtype=np.float32))

        halo = cache.haloed(14, 5, 5)

        assert halo.shape == (6, 6)
        assert (halo[1:-1, 1:-1] == 1.0).all()
        # East border comes from the neighbour's first column
        assert (halo[1:-1, -1] == 20.0).all()
        assert halo[-1, -1] == 3.0
        # No western neighbour
        assert np.isnan(halo[1:-1, 0]).all()

    def test_halo_memoised_until_neighbour_arrives(self):
        from livability.terrain.dem_grid import FineTileCache

        cache = FineTileCache(tile_size=4)
        cache.put(14, 5, 5, np.full((4, 4), 1.0, dtype=np.float32))

        first = cache.haloed(14, 5, 5)
        assert cache.haloed(14, 5, 5) is first

        cache.put(14, 4, 5, np.full((4, 4), 9.0, dtype=np.float32))
        second = cache.haloed(14, 5, 5)

        assert second is not first
        assert (second[1:-1, 0] == 9.0).all()

    def test_halo_of_missing_tile(self):
        from livability.terrain.dem_grid import FineTileCache

        assert FineTileCache(tile_size=4).haloed(14, 0, 0) is None

    def test_clear(self):
        from livability.terrain.dem_grid import FineTileCache

        cache = FineTileCache(tile_size=4)
        cache.put(14, 1, 1, np.zeros((4, 4), dtype=np.float32))
        cache.clear()

        assert len(cache) == 0
