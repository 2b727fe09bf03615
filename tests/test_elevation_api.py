"""Tests for the bulk elevation point fetch."""

from unittest.mock import MagicMock

import numpy as np
import pytest


def _json_response(payload):
    resp = MagicMock()
    resp.ok = True
    resp.status_code = 200
    resp.headers = {}
    resp.json.return_value = payload
    return resp


class TestGridCoordinates:
    """Test grid point layout."""

    def test_north_row_first(self, small_extent):
        from livability.terrain.elevation_api import grid_coordinates

        lats, lons = grid_coordinates(small_extent, 3)

        assert lats.shape == (9,)
        np.testing.assert_allclose(lats[:3], small_extent.north)
        np.testing.assert_allclose(lats[-3:], small_extent.south)
        np.testing.assert_allclose(lons[:3], [2.0, 2.1, 2.2])

    def test_resolution_must_be_at_least_two(self, small_extent):
        from livability.terrain.elevation_api import grid_coordinates

        with pytest.raises(ValueError, match=">= 2"):
            grid_coordinates(small_extent, 1)


class TestFetchElevationGrid:
    """Test chunked fetching with progress and courtesy delays."""

    def test_chunked_fetch(self, small_extent):
        from livability.terrain.elevation_api import fetch_elevation_grid

        session = MagicMock()
        session.get.side_effect = [
            _json_response({"elevation": [1.0, 2.0, 3.0, 4.0]}),
            _json_response({"elevation": [5.0, None, 7.0, 8.0]}),
            _json_response({"elevation": [9.0]}),
        ]
        progress = MagicMock()
        sleep = MagicMock()

        grid = fetch_elevation_grid(
            small_extent,
            3,
            session=session,
            on_progress=progress,
            chunk_size=4,
            courtesy_delay=0.1,
            sleep=sleep,
        )

        assert grid.shape == (3, 3)
        assert session.get.call_count == 3
        assert np.isnan(grid[1, 2])
        assert grid[0, 0] == 1.0
        assert grid[2, 2] == 9.0
        assert [c.args for c in progress.call_args_list] == [(4, 9), (8, 9), (9, 9)]
        # Courtesy pause between chunks only
        assert sleep.call_count == 2

    def test_request_parameters(self, small_extent):
        from livability.terrain.elevation_api import fetch_elevation_grid

        session = MagicMock()
        session.get.return_value = _json_response({"elevation": [0.0] * 4})

        fetch_elevation_grid(small_extent, 2, session=session, courtesy_delay=0, sleep=MagicMock())

        params = session.get.call_args.kwargs["params"]
        assert params["latitude"].count(",") == 3
        assert params["longitude"].split(",")[0] == "2.000000"

    def test_extra_values_ignored(self, small_extent):
        from livability.terrain.elevation_api import fetch_elevation_grid

        session = MagicMock()
        session.get.return_value = _json_response({"elevation": [1.0] * 6})

        grid = fetch_elevation_grid(small_extent, 2, session=session, courtesy_delay=0, sleep=MagicMock())

        np.testing.assert_array_equal(grid, np.ones((2, 2)))

    def test_malformed_response(self, small_extent):
        from livability.terrain.elevation_api import fetch_elevation_grid
        from livability.terrain.tile_fetch import TileDecodeError

        session = MagicMock()
        session.get.return_value = _json_response({"error": True})

        with pytest.raises(TileDecodeError, match="Malformed"):
            fetch_elevation_grid(small_extent, 2, session=session, sleep=MagicMock())
