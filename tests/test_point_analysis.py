"""
Tests for single-point scoring.

Points are queried over the conftest regions: region 0 (08001) spans
lon 2.0-2.1, region 1 (08002) spans lon 2.1-2.2 with a hole at 2.13-2.17.
"""

import math

import pytest


@pytest.fixture
def scorer():
    from livability.scoring.combiner import CompositeScorer
    from livability.scoring.configs import create_default_config

    return CompositeScorer(create_default_config())


# =============================================================================
# REGION AND TERRAIN
# =============================================================================


class TestScorePoint:
    """Test the per-point breakdown."""

    def test_outside_every_region(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        result = score_point(2.25, 41.6, ramp_provider, regions, attribute_lookup, scorer)

        assert result.region_key is None
        assert result.region_name is None
        assert math.isnan(result.score)
        assert not result.disqualified

    def test_inside_region(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        result = score_point(2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer)

        assert result.region_key == "08001"
        assert result.region_name == "West"
        assert 0.0 <= result.score <= 1.0
        assert result.terrain.source == "coarse"
        assert result.raw_values["transit"] == 2.0
        assert result.raw_values["forest"] == 90.0
        assert result.raw_values["slope_deg"] == pytest.approx(result.terrain.slope)
        assert set(result.layer_scores) == {"slope", "elevation", "aspect", "transit", "forest"}

    def test_missing_attributes_not_reported(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        result = score_point(2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer)

        assert "crime" not in result.raw_values

    def test_hole_belongs_to_inner_part(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        assert score_point(2.15, 41.6, ramp_provider, regions, attribute_lookup, scorer).region_key == "08003"
        assert score_point(2.135, 41.6, ramp_provider, regions, attribute_lookup, scorer).region_key is None

    def test_region_summary_without_terrain(self, empty_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        result = score_point(2.05, 41.6, empty_provider, regions, attribute_lookup, scorer)

        assert result.terrain.source is None
        assert result.raw_values["slope_deg"] == 3.0
        assert result.raw_values["elevation_m"] == 400.0
        # Dominant aspect "S" scores the top of the preference map
        assert result.layer_scores["aspect"] == pytest.approx(1.0)

    def test_no_terrain_anywhere(self, empty_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        result = score_point(2.15, 41.6, empty_provider, regions, attribute_lookup, scorer)

        assert math.isnan(result.raw_values["slope_deg"])
        assert math.isnan(result.layer_scores["slope"])
        assert not math.isnan(result.score)


# =============================================================================
# FACILITIES AND STATIONS
# =============================================================================


class TestPointOverrides:
    """Test facility distances and station interpolation."""

    def test_facility_distance_replaces_region_value(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.regions.spatial import Station, haversine_km
        from livability.render.point_analysis import score_point

        facilities = {"transit": [Station(2.05, 42.1), Station(3.0, 43.0)]}
        result = score_point(
            2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer, facilities=facilities
        )

        assert result.raw_values["transit"] == pytest.approx(haversine_km(41.6, 2.05, 42.1, 2.05))
        # Beyond the decay end the transit curve sits at its floor
        assert result.layer_scores["transit"] == pytest.approx(0.1)

    def test_empty_facility_list_keeps_region_value(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.render.point_analysis import score_point

        result = score_point(
            2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer, facilities={"transit": []}
        )

        assert result.raw_values["transit"] == 2.0

    def test_station_reading_overrides(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.regions.spatial import Station
        from livability.render.point_analysis import score_point

        stations = [Station(2.05, 41.6, {"forest": 10.0}), Station(2.5, 41.0, {"forest": 60.0})]
        result = score_point(2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer, stations=stations)

        assert result.raw_values["forest"] == 10.0

    def test_unknown_station_variable_ignored(self, ramp_provider, regions, attribute_lookup, scorer):
        from livability.regions.spatial import Station
        from livability.render.point_analysis import score_point

        stations = [Station(2.05, 41.6, {"snowfall": 3.0})]
        result = score_point(2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer, stations=stations)

        assert "snowfall" not in result.raw_values


# =============================================================================
# DISQUALIFICATION
# =============================================================================


class TestPointDisqualification:
    """Test mandatory-layer vetoes at a point."""

    def test_disqualified_point_scores_zero(self, ramp_provider, regions, attribute_lookup):
        from livability.render.point_analysis import score_point
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.configs import create_default_config
        from livability.scoring.transforms import TransferFunction

        config = create_default_config().with_layer(
            "transit", transfer=TransferFunction(5, 25, floor=0.1, mandatory=True)
        )
        scorer = CompositeScorer(config)

        far = score_point(2.18, 41.6, ramp_provider, regions, attribute_lookup, scorer)
        near = score_point(2.05, 41.6, ramp_provider, regions, attribute_lookup, scorer)

        assert far.region_key == "08002"
        assert far.disqualified
        assert far.score == 0.0
        assert not near.disqualified
        assert near.score > 0.0
