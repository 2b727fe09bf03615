"""Tests for attribute tables, per-variable LUTs and LUT expansion."""

import numpy as np
import pytest


class TestAttributeData:
    """Test value extraction from the attribute tables."""

    def test_scalar_table(self, attribute_data):
        assert attribute_data.value("transit", "08001") == 2.0

    def test_record_table(self, attribute_data):
        assert attribute_data.value("forest", "08002") == 5.0

    def test_missing_values_are_nan(self, attribute_data):
        assert np.isnan(attribute_data.value("transit", "08003"))
        assert np.isnan(attribute_data.value("forest", "08003"))
        assert np.isnan(attribute_data.value("crime", "08001"))

    def test_compass_label_becomes_bearing(self, attribute_data):
        assert attribute_data.value("terrain_aspect", "08001") == 180.0
        assert attribute_data.value("terrain_aspect", "08002") == 0.0

    def test_numeric_strings(self):
        from livability.regions.attributes import AttributeData

        data = AttributeData({"crime": {"08001": {"rate_per_thousand": "12.5"}, "08002": {"rate_per_thousand": "n/a"}}})

        assert data.value("crime", "08001") == 12.5
        assert np.isnan(data.value("crime", "08002"))

    def test_keys_normalised(self):
        from livability.regions.attributes import AttributeData

        data = AttributeData({"transit_dist_km": {"080193": 4.0}})

        assert data.value("transit", "08019") == 4.0

    def test_update_bumps_revision(self, attribute_data):
        before = attribute_data.revision
        attribute_data.update("crime", {"08001": {"rate_per_thousand": 3.0}})

        assert attribute_data.revision != before
        assert "crime" in attribute_data.tables

    def test_values(self, attribute_data):
        values = attribute_data.values("transit")

        assert values[:2] == [2.0, 30.0]
        assert np.isnan(values[2])


class TestAttributeLookup:
    """Test LUT construction and caching."""

    def test_lut_in_region_order(self, regions, attribute_lookup):
        lut = attribute_lookup.lut(regions, "transit")

        assert lut.dtype == np.float64
        assert lut[:2].tolist() == [2.0, 30.0]
        assert np.isnan(lut[2])

    def test_lut_read_only(self, regions, attribute_lookup):
        lut = attribute_lookup.lut(regions, "forest")

        with pytest.raises(ValueError):
            lut[0] = 1.0

    def test_lut_cached(self, regions, attribute_lookup):
        first = attribute_lookup.lut(regions, "transit")
        second = attribute_lookup.lut(regions, "transit")

        assert second is first
        assert attribute_lookup.builds == 1

    def test_data_update_invalidates(self, regions, attribute_data, attribute_lookup):
        attribute_lookup.lut(regions, "transit")
        attribute_data.update("transit_dist_km", {"08001": 9.0})

        assert attribute_lookup.lut(regions, "transit")[0] == 9.0
        assert attribute_lookup.builds == 2

    def test_new_region_set_invalidates(self, regions, attribute_lookup):
        from livability.regions.geometry import RegionSet

        attribute_lookup.lut(regions, "transit")
        attribute_lookup.lut(RegionSet(list(regions)), "transit")

        assert attribute_lookup.builds == 2

    def test_unknown_variable(self, regions, attribute_lookup):
        with pytest.raises(KeyError, match="humidity"):
            attribute_lookup.lut(regions, "humidity")

    def test_luts_subset(self, regions, attribute_lookup):
        luts = attribute_lookup.luts(regions, ["transit", "forest"])

        assert sorted(luts) == ["forest", "transit"]

    def test_region_values_cover_every_variable(self, regions, attribute_lookup):
        from livability.regions.attributes import VARIABLES

        values = attribute_lookup.region_values(regions, 0)

        assert set(values) == set(VARIABLES)
        assert values["terrain_slope"] == 3.0


class TestExpand:
    """Test LUT expansion over membership rasters."""

    def test_outside_is_nan(self):
        from livability.regions.attributes import expand

        result = expand(np.array([1.0, 2.0]), np.array([0, -1, 1], dtype=np.int32))

        assert result[0] == 1.0
        assert np.isnan(result[1])
        assert result[2] == 2.0

    def test_with_index_map(self):
        from livability.regions.attributes import expand
        from livability.regions.membership import pixel_to_member_index

        membership = np.array([0, 1], dtype=np.int32)
        result = expand(np.array([5.0, 7.0]), membership, pixel_to_member_index(4, 1, 2, 1))

        assert result.tolist() == [5.0, 5.0, 7.0, 7.0]
