"""
Region geometry, membership rasters and per-region attribute lookups.

- RegionPolygon / RegionSet: municipality polygons with stable indices
- MembershipIndex: bbox-pruned, cached point-in-region rasters
- AttributeData / AttributeLookup: attribute tables and per-variable LUTs
- haversine_km / idw_interpolate_point: station and facility distances
"""

from livability.regions.geometry import RegionPolygon, RegionSet, normalize_key
from livability.regions.membership import (
    OUTSIDE,
    MembershipIndex,
    RasterSpec,
    membership_dims,
    pixel_to_member_index,
)
from livability.regions.attributes import (
    VARIABLES,
    VARIABLE_UNITS,
    AttributeData,
    AttributeLookup,
    expand,
)
from livability.regions.spatial import (
    Station,
    haversine_km,
    idw_interpolate_point,
    nearest_distance_km,
)

__all__ = [
    "RegionPolygon",
    "RegionSet",
    "normalize_key",
    "OUTSIDE",
    "MembershipIndex",
    "RasterSpec",
    "membership_dims",
    "pixel_to_member_index",
    "VARIABLES",
    "VARIABLE_UNITS",
    "AttributeData",
    "AttributeLookup",
    "expand",
    "Station",
    "haversine_km",
    "idw_interpolate_point",
    "nearest_distance_km",
]
