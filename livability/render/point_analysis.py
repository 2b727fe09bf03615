"""
Point analysis: terrain and composite score at one clicked coordinate.

Terrain comes from the same sampler the heatmap uses (falling back to the
region's terrain summary where no elevation data is resident). Attribute
values come from the containing region, except that:

- facility layers (transit, healthcare, schools, amenities) use the real
  distance from the point to the nearest facility when facilities are given
- station readings (e.g. climate) are IDW-interpolated at the point and
  override the region's value for each variable they carry
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np

from livability.regions.attributes import AttributeLookup
from livability.regions.geometry import RegionSet
from livability.regions.membership import OUTSIDE, MembershipIndex
from livability.regions.spatial import Station, idw_interpolate_point, nearest_distance_km
from livability.scoring.combiner import CompositeScorer, LayerInputs
from livability.terrain.provider import PointSample, TerrainProvider

logger = logging.getLogger(__name__)

FACILITY_VARIABLES = ("transit", "healthcare", "schools", "amenities")


@dataclass
class PointScore:
    """
    Score breakdown at one coordinate.

    Attributes:
        lon: Query longitude
        lat: Query latitude
        region_key: Key of the containing region (None outside every region)
        region_name: Name of the containing region
        score: Composite score in [0, 1]; 0 when disqualified, NaN outside
        disqualified: Whether a mandatory layer vetoed the point
        layer_scores: Layer id -> sub-score (NaN where the layer had no data)
        raw_values: Variable -> raw input value used
        terrain: Terrain sample at the point
    """

    lon: float
    lat: float
    region_key: Optional[str]
    region_name: Optional[str]
    score: float
    disqualified: bool
    layer_scores: dict[str, float] = field(default_factory=dict)
    raw_values: dict[str, float] = field(default_factory=dict)
    terrain: Optional[PointSample] = None


def _or_nan(value: Optional[float]) -> float:
    return np.nan if value is None else float(value)


def score_point(
    lon: float,
    lat: float,
    provider: TerrainProvider,
    regions: RegionSet,
    lookup: AttributeLookup,
    scorer: CompositeScorer,
    membership_index: Optional[MembershipIndex] = None,
    facilities: Optional[Mapping[str, Sequence[Station]]] = None,
    stations: Optional[Sequence[Station]] = None,
) -> PointScore:
    """
    Score one coordinate with the same layer evaluation as the heatmap.

    Args:
        lon: Longitude
        lat: Latitude
        provider: Terrain source
        regions: Region set
        lookup: Attribute LUTs for ``regions``
        scorer: Composite scorer holding the layer configuration
        membership_index: Bounding-box index used to find the region
        facilities: Facility variable -> facility locations
        stations: Stations whose readings (keyed by variable) are IDW-interpolated

    Returns:
        PointScore
    """
    membership_index = membership_index or MembershipIndex()
    terrain = provider.sample_point(lon, lat)

    index = membership_index.region_at(regions, lon, lat)
    if index == OUTSIDE:
        logger.debug(f"Point ({lon:.5f}, {lat:.5f}) is outside every region")
        return PointScore(lon, lat, None, None, float("nan"), False, terrain=terrain)

    region = regions[index]
    values = lookup.region_values(regions, index)

    for variable, points in (facilities or {}).items():
        distance = nearest_distance_km(lat, lon, points)
        if np.isfinite(distance):
            values[variable] = distance

    for variable, value in idw_interpolate_point(lat, lon, stations or []).items():
        if variable in values:
            values[variable] = value

    slope = terrain.slope if terrain.slope is not None else values["terrain_slope"]
    elevation = terrain.elevation if terrain.elevation is not None else values["terrain_elevation"]
    bearing = terrain.bearing if terrain.bearing is not None else values["terrain_aspect"]

    inputs = LayerInputs(
        slope=np.asarray(_or_nan(slope)),
        elevation=np.asarray(_or_nan(elevation)),
        aspect_bearing=np.asarray(_or_nan(bearing)),
        attributes={k: np.asarray(v) for k, v in values.items()},
    )
    score, disqualified, layer_scores = scorer.score_values(inputs)

    raw_values = {k: v for k, v in values.items() if not np.isnan(v)}
    raw_values.update({"slope_deg": _or_nan(slope), "elevation_m": _or_nan(elevation)})

    is_disqualified = bool(disqualified)
    return PointScore(
        lon=lon,
        lat=lat,
        region_key=region.key,
        region_name=region.name,
        score=0.0 if is_disqualified else float(score),
        disqualified=is_disqualified,
        layer_scores={k: float(v) for k, v in layer_scores.items()},
        raw_values=raw_values,
        terrain=terrain,
    )
