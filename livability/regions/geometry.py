"""
Region polygons (municipalities) backed by shapely geometries.

A RegionSet is immutable for the duration of a render: indices are stable
(0..n-1, in input order) and each set carries a revision number so caches
can tell two sets of equal size apart.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Polygon, shape

from livability.bounds import Bounds

logger = logging.getLogger(__name__)

_revisions = itertools.count(1)


def normalize_key(code: Any) -> str:
    """Normalise a municipality code to its 5-character INE form."""
    return str(code).strip()[:5]


@dataclass
class RegionPolygon:
    """
    One region with its geometry and attribute key.

    Attributes:
        index: Stable integer index within its RegionSet
        key: Identifying key used by attribute tables
        geometry: shapely Polygon or MultiPolygon in lon/lat
        name: Display name
    """

    index: int
    key: str
    geometry: Any
    name: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.geometry, (Polygon, MultiPolygon)):
            raise ValueError(
                f"Region '{self.key}' geometry must be a Polygon or MultiPolygon, "
                f"got {type(self.geometry).__name__}"
            )
        self.key = normalize_key(self.key)
        shapely.prepare(self.geometry)

    @classmethod
    def from_rings(
        cls,
        index: int,
        key: str,
        parts: Sequence[Sequence[Sequence[Sequence[float]]]],
        name: Optional[str] = None,
    ) -> "RegionPolygon":
        """
        Build from ring lists.

        Args:
            index: Region index
            key: Attribute key
            parts: One entry per polygon part; each part is [exterior, *holes],
                each ring a sequence of (lon, lat)
        """
        polygons = [Polygon(part[0], holes=list(part[1:])) for part in parts]
        geometry = polygons[0] if len(polygons) == 1 else MultiPolygon(polygons)
        return cls(index=index, key=key, geometry=geometry, name=name)

    @classmethod
    def from_geojson(
        cls,
        index: int,
        feature: dict[str, Any],
        key_property: str = "codi",
        name_property: str = "nom",
    ) -> "RegionPolygon":
        """Build from a GeoJSON Feature with Polygon/MultiPolygon geometry."""
        props = feature.get("properties") or {}
        return cls(
            index=index,
            key=props[key_property],
            geometry=shape(feature["geometry"]),
            name=props.get(name_property),
        )

    @property
    def bounds(self) -> Bounds:
        return Bounds.from_tuple(self.geometry.bounds)

    def contains(self, lon: float, lat: float) -> bool:
        """Point-in-region test (holes excluded, any part counts)."""
        return bool(shapely.contains_xy(self.geometry, lon, lat))

    def centroid(self) -> tuple[float, float]:
        c = self.geometry.centroid
        return (c.x, c.y)


class RegionSet:
    """Ordered, immutable collection of regions for one render."""

    def __init__(self, regions: Sequence[RegionPolygon]):
        self._regions = list(regions)
        for i, region in enumerate(self._regions):
            if region.index != i:
                raise ValueError(f"Region '{region.key}' has index {region.index}, expected {i}")
        self.revision = next(_revisions)
        self._by_key = {r.key: r for r in self._regions}

    @classmethod
    def from_geojson(
        cls,
        collection: dict[str, Any],
        key_property: str = "codi",
        name_property: str = "nom",
    ) -> "RegionSet":
        """Build from a GeoJSON FeatureCollection, indexing features in order."""
        features = collection.get("features", [])
        regions = [
            RegionPolygon.from_geojson(i, f, key_property, name_property)
            for i, f in enumerate(features)
        ]
        logger.info(f"Loaded {len(regions)} regions")
        return cls(regions)

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self) -> Iterator[RegionPolygon]:
        return iter(self._regions)

    def __getitem__(self, index: int) -> RegionPolygon:
        return self._regions[index]

    @property
    def keys(self) -> list[str]:
        return [r.key for r in self._regions]

    @property
    def geometries(self) -> np.ndarray:
        return np.array([r.geometry for r in self._regions], dtype=object)

    def by_key(self, key: str) -> Optional[RegionPolygon]:
        return self._by_key.get(normalize_key(key))

    def bbox_array(self) -> np.ndarray:
        """(n, 4) array of (minx, miny, maxx, maxy) per region."""
        if not self._regions:
            return np.empty((0, 4))
        return shapely.bounds(self.geometries)
