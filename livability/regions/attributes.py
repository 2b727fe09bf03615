"""
Per-region attribute tables and their lookup tables (LUTs).

Attribute data arrives as named tables keyed by municipality code, e.g.::

    {
        "votes": {"08001": {"left_pct": 41.2, "right_pct": 22.0, ...}},
        "transit_dist_km": {"08001": 1.8},
        "terrain": {"08001": {"avg_slope_deg": 4.1, "dominant_aspect": "S", ...}},
    }

Each scoring variable names a table and (for record tables) a field. A LUT is
one float64 array per variable indexed by region index, NaN where the region
has no value. Expanding a LUT over a membership raster is a single gather.
"""

import itertools
import logging
from typing import Any, Iterable, Mapping, Optional

import numpy as np

from livability.regions.geometry import RegionSet, normalize_key
from livability.terrain.derivatives import ASPECT_LABELS

logger = logging.getLogger(__name__)

# variable -> (table, field); field None means the table maps key -> number
VARIABLES: dict[str, tuple[str, Optional[str]]] = {
    "votes_left": ("votes", "left_pct"),
    "votes_right": ("votes", "right_pct"),
    "votes_indep": ("votes", "independence_pct"),
    "votes_unionist": ("votes", "unionist_pct"),
    "votes_turnout": ("votes", "turnout_pct"),
    "transit": ("transit_dist_km", None),
    "forest": ("forest", "forest_pct"),
    "air_quality_pm10": ("air_quality", "pm10"),
    "air_quality_no2": ("air_quality", "no2"),
    "crime": ("crime", "rate_per_thousand"),
    "healthcare": ("healthcare_dist_km", None),
    "schools": ("school_dist_km", None),
    "internet": ("internet", "fiber_pct"),
    "climate_temp": ("climate", "avg_temp_c"),
    "climate_rainfall": ("climate", "avg_rainfall_mm"),
    "rental_prices": ("rental_prices", "avg_eur_month"),
    "employment": ("employment", "unemployment_pct"),
    "amenities": ("amenity_dist_km", None),
    "terrain_slope": ("terrain", "avg_slope_deg"),
    "terrain_elevation": ("terrain", "avg_elevation_m"),
    "terrain_aspect": ("terrain", "dominant_aspect"),
}

VARIABLE_UNITS = {
    "votes_left": "%",
    "votes_right": "%",
    "votes_indep": "%",
    "votes_unionist": "%",
    "votes_turnout": "%",
    "transit": "km",
    "forest": "%",
    "air_quality_pm10": "µg/m³",
    "air_quality_no2": "µg/m³",
    "crime": "/1000",
    "healthcare": "km",
    "schools": "km",
    "internet": "%",
    "climate_temp": "°C",
    "climate_rainfall": "mm",
    "rental_prices": "€/month",
    "employment": "%",
    "amenities": "km",
    "terrain_slope": "°",
    "terrain_elevation": "m",
    "terrain_aspect": "°",
}

_revisions = itertools.count(1)


def _to_float(value: Any) -> float:
    """Numeric value or NaN; compass labels become bearings."""
    if value is None:
        return np.nan
    if isinstance(value, str):
        label = value.strip().upper()
        if label in ASPECT_LABELS:
            return ASPECT_LABELS.index(label) * 45.0
        try:
            return float(label)
        except ValueError:
            return np.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return np.nan


class AttributeData:
    """
    Mutable set of attribute tables with a revision counter.

    Every update bumps ``revision`` so that LUT caches built from an older
    state are discarded.
    """

    def __init__(self, tables: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._tables: dict[str, dict[str, Any]] = {}
        self.revision = next(_revisions)
        for name, rows in (tables or {}).items():
            self.update(name, rows)

    def update(self, table: str, rows: Mapping[str, Any]) -> None:
        """Replace one table; keys are normalised to municipality codes."""
        self._tables[table] = {normalize_key(k): v for k, v in rows.items()}
        self.revision = next(_revisions)
        logger.debug(f"Attribute table '{table}' updated ({len(rows)} rows)")

    @property
    def tables(self) -> list[str]:
        return sorted(self._tables)

    def value(self, variable: str, key: str) -> float:
        """Value of ``variable`` for region ``key``, NaN when absent."""
        table, field = VARIABLES[variable]
        row = self._tables.get(table, {}).get(normalize_key(key))
        if row is None:
            return np.nan
        if field is None:
            return _to_float(row)
        if isinstance(row, Mapping):
            return _to_float(row.get(field))
        return _to_float(getattr(row, field, None))

    def values(self, variable: str) -> list[float]:
        """All values of ``variable`` across the table (NaN for missing fields)."""
        table, _ = VARIABLES[variable]
        return [self.value(variable, key) for key in self._tables.get(table, {})]


class AttributeLookup:
    """
    Per-variable LUT cache over one AttributeData.

    LUTs are rebuilt when the region set (revision or count) or the data
    revision changes, and reused across renders otherwise.
    """

    def __init__(self, data: AttributeData):
        self.data = data
        self.builds = 0
        self._key: Optional[tuple] = None
        self._luts: dict[str, np.ndarray] = {}

    def _cache_key(self, regions: RegionSet) -> tuple:
        return (regions.revision, len(regions), self.data.revision)

    def lut(self, regions: RegionSet, variable: str) -> np.ndarray:
        """Float64 array indexed by region index; NaN where the region lacks data."""
        if variable not in VARIABLES:
            raise KeyError(f"Unknown variable '{variable}'. Available: {sorted(VARIABLES)}")

        key = self._cache_key(regions)
        if key != self._key:
            self._luts = {}
            self._key = key

        lut = self._luts.get(variable)
        if lut is None:
            lut = np.array([self.data.value(variable, k) for k in regions.keys], dtype=np.float64)
            lut.setflags(write=False)
            self._luts[variable] = lut
            self.builds += 1
        return lut

    def luts(self, regions: RegionSet, variables: Optional[Iterable[str]] = None) -> dict[str, np.ndarray]:
        """LUTs for ``variables`` (default: every known variable)."""
        names = VARIABLES if variables is None else variables
        return {name: self.lut(regions, name) for name in names}

    def region_values(self, regions: RegionSet, index: int) -> dict[str, float]:
        """Every variable's value for one region."""
        return {name: float(self.lut(regions, name)[index]) for name in VARIABLES}


def expand(
    lut: np.ndarray,
    membership: np.ndarray,
    index_map: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Full-resolution raster of LUT values by indirection.

    Args:
        lut: Per-region values
        membership: Flat region-index raster (negative = outside)
        index_map: Optional pixel -> membership-cell mapping for rasters
            finer than the membership raster

    Returns:
        Float64 array, NaN for pixels outside every region
    """
    cells = membership if index_map is None else membership[index_map]
    padded = np.append(np.asarray(lut, dtype=np.float64), np.nan)
    return padded[np.where(cells < 0, len(lut), cells)]
