"""Descriptive statistics for a layer's raw values (shown next to curve editors)."""

from dataclasses import asdict, dataclass
from typing import Any, Iterable

import numpy as np

from livability.regions.attributes import VARIABLE_UNITS, AttributeData


@dataclass
class DataStats:
    """Summary of one layer's raw values."""

    min: float
    max: float
    p25: float
    median: float
    p75: float
    unit: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)


def compute_data_stats(values: Iterable[float], unit: str = "") -> DataStats:
    """
    Min, max, quartiles and median of ``values`` with linear interpolation.

    NaN and None entries are ignored. Empty input gives all zeros with count 0.

    Example:
        >>> compute_data_stats([1, 2, 3, 4], "km").median
        2.5
    """
    arr = np.array([np.nan if v is None else v for v in values], dtype=np.float64)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return DataStats(0.0, 0.0, 0.0, 0.0, 0.0, unit, 0)

    p25, median, p75 = np.percentile(arr, [25, 50, 75])
    return DataStats(
        min=float(arr.min()),
        max=float(arr.max()),
        p25=float(p25),
        median=float(median),
        p75=float(p75),
        unit=unit,
        count=int(arr.size),
    )


def variable_stats(data: AttributeData, variable: str) -> DataStats:
    """Statistics of one attribute variable over its whole table."""
    return compute_data_stats(data.values(variable), VARIABLE_UNITS.get(variable, ""))
