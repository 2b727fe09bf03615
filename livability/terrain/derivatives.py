"""
Terrain derivatives using Horn's 3x3 weighted finite-difference method.

Neighbourhood order is row-major ``a..i`` with ``e`` the centre:

    a b c
    d e f
    g h i

    dzdx   = ((c + 2f + i) - (a + 2d + g)) / (8 * cell_w)
    dzdy   = ((g + 2h + i) - (a + 2b + c)) / (8 * cell_h)
    slope  = atan(sqrt(dzdx^2 + dzdy^2))     (degrees)
    aspect = atan2(-dzdx, dzdy) in [0, 360)   (downhill bearing)

Missing neighbours are replaced by the centre elevation before the kernel
runs. A missing centre yields NaN. Flat cells report FLAT_BEARING.
"""

import logging
from typing import Union

import numpy as np
from scipy import ndimage

from livability import config

logger = logging.getLogger(__name__)

NumericType = Union[float, np.ndarray]

# (row, col) offsets of a..i relative to the centre
NEIGHBOUR_OFFSETS = (
    (-1, -1), (-1, 0), (-1, 1),
    (0, -1), (0, 0), (0, 1),
    (1, -1), (1, 0), (1, 1),
)

FLAT_BEARING = -1.0
ASPECT_FLAT = 255  # uint8 aspect code for flat terrain or no data
ASPECT_LABELS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")

_KERNEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
_KERNEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)


def horn_components(
    window: np.ndarray,
    cell_w: NumericType,
    cell_h: NumericType,
    flat_epsilon: float = config.FLAT_GRADIENT_EPSILON,
):
    """
    Vectorised Horn kernel over stacked neighbourhoods.

    Args:
        window: Array of shape (9, ...) holding a..i for every sample
        cell_w: East-west cell size in metres (broadcastable to window[0])
        cell_h: North-south cell size in metres (broadcastable to window[0])
        flat_epsilon: Gradient magnitude below which a cell is flat

    Returns:
        Tuple of (slope_deg, bearing_deg, valid); slope and bearing are NaN
        where the centre is missing, bearing is FLAT_BEARING on flat cells
    """
    window = np.asarray(window, dtype=np.float64)
    centre = window[4]
    filled = np.where(np.isnan(window), centre, window)
    a, b, c, d, _, f, g, h, i = filled

    with np.errstate(invalid="ignore"):
        dzdx = ((c + 2 * f + i) - (a + 2 * d + g)) / (8 * np.asarray(cell_w, dtype=np.float64))
        dzdy = ((g + 2 * h + i) - (a + 2 * b + c)) / (8 * np.asarray(cell_h, dtype=np.float64))
        gradient = np.hypot(dzdx, dzdy)
        slope = np.degrees(np.arctan(gradient))
        bearing = np.mod(np.degrees(np.arctan2(-dzdx, dzdy)), 360.0)
        bearing = np.where(bearing >= 360.0, bearing - 360.0, bearing)
        bearing = np.where(gradient < flat_epsilon, FLAT_BEARING, bearing)

    valid = ~np.isnan(centre)
    slope = np.where(valid, slope, np.nan)
    bearing = np.where(valid, bearing, np.nan)
    return slope, bearing, valid


def horn_kernel(window: np.ndarray, cell_w: float, cell_h: float) -> tuple[float, float]:
    """
    Horn slope and bearing for a single 3x3 neighbourhood.

    Returns:
        (slope_deg, bearing_deg); both NaN when the centre is missing
    """
    window = np.asarray(window, dtype=np.float64).reshape(9)
    slope, bearing, _ = horn_components(window, cell_w, cell_h)
    return float(slope), float(bearing)


def horn_slope_grid(dem: np.ndarray, cell_w: NumericType, cell_h: NumericType) -> np.ndarray:
    """
    Horn slope in degrees for every cell of a 2D elevation array.

    Uses the same centre-substitution rule as :func:`horn_components`, with
    cells beyond the array edge treated as missing.

    Args:
        dem: 2D elevation array (NaN = no data)
        cell_w: East-west cell size in metres, scalar or one value per row
        cell_h: North-south cell size in metres, scalar or one value per row

    Returns:
        Slope array (same shape as input), NaN where the DEM is NaN
    """
    dem = np.asarray(dem, dtype=np.float64)
    logger.debug(f"Computing Horn slope grid for DEM shape {dem.shape}")

    missing = np.isnan(dem)
    zero_filled = np.where(missing, 0.0, dem)
    missing_f = missing.astype(np.float64)

    # Sum of w_k * (n_k if present else e) = corr(z0) + e * corr(missing)
    sum_x = ndimage.correlate(zero_filled, _KERNEL_X, mode="constant", cval=0.0)
    sum_x += dem * ndimage.correlate(missing_f, _KERNEL_X, mode="constant", cval=1.0)
    sum_y = ndimage.correlate(zero_filled, _KERNEL_Y, mode="constant", cval=0.0)
    sum_y += dem * ndimage.correlate(missing_f, _KERNEL_Y, mode="constant", cval=1.0)

    cell_w = np.asarray(cell_w, dtype=np.float64)
    cell_h = np.asarray(cell_h, dtype=np.float64)
    if cell_w.ndim == 1:
        cell_w = cell_w[:, None]
    if cell_h.ndim == 1:
        cell_h = cell_h[:, None]

    slope = np.degrees(np.arctan(np.hypot(sum_x / (8 * cell_w), sum_y / (8 * cell_h))))
    slope[missing] = np.nan
    return slope


def bearing_to_aspect_code(bearing: NumericType) -> np.ndarray:
    """
    Encode bearings as uint8 aspect codes.

    Codes 0..254 span [0, 360); flat (negative) or NaN bearings map to ASPECT_FLAT.
    """
    bearing = np.asarray(bearing, dtype=np.float64)
    flat = np.isnan(bearing) | (bearing < 0)
    safe = np.where(flat, 0.0, bearing)
    codes = np.mod(np.round(safe * 255.0 / 360.0), 255).astype(np.uint8)
    return np.where(flat, np.uint8(ASPECT_FLAT), codes).astype(np.uint8)


def aspect_code_to_bearing(code: Union[int, np.ndarray]) -> NumericType:
    """Decode aspect codes to bearings; ASPECT_FLAT gives FLAT_BEARING."""
    code = np.asarray(code)
    bearing = np.where(code == ASPECT_FLAT, FLAT_BEARING, code.astype(np.float64) * 360.0 / 255.0)
    if bearing.ndim == 0:
        return float(bearing)
    return bearing


def bearing_to_label(bearing: float):
    """8-point compass label for a bearing, or None for flat / missing."""
    if bearing is None or np.isnan(bearing) or bearing < 0:
        return None
    return ASPECT_LABELS[int(((bearing + 22.5) % 360.0) // 45.0)]


def aspect_code_to_label(code: int):
    """8-point compass label for an aspect code, or None for ASPECT_FLAT."""
    return bearing_to_label(aspect_code_to_bearing(int(code)))
