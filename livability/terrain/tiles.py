"""
Slippy-map tile maths and RGB elevation codecs.

Provides:
- Web Mercator conversions between lon/lat, world pixels and tile indices
- Packed integer tile keys (zoom << 40 | x << 20 | y)
- Mapbox-style (24-bit, 0.1 m steps) and terrarium-style decode/encode
- Fine-tile zoom policy for a target ground resolution

All coordinate helpers accept scalars or numpy arrays.
"""

import math
from typing import Union

import numpy as np

from livability import config
from livability.bounds import Bounds

NumericType = Union[float, np.ndarray]

ELEVATION_ENCODINGS = ("mapbox", "terrarium")

_KEY_BITS = 20
_KEY_MASK = (1 << _KEY_BITS) - 1


def world_scale(zoom: int, tile_size: int = config.TILE_SIZE) -> int:
    """Width of the world in pixels at ``zoom``."""
    return (1 << zoom) * tile_size


def deg_per_px(zoom: int, tile_size: int = config.TILE_SIZE) -> float:
    """Degrees of longitude covered by one pixel at ``zoom``."""
    return 360.0 / world_scale(zoom, tile_size)


def lon_to_world_px(lon: NumericType, zoom: int, tile_size: int = config.TILE_SIZE) -> NumericType:
    """Longitude to fractional world-pixel x at ``zoom``."""
    return (np.asarray(lon, dtype=float) + 180.0) / 360.0 * world_scale(zoom, tile_size)


def lat_to_world_py(lat: NumericType, zoom: int, tile_size: int = config.TILE_SIZE) -> NumericType:
    """Latitude to fractional world-pixel y at ``zoom`` (y grows southward)."""
    r = np.radians(np.asarray(lat, dtype=float))
    merc = np.log(np.tan(r) + 1.0 / np.cos(r))
    return (1.0 - merc / math.pi) / 2.0 * world_scale(zoom, tile_size)


def lon_to_tile_x(lon: NumericType, zoom: int) -> NumericType:
    return np.floor(lon_to_world_px(lon, zoom, 1)).astype(np.int64)


def lat_to_tile_y(lat: NumericType, zoom: int) -> NumericType:
    return np.floor(lat_to_world_py(lat, zoom, 1)).astype(np.int64)


def tile_range(bounds: Bounds, zoom: int) -> tuple[int, int, int, int]:
    """
    Inclusive tile index range covering ``bounds``.

    Returns:
        (min_tx, max_tx, min_ty, max_ty); the northern edge gives min_ty.
    """
    return (
        int(lon_to_tile_x(bounds.west, zoom)),
        int(lon_to_tile_x(bounds.east, zoom)),
        int(lat_to_tile_y(bounds.north, zoom)),
        int(lat_to_tile_y(bounds.south, zoom)),
    )


def cell_size_m(lat: NumericType, zoom: int, tile_size: int = config.TILE_SIZE):
    """
    Ground size of one pixel in metres at ``lat``.

    Returns:
        Tuple of (cell_w, cell_h) for east-west and north-south spacing
    """
    step = deg_per_px(zoom, tile_size)
    cos_lat = np.cos(np.radians(np.asarray(lat, dtype=float)))
    return step * 111320.0 * cos_lat, step * 110540.0 * cos_lat


def pack_tile_key(zoom: int, x: int, y: int) -> int:
    """Pack a tile coordinate into one integer."""
    return (int(zoom) << (2 * _KEY_BITS)) | (int(x) << _KEY_BITS) | int(y)


def unpack_tile_key(key: int) -> tuple[int, int, int]:
    """Inverse of :func:`pack_tile_key`."""
    return key >> (2 * _KEY_BITS), (key >> _KEY_BITS) & _KEY_MASK, key & _KEY_MASK


def fine_dem_zoom(target_m: float) -> int:
    """Fine tile zoom for a target ground resolution in metres per pixel."""
    if target_m <= 10:
        return 14
    if target_m <= 20:
        return 13
    return 12


def tile_url(template: str, zoom: int, x: int, y: int) -> str:
    return template.replace("{z}", str(zoom)).replace("{x}", str(x)).replace("{y}", str(y))


def decode_elevation(rgb: np.ndarray, encoding: str = "mapbox") -> np.ndarray:
    """
    Decode an (..., 3+) uint8 RGB array to elevation in metres.

    Values below ``config.NODATA_THRESHOLD_M`` become NaN.

    Args:
        rgb: Array whose last axis holds R, G, B (alpha ignored)
        encoding: "mapbox" or "terrarium"

    Returns:
        float32 elevation array with the leading shape of ``rgb``
    """
    if encoding not in ELEVATION_ENCODINGS:
        raise ValueError(f"Unknown encoding '{encoding}'. Available: {list(ELEVATION_ENCODINGS)}")

    rgb = np.asarray(rgb)
    r = rgb[..., 0].astype(np.float64)
    g = rgb[..., 1].astype(np.float64)
    b = rgb[..., 2].astype(np.float64)

    if encoding == "terrarium":
        elev = r * 256.0 + g + b / 256.0 - 32768.0
    else:
        elev = -10000.0 + (r * 65536.0 + g * 256.0 + b) * 0.1

    elev[elev < config.NODATA_THRESHOLD_M] = np.nan
    return elev.astype(np.float32)


def encode_elevation(elev: NumericType, encoding: str = "mapbox") -> np.ndarray:
    """
    Encode elevation in metres to uint8 RGB (last axis of length 3).

    Mapbox encoding quantises to 0.1 m; terrarium to 1/256 m.
    """
    if encoding not in ELEVATION_ENCODINGS:
        raise ValueError(f"Unknown encoding '{encoding}'. Available: {list(ELEVATION_ENCODINGS)}")

    elev = np.asarray(elev, dtype=np.float64)
    if encoding == "terrarium":
        v = np.round((elev + 32768.0) * 256.0).astype(np.int64)
        r, g, b = v // 65536, (v // 256) % 256, v % 256
    else:
        v = np.round((elev + 10000.0) * 10.0).astype(np.int64)
        r, g, b = v // 65536, (v // 256) % 256, v % 256

    return np.clip(np.stack([r, g, b], axis=-1), 0, 255).astype(np.uint8)
