"""
Color mapping for score and elevation rasters.

Scores are drawn through a reversed Turbo palette (good = blue end, bad = red
end) via a 256-entry lookup table taken from matplotlib. NaN pixels are fully
transparent; disqualified pixels are either a dark, semi-opaque mask or
transparent.

Also registers a "hypsometric" colormap (green lowlands, brown mountains,
white peaks) for elevation rasters.
"""

import io
import logging
from typing import Literal, Optional

import matplotlib
import numpy as np
from matplotlib.colors import LinearSegmentedColormap, Normalize
from PIL import Image

from livability import config

logger = logging.getLogger(__name__)

DisqualifiedMode = Literal["black", "transparent"]
NormalisationMode = Literal["global", "frame"]


def _turbo_lut() -> np.ndarray:
    """(256, 3) uint8 Turbo palette."""
    cmap = matplotlib.colormaps["turbo"]
    rgb = cmap(np.linspace(0.0, 1.0, 256))[:, :3]
    return np.round(rgb * 255).astype(np.uint8)


TURBO_LUT = _turbo_lut()


# =============================================================================
# Hypsometric Colormap
# =============================================================================

# Elevation (m) -> RGB stops
HYPSOMETRIC_STOPS = [
    (-50, (70, 130, 180)),  # below sea level
    (0, (172, 208, 165)),  # coast
    (100, (148, 191, 139)),
    (250, (168, 198, 143)),
    (500, (189, 204, 150)),
    (750, (209, 215, 171)),
    (1000, (225, 228, 181)),
    (1250, (202, 185, 130)),
    (1500, (180, 145, 95)),
    (2000, (156, 126, 98)),
    (2500, (181, 172, 164)),
    (3000, (218, 216, 215)),
    (3300, (248, 248, 248)),  # summit
]

HYPSOMETRIC_MIN = HYPSOMETRIC_STOPS[0][0]
HYPSOMETRIC_MAX = HYPSOMETRIC_STOPS[-1][0]

hypsometric_cmap = LinearSegmentedColormap.from_list(
    "hypsometric",
    [
        ((elev - HYPSOMETRIC_MIN) / (HYPSOMETRIC_MAX - HYPSOMETRIC_MIN), tuple(c / 255 for c in rgb))
        for elev, rgb in HYPSOMETRIC_STOPS
    ],
    # one entry per metre
    N=HYPSOMETRIC_MAX - HYPSOMETRIC_MIN + 1,
)
matplotlib.colormaps.register(hypsometric_cmap, force=True)


def elevation_to_rgb(elevation) -> np.ndarray:
    """
    Hypsometric tint for elevation value(s) in metres.

    Values outside the ramp clamp to its ends; NaN maps to the lowest stop.

    Returns:
        uint8 array of shape (..., 3)
    """
    elev = np.nan_to_num(np.asarray(elevation, dtype=np.float64), nan=HYPSOMETRIC_MIN)
    norm = Normalize(vmin=HYPSOMETRIC_MIN, vmax=HYPSOMETRIC_MAX, clip=True)
    rgba = hypsometric_cmap(norm(elev))
    return np.round(np.asarray(rgba)[..., :3] * 255).astype(np.uint8)


# =============================================================================
# Score Colors
# =============================================================================


def score_to_rgba(score: float, alpha: int = config.SCORE_ALPHA) -> tuple[int, int, int, int]:
    """Reversed-Turbo colour for one score in [0, 1] (clamped)."""
    idx = 255 - int(round(min(max(score, 0.0), 1.0) * 255))
    r, g, b = TURBO_LUT[idx]
    return int(r), int(g), int(b), alpha


def score_to_css_color(score: float, opacity: float = 0.78) -> str:
    """CSS ``rgba()`` string for a score, for legends."""
    r, g, b, _ = score_to_rgba(score)
    return f"rgba({r},{g},{b},{opacity})"


def frame_range(scores: np.ndarray) -> tuple[float, float]:
    """Min and max of in-range scores, skipping NaN and the disqualified sentinel."""
    values = np.asarray(scores, dtype=np.float64)
    values = values[~np.isnan(values) & (values != config.DISQUALIFIED)]
    if values.size == 0:
        return 0.0, 1.0
    return float(values.min()), float(values.max())


def normalise_scores(
    scores: np.ndarray,
    mode: NormalisationMode = "global",
    score_range: Optional[tuple[float, float]] = None,
) -> np.ndarray:
    """
    Map scores to [0, 1] for colouring; sentinels pass through unchanged.

    "global" clips to [0, 1]. "frame" stretches the frame's min..max to
    [0, 1]; a span under FLAT_NORMALISATION_SPAN renders mid ramp.
    """
    s = np.asarray(scores, dtype=np.float64)
    special = np.isnan(s) | (s == config.DISQUALIFIED)
    if mode == "global":
        out = np.clip(s, 0.0, 1.0)
    elif mode == "frame":
        lo, hi = score_range if score_range is not None else frame_range(s)
        span = hi - lo
        if span < config.FLAT_NORMALISATION_SPAN:
            out = np.full(s.shape, 0.5)
        else:
            out = np.clip((s - lo) / span, 0.0, 1.0)
    else:
        raise ValueError(f"Unknown normalisation mode '{mode}'. Available: ['global', 'frame']")
    return np.where(special, s, out)


def scores_to_rgba(
    scores: np.ndarray,
    rows: int,
    cols: int,
    disqualified_mode: DisqualifiedMode = "black",
    normalisation: NormalisationMode = "global",
    alpha: int = config.SCORE_ALPHA,
) -> np.ndarray:
    """
    Convert a flat score raster to RGBA pixels.

    Args:
        scores: Flat row-major scores (values in [0, 1], DISQUALIFIED or NaN)
        rows: Raster rows
        cols: Raster columns
        disqualified_mode: "black" (dark semi-opaque mask) or "transparent"
        normalisation: "global" or "frame"
        alpha: Opacity of scored pixels

    Returns:
        uint8 array of shape (rows, cols, 4)
    """
    if disqualified_mode not in ("black", "transparent"):
        raise ValueError(f"Unknown disqualified mode '{disqualified_mode}'")

    s = np.asarray(scores, dtype=np.float64).reshape(rows, cols)
    nodata = np.isnan(s)
    disqualified = s == config.DISQUALIFIED
    scored = ~nodata & ~disqualified

    normalised = normalise_scores(s, normalisation)
    idx = 255 - np.round(np.where(scored, normalised, 0.0) * 255).astype(np.int64)

    rgba = np.zeros((rows, cols, 4), dtype=np.uint8)
    rgba[..., :3] = TURBO_LUT[idx]
    rgba[..., 3] = alpha
    rgba[nodata] = 0
    if disqualified_mode == "black":
        rgba[disqualified] = config.MASK_RGBA
    else:
        rgba[disqualified] = 0
    return rgba


def encode_image(rgba: np.ndarray, fmt: str = "PNG") -> bytes:
    """Encode an RGBA raster as PNG or WEBP bytes."""
    fmt = fmt.upper()
    if fmt not in ("PNG", "WEBP"):
        raise ValueError(f"Unsupported image format '{fmt}'. Available: ['PNG', 'WEBP']")
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(buf, format=fmt)
    return buf.getvalue()
