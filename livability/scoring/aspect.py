"""
Aspect (slope-facing direction) scoring.

An 8-direction preference map (N, NE, E, SE, S, SW, W, NW) is interpolated at
any bearing with cosine blending between the two bracketing directions.
Flat terrain scores neutral (0.5).
"""

from dataclasses import dataclass, fields
from typing import Any, Union

import numpy as np

from livability import config
from livability.terrain.derivatives import ASPECT_FLAT, ASPECT_LABELS

NumericType = Union[float, np.ndarray]


@dataclass
class AspectPreferences:
    """Desirability in [0, 1] of slopes facing each compass direction."""

    N: float = 0.3
    NE: float = 0.5
    E: float = 0.7
    SE: float = 0.9
    S: float = 1.0
    SW: float = 0.9
    W: float = 0.7
    NW: float = 0.5

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Aspect preference {f.name} must be in [0, 1], got {value}")

    def as_array(self) -> np.ndarray:
        """Preferences in N, NE, E, ... NW order."""
        return np.array([getattr(self, label) for label in ASPECT_LABELS], dtype=np.float64)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {label: getattr(self, label) for label in ASPECT_LABELS}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AspectPreferences":
        """Deserialize from dictionary (missing directions keep defaults)."""
        return cls(**{k: float(v) for k, v in data.items() if k in ASPECT_LABELS})


def score_aspect(bearing: NumericType, prefs: AspectPreferences) -> NumericType:
    """
    Score bearing(s) in degrees (0 = N, clockwise).

    Negative bearings (the flat sentinel) score 0.5; NaN stays NaN.
    """
    a = np.asarray(bearing, dtype=np.float64)
    weights = prefs.as_array()

    flat = a < 0
    wrapped = np.mod(np.where(flat | np.isnan(a), 0.0, a), 360.0)
    sector = np.minimum(np.floor(wrapped / 45.0).astype(np.int64), 7)
    frac = (wrapped - sector * 45.0) / 45.0
    t = 0.5 * (1.0 - np.cos(frac * np.pi))
    result = weights[sector] * (1.0 - t) + weights[(sector + 1) % 8] * t

    result = np.where(flat, config.NEUTRAL_SCORE, result)
    result = np.where(np.isnan(a), np.nan, result)
    if result.ndim == 0:
        return float(result)
    return result


def damp_aspect_score(score: NumericType, damping: float) -> NumericType:
    """Pull an aspect score toward neutral: ``0.5 + (score - 0.5) * damping``."""
    return config.NEUTRAL_SCORE + (score - config.NEUTRAL_SCORE) * damping


def build_aspect_score_lut(prefs: AspectPreferences, damping: float = 1.0) -> np.ndarray:
    """
    256-entry lookup from aspect code to (damped) score.

    Code i < 255 stands for bearing i * 360 / 255; code 255 is flat (neutral).
    """
    codes = np.arange(256, dtype=np.float64)
    lut = score_aspect(codes * 360.0 / 255.0, prefs)
    lut[ASPECT_FLAT] = config.NEUTRAL_SCORE
    return damp_aspect_score(lut, damping)


def score_aspect_codes(codes: np.ndarray, lut: np.ndarray) -> np.ndarray:
    """Map uint8 aspect codes through a score LUT."""
    return lut[np.asarray(codes, dtype=np.uint8)]
