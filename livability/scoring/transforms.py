"""
Transfer functions for livability scoring.

A transfer function maps a raw measurement (distance in km, temperature in
degrees C, slope in degrees...) to a desirability score between ``floor``
and ``ceiling``. With M = plateau_start and N = decay_end:

1. sin       - <=M ceiling, half-cosine decay, >=N floor
2. invsin    - <=M floor, half-cosine rise, >=N ceiling
3. linear    - <=M ceiling, straight-line decay, >=N floor
4. invlinear - <=M floor, straight-line rise, >=N ceiling

Shape (sin):
    ________
            \\
             \\______
            M  N

When M and N coincide the curve is a step at that threshold. NaN input
always gives NaN output so missing data reads as "layer absent".

Scalar and array evaluation share one implementation; ``evaluate`` is the
0-d case of ``evaluate_grid``.
"""

from dataclasses import dataclass
from typing import Any, Union

import numpy as np

from livability import config

# Type alias for values that can be scalar or array
NumericType = Union[float, np.ndarray]

SHAPES = ("sin", "invsin", "linear", "invlinear")
INVERTED_SHAPES = ("invsin", "invlinear")

# Alternative spellings accepted when loading configs
SHAPE_ALIASES = {
    "inverted-sin": "invsin",
    "range": "linear",
    "invrange": "invlinear",
    "inverted-linear": "invlinear",
}

DEGENERATE_SPAN = 1e-9


@dataclass
class TransferFunction:
    """
    Scoring curve parameters.

    Attributes:
        plateau_start: Start of the transition zone (raw units)
        decay_end: End of the transition zone (raw units)
        floor: Score at the "bad" end of the curve
        ceiling: Score at the "good" end of the curve
        shape: One of "sin", "invsin", "linear", "invlinear"
        mandatory: Disqualify samples that score at the floor
        weight: Multiplier applied to the owning layer's weight
    """

    plateau_start: float
    decay_end: float
    floor: float = 0.0
    ceiling: float = 1.0
    shape: str = "sin"
    mandatory: bool = False
    weight: float = 1.0

    def __post_init__(self):
        """Validate the curve configuration."""
        self.shape = SHAPE_ALIASES.get(self.shape, self.shape)
        if self.shape not in SHAPES:
            raise ValueError(f"Unknown shape '{self.shape}'. Available: {list(SHAPES)}")
        if self.weight < 0:
            raise ValueError(f"Transfer function weight must be >= 0, got {self.weight}")
        if self.floor > self.ceiling:
            raise ValueError(f"floor ({self.floor}) must not exceed ceiling ({self.ceiling})")

    @property
    def inverted(self) -> bool:
        return self.shape in INVERTED_SHAPES

    def __call__(self, value: NumericType) -> NumericType:
        return evaluate_grid(value, self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "plateau_start": self.plateau_start,
            "decay_end": self.decay_end,
            "floor": self.floor,
            "ceiling": self.ceiling,
            "shape": self.shape,
            "mandatory": self.mandatory,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransferFunction":
        """Deserialize from dictionary."""
        return cls(
            plateau_start=data["plateau_start"],
            decay_end=data["decay_end"],
            floor=data.get("floor", 0.0),
            ceiling=data.get("ceiling", 1.0),
            shape=data.get("shape", "sin"),
            mandatory=data.get("mandatory", False),
            weight=data.get("weight", 1.0),
        )


def evaluate_grid(values: NumericType, tf: TransferFunction) -> NumericType:
    """
    Evaluate a transfer function over scalars or arrays.

    Args:
        values: Raw input value(s); NaN propagates
        tf: Curve parameters

    Returns:
        Score(s) in [floor, ceiling]; float for scalar input
    """
    x = np.asarray(values, dtype=np.float64)
    scalar_input = x.ndim == 0
    x = np.atleast_1d(x)
    m, n = tf.plateau_start, tf.decay_end
    low, high = tf.floor, tf.ceiling

    if abs(n - m) < DEGENERATE_SPAN:
        if tf.inverted:
            result = np.where(x >= n, high, low)
        else:
            result = np.where(x <= m, high, low)
    else:
        with np.errstate(invalid="ignore"):
            t = np.clip((x - m) / (n - m), 0.0, 1.0)
        if tf.shape == "sin":
            ramp = low + (high - low) * 0.5 * (1.0 + np.cos(np.pi * t))
        elif tf.shape == "invsin":
            ramp = low + (high - low) * 0.5 * (1.0 - np.cos(np.pi * t))
        elif tf.shape == "linear":
            ramp = high - (high - low) * t
        else:
            ramp = low + (high - low) * t

        below, above = (low, high) if tf.inverted else (high, low)
        result = np.select([x <= m, x >= n], [below, above], default=ramp)

    result = np.where(np.isnan(x), np.nan, result).astype(np.float64)

    # Return scalar if input was scalar
    if scalar_input:
        return float(result[0])
    return result


def evaluate(value: float, tf: TransferFunction) -> float:
    """Scalar form of :func:`evaluate_grid`."""
    return float(evaluate_grid(float(value), tf))


def is_disqualified(
    score: NumericType,
    tf: TransferFunction,
    epsilon: float = config.MANDATORY_EPSILON,
) -> Union[bool, np.ndarray]:
    """
    Mandatory-layer predicate: ``score <= floor + epsilon``.

    NaN scores are never disqualifying. Non-mandatory curves never disqualify.
    """
    score = np.asarray(score, dtype=np.float64)
    if not tf.mandatory:
        result = np.zeros(score.shape, dtype=bool)
    else:
        with np.errstate(invalid="ignore"):
            result = score <= tf.floor + epsilon
    if result.ndim == 0:
        return bool(result)
    return result
