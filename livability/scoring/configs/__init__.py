"""
Scoring configurations.

Available configs:
- default: terrain + transit + forest livability scoring
"""

from livability.scoring.configs.default import (
    DEFAULT_CONFIG,
    create_default_config,
    create_default_layers,
)

__all__ = [
    "DEFAULT_CONFIG",
    "create_default_config",
    "create_default_layers",
]
