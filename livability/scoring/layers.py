"""
Layer configuration for composite scoring.

Provides:
- LayerKind: closed set of layer kinds (terrain slope/elevation/aspect, attribute)
- LayerSpec: one scoring layer with weight and transfer function
- ScoringConfig: enabled layers plus aspect preferences and damping

Layer kinds are resolved through static tables in the combiner rather than
by layer id, so adding an attribute layer only needs a variable name.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from livability.regions.attributes import VARIABLES
from livability.scoring.aspect import AspectPreferences
from livability.scoring.transforms import TransferFunction


class LayerKind(Enum):
    """Where a layer's raw input comes from."""

    SLOPE = "slope"
    ELEVATION = "elevation"
    ASPECT = "aspect"
    ATTRIBUTE = "attribute"

    @property
    def is_terrain(self) -> bool:
        return self is not LayerKind.ATTRIBUTE


@dataclass
class LayerSpec:
    """
    A single scoring layer.

    Attributes:
        id: Identifier for this layer (unique within a config)
        kind: LayerKind (or its string value)
        enabled: Whether the layer takes part in scoring
        weight: Relative weight in the composite
        transfer: Transfer function (not used by aspect layers)
        variable: Attribute variable name (attribute layers only)
    """

    id: str
    kind: LayerKind
    enabled: bool = True
    weight: float = 1.0
    transfer: Optional[TransferFunction] = None
    variable: Optional[str] = None

    def __post_init__(self):
        """Validate the layer configuration."""
        if isinstance(self.kind, str):
            try:
                self.kind = LayerKind(self.kind)
            except ValueError:
                raise ValueError(
                    f"Unknown layer kind '{self.kind}'. "
                    f"Available: {[k.value for k in LayerKind]}"
                ) from None

        if self.weight < 0:
            raise ValueError(f"Layer '{self.id}' has negative weight {self.weight}")

        if self.kind is LayerKind.ATTRIBUTE:
            if self.variable not in VARIABLES:
                raise ValueError(
                    f"Layer '{self.id}' has unknown variable '{self.variable}'. "
                    f"Available: {sorted(VARIABLES)}"
                )
        if self.kind is not LayerKind.ASPECT and self.transfer is None:
            raise ValueError(f"Layer '{self.id}' needs a transfer function")

    @property
    def is_terrain(self) -> bool:
        return self.kind.is_terrain

    @property
    def effective_weight(self) -> float:
        """Layer weight times the transfer function's weight multiplier."""
        if self.transfer is None:
            return self.weight
        return self.weight * self.transfer.weight

    @property
    def mandatory(self) -> bool:
        return self.transfer is not None and self.transfer.mandatory

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "enabled": self.enabled,
            "weight": self.weight,
            "transfer": self.transfer.to_dict() if self.transfer else None,
            "variable": self.variable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LayerSpec":
        """Deserialize from dictionary."""
        transfer = data.get("transfer")
        return cls(
            id=data["id"],
            kind=data["kind"],
            enabled=data.get("enabled", True),
            weight=data.get("weight", 1.0),
            transfer=TransferFunction.from_dict(transfer) if transfer else None,
            variable=data.get("variable"),
        )


@dataclass
class ScoringConfig:
    """
    Full layer configuration for one scoring run.

    Attributes:
        name: Identifier for this configuration
        layers: All layers, enabled or not
        aspect_preferences: 8-direction preference map for aspect layers
        aspect_damping: Pulls aspect scores toward 0.5 (1 = no damping, 0 = neutral)
    """

    name: str = "livability"
    layers: list[LayerSpec] = field(default_factory=list)
    aspect_preferences: AspectPreferences = field(default_factory=AspectPreferences)
    aspect_damping: float = 1.0

    def __post_init__(self):
        """Validate the configuration."""
        ids = [layer.id for layer in self.layers]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate layer ids: {duplicates}")
        if not 0.0 <= self.aspect_damping <= 1.0:
            raise ValueError(f"aspect_damping must be in [0, 1], got {self.aspect_damping}")

    def get(self, layer_id: str) -> LayerSpec:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        raise KeyError(f"No layer '{layer_id}'. Available: {[l.id for l in self.layers]}")

    def enabled_layers(self) -> list[LayerSpec]:
        return [layer for layer in self.layers if layer.enabled and layer.effective_weight > 0]

    def terrain_layers(self) -> list[LayerSpec]:
        return [layer for layer in self.enabled_layers() if layer.is_terrain]

    def attribute_layers(self) -> list[LayerSpec]:
        return [layer for layer in self.enabled_layers() if not layer.is_terrain]

    def with_layer(self, layer_id: str, **changes) -> "ScoringConfig":
        """Copy of this config with one layer's fields replaced."""
        layers = [replace(l, **changes) if l.id == layer_id else l for l in self.layers]
        if layers == self.layers and layer_id not in [l.id for l in self.layers]:
            raise KeyError(f"No layer '{layer_id}'")
        return replace(self, layers=layers)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "layers": [layer.to_dict() for layer in self.layers],
            "aspect_preferences": self.aspect_preferences.to_dict(),
            "aspect_damping": self.aspect_damping,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScoringConfig":
        """Deserialize from dictionary."""
        return cls(
            name=data.get("name", "livability"),
            layers=[LayerSpec.from_dict(l) for l in data.get("layers", [])],
            aspect_preferences=AspectPreferences.from_dict(data.get("aspect_preferences", {})),
            aspect_damping=data.get("aspect_damping", 1.0),
        )
