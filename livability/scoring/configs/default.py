"""
Default livability scoring configuration.

Terrain layers (evaluated per pixel):
  - slope: flat to gentle ground preferred; decays from 5 deg to 20 deg
  - elevation: gentle preference for 100-1500 m
  - aspect: south-facing preferred (8-direction preference map)

Attribute layers (evaluated once per municipality):
  - transit, healthcare, schools, amenities: distance in km, closer is better
  - forest cover and fibre coverage: more is better (inverted curves)
  - air quality, crime, rent, unemployment: lower is better
  - climate temperature and rainfall
  - vote shares (disabled by default)

Weights mirror the relative importance used by the map UI; most
attribute layers start disabled.
"""

from livability.scoring.aspect import AspectPreferences
from livability.scoring.layers import LayerKind, LayerSpec, ScoringConfig
from livability.scoring.transforms import TransferFunction

VOTE_VARIABLES = (
    "votes_left",
    "votes_right",
    "votes_indep",
    "votes_unionist",
    "votes_turnout",
)


def _attribute(layer_id, variable, tf, weight=1.0, enabled=False):
    return LayerSpec(
        id=layer_id,
        kind=LayerKind.ATTRIBUTE,
        enabled=enabled,
        weight=weight,
        transfer=tf,
        variable=variable,
    )


def create_default_layers() -> list[LayerSpec]:
    """Default layer list (terrain first, then attributes)."""
    layers = [
        LayerSpec("slope", LayerKind.SLOPE, transfer=TransferFunction(5, 20, floor=0.0)),
        LayerSpec("elevation", LayerKind.ELEVATION, transfer=TransferFunction(100, 1500, floor=0.0)),
        LayerSpec("aspect", LayerKind.ASPECT),
        _attribute("transit", "transit", TransferFunction(5, 25, floor=0.1), enabled=True),
        _attribute("forest", "forest", TransferFunction(10, 80, shape="invsin"), enabled=True),
        _attribute("air_quality_pm10", "air_quality_pm10", TransferFunction(10, 50), weight=0.8),
        _attribute("air_quality_no2", "air_quality_no2", TransferFunction(10, 40), weight=0.8),
        _attribute("crime", "crime", TransferFunction(5, 50), weight=0.7),
        _attribute("healthcare", "healthcare", TransferFunction(3, 15, floor=0.1), weight=0.6),
        _attribute("schools", "schools", TransferFunction(3, 10, floor=0.1), weight=0.5),
        _attribute("internet", "internet", TransferFunction(50, 100, shape="invsin"), weight=0.4),
        _attribute("climate_temp", "climate_temp", TransferFunction(10, 25), weight=0.5),
        _attribute("climate_rainfall", "climate_rainfall", TransferFunction(200, 800), weight=0.5),
        _attribute("rental_prices", "rental_prices", TransferFunction(300, 1500), weight=0.8),
        _attribute("employment", "employment", TransferFunction(3, 15), weight=0.5),
        _attribute("amenities", "amenities", TransferFunction(3, 20, floor=0.1), weight=0.3),
    ]
    layers.extend(_attribute(v, v, TransferFunction(0, 100)) for v in VOTE_VARIABLES)
    return layers


def create_default_config() -> ScoringConfig:
    """
    Create the default livability scoring configuration.

    Returns:
        ScoringConfig with terrain, transit and forest layers enabled.

    Example:
        >>> config = create_default_config()
        >>> [layer.id for layer in config.enabled_layers()]
        ['slope', 'elevation', 'aspect', 'transit', 'forest']
    """
    return ScoringConfig(
        name="livability",
        layers=create_default_layers(),
        aspect_preferences=AspectPreferences(),
        aspect_damping=1.0,
    )


DEFAULT_CONFIG = create_default_config()
