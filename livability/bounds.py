"""Geographic bounding boxes in degrees."""

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class Bounds:
    """
    Axis-aligned geographic rectangle.

    Attributes:
        west: Western longitude
        south: Southern latitude
        east: Eastern longitude
        north: Northern latitude
    """

    west: float
    south: float
    east: float
    north: float

    @classmethod
    def from_tuple(cls, values: Sequence[float]) -> "Bounds":
        """Build from a (west, south, east, north) sequence."""
        west, south, east, north = values
        return cls(float(west), float(south), float(east), float(north))

    def to_tuple(self) -> tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    @property
    def center(self) -> tuple[float, float]:
        """(lon, lat) of the rectangle centre."""
        return ((self.west + self.east) / 2, (self.south + self.north) / 2)

    def is_degenerate(self) -> bool:
        """True when the rectangle has no positive area."""
        return self.west >= self.east or self.south >= self.north

    def clamp_to(self, extent: "Bounds") -> "Bounds":
        """Clip this rectangle to ``extent`` (result may be degenerate)."""
        return Bounds(
            west=max(self.west, extent.west),
            south=max(self.south, extent.south),
            east=min(self.east, extent.east),
            north=min(self.north, extent.north),
        )

    def contains(self, lon: float, lat: float) -> bool:
        return self.west <= lon <= self.east and self.south <= lat <= self.north

    def intersects(self, other: "Bounds") -> bool:
        return not (
            other.west > self.east
            or other.east < self.west
            or other.south > self.north
            or other.north < self.south
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"west": self.west, "south": self.south, "east": self.east, "north": self.north}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bounds":
        """Deserialize from dictionary."""
        return cls(data["west"], data["south"], data["east"], data["north"])
