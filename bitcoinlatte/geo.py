from __future__ import annotations

from dataclasses import dataclass
import math

EARTH_RADIUS_KM = 6371.0
DEFAULT_RADIUS_KM = 10.0
MIN_RADIUS_KM = 10.0
MAX_RADIUS_KM = 1000.0

LatLng = tuple[float, float]


@dataclass(frozen=True, slots=True)
class Bounds:
    south_west: LatLng
    north_east: LatLng

    @property
    def south(self) -> float:
        return self.south_west[0]

    @property
    def west(self) -> float:
        return self.south_west[1]

    @property
    def north(self) -> float:
        return self.north_east[0]

    @property
    def east(self) -> float:
        return self.north_east[1]

    def bbox(self) -> tuple[float, float, float, float]:
        """Return the Overpass ordering ``(south, west, north, east)``."""
        return (self.south, self.west, self.north, self.east)

    @classmethod
    def from_bbox(cls, bbox: tuple[float, float, float, float] | list[float]) -> "Bounds":
        south, west, north, east = bbox
        return cls(south_west=(south, west), north_east=(north, east))


@dataclass(frozen=True, slots=True)
class Viewport:
    center: LatLng
    bounds: Bounds | None = None


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points using the Haversine formula."""
    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def dynamic_radius(bounds: Bounds | None) -> float:
    """Search radius for a viewport: half its diagonal, clamped to [10, 1000] km."""
    if bounds is None:
        return DEFAULT_RADIUS_KM

    diagonal = distance_km(bounds.south, bounds.west, bounds.north, bounds.east)
    return max(MIN_RADIUS_KM, min(MAX_RADIUS_KM, diagonal / 2))
