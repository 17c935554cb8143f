"""
Study area data model.

A study area is a rectangular extent plus an optional administrative
boundary clipped to that extent. Geometries are shapely objects, which
are immutable, so a StudyArea never changes after it is resolved.
"""

import math
from dataclasses import dataclass

from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from bumblesdm.config.settings import GEOGRAPHIC_CRS, ExtentConfig
from bumblesdm.errors import InvalidExtent


@dataclass(frozen=True)
class Extent:
    """
    Geographic bounding extent.

    Attributes:
        min_lon: Western bound.
        max_lon: Eastern bound.
        min_lat: Southern bound.
        max_lat: Northern bound.
    """

    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float

    def __post_init__(self) -> None:
        values = (self.min_lon, self.max_lon, self.min_lat, self.max_lat)
        if not all(math.isfinite(v) for v in values):
            msg = "Extent bounds must be finite numbers"
            raise InvalidExtent(msg, bounds=values)
        if self.min_lon >= self.max_lon:
            msg = "min_lon must be less than max_lon"
            raise InvalidExtent(msg, min_lon=self.min_lon, max_lon=self.max_lon)
        if self.min_lat >= self.max_lat:
            msg = "min_lat must be less than max_lat"
            raise InvalidExtent(msg, min_lat=self.min_lat, max_lat=self.max_lat)

    @classmethod
    def from_config(cls, config: ExtentConfig) -> "Extent":
        """Build an extent from its configuration model."""
        return cls(
            min_lon=config.min_lon,
            max_lon=config.max_lon,
            min_lat=config.min_lat,
            max_lat=config.max_lat,
        )

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Bounds in (left, bottom, right, top) order."""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def to_polygon(self) -> BaseGeometry:
        """Extent as a rectangle polygon."""
        return box(*self.bounds)

    def contains(self, lon: float, lat: float) -> bool:
        """Whether a point lies inside the extent (edges inclusive)."""
        return self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat


@dataclass(frozen=True)
class StudyArea:
    """
    Resolved study area.

    Attributes:
        extent: Requested extent; bounds are never altered.
        boundary: Administrative polygon clipped to the extent, if requested.
        source_boundary: The unclipped administrative polygon, kept for
            comparison plots.
        crs: CRS of extent and geometries.
        country: ISO3 code the boundary was resolved for.
        admin_level: Administrative level the boundary was resolved for.
    """

    extent: Extent
    boundary: BaseGeometry | None = None
    source_boundary: BaseGeometry | None = None
    crs: str = GEOGRAPHIC_CRS
    country: str | None = None
    admin_level: int | None = None

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Bounds in (left, bottom, right, top) order."""
        return self.extent.bounds

    @property
    def has_boundary(self) -> bool:
        """Whether an administrative boundary is attached."""
        return self.boundary is not None

    @property
    def geometry(self) -> BaseGeometry:
        """The area to model: the clipped boundary or the extent rectangle."""
        return self.boundary if self.boundary is not None else self.extent.to_polygon()
