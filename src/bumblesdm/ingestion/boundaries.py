"""
Administrative boundary ingestion and study area resolution.

Boundaries come from GADM 4.1 (downloaded per country and level as
GeoJSON) or from a local vector file / in-memory GeoDataFrame with GADM
style columns (GID_0 holds the ISO3 code, NAME_<level> the unit name).
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from bumblesdm.config.settings import GEOGRAPHIC_CRS, DownloadConfig, ExtentConfig
from bumblesdm.errors import BoundaryUnavailable
from bumblesdm.spatial.crs import ensure_crs
from bumblesdm.spatial.study_area import Extent, StudyArea
from bumblesdm.utils.cache import CacheManager
from bumblesdm.utils.http import ResourceNotFound, download_file
from bumblesdm.utils.logging import get_logger

if TYPE_CHECKING:
    import geopandas as gpd
    import requests

log = get_logger(__name__)

GADM_URL = "https://geodata.ucdavis.edu/gadm/gadm4.1/json/gadm41_{country}_{level}.json"


def _filter_names(
    gdf: "gpd.GeoDataFrame", admin_level: int, names: Sequence[str] | None
) -> "gpd.GeoDataFrame":
    """Keep the units whose NAME_<level> is in names."""
    if not names:
        return gdf
    column = f"NAME_{admin_level}"
    if column not in gdf.columns:
        msg = "Boundary data has no name column for this level"
        raise BoundaryUnavailable(msg, column=column, admin_level=admin_level)
    subset = gdf[gdf[column].isin(list(names))]
    unknown = sorted(set(names) - set(subset[column]))
    if unknown:
        msg = "Unknown administrative unit names"
        raise BoundaryUnavailable(msg, names=unknown, column=column)
    return subset


class BoundarySource(ABC):
    """Provides administrative polygons for a country and level."""

    @abstractmethod
    def load(self, country: str, admin_level: int) -> "gpd.GeoDataFrame":
        """
        Load the polygons of one country at one administrative level.

        Raises:
            BoundaryUnavailable: If the country/level does not exist.
            DataUnavailable: If the source cannot be reached.
        """
        ...


class GADMBoundarySource(BoundarySource):
    """GADM 4.1 GeoJSON boundaries, downloaded once into a cache directory."""

    def __init__(
        self,
        download_dir: Path,
        download_config: DownloadConfig | None = None,
        *,
        cache: CacheManager | None = None,
        session: "requests.Session | None" = None,
    ) -> None:
        self.download_dir = download_dir
        self.download_config = download_config or DownloadConfig()
        self.cache = cache
        self.session = session

    def url_for(self, country: str, admin_level: int) -> str:
        """GADM download URL for a country and level."""
        return GADM_URL.format(country=country.upper(), level=admin_level)

    def load(self, country: str, admin_level: int) -> "gpd.GeoDataFrame":
        """Download (or reuse) the GADM layer and read it."""
        import geopandas as gpd

        country = country.upper()
        url = self.url_for(country, admin_level)
        target = self.download_dir / "gadm" / f"gadm41_{country}_{admin_level}.json"
        cache_key = f"gadm:{country}:{admin_level}"
        if self.cache is not None:
            cached = self.cache.get(cache_key, source_files=[target])
            if cached is not None:
                return cached

        try:
            path = download_file(url, target, self.download_config, session=self.session)
        except ResourceNotFound as e:
            msg = "GADM has no boundary for this country and level"
            raise BoundaryUnavailable(
                msg, country=country, admin_level=admin_level, url=url
            ) from e

        log.info("Reading GADM boundary", country=country, admin_level=admin_level, path=str(path))
        gdf = gpd.read_file(path)
        if self.cache is not None:
            self.cache.set(cache_key, gdf, source_files=[path])
        return gdf


class GeoDataFrameBoundarySource(BoundarySource):
    """
    Boundaries from an in-memory GeoDataFrame or a local vector file.

    The data must carry a GID_0 column with ISO3 codes; it is assumed to
    hold a single administrative level.
    """

    def __init__(
        self,
        data: "gpd.GeoDataFrame | Path",
        *,
        country_column: str = "GID_0",
    ) -> None:
        self.data = data
        self.country_column = country_column
        self._frame: "gpd.GeoDataFrame | None" = None

    def _read(self) -> "gpd.GeoDataFrame":
        import geopandas as gpd

        if self._frame is None:
            if isinstance(self.data, Path):
                if not self.data.exists():
                    msg = "Boundary file not found"
                    raise BoundaryUnavailable(msg, path=str(self.data))
                log.info("Reading boundary file", path=str(self.data))
                self._frame = gpd.read_file(self.data)
            else:
                self._frame = self.data
        return self._frame

    def load(self, country: str, admin_level: int) -> "gpd.GeoDataFrame":
        """Filter the frame to one country."""
        gdf = self._read()
        if self.country_column not in gdf.columns:
            msg = "Boundary data has no country column"
            raise BoundaryUnavailable(msg, column=self.country_column)
        if admin_level > 0 and f"NAME_{admin_level}" not in gdf.columns:
            msg = "Boundary data does not contain this administrative level"
            raise BoundaryUnavailable(msg, country=country, admin_level=admin_level)

        subset = gdf[gdf[self.country_column].astype(str).str.upper() == country.upper()]
        if subset.empty:
            msg = "Country not present in boundary data"
            raise BoundaryUnavailable(msg, country=country, admin_level=admin_level)
        return subset


class StudyAreaResolver:
    """
    Resolves the study area for a run.

    Without a country the study area is the bare extent. With one, the
    country's units (optionally a named subset) are dissolved into one
    polygon and clipped to the extent.
    """

    def __init__(self, source: BoundarySource | None = None) -> None:
        self.source = source

    def resolve(
        self,
        extent: Extent | ExtentConfig,
        country: str | None = None,
        admin_level: int = 0,
        names: Sequence[str] | None = None,
    ) -> StudyArea:
        """
        Resolve an extent and optional boundary into a StudyArea.

        Args:
            extent: Requested bounds.
            country: ISO3 code; None skips the boundary.
            admin_level: Administrative level of the boundary units.
            names: Optional unit names to keep (NAME_<level>).

        Returns:
            StudyArea whose bounds equal the requested extent.

        Raises:
            InvalidExtent: If the bounds are not ordered.
            BoundaryUnavailable: If the boundary cannot be resolved or does
                not intersect the extent.
            DataUnavailable: If the boundary download keeps failing.
        """
        if isinstance(extent, ExtentConfig):
            extent = Extent.from_config(extent)

        if country is None:
            log.info("Resolved study area without boundary", bounds=extent.bounds)
            return StudyArea(extent=extent)

        if admin_level < 0:
            msg = "admin_level must not be negative"
            raise BoundaryUnavailable(msg, admin_level=admin_level)
        if self.source is None:
            msg = "A country was requested but no boundary source is configured"
            raise BoundaryUnavailable(msg, country=country)

        gdf = self.source.load(country, admin_level)
        gdf = _filter_names(gdf, admin_level, names)
        gdf = ensure_crs(gdf, GEOGRAPHIC_CRS)

        source_boundary = gdf.geometry.union_all()
        if source_boundary is None or source_boundary.is_empty:
            msg = "Boundary geometry is empty"
            raise BoundaryUnavailable(msg, country=country, admin_level=admin_level)

        clipped = source_boundary.intersection(extent.to_polygon())
        if clipped.is_empty:
            msg = "Boundary does not intersect the extent"
            raise BoundaryUnavailable(
                msg, country=country, admin_level=admin_level, bounds=extent.bounds
            )

        log.info(
            "Resolved study area",
            country=country,
            admin_level=admin_level,
            units=len(gdf),
            bounds=extent.bounds,
            clipped_area=round(clipped.area, 4),
        )
        return StudyArea(
            extent=extent,
            boundary=clipped,
            source_boundary=source_boundary,
            crs=GEOGRAPHIC_CRS,
            country=country.upper(),
            admin_level=admin_level,
        )
