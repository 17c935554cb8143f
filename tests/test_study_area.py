"""Tests for extent handling and study area resolution."""

from pathlib import Path

import geopandas as gpd
import pytest
from shapely.geometry import box

from bumblesdm.config import ExtentConfig
from bumblesdm.errors import BoundaryUnavailable, DataUnavailable, InvalidExtent
from bumblesdm.ingestion import boundaries
from bumblesdm.ingestion.boundaries import (
    GADMBoundarySource,
    GeoDataFrameBoundarySource,
    StudyAreaResolver,
)
from bumblesdm.spatial.study_area import Extent
from bumblesdm.utils.cache import CacheManager
from bumblesdm.utils.http import ResourceNotFound

WEST_COAST = Extent(min_lon=-125.0, max_lon=-114.0, min_lat=32.0, max_lat=49.0)


class TestExtent:
    """Tests for Extent."""

    @pytest.mark.parametrize(
        "bounds",
        [
            (-114.0, -125.0, 32.0, 49.0),
            (-125.0, -114.0, 49.0, 32.0),
            (-125.0, -125.0, 32.0, 49.0),
            (-125.0, -114.0, 32.0, 32.0),
        ],
    )
    def test_unordered_bounds_raise(self, bounds: tuple[float, float, float, float]) -> None:
        """min must be strictly below max on both axes."""
        with pytest.raises(InvalidExtent):
            Extent(*bounds)

    def test_non_finite_bounds_raise(self) -> None:
        """NaN bounds are invalid."""
        with pytest.raises(InvalidExtent):
            Extent(float("nan"), -114.0, 32.0, 49.0)

    def test_bounds_order(self) -> None:
        """bounds is (left, bottom, right, top)."""
        assert WEST_COAST.bounds == (-125.0, 32.0, -114.0, 49.0)

    def test_contains(self) -> None:
        """Edges are inside."""
        assert WEST_COAST.contains(-125.0, 49.0)
        assert not WEST_COAST.contains(-113.9, 40.0)


class TestStudyAreaResolver:
    """Tests for StudyAreaResolver."""

    @pytest.mark.parametrize(
        "bounds",
        [(-125.0, -114.0, 32.0, 49.0), (0.0, 0.5, -10.0, 10.0), (170.0, 179.9, -45.0, -40.0)],
    )
    def test_bounds_equal_input_without_boundary(
        self, bounds: tuple[float, float, float, float]
    ) -> None:
        """Without a country, the study area is exactly the requested extent."""
        extent = Extent(*bounds)
        area = StudyAreaResolver().resolve(extent)
        assert area.extent == extent
        assert area.bounds == (bounds[0], bounds[2], bounds[1], bounds[3])
        assert not area.has_boundary
        assert area.geometry.equals(box(*area.bounds))

    def test_accepts_extent_config(self) -> None:
        """Config extents are converted."""
        config = ExtentConfig(min_lon=-125, max_lon=-114, min_lat=32, max_lat=49)
        assert StudyAreaResolver().resolve(config).extent == WEST_COAST

    def test_inverted_extent_config_raises(self) -> None:
        """An inverted config extent fails at resolution time."""
        config = ExtentConfig(min_lon=-114, max_lon=-125, min_lat=32, max_lat=49)
        with pytest.raises(InvalidExtent):
            StudyAreaResolver().resolve(config)

    def test_boundary_is_clipped_to_extent(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """The dissolved country boundary is clipped; the original is kept."""
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(boundary_frame))
        area = resolver.resolve(WEST_COAST, country="usa", admin_level=1)

        assert area.has_boundary
        assert area.country == "USA"
        assert area.bounds == WEST_COAST.bounds
        assert WEST_COAST.to_polygon().buffer(1e-9).contains(area.boundary)
        # Source boundary spans both US units, beyond the extent
        assert area.source_boundary.bounds == (-126.0, 38.0, -110.0, 50.0)
        assert area.boundary.bounds == (-125.0, 38.0, -114.0, 49.0)

    def test_names_filter(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """Named units restrict the boundary."""
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(boundary_frame))
        area = resolver.resolve(WEST_COAST, country="USA", admin_level=1, names=["Westland"])
        assert area.boundary.bounds == (-125.0, 38.0, -120.0, 49.0)

    def test_unknown_name_raises(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """Names missing from the data raise BoundaryUnavailable."""
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(boundary_frame))
        with pytest.raises(BoundaryUnavailable, match="Unknown administrative unit"):
            resolver.resolve(WEST_COAST, country="USA", admin_level=1, names=["Atlantis"])

    def test_unknown_country_raises(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """A country not in the data raises BoundaryUnavailable."""
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(boundary_frame))
        with pytest.raises(BoundaryUnavailable) as exc_info:
            resolver.resolve(WEST_COAST, country="MEX", admin_level=1)
        assert exc_info.value.stage == "study_area"
        assert exc_info.value.context["country"] == "MEX"

    def test_missing_level_raises(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """A level the data does not carry raises BoundaryUnavailable."""
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(boundary_frame))
        with pytest.raises(BoundaryUnavailable, match="administrative level"):
            resolver.resolve(WEST_COAST, country="USA", admin_level=2)

    def test_boundary_outside_extent_raises(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """An empty clip is a resolution failure."""
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(boundary_frame))
        with pytest.raises(BoundaryUnavailable, match="does not intersect"):
            resolver.resolve(Extent(0.0, 10.0, 0.0, 10.0), country="USA", admin_level=1)

    def test_country_without_source_raises(self) -> None:
        """Requesting a boundary needs a boundary source."""
        with pytest.raises(BoundaryUnavailable):
            StudyAreaResolver().resolve(WEST_COAST, country="USA")

    def test_reprojects_boundary_to_geographic(self, boundary_frame: gpd.GeoDataFrame) -> None:
        """Boundaries in a projected CRS are brought to lon/lat first."""
        projected = boundary_frame.to_crs("EPSG:3857")
        resolver = StudyAreaResolver(GeoDataFrameBoundarySource(projected))
        area = resolver.resolve(WEST_COAST, country="USA", admin_level=1)
        assert area.boundary.bounds == pytest.approx((-125.0, 38.0, -114.0, 49.0), abs=1e-6)


class TestGeoDataFrameBoundarySource:
    """Tests for file-backed boundaries."""

    def test_reads_vector_file(self, tmp_path: Path, boundary_frame: gpd.GeoDataFrame) -> None:
        """A GeoPackage with GADM columns works like the in-memory frame."""
        path = tmp_path / "boundaries.gpkg"
        boundary_frame.to_file(path, driver="GPKG")
        gdf = GeoDataFrameBoundarySource(path).load("USA", 1)
        assert sorted(gdf["NAME_1"]) == ["Eastland", "Westland"]

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """A missing boundary file raises BoundaryUnavailable."""
        with pytest.raises(BoundaryUnavailable, match="not found"):
            GeoDataFrameBoundarySource(tmp_path / "nope.gpkg").load("USA", 0)


class TestGADMBoundarySource:
    """Tests for GADM downloads (network replaced by a stub)."""

    def test_url(self, tmp_path: Path) -> None:
        """URLs follow the GADM 4.1 GeoJSON layout."""
        source = GADMBoundarySource(tmp_path)
        assert source.url_for("usa", 1) == (
            "https://geodata.ucdavis.edu/gadm/gadm4.1/json/gadm41_USA_1.json"
        )

    def test_not_found_is_boundary_unavailable(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A 404 from GADM means the country/level does not exist."""

        def fake_download(url: str, target: Path, *args: object, **kwargs: object) -> Path:
            raise ResourceNotFound("Remote resource not found", url=url, status=404)

        monkeypatch.setattr(boundaries, "download_file", fake_download)
        with pytest.raises(BoundaryUnavailable) as exc_info:
            GADMBoundarySource(tmp_path).load("XXX", 3)
        assert exc_info.value.context["admin_level"] == 3

    def test_exhausted_retries_stay_data_unavailable(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Network failures are not mistaken for a missing boundary."""

        def fake_download(url: str, target: Path, *args: object, **kwargs: object) -> Path:
            raise DataUnavailable("Download failed after retries", url=url)

        monkeypatch.setattr(boundaries, "download_file", fake_download)
        with pytest.raises(DataUnavailable) as exc_info:
            GADMBoundarySource(tmp_path).load("USA", 1)
        assert not isinstance(exc_info.value, BoundaryUnavailable)

    def test_reads_downloaded_geojson_and_caches(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        boundary_frame: gpd.GeoDataFrame,
    ) -> None:
        """The downloaded file is parsed once and then served from the cache."""
        calls: list[str] = []

        def fake_download(url: str, target: Path, *args: object, **kwargs: object) -> Path:
            calls.append(url)
            target.parent.mkdir(parents=True, exist_ok=True)
            boundary_frame[boundary_frame["GID_0"] == "USA"].to_file(target, driver="GeoJSON")
            return target

        monkeypatch.setattr(boundaries, "download_file", fake_download)
        source = GADMBoundarySource(tmp_path, cache=CacheManager(tmp_path / "cache"))

        first = source.load("USA", 1)
        second = source.load("USA", 1)
        assert len(first) == len(second) == 2
        assert len(calls) == 1
