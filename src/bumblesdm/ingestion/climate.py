"""
Environmental covariate ingestion.

Layer sources deliver an EnvironmentalStack for a (country, variable group,
resolution) request, read only over the study area's window when one is
given; the provider deduplicates those requests and clips the result to the
study area.

WorldClim 2.1 layout:
- 30s: one multi-band GeoTIFF per country and group
  (tiles/iso/{ISO3}_wc2.1_30s_{group}.tif)
- 2.5m, 5m, 10m: one global zip per group holding one GeoTIFF per band
  (base/wc2.1_{res}_{group}.zip)

Layers are named {group}_{n} (bio_1 ... bio_19, tavg_1 ... tavg_12) or just
the group for single-band groups (elev).
"""

import re
import threading
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

from bumblesdm.config.settings import DownloadConfig, Resolution
from bumblesdm.errors import DataUnavailable
from bumblesdm.spatial.crs import same_crs
from bumblesdm.spatial.raster_io import read_raster_layers
from bumblesdm.spatial.stack import EnvironmentalStack, RasterLayer, check_coregistered
from bumblesdm.spatial.study_area import StudyArea
from bumblesdm.utils.cache import CacheManager
from bumblesdm.utils.http import ResourceNotFound, download_file
from bumblesdm.utils.logging import get_logger

if TYPE_CHECKING:
    import requests

log = get_logger(__name__)

WORLDCLIM_BASE_URL = "https://geodata.ucdavis.edu/climate/worldclim/2_1"

VARIABLE_GROUPS = ("tavg", "tmin", "tmax", "prec", "srad", "wind", "vapr", "bio", "elev")
RESOLUTIONS = tuple(r.value for r in Resolution)

_BAND_NUMBER = re.compile(r"_(\d+)$")


def validate_request(variable_group: str, resolution: str | Resolution) -> str:
    """
    Check a variable group / resolution pair.

    Returns:
        The resolution as its string value.

    Raises:
        DataUnavailable: If either is unknown.
    """
    res = resolution.value if isinstance(resolution, Resolution) else str(resolution)
    if variable_group not in VARIABLE_GROUPS:
        msg = "Unknown variable group"
        raise DataUnavailable(
            msg, stage="layers", variable_group=variable_group, known=list(VARIABLE_GROUPS)
        )
    if res not in RESOLUTIONS:
        msg = "Unknown resolution"
        raise DataUnavailable(msg, stage="layers", resolution=res, known=list(RESOLUTIONS))
    return res


def _band_number(path: Path) -> int:
    match = _BAND_NUMBER.search(path.stem)
    return int(match.group(1)) if match else 0


def _layer_names(variable_group: str, n_bands: int) -> list[str]:
    if n_bands == 1:
        return [variable_group]
    return [f"{variable_group}_{i}" for i in range(1, n_bands + 1)]


def _window_args(area: StudyArea | None) -> dict[str, Any]:
    if area is None:
        return {}
    return {"bounds": area.bounds, "bounds_crs": area.crs}


def _window_key(area: StudyArea | None) -> str:
    if area is None:
        return "full"
    bounds = ",".join(f"{v:.6f}" for v in area.bounds)
    return f"{bounds}@{area.crs}"


class LayerSource(ABC):
    """Delivers covariate layers for a country, variable group and resolution."""

    @abstractmethod
    def load(
        self,
        country: str | None,
        variable_group: str,
        resolution: str,
        area: StudyArea | None = None,
    ) -> EnvironmentalStack:
        """
        Load the stack for one request.

        With ``area`` only the window covering its extent is read; without
        it the source's full grid is read.

        Raises:
            DataUnavailable: If the data does not exist or cannot be fetched.
            MisalignedLayers: If the delivered rasters do not share a grid.
        """
        ...


class WorldClimLayerSource(LayerSource):
    """WorldClim 2.1 rasters, downloaded into a cache directory."""

    def __init__(
        self,
        download_dir: Path,
        download_config: DownloadConfig | None = None,
        *,
        base_url: str = WORLDCLIM_BASE_URL,
        session: "requests.Session | None" = None,
    ) -> None:
        self.download_dir = download_dir
        self.download_config = download_config or DownloadConfig()
        self.base_url = base_url.rstrip("/")
        self.session = session

    def url_for(self, country: str | None, variable_group: str, resolution: str) -> str:
        """Download URL for a request."""
        if resolution == Resolution.ARC_SECONDS_30.value:
            if country is None:
                msg = "30s WorldClim data is served per country; a country is required"
                raise DataUnavailable(msg, stage="layers", resolution=resolution)
            return (
                f"{self.base_url}/tiles/iso/"
                f"{country.upper()}_wc2.1_30s_{variable_group}.tif"
            )
        return f"{self.base_url}/base/wc2.1_{resolution}_{variable_group}.zip"

    def _download(self, url: str) -> Path:
        target = self.download_dir / "worldclim" / url.rsplit("/", 1)[-1]
        try:
            return download_file(url, target, self.download_config, session=self.session)
        except ResourceNotFound as e:
            msg = "WorldClim has no data for this request"
            raise DataUnavailable(msg, stage="layers", url=url) from e

    def _extract(self, archive: Path) -> list[Path]:
        """Unpack a WorldClim zip next to itself, once."""
        out_dir = archive.with_suffix("")
        if not out_dir.exists():
            log.info("Extracting archive", path=str(archive))
            partial = out_dir.with_name(out_dir.name + ".part")
            try:
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(partial)
            except zipfile.BadZipFile as e:
                archive.unlink()
                msg = "Downloaded archive is corrupt"
                raise DataUnavailable(msg, stage="layers", path=str(archive)) from e
            partial.rename(out_dir)
        return sorted(out_dir.rglob("*.tif"), key=_band_number)

    def load(
        self,
        country: str | None,
        variable_group: str,
        resolution: str,
        area: StudyArea | None = None,
    ) -> EnvironmentalStack:
        """Download and read a WorldClim request."""
        url = self.url_for(country, variable_group, resolution)
        path = self._download(url)
        window = _window_args(area)

        if path.suffix == ".zip":
            tifs = self._extract(path)
            if not tifs:
                msg = "Archive contains no GeoTIFFs"
                raise DataUnavailable(msg, stage="layers", path=str(path))
            if len(tifs) == 1:
                names = [variable_group]
            else:
                names = [f"{variable_group}_{_band_number(tif)}" for tif in tifs]
            layers: list[RasterLayer] = []
            for name, tif in zip(names, tifs, strict=True):
                layers.extend(read_raster_layers(tif, names=[name], **window))
        else:
            layers = read_raster_layers(path, **window)
            names = _layer_names(variable_group, len(layers))
            layers = [
                RasterLayer(name=name, values=layer.values, transform=layer.transform, crs=layer.crs)
                for name, layer in zip(names, layers, strict=True)
            ]

        return EnvironmentalStack.from_layers(layers)


class GeoTiffLayerSource(LayerSource):
    """
    Local GeoTIFFs in a directory.

    Every file matching the pattern contributes its bands, in file-name
    order. Country, group and resolution only label the request.
    """

    def __init__(self, directory: Path, pattern: str = "*.tif") -> None:
        self.directory = directory
        self.pattern = pattern

    def load(
        self,
        country: str | None,
        variable_group: str,
        resolution: str,
        area: StudyArea | None = None,
    ) -> EnvironmentalStack:
        """Read the directory into one stack."""
        if not self.directory.is_dir():
            msg = "Layer directory not found"
            raise DataUnavailable(msg, stage="layers", directory=str(self.directory))

        paths = sorted(self.directory.glob(self.pattern))
        if not paths:
            msg = "No rasters found in layer directory"
            raise DataUnavailable(
                msg, stage="layers", directory=str(self.directory), pattern=self.pattern
            )

        window = _window_args(area)
        layers: list[RasterLayer] = []
        for path in paths:
            layers.extend(read_raster_layers(path, **window))
        log.info("Read layer directory", directory=str(self.directory), layers=len(layers))
        return EnvironmentalStack.from_layers(layers)


class EnvironmentalLayerProvider:
    """
    Fetches and clips covariate stacks.

    Fetch results are kept in memory per (country, variable group,
    resolution, window) and returned as-is to later callers; stacks are
    immutable, so runs sharing a provider never see each other's changes.
    An optional CacheManager persists parsed stacks between processes.
    Passing the study area to fetch() reads only its window.
    """

    def __init__(self, source: LayerSource, *, cache: CacheManager | None = None) -> None:
        self.source = source
        self.cache = cache
        self._stacks: dict[tuple[Any, ...], EnvironmentalStack] = {}
        self._lock = threading.Lock()

    def fetch(
        self,
        country: str | None,
        variable_group: str,
        resolution: str | Resolution,
        study_area: StudyArea | None = None,
    ) -> EnvironmentalStack:
        """
        Get the stack for a request.

        Args:
            country: ISO3 code (required for 30s WorldClim tiles).
            variable_group: One of VARIABLE_GROUPS.
            resolution: One of RESOLUTIONS.
            study_area: Read only the window covering this area.

        Returns:
            EnvironmentalStack covering the study area's window, or the
            source's full extent without a study area.

        Raises:
            DataUnavailable: For unknown groups/resolutions or failed fetches.
        """
        res = validate_request(variable_group, resolution)
        window = _window_key(study_area)
        key = (country.upper() if country else None, variable_group, res, window)

        with self._lock:
            stack = self._stacks.get(key)
            if stack is not None:
                log.debug("Layer stack reused", key=key)
                return stack

            cache_key = (
                f"layers:{type(self.source).__name__}:{key[0]}:{variable_group}:{res}:{window}"
            )
            if self.cache is not None:
                stack = self.cache.get(cache_key)

            if stack is None:
                stack = self.source.load(key[0], variable_group, res, study_area)
                if self.cache is not None:
                    self.cache.set(cache_key, stack)

            self._stacks[key] = stack

        log.info(
            "Fetched layer stack",
            country=key[0],
            variable_group=variable_group,
            resolution=res,
            layers=list(stack.names),
            shape=stack.shape,
            windowed=study_area is not None,
        )
        return stack

    def clip(
        self,
        stack: EnvironmentalStack,
        study_area: StudyArea,
        mask: bool = True,
    ) -> EnvironmentalStack:
        """
        Subset a stack to the study area.

        Args:
            stack: Stack from fetch().
            study_area: Resolved study area.
            mask: Set cells outside the boundary polygon to NaN.

        Returns:
            A new co-registered stack covering the study area extent.

        Raises:
            DataUnavailable: If the study area does not overlap the stack.
            MisalignedLayers: If the clipped layers disagree on grid shape.
        """
        import geopandas as gpd

        bounds = study_area.bounds
        boundary = study_area.boundary
        if not same_crs(study_area.crs, stack.crs):
            extent = gpd.GeoSeries([study_area.extent.to_polygon()], crs=study_area.crs)
            bounds = tuple(extent.to_crs(stack.crs).total_bounds)
            if boundary is not None:
                boundary = gpd.GeoSeries([boundary], crs=study_area.crs).to_crs(stack.crs).iloc[0]

        clipped = stack.clip_to_bounds(bounds)
        if mask and boundary is not None:
            clipped = clipped.mask_outside(boundary)

        check_coregistered(clipped)
        log.info(
            "Clipped layer stack",
            bounds=bounds,
            shape=clipped.shape,
            masked=bool(mask and boundary is not None),
            valid_cells=int(clipped.valid_mask().sum()),
        )
        return clipped
