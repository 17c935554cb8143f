"""
Raster I/O utilities.

GeoTIFF reading into RasterLayer objects (nodata replaced by NaN, optionally
limited to a window around the study area) and GeoTIFF writing for
prediction surfaces.
"""

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import rasterio
from rasterio.transform import Affine
from rasterio.warp import transform_bounds

from bumblesdm.spatial.crs import same_crs
from bumblesdm.spatial.stack import EnvironmentalStack, RasterLayer, covering_window
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)

OUTPUT_NODATA = -9999.0

Bounds = tuple[float, float, float, float]


def read_raster_layers(
    path: Path,
    names: Sequence[str] | None = None,
    *,
    bounds: Bounds | None = None,
    bounds_crs: Any = None,
) -> list[RasterLayer]:
    """
    Read every band of a GeoTIFF as a separate layer.

    With ``bounds`` only the whole-cell window covering them is read, so a
    global raster never has to fit in memory for a regional study area.

    Layer names come from ``names`` if given, else from band descriptions,
    else from the file stem (suffixed with the band number for multi-band
    files).

    Args:
        path: GeoTIFF path.
        names: Optional explicit band names.
        bounds: (left, bottom, right, top) to read; the full raster if None.
        bounds_crs: CRS of ``bounds`` (default: the raster's CRS).

    Returns:
        One RasterLayer per band, nodata as NaN.

    Raises:
        DataUnavailable: If ``bounds`` do not overlap the raster.
    """
    with rasterio.open(path) as src:
        window = None
        transform = src.transform
        if bounds is not None:
            if bounds_crs is not None and not same_crs(bounds_crs, src.crs):
                bounds = transform_bounds(bounds_crs, src.crs, *bounds, densify_pts=21)
            window = covering_window(bounds, src.transform, src.height, src.width)
            transform = src.window_transform(window)
        data = src.read(window=window, masked=True, out_dtype="float64").filled(np.nan)
        crs = src.crs
        descriptions = src.descriptions

    if names is not None and len(names) != data.shape[0]:
        msg = f"Got {len(names)} names for {data.shape[0]} bands in {path}"
        raise ValueError(msg)

    layers = []
    for i in range(data.shape[0]):
        if names is not None:
            name = names[i]
        elif descriptions and descriptions[i]:
            name = descriptions[i]
        elif data.shape[0] == 1:
            name = path.stem
        else:
            name = f"{path.stem}_{i + 1}"
        layers.append(RasterLayer(name=name, values=data[i], transform=transform, crs=crs))

    log.debug(
        "Read raster",
        path=str(path),
        bands=data.shape[0],
        shape=data.shape[1:],
        windowed=window is not None,
    )
    return layers


def read_stack(
    paths: Sequence[Path], *, bounds: Bounds | None = None, bounds_crs: Any = None
) -> EnvironmentalStack:
    """Read GeoTIFFs (in order) into one co-registered stack, optionally windowed."""
    layers: list[RasterLayer] = []
    for path in paths:
        layers.extend(read_raster_layers(path, bounds=bounds, bounds_crs=bounds_crs))
    return EnvironmentalStack.from_layers(layers)


def write_geotiff(
    values: np.ndarray,
    path: Path,
    transform: Affine,
    crs: Any,
    *,
    nodata: float = OUTPUT_NODATA,
    band_names: Sequence[str] | None = None,
) -> Path:
    """
    Write a 2D or 3D float array as a GeoTIFF, NaN as nodata.

    Args:
        values: Array of shape (height, width) or (bands, height, width).
        path: Output file path.
        transform: Affine transform of the grid.
        crs: CRS of the grid.
        nodata: Value written for NaN cells.
        band_names: Optional band descriptions.

    Returns:
        Path written.
    """
    data = np.asarray(values, dtype=np.float32)
    if data.ndim == 2:
        data = data[np.newaxis, ...]
    data = np.where(np.isfinite(data), data, np.float32(nodata))

    path.parent.mkdir(parents=True, exist_ok=True)
    profile = {
        "driver": "GTiff",
        "height": data.shape[1],
        "width": data.shape[2],
        "count": data.shape[0],
        "dtype": "float32",
        "crs": crs,
        "transform": transform,
        "nodata": nodata,
        "compress": "lzw",
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data)
        if band_names is not None:
            for i, name in enumerate(band_names, start=1):
                dst.set_band_description(i, name)

    log.info("Wrote raster", path=str(path), bands=data.shape[0], shape=data.shape[1:])
    return path


def write_stack(stack: EnvironmentalStack, path: Path) -> Path:
    """Write a stack as a multi-band GeoTIFF with layer names as descriptions."""
    return write_geotiff(
        stack.values, path, stack.transform, stack.crs, band_names=stack.names
    )
