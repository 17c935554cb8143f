"""
Coordinate reference system helpers.

Boundaries, occurrence points and rasters may each arrive in their own
CRS; these helpers bring vector data onto the raster grid's CRS.
"""

from typing import TYPE_CHECKING, Any

from pyproj import CRS

from bumblesdm.config.settings import GEOGRAPHIC_CRS
from bumblesdm.utils.logging import get_logger

if TYPE_CHECKING:
    import geopandas as gpd

log = get_logger(__name__)


def to_crs_string(crs: Any) -> str:
    """
    Normalise a CRS-like value to a compact string.

    Returns "EPSG:<code>" where an EPSG code exists, WKT otherwise.
    """
    parsed = CRS.from_user_input(crs)
    epsg = parsed.to_epsg()
    if epsg is not None:
        return f"EPSG:{epsg}"
    return parsed.to_wkt()


def same_crs(a: Any, b: Any) -> bool:
    """Check whether two CRS-like values describe the same CRS."""
    return CRS.from_user_input(a) == CRS.from_user_input(b)


def ensure_crs(gdf: "gpd.GeoDataFrame", crs: Any) -> "gpd.GeoDataFrame":
    """
    Ensure GeoDataFrame is in the given CRS.

    Args:
        gdf: GeoDataFrame to convert.
        crs: Target CRS.

    Returns:
        GeoDataFrame in the target CRS. Returns same object if already in
        the target CRS to avoid unnecessary copies.
    """
    if gdf.crs is None:
        log.warning("GeoDataFrame has no CRS, assuming EPSG:4326")
        gdf = gdf.set_crs(GEOGRAPHIC_CRS)

    if same_crs(gdf.crs, crs):
        return gdf

    return gdf.to_crs(crs)
