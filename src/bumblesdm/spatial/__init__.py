"""
Spatial data model: study areas, raster stacks and CRS handling.
"""

from bumblesdm.spatial.stack import EnvironmentalStack, RasterLayer, check_coregistered
from bumblesdm.spatial.study_area import Extent, StudyArea

__all__ = [
    "EnvironmentalStack",
    "Extent",
    "RasterLayer",
    "StudyArea",
    "check_coregistered",
]
