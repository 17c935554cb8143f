"""
Pandera schema for parsed occurrence records.
"""

import pandera.pandas as pa
from pandera.typing import Series


class OccurrenceSchema(pa.DataFrameModel):
    """
    Schema for occurrence records after coordinate parsing.

    Coordinates exist in both the source CRS of the input file and the
    target CRS of the raster stack.
    """

    species: Series[str] = pa.Field(
        description="Scientific name of the recorded species",
    )
    source_x: Series[float] = pa.Field(
        description="Longitude / easting in the source CRS",
    )
    source_y: Series[float] = pa.Field(
        description="Latitude / northing in the source CRS",
    )
    x: Series[float] = pa.Field(
        description="Easting in the target (raster) CRS",
    )
    y: Series[float] = pa.Field(
        description="Northing in the target (raster) CRS",
    )

    class Config:
        """Schema configuration."""

        name = "OccurrenceSchema"
        strict = False  # Allow extra columns from the input file
        coerce = True
