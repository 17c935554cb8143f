"""
Schema definitions using Pandera for data validation.

Occurrence records and feature tables are validated where they enter or
leave the pipeline.
"""

from bumblesdm.schemas.occurrence import OccurrenceSchema
from bumblesdm.schemas.sample import (
    COORDINATE_COLUMNS,
    LABEL_COLUMN,
    build_feature_table_schema,
)

__all__ = [
    "COORDINATE_COLUMNS",
    "LABEL_COLUMN",
    "OccurrenceSchema",
    "build_feature_table_schema",
]
