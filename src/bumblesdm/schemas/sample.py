"""
Pandera schema for sample-with-data feature tables.

The feature columns depend on the raster stack, so the schema is built per
stack rather than declared as a DataFrameModel.
"""

from collections.abc import Sequence

import numpy as np
import pandas as pd
import pandera.pandas as pa

LABEL_COLUMN = "label"
COORDINATE_COLUMNS = ("x", "y")


def _all_finite(series: pd.Series) -> bool:
    return bool(np.isfinite(series.to_numpy(dtype=float)).all())


def build_feature_table_schema(variable_names: Sequence[str]) -> pa.DataFrameSchema:
    """
    Build the schema for a feature table over the given covariates.

    Columns, in order: x, y, label, then one float column per covariate.
    No column may hold missing values and labels are 1 (presence) or
    0 (background).

    Args:
        variable_names: Covariate names in stack order.

    Returns:
        Strict, ordered DataFrameSchema.
    """
    columns: dict[str, pa.Column] = {
        "x": pa.Column(float, nullable=False, description="Easting in the stack CRS"),
        "y": pa.Column(float, nullable=False, description="Northing in the stack CRS"),
        LABEL_COLUMN: pa.Column(
            int,
            checks=pa.Check.isin([0, 1]),
            nullable=False,
            description="1 = presence, 0 = background",
        ),
    }
    for name in variable_names:
        columns[name] = pa.Column(
            float,
            checks=pa.Check(_all_finite, error="feature values must be finite"),
            nullable=False,
        )

    return pa.DataFrameSchema(
        columns,
        name="FeatureTableSchema",
        strict=True,
        ordered=True,
        coerce=True,
    )
