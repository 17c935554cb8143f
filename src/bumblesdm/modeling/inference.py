"""
Raster-wide prediction.

Scores every cell of a covariate stack with a fitted model. Cells where
any model covariate is missing stay NaN; the result keeps the stack's
grid so it can be written straight back to a GeoTIFF.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np
from rasterio.transform import Affine

from bumblesdm.config.settings import LinkType
from bumblesdm.modeling.maxent import FittedModel
from bumblesdm.spatial.stack import EnvironmentalStack
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class PredictionSurface:
    """
    Model scores on a raster grid.

    Attributes:
        values: Read-only (height, width) array, NaN where input was missing.
        transform: Affine transform of the grid.
        crs: CRS of the grid.
        link: Output scale of the scores.
        species: Modelled species.
    """

    values: np.ndarray
    transform: Affine
    crs: str
    link: LinkType
    species: str = ""

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=np.float64, copy=True)
        if values.ndim != 2:
            msg = f"Prediction values must be 2-dimensional, got shape {values.shape}"
            raise ValueError(msg)
        values.flags.writeable = False
        object.__setattr__(self, "values", values)

    def __reduce__(self) -> tuple[Any, ...]:
        return (type(self), (self.values, self.transform, self.crs, self.link, self.species))

    @property
    def shape(self) -> tuple[int, int]:
        """Grid shape as (height, width)."""
        return self.values.shape

    @property
    def valid_mask(self) -> np.ndarray:
        """Cells with a score."""
        return np.isfinite(self.values)

    @property
    def n_valid(self) -> int:
        """Number of scored cells."""
        return int(self.valid_mask.sum())

    def value_range(self) -> tuple[float, float]:
        """(min, max) over scored cells, NaN if none."""
        if self.n_valid == 0:
            return (float("nan"), float("nan"))
        return (float(np.nanmin(self.values)), float(np.nanmax(self.values)))

    def sample(self, stack: EnvironmentalStack, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """Scores at point coordinates, using the grid of a co-registered stack."""
        rows, cols, inside = stack.cell_indices(xs, ys)
        out = self.values[rows, cols].copy()
        out[~inside] = np.nan
        return out


def predict_surface(
    model: FittedModel,
    stack: EnvironmentalStack,
    link: LinkType | str = LinkType.LOGISTIC,
) -> PredictionSurface:
    """
    Score every valid cell of a stack.

    The model's covariates are picked from the stack by name, so the stack
    may carry extra layers or a different layer order.

    Args:
        model: Fitted model.
        stack: Covariate stack.
        link: Output scale.

    Returns:
        PredictionSurface co-registered with the stack.

    Raises:
        DataUnavailable: If the stack lacks one of the model's covariates.
    """
    link = LinkType(link)
    selected = stack.select(model.variable_names)
    matrix = selected.to_matrix()
    valid = np.all(np.isfinite(matrix), axis=1)

    scores = np.full(matrix.shape[0], np.nan, dtype=np.float64)
    if valid.any():
        scores[valid] = model.predict(matrix[valid], link)

    surface = PredictionSurface(
        values=scores.reshape(selected.shape),
        transform=stack.transform,
        crs=stack.crs,
        link=link,
        species=model.species,
    )
    low, high = surface.value_range()
    log.info(
        "Predicted surface",
        shape=surface.shape,
        valid_cells=surface.n_valid,
        link=link.value,
        min=round(low, 4) if surface.n_valid else None,
        max=round(high, 4) if surface.n_valid else None,
    )
    return surface
