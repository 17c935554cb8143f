"""
Environmental raster stack.

An EnvironmentalStack holds an ordered set of named covariate layers on one
shared grid: a single (n_layers, height, width) float array with NaN for
missing data, an affine transform and a CRS. Because all layers live in one
array they are co-registered by construction; stacks assembled from
separately read rasters go through from_layers(), which checks the grids
agree before stacking.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from rasterio.features import geometry_mask
from rasterio.transform import Affine, array_bounds
from rasterio.windows import Window, from_bounds
from rasterio.windows import transform as window_transform
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from bumblesdm.errors import DataUnavailable, MisalignedLayers
from bumblesdm.spatial.crs import same_crs, to_crs_string
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)

# Tolerance (in cell units) when snapping bounds onto the grid
_SNAP_EPS = 1e-9


def _same_transform(first: Affine, second: Affine) -> bool:
    return bool(np.allclose(tuple(first)[:6], tuple(second)[:6], rtol=0.0, atol=1e-9))


def covering_window(
    bounds: tuple[float, float, float, float],
    transform: Affine,
    height: int,
    width: int,
) -> Window:
    """
    Whole-cell window of a grid covering bounds, limited to the grid.

    The window is snapped outward, so every point inside the bounds lies
    on a cell of the window.

    Args:
        bounds: (left, bottom, right, top) in the grid's CRS.
        transform: Grid transform.
        height: Grid rows.
        width: Grid columns.

    Raises:
        DataUnavailable: If the bounds do not overlap the grid.
    """
    raw = from_bounds(*bounds, transform=transform)
    col_start = max(0, math.floor(raw.col_off + _SNAP_EPS))
    row_start = max(0, math.floor(raw.row_off + _SNAP_EPS))
    col_stop = min(width, math.ceil(raw.col_off + raw.width - _SNAP_EPS))
    row_stop = min(height, math.ceil(raw.row_off + raw.height - _SNAP_EPS))

    if col_start >= col_stop or row_start >= row_stop:
        msg = "Study area does not overlap the layer grid"
        raise DataUnavailable(
            msg,
            stage="layers",
            bounds=tuple(bounds),
            grid_bounds=array_bounds(height, width, transform),
        )
    return Window(col_start, row_start, col_stop - col_start, row_stop - row_start)


def _read_only(values: np.ndarray) -> np.ndarray:
    """Normalise non-finite cells to NaN in place and freeze the array."""
    values[~np.isfinite(values)] = np.nan
    values.flags.writeable = False
    return values


@dataclass(frozen=True, eq=False)
class RasterLayer:
    """A single named 2D raster as read from disk, before stacking."""

    name: str
    values: np.ndarray
    transform: Affine
    crs: Any


@dataclass(frozen=True, eq=False)
class EnvironmentalStack:
    """
    Co-registered covariate layers.

    Attributes:
        names: Layer names in stack order.
        values: Read-only array of shape (n_layers, height, width).
        transform: Affine transform of the shared grid (north-up).
        crs: CRS of the shared grid as a string.
    """

    names: tuple[str, ...]
    values: np.ndarray
    transform: Affine
    crs: str
    _index: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        names = tuple(self.names)
        values = np.asarray(self.values, dtype=np.float64)
        # Frozen float64 arrays are adopted as-is; anything else is copied
        adopt = values is self.values and not values.flags.writeable
        if adopt and np.isinf(values).any():
            adopt = False
        if not adopt:
            values = _read_only(values.copy() if values is self.values else values)
        if values.ndim == 2:
            values = values[np.newaxis, ...]
        if values.ndim != 3:
            msg = f"Stack values must be 3-dimensional, got shape {values.shape}"
            raise ValueError(msg)
        if len(names) != values.shape[0]:
            msg = f"Got {len(names)} names for {values.shape[0]} layers"
            raise ValueError(msg)
        if len(set(names)) != len(names):
            msg = f"Layer names must be unique: {list(names)}"
            raise ValueError(msg)
        if self.transform.b != 0 or self.transform.d != 0:
            msg = "Rotated grids are not supported"
            raise ValueError(msg)

        object.__setattr__(self, "names", names)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "crs", to_crs_string(self.crs))
        object.__setattr__(self, "_index", {name: i for i, name in enumerate(names)})

    def __reduce__(self) -> tuple[Any, ...]:
        # Rebuild through __init__ so unpickled values stay read-only
        return (type(self), (self.names, self.values, self.transform, self.crs))

    @classmethod
    def from_layers(cls, layers: Sequence[RasterLayer]) -> "EnvironmentalStack":
        """
        Stack separately read layers, checking they share one grid.

        Args:
            layers: Layers in the desired stack order.

        Returns:
            EnvironmentalStack with the layers' shared grid.

        Raises:
            MisalignedLayers: If shape, transform or CRS differ between layers.
        """
        if not layers:
            msg = "Cannot build a stack from zero layers"
            raise DataUnavailable(msg, stage="layers")

        reference = layers[0]
        for layer in layers[1:]:
            if layer.values.shape != reference.values.shape:
                msg = "Layer grid shapes differ"
                raise MisalignedLayers(
                    msg,
                    layer=layer.name,
                    shape=layer.values.shape,
                    expected=reference.values.shape,
                )
            if not _same_transform(layer.transform, reference.transform):
                msg = "Layer transforms differ"
                raise MisalignedLayers(msg, layer=layer.name, reference=reference.name)
            if not same_crs(layer.crs, reference.crs):
                msg = "Layer CRS differ"
                raise MisalignedLayers(msg, layer=layer.name, reference=reference.name)

        return cls(
            names=tuple(layer.name for layer in layers),
            values=_read_only(np.stack([layer.values for layer in layers], axis=0)),
            transform=reference.transform,
            crs=reference.crs,
        )

    # Grid geometry

    @property
    def n_layers(self) -> int:
        """Number of layers."""
        return self.values.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        """Grid shape as (height, width)."""
        return (self.values.shape[1], self.values.shape[2])

    @property
    def cell_size(self) -> tuple[float, float]:
        """Cell size as (x, y), both positive."""
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Grid bounds as (left, bottom, right, top)."""
        height, width = self.shape
        west, south, east, north = array_bounds(height, width, self.transform)
        return (west, south, east, north)

    def is_coregistered_with(self, other: "EnvironmentalStack") -> bool:
        """Whether another stack (or surface) shares this grid."""
        return (
            self.shape == other.shape
            and _same_transform(self.transform, other.transform)
            and same_crs(self.crs, other.crs)
        )

    # Layer access

    def index_of(self, name: str) -> int:
        """Position of a named layer."""
        try:
            return self._index[name]
        except KeyError:
            msg = f"Layer {name!r} not in stack"
            raise KeyError(msg) from None

    def layer(self, name: str) -> np.ndarray:
        """Read-only 2D view of a named layer."""
        return self.values[self.index_of(name)]

    def select(self, names: Sequence[str]) -> "EnvironmentalStack":
        """
        Keep a subset of layers in the given order.

        Raises:
            DataUnavailable: If a requested layer is not in the stack.
        """
        missing = [name for name in names if name not in self._index]
        if missing:
            msg = "Requested variables are not in the layer stack"
            raise DataUnavailable(msg, stage="layers", missing=missing, available=list(self.names))
        indices = [self._index[name] for name in names]
        return EnvironmentalStack(
            names=tuple(names),
            values=_read_only(self.values[indices]),
            transform=self.transform,
            crs=self.crs,
        )

    def valid_mask(self, reference_layer: str | None = None) -> np.ndarray:
        """
        Boolean grid of cells with data.

        Args:
            reference_layer: Layer to test. If None, a cell is valid only
                when every layer has data.
        """
        if reference_layer is None:
            return np.all(np.isfinite(self.values), axis=0)
        return np.isfinite(self.layer(reference_layer))

    # Point lookup

    def cell_indices(
        self, xs: np.ndarray, ys: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Nearest-cell (containing cell) row/column for coordinates.

        Returns:
            Tuple of (rows, cols, inside) where inside marks points that fall
            on the grid. Rows/cols of outside points are clipped to the grid
            and must not be used.
        """
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        col_f, row_f = ~self.transform * (xs, ys)
        finite = np.isfinite(col_f) & np.isfinite(row_f)
        cols = np.floor(np.where(finite, col_f, -1.0) + _SNAP_EPS).astype(np.int64)
        rows = np.floor(np.where(finite, row_f, -1.0) + _SNAP_EPS).astype(np.int64)

        height, width = self.shape
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        inside &= finite
        return np.clip(rows, 0, height - 1), np.clip(cols, 0, width - 1), inside

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Layer values at point coordinates.

        Returns:
            Tuple of (values, inside): values has shape (n_points, n_layers)
            with NaN rows for points outside the grid.
        """
        rows, cols, inside = self.cell_indices(xs, ys)
        values = self.values[:, rows, cols].T.copy()
        values[~inside] = np.nan
        return values, inside

    def cell_centers(
        self, rows: np.ndarray, cols: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Coordinates of cell centres."""
        xs, ys = self.transform * (np.asarray(cols) + 0.5, np.asarray(rows) + 0.5)
        return np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64)

    def to_matrix(self) -> np.ndarray:
        """Cells as rows: shape (height * width, n_layers), row-major."""
        return self.values.reshape(self.n_layers, -1).T

    # Subsetting

    def clip_to_bounds(self, bounds: tuple[float, float, float, float]) -> "EnvironmentalStack":
        """
        Window of the grid covering the bounds.

        The window is snapped outward to whole cells, so cell size and CRS
        are preserved and every point inside the bounds stays on the grid.

        Raises:
            DataUnavailable: If the bounds do not overlap the grid.
        """
        height, width = self.shape
        window = covering_window(bounds, self.transform, height, width)
        rows, cols = window.toslices()
        return EnvironmentalStack(
            names=self.names,
            values=self.values[:, rows, cols],
            transform=window_transform(window, self.transform),
            crs=self.crs,
        )

    def mask_outside(self, geometry: BaseGeometry) -> "EnvironmentalStack":
        """Set cells whose centre lies outside the geometry to NaN."""
        outside = geometry_mask(
            [mapping(geometry)],
            out_shape=self.shape,
            transform=self.transform,
            invert=False,
        )
        values = np.array(self.values, copy=True)
        values[:, outside] = np.nan
        return EnvironmentalStack(
            names=self.names, values=_read_only(values), transform=self.transform, crs=self.crs
        )


def check_coregistered(stack: EnvironmentalStack) -> None:
    """
    Verify every layer of a stack shares the grid.

    A stack stores its layers in one array so this can only fail if the
    array and its metadata disagree; it guards the clip result.

    Raises:
        MisalignedLayers: If the stack's layers disagree on grid shape.
    """
    height, width = stack.shape
    for name, layer in zip(stack.names, stack.values, strict=True):
        if layer.shape != (height, width):
            msg = "Layer grid shape differs from the stack grid"
            raise MisalignedLayers(msg, layer=name, shape=layer.shape, expected=(height, width))
