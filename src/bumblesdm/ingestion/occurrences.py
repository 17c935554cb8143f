"""
Occurrence records and background sampling.

Occurrence files are delimited text with a species column and two
coordinate columns. Rows whose coordinates do not parse as finite numbers
are rejected and counted, never silently dropped. Points are reprojected
from the file's CRS into the raster stack's CRS.

Background points are cell centres drawn uniformly, without replacement,
from the valid cells of a reference layer.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from bumblesdm.config.settings import OccurrenceConfig, SamplingConfig
from bumblesdm.errors import DataUnavailable, InsufficientBackgroundCells
from bumblesdm.ingestion.base import DataLoader
from bumblesdm.schemas.occurrence import OccurrenceSchema
from bumblesdm.spatial.crs import to_crs_string
from bumblesdm.spatial.stack import EnvironmentalStack
from bumblesdm.utils.logging import get_logger

if TYPE_CHECKING:
    import geopandas as gpd

log = get_logger(__name__)

# Coordinate column names tried in order when none are configured
LON_CANDIDATES = ("decimalLongitude", "longitude", "Longitude", "lon", "x")
LAT_CANDIDATES = ("decimalLatitude", "latitude", "Latitude", "lat", "y")


@dataclass(frozen=True)
class OccurrenceRecord:
    """
    A single occurrence.

    Attributes:
        species: Scientific name.
        source_x: Longitude / easting in the source CRS.
        source_y: Latitude / northing in the source CRS.
        x: Easting in the target CRS.
        y: Northing in the target CRS.
    """

    species: str
    source_x: float
    source_y: float
    x: float
    y: float


@dataclass(frozen=True)
class OccurrenceSet:
    """
    Parsed occurrences plus the bookkeeping of what was rejected.

    Attributes:
        records: Accepted records in file order.
        source_crs: CRS of the input coordinates.
        target_crs: CRS the records were reprojected to.
        n_read: Rows read from the source.
        n_rejected: Rows rejected for unparsable or non-finite coordinates.
        n_other_species: Rows skipped because they belong to another species.
    """

    records: tuple[OccurrenceRecord, ...]
    source_crs: str
    target_crs: str
    n_read: int
    n_rejected: int
    n_other_species: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[OccurrenceRecord]:
        return iter(self.records)

    @property
    def xs(self) -> np.ndarray:
        """Target-CRS x coordinates."""
        return np.array([r.x for r in self.records], dtype=np.float64)

    @property
    def ys(self) -> np.ndarray:
        """Target-CRS y coordinates."""
        return np.array([r.y for r in self.records], dtype=np.float64)

    def to_frame(self) -> pd.DataFrame:
        """Records as a DataFrame with OccurrenceSchema columns."""
        return pd.DataFrame(
            [vars(r) for r in self.records],
            columns=["species", "source_x", "source_y", "x", "y"],
        )

    def to_geodataframe(self) -> "gpd.GeoDataFrame":
        """Records as points in the target CRS."""
        import geopandas as gpd

        df = self.to_frame()
        return gpd.GeoDataFrame(
            df, geometry=gpd.points_from_xy(df["x"], df["y"]), crs=self.target_crs
        )


def _pick_column(columns: pd.Index, configured: str | None, candidates: tuple[str, ...]) -> str:
    """Resolve a coordinate column name from config or known candidates."""
    if configured is not None:
        if configured not in columns:
            msg = "Configured coordinate column not found"
            raise DataUnavailable(msg, stage="occurrences", column=configured)
        return configured
    for candidate in candidates:
        if candidate in columns:
            return candidate
    msg = "No coordinate column found"
    raise DataUnavailable(
        msg, stage="occurrences", tried=list(candidates), columns=list(columns)
    )


class OccurrenceTableLoader(DataLoader[OccurrenceSchema]):
    """Loader for delimited occurrence files (or in-memory tables)."""

    def __init__(
        self,
        source: Path | pd.DataFrame,
        source_crs: Any,
        target_crs: Any,
        *,
        species: str | None = None,
        species_column: str | None = "species",
        lon_column: str | None = None,
        lat_column: str | None = None,
        delimiter: str = ",",
        filter_species: bool = False,
    ) -> None:
        """
        Initialize occurrence loader.

        Args:
            source: Delimited text file or a DataFrame with the same columns.
            source_crs: CRS of the coordinate columns.
            target_crs: CRS to reproject into (the raster stack's CRS).
            species: Modelled species; fills a missing species column and
                is the value kept when filter_species is set.
            species_column: Name of the species column.
            lon_column: Longitude/easting column (auto-detected if None).
            lat_column: Latitude/northing column (auto-detected if None).
            delimiter: Field delimiter of the file.
            filter_species: Keep only rows of ``species``.
        """
        super().__init__(OccurrenceSchema)
        self.source = source
        self.source_crs = to_crs_string(source_crs)
        self.target_crs = to_crs_string(target_crs)
        self.species = species
        self.species_column = species_column
        self.lon_column = lon_column
        self.lat_column = lat_column
        self.delimiter = delimiter
        self.filter_species = filter_species

        self.n_read = 0
        self.n_rejected = 0
        self.n_other_species = 0

    def _load_raw(self) -> pd.DataFrame:
        """Read the source as strings so bad coordinates survive to be counted."""
        if isinstance(self.source, pd.DataFrame):
            return self.source.astype(object).copy()

        path = Path(self.source)
        if not path.exists():
            msg = "Occurrence file not found"
            raise DataUnavailable(msg, stage="occurrences", path=str(path))

        log.info("Reading occurrence file", path=str(path), delimiter=self.delimiter)
        return pd.read_csv(path, sep=self.delimiter, dtype=str)

    def _prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        """Parse coordinates, count rejections and reproject."""
        import geopandas as gpd

        self.n_read = len(df)
        lon_col = _pick_column(df.columns, self.lon_column, LON_CANDIDATES)
        lat_col = _pick_column(df.columns, self.lat_column, LAT_CANDIDATES)

        if self.species_column and self.species_column in df.columns:
            species = df[self.species_column].astype("string").str.strip()
        elif self.species is not None:
            species = pd.Series(self.species, index=df.index, dtype="string")
        else:
            msg = "Occurrence table has no species column and no species was given"
            raise DataUnavailable(msg, stage="occurrences", column=self.species_column)

        if self.filter_species and self.species is not None:
            keep = (species == self.species).fillna(False).astype(bool)
            self.n_other_species = int((~keep).sum())
            df = df.loc[keep]
            species = species.loc[keep]

        lon = pd.to_numeric(df[lon_col], errors="coerce")
        lat = pd.to_numeric(df[lat_col], errors="coerce")
        valid = np.isfinite(lon.to_numpy(dtype=float)) & np.isfinite(lat.to_numpy(dtype=float))
        valid &= species.notna().to_numpy()

        points = gpd.GeoDataFrame(
            {
                "species": species[valid].astype(str).to_numpy(),
                "source_x": lon[valid].to_numpy(dtype=float),
                "source_y": lat[valid].to_numpy(dtype=float),
            },
            geometry=gpd.points_from_xy(lon[valid], lat[valid]),
            crs=self.source_crs,
        )
        projected = points.to_crs(self.target_crs)
        points["x"] = projected.geometry.x.to_numpy()
        points["y"] = projected.geometry.y.to_numpy()

        # Points outside the target CRS's domain project to inf
        projected_ok = np.isfinite(points["x"].to_numpy()) & np.isfinite(points["y"].to_numpy())
        out = pd.DataFrame(points.loc[projected_ok, ["species", "source_x", "source_y", "x", "y"]])
        out = out.reset_index(drop=True)

        self.n_rejected = int((~valid).sum()) + int((~projected_ok).sum())
        if self.n_rejected:
            log.warning(
                "Rejected occurrence rows with unusable coordinates",
                rejected=self.n_rejected,
                lon_column=lon_col,
                lat_column=lat_col,
            )
        return out

    def load_set(self) -> OccurrenceSet:
        """Load and wrap the records with their rejection counts."""
        df = self.load()
        records = tuple(
            OccurrenceRecord(
                species=str(row.species),
                source_x=float(row.source_x),
                source_y=float(row.source_y),
                x=float(row.x),
                y=float(row.y),
            )
            for row in df.itertuples(index=False)
        )
        log.info(
            "Loaded occurrences",
            accepted=len(records),
            rejected=self.n_rejected,
            other_species=self.n_other_species,
            target_crs=self.target_crs,
        )
        return OccurrenceSet(
            records=records,
            source_crs=self.source_crs,
            target_crs=self.target_crs,
            n_read=self.n_read,
            n_rejected=self.n_rejected,
            n_other_species=self.n_other_species,
        )


def load_occurrences(
    source: Path | pd.DataFrame,
    source_crs: Any,
    target_crs: Any,
    **kwargs: Any,
) -> OccurrenceSet:
    """
    Convenience function to load occurrences.

    Args:
        source: Delimited text file or DataFrame.
        source_crs: CRS of the coordinate columns.
        target_crs: CRS to reproject into.
        **kwargs: Passed to OccurrenceTableLoader.

    Returns:
        OccurrenceSet with accepted records and rejection count.
    """
    return OccurrenceTableLoader(source, source_crs, target_crs, **kwargs).load_set()


@dataclass(frozen=True, eq=False)
class BackgroundSample:
    """
    Background (pseudo-absence) points drawn from valid raster cells.

    Attributes:
        xs: Cell-centre x coordinates in the stack CRS.
        ys: Cell-centre y coordinates in the stack CRS.
        rows: Grid rows of the drawn cells.
        cols: Grid columns of the drawn cells.
        crs: CRS of the coordinates.
        seed: Seed used for the draw (None means non-reproducible).
        n_valid_cells: Size of the pool the sample was drawn from.
    """

    xs: np.ndarray
    ys: np.ndarray
    rows: np.ndarray
    cols: np.ndarray
    crs: str
    seed: int | None
    n_valid_cells: int

    def __post_init__(self) -> None:
        for name in ("xs", "ys", "rows", "cols"):
            array = np.array(getattr(self, name), copy=True)
            array.flags.writeable = False
            object.__setattr__(self, name, array)

    def __len__(self) -> int:
        return len(self.xs)

    @property
    def coordinates(self) -> np.ndarray:
        """Coordinates as an (n, 2) array of (x, y)."""
        return np.column_stack([self.xs, self.ys])


def sample_background(
    stack: EnvironmentalStack,
    count: int,
    seed: int | None = None,
    reference_layer: str | None = None,
) -> BackgroundSample:
    """
    Draw background points uniformly from valid cells.

    Without a seed the draw is not reproducible; tests and reproducible
    runs must pass one.

    Args:
        stack: Raster stack to sample from.
        count: Number of points.
        seed: Random seed.
        reference_layer: Layer whose valid cells form the pool
            (default: first layer).

    Returns:
        BackgroundSample of ``count`` distinct cell centres.

    Raises:
        ValueError: If count is not positive.
        DataUnavailable: If the reference layer is not in the stack.
        InsufficientBackgroundCells: If count exceeds the valid cells.
    """
    if count <= 0:
        msg = f"count must be positive, got {count}"
        raise ValueError(msg)

    reference = reference_layer or stack.names[0]
    if reference not in stack.names:
        msg = "Reference layer is not in the layer stack"
        raise DataUnavailable(
            msg, stage="occurrences", reference_layer=reference, available=list(stack.names)
        )
    valid_rows, valid_cols = np.nonzero(stack.valid_mask(reference))
    n_valid = len(valid_rows)

    if count > n_valid:
        msg = "Requested more background points than valid cells"
        raise InsufficientBackgroundCells(
            msg, requested=count, valid_cells=n_valid, reference_layer=reference
        )

    rng = np.random.default_rng(seed)
    chosen = np.sort(rng.choice(n_valid, size=count, replace=False))
    rows = valid_rows[chosen]
    cols = valid_cols[chosen]
    xs, ys = stack.cell_centers(rows, cols)

    log.info(
        "Sampled background points",
        count=count,
        valid_cells=n_valid,
        reference_layer=reference,
        seed=seed,
    )
    return BackgroundSample(
        xs=xs, ys=ys, rows=rows, cols=cols, crs=stack.crs, seed=seed, n_valid_cells=n_valid
    )


class OccurrenceDatasetBuilder:
    """
    Builds the presence and background point sets for one run.

    Wraps load_occurrences() and sample_background() with the run's
    occurrence and sampling configuration.
    """

    def __init__(
        self,
        occurrence_config: OccurrenceConfig,
        sampling_config: SamplingConfig | None = None,
        *,
        data_root: Path | None = None,
    ) -> None:
        self.occurrence_config = occurrence_config
        self.sampling_config = sampling_config or SamplingConfig()
        self.data_root = data_root

    def _source_path(self) -> Path:
        path = self.occurrence_config.path
        if self.data_root is not None and not path.is_absolute():
            return self.data_root / path
        return path

    def load_occurrences(
        self,
        target_crs: Any,
        source: Path | pd.DataFrame | None = None,
    ) -> OccurrenceSet:
        """Load the configured occurrence file, reprojected to target_crs."""
        cfg = self.occurrence_config
        return load_occurrences(
            source if source is not None else self._source_path(),
            cfg.source_crs,
            target_crs,
            species=cfg.species,
            species_column=cfg.species_column,
            lon_column=cfg.lon_column,
            lat_column=cfg.lat_column,
            delimiter=cfg.delimiter,
            filter_species=cfg.filter_species,
        )

    def sample_background(
        self,
        stack: EnvironmentalStack,
        reference_layer: str | None = None,
    ) -> BackgroundSample:
        """Draw the configured number of background points."""
        return sample_background(
            stack,
            count=self.sampling_config.background_count,
            seed=self.sampling_config.seed,
            reference_layer=reference_layer,
        )
