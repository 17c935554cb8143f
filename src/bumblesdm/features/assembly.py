"""
Sample-with-data assembly.

Every presence and background point is looked up in the covariate stack
(containing cell). Points that fall off the grid, or land on a cell where
any layer is missing, are dropped and counted. Presence rows come first,
then background rows; covariate columns follow the stack's layer order.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from bumblesdm.ingestion.occurrences import BackgroundSample, OccurrenceSet
from bumblesdm.schemas.sample import (
    COORDINATE_COLUMNS,
    LABEL_COLUMN,
    build_feature_table_schema,
)
from bumblesdm.spatial.crs import same_crs
from bumblesdm.spatial.stack import EnvironmentalStack
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class FeatureTable:
    """
    Presence/background points joined with covariate values.

    Read the table through the accessors; the frame itself is private.

    Attributes:
        species: Modelled species.
        variable_names: Covariate names in stack order.
        crs: CRS of the point coordinates.
        n_outside_extent: Points dropped because they fall off the grid.
        n_missing_values: Points dropped because a covariate is missing.
        n_presence_excluded: Presence points among the dropped ones.
        n_background_excluded: Background points among the dropped ones.
    """

    species: str
    variable_names: tuple[str, ...]
    crs: str
    _frame: pd.DataFrame
    n_outside_extent: int = 0
    n_missing_values: int = 0
    n_presence_excluded: int = 0
    n_background_excluded: int = 0

    def __len__(self) -> int:
        return len(self._frame)

    @property
    def frame(self) -> pd.DataFrame:
        """Copy of the full table (x, y, label, covariates)."""
        return self._frame.copy()

    @property
    def features(self) -> pd.DataFrame:
        """Copy of the covariate columns."""
        return self._frame[list(self.variable_names)].copy()

    @property
    def feature_matrix(self) -> np.ndarray:
        """Covariates as a (n_rows, n_variables) float array."""
        return self._frame[list(self.variable_names)].to_numpy(dtype=np.float64)

    @property
    def labels(self) -> np.ndarray:
        """1 for presence rows, 0 for background rows."""
        return self._frame[LABEL_COLUMN].to_numpy(dtype=np.int64)

    @property
    def coordinates(self) -> np.ndarray:
        """Point coordinates as an (n_rows, 2) array of (x, y)."""
        return self._frame[list(COORDINATE_COLUMNS)].to_numpy(dtype=np.float64)

    @property
    def n_presence(self) -> int:
        """Number of presence rows."""
        return int((self.labels == 1).sum())

    @property
    def n_background(self) -> int:
        """Number of background rows."""
        return int((self.labels == 0).sum())

    @property
    def n_excluded(self) -> int:
        """All dropped points."""
        return self.n_outside_extent + self.n_missing_values


class SampleWithDataAssembler:
    """Builds FeatureTables from point sets and a covariate stack."""

    def __init__(self, validate: bool = True) -> None:
        self.validate = validate

    def _lookup(
        self, stack: EnvironmentalStack, xs: np.ndarray, ys: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Covariate values plus keep / off-grid / missing masks."""
        values, inside = stack.sample(xs, ys)
        complete = np.all(np.isfinite(values), axis=1)
        keep = inside & complete
        return values, ~inside, inside & ~complete, keep

    def assemble(
        self,
        species: str,
        occurrences: OccurrenceSet,
        background: BackgroundSample,
        stack: EnvironmentalStack,
    ) -> FeatureTable:
        """
        Join points with covariates.

        Args:
            species: Modelled species.
            occurrences: Presence points in the stack CRS.
            background: Background points in the stack CRS.
            stack: Covariate stack.

        Returns:
            FeatureTable with one row per retained point.

        Raises:
            ValueError: If the points are not in the stack CRS.
            pandera.errors.SchemaError: If the table fails validation.
        """
        for label, crs in (("occurrences", occurrences.target_crs), ("background", background.crs)):
            if not same_crs(crs, stack.crs):
                msg = f"{label} are in {crs}, stack is in {stack.crs}"
                raise ValueError(msg)

        frames = []
        counts = {"outside": 0, "missing": 0}
        excluded = {}
        for label, xs, ys in (
            (1, occurrences.xs, occurrences.ys),
            (0, background.xs, background.ys),
        ):
            values, outside, missing, keep = self._lookup(stack, xs, ys)
            counts["outside"] += int(outside.sum())
            counts["missing"] += int(missing.sum())
            excluded[label] = int((~keep).sum())

            frame = pd.DataFrame(values[keep], columns=list(stack.names))
            frame.insert(0, LABEL_COLUMN, label)
            frame.insert(0, "y", np.asarray(ys, dtype=np.float64)[keep])
            frame.insert(0, "x", np.asarray(xs, dtype=np.float64)[keep])
            frames.append(frame)

        table = pd.concat(frames, ignore_index=True)
        table[LABEL_COLUMN] = table[LABEL_COLUMN].astype(np.int64)

        if self.validate:
            table = build_feature_table_schema(stack.names).validate(table)

        result = FeatureTable(
            species=species,
            variable_names=stack.names,
            crs=stack.crs,
            _frame=table,
            n_outside_extent=counts["outside"],
            n_missing_values=counts["missing"],
            n_presence_excluded=excluded[1],
            n_background_excluded=excluded[0],
        )
        log.info(
            "Assembled feature table",
            species=species,
            presence=result.n_presence,
            background=result.n_background,
            outside_extent=result.n_outside_extent,
            missing_values=result.n_missing_values,
            variables=list(stack.names),
        )
        return result


def assemble(
    species: str,
    occurrences: OccurrenceSet,
    background: BackgroundSample,
    stack: EnvironmentalStack,
) -> FeatureTable:
    """Convenience function wrapping SampleWithDataAssembler.assemble()."""
    return SampleWithDataAssembler().assemble(species, occurrences, background, stack)
