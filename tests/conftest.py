"""Pytest configuration and shared fixtures."""

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from bumblesdm.config import (
    BoundaryConfig,
    ExtentConfig,
    LayerConfig,
    OccurrenceConfig,
    OutputConfig,
    PipelineConfig,
    SamplingConfig,
)
from bumblesdm.config.settings import LayerSourceType
from bumblesdm.features.assembly import FeatureTable
from bumblesdm.ingestion.boundaries import GeoDataFrameBoundarySource
from bumblesdm.ingestion.occurrences import OccurrenceRecord, OccurrenceSet
from bumblesdm.spatial.raster_io import write_geotiff
from bumblesdm.spatial.stack import EnvironmentalStack
from bumblesdm.workflow.pipeline import PipelineResult, SDMPipeline

GEOGRAPHIC = "EPSG:4326"


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def gradient_stack() -> EnvironmentalStack:
    """10x10 single-layer stack whose value equals the column index.

    Cells are 1 degree; the grid spans x 0..10, y 0..10.
    """
    values = np.tile(np.arange(10, dtype=float), (10, 1))
    return EnvironmentalStack(
        names=("gradient",),
        values=values[np.newaxis, ...],
        transform=from_origin(0.0, 10.0, 1.0, 1.0),
        crs=GEOGRAPHIC,
    )


@pytest.fixture
def climate_stack() -> EnvironmentalStack:
    """20x20 two-layer stack (temp rises west to east, precip north to south).

    Cells are 0.5 degrees starting at (-125, 49). The bottom-left 3x3
    block of precip is missing.
    """
    cols = np.tile(np.arange(20, dtype=float), (20, 1))
    rows = cols.T.copy()
    temp = 5.0 + cols
    precip = 200.0 + 10.0 * rows
    precip[-3:, :3] = np.nan
    return EnvironmentalStack(
        names=("temp", "precip"),
        values=np.stack([temp, precip]),
        transform=from_origin(-125.0, 49.0, 0.5, 0.5),
        crs=GEOGRAPHIC,
    )


@pytest.fixture
def make_occurrences() -> Callable[..., OccurrenceSet]:
    """Factory building an OccurrenceSet from coordinates."""

    def _make(
        xs: Sequence[float],
        ys: Sequence[float],
        crs: str = GEOGRAPHIC,
        species: str = "Bombus vosnesenskii",
    ) -> OccurrenceSet:
        records = tuple(
            OccurrenceRecord(species=species, source_x=x, source_y=y, x=x, y=y)
            for x, y in zip(xs, ys, strict=True)
        )
        return OccurrenceSet(
            records=records,
            source_crs=crs,
            target_crs=crs,
            n_read=len(records),
            n_rejected=0,
        )

    return _make


@pytest.fixture
def make_feature_table() -> Callable[..., FeatureTable]:
    """Factory building a FeatureTable from presence/background covariates."""

    def _make(
        presence: np.ndarray,
        background: np.ndarray,
        names: Sequence[str] | None = None,
        species: str = "Bombus vosnesenskii",
    ) -> FeatureTable:
        presence = np.asarray(presence, dtype=float)
        background = np.asarray(background, dtype=float)
        # 1-D input means a single covariate
        if presence.ndim == 1:
            presence = presence.reshape(-1, 1)
        if background.ndim == 1:
            background = background.reshape(-1, 1)
        names = tuple(names or [f"v{i}" for i in range(presence.shape[1])])

        values = np.vstack([presence, background])
        frame = pd.DataFrame(values, columns=list(names))
        labels = np.r_[np.ones(len(presence)), np.zeros(len(background))].astype(np.int64)
        frame.insert(0, "label", labels)
        frame.insert(0, "y", np.zeros(len(values)))
        frame.insert(0, "x", np.arange(len(values), dtype=float))
        return FeatureTable(species=species, variable_names=names, crs=GEOGRAPHIC, _frame=frame)

    return _make


@pytest.fixture
def boundary_frame() -> gpd.GeoDataFrame:
    """GADM-style level-1 units: two western states and one elsewhere."""
    return gpd.GeoDataFrame(
        {
            "GID_0": ["USA", "USA", "CAN"],
            "NAME_0": ["United States", "United States", "Canada"],
            "NAME_1": ["Westland", "Eastland", "Northland"],
        },
        geometry=[
            box(-126.0, 38.0, -120.0, 50.0),
            box(-120.0, 38.0, -110.0, 50.0),
            box(-126.0, 50.0, -110.0, 60.0),
        ],
        crs=GEOGRAPHIC,
    )


@pytest.fixture
def layer_dir(tmp_path: Path, climate_stack: EnvironmentalStack) -> Path:
    """Directory with the climate stack written as one GeoTIFF per layer."""
    directory = tmp_path / "layers"
    for name in climate_stack.names:
        write_geotiff(
            climate_stack.layer(name),
            directory / f"{name}.tif",
            climate_stack.transform,
            climate_stack.crs,
        )
    return directory


@pytest.fixture
def occurrence_csv(tmp_path: Path) -> Path:
    """Occurrence file with presence points in the warm east and one bad row."""
    rng = np.random.default_rng(7)
    lons = rng.uniform(-118.5, -115.5, size=15)
    lats = rng.uniform(41.0, 47.0, size=15)
    rows: list[dict[str, Any]] = [
        {"species": "Bombus vosnesenskii", "decimalLongitude": f"{lon:.5f}", "decimalLatitude": f"{lat:.5f}"}
        for lon, lat in zip(lons, lats, strict=True)
    ]
    rows.append({"species": "Bombus vosnesenskii", "decimalLongitude": "not-a-number", "decimalLatitude": "44.0"})
    path = tmp_path / "occurrences.csv"
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


@pytest.fixture
def pipeline_config(tmp_path: Path, layer_dir: Path, occurrence_csv: Path) -> PipelineConfig:
    """Run configuration over the on-disk climate layers and occurrences."""
    return PipelineConfig(
        project="test-bees",
        data_root=tmp_path,
        extent=ExtentConfig(min_lon=-125.0, max_lon=-115.0, min_lat=39.0, max_lat=49.0),
        boundary=BoundaryConfig(country="USA", admin_level=1),
        layers=LayerConfig(source=LayerSourceType.DIRECTORY, directory=layer_dir),
        occurrences=OccurrenceConfig(path=occurrence_csv, species="Bombus vosnesenskii"),
        sampling=SamplingConfig(background_count=200, seed=3),
        output=OutputConfig(output_root=tmp_path / "output"),
    )


@pytest.fixture
def pipeline_result(
    pipeline_config: PipelineConfig, boundary_frame: gpd.GeoDataFrame
) -> PipelineResult:
    """Completed run with the in-memory boundaries."""
    pipeline = SDMPipeline(
        pipeline_config, boundary_source=GeoDataFrameBoundarySource(boundary_frame)
    )
    return pipeline.run()
