"""
Typed configuration models using Pydantic.

Every stage parameter (extent, boundary, covariates, sampling, model
settings) is defined here with explicit typing and validation and is
passed into the stage entry points. No paths or extents are hardcoded in
processing code.
"""

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

GEOGRAPHIC_CRS = "EPSG:4326"


class FeatureClass(str, Enum):
    """Maxent feature transforms applied to raw covariates."""

    LINEAR = "linear"
    QUADRATIC = "quadratic"
    PRODUCT = "product"
    THRESHOLD = "threshold"
    HINGE = "hinge"


class LinkType(str, Enum):
    """Output scale for model scores."""

    RAW = "raw"  # unbounded linear predictor
    LOGISTIC = "logistic"
    CLOGLOG = "cloglog"


class Resolution(str, Enum):
    """WorldClim 2.1 grid resolutions."""

    ARC_SECONDS_30 = "30s"
    ARC_MINUTES_2_5 = "2.5m"
    ARC_MINUTES_5 = "5m"
    ARC_MINUTES_10 = "10m"


class BoundarySourceType(str, Enum):
    """Where administrative boundaries come from."""

    GADM = "gadm"
    FILE = "file"


class LayerSourceType(str, Enum):
    """Where environmental rasters come from."""

    WORLDCLIM = "worldclim"
    DIRECTORY = "directory"


class ExtentConfig(BaseModel):
    """Geographic bounds of the study area in degrees.

    Ordering is checked when the study area is resolved, so an inverted
    extent fails inside the pipeline with InvalidExtent.
    """

    model_config = ConfigDict(frozen=True)

    min_lon: float = Field(ge=-180.0, le=180.0)
    max_lon: float = Field(ge=-180.0, le=180.0)
    min_lat: float = Field(ge=-90.0, le=90.0)
    max_lat: float = Field(ge=-90.0, le=90.0)

    def as_tuple(self) -> tuple[float, float, float, float]:
        """Return (min_lon, min_lat, max_lon, max_lat)."""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)


class BoundaryConfig(BaseModel):
    """Administrative boundary used to mask the study area."""

    model_config = ConfigDict(frozen=True)

    country: str | None = Field(
        default=None, description="ISO 3166-1 alpha-3 code (e.g. 'USA'); None disables masking"
    )
    admin_level: int = Field(default=0, ge=0, le=5, description="GADM administrative level")
    source: BoundarySourceType = Field(default=BoundarySourceType.GADM)
    path: Path | None = Field(
        default=None, description="Vector file for source='file' (relative to data_root)"
    )
    names: list[str] | None = Field(
        default=None,
        description="Optional subset of unit names (GADM NAME_<level>) to keep",
    )

    @field_validator("country")
    @classmethod
    def normalize_country(cls, v: str | None) -> str | None:
        """Upper-case the ISO3 code."""
        return v.strip().upper() if v else None


class LayerConfig(BaseModel):
    """Environmental covariate configuration."""

    model_config = ConfigDict(frozen=True)

    variable_group: str = Field(default="bio", description="WorldClim variable group")
    resolution: Resolution = Field(default=Resolution.ARC_MINUTES_10)
    source: LayerSourceType = Field(default=LayerSourceType.WORLDCLIM)
    directory: Path | None = Field(
        default=None, description="GeoTIFF directory for source='directory'"
    )
    variables: list[str] | None = Field(
        default=None, description="Subset of layer names to keep, in this order"
    )
    reference_layer: str | None = Field(
        default=None, description="Layer whose valid cells define the background pool"
    )
    mask_to_boundary: bool = Field(
        default=True, description="Set cells outside the boundary polygon to missing"
    )


class OccurrenceConfig(BaseModel):
    """Occurrence input file configuration."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(description="Delimited occurrence file (relative to data_root)")
    species: str = Field(description="Scientific name of the modelled species")
    delimiter: str = Field(default=",")
    species_column: str | None = Field(default="species")
    lon_column: str | None = Field(default=None, description="Auto-detected if None")
    lat_column: str | None = Field(default=None, description="Auto-detected if None")
    source_crs: str = Field(default=GEOGRAPHIC_CRS)
    filter_species: bool = Field(
        default=False, description="Keep only rows whose species column matches 'species'"
    )


class SamplingConfig(BaseModel):
    """Background sampling configuration."""

    model_config = ConfigDict(frozen=True)

    background_count: int = Field(default=1000, gt=0)
    # Deterministic by default; set to null for non-reproducible draws
    seed: int | None = Field(default=42)


class ModelConfig(BaseModel):
    """Maxent fitting configuration."""

    model_config = ConfigDict(frozen=True)

    feature_classes: list[FeatureClass] = Field(
        default_factory=lambda: [FeatureClass.LINEAR, FeatureClass.QUADRATIC, FeatureClass.HINGE]
    )
    regularization: float = Field(default=1.0, gt=0.0)
    max_iterations: int = Field(default=1000, gt=0)
    class_weights: str | float = Field(
        default="balanced",
        description="'balanced' or a fixed background weight (maxnet uses 100)",
    )
    n_hinge_features: int = Field(default=10, gt=0)
    n_threshold_features: int = Field(default=10, gt=0)
    clamp: bool = Field(default=True)
    link: LinkType = Field(default=LinkType.LOGISTIC)
    response_points: int = Field(default=100, ge=2)
    response_variables: list[str] | None = Field(
        default=None, description="Covariates to plot response curves for (default: all)"
    )

    @field_validator("feature_classes")
    @classmethod
    def validate_feature_classes(cls, v: list[FeatureClass]) -> list[FeatureClass]:
        """Require a non-empty, duplicate-free feature set."""
        if not v:
            msg = "feature_classes must not be empty"
            raise ValueError(msg)
        return list(dict.fromkeys(v))

    @field_validator("class_weights")
    @classmethod
    def validate_class_weights(cls, v: str | float) -> str | float:
        """Accept 'balanced' or a positive number."""
        if isinstance(v, str):
            if v != "balanced":
                msg = f"class_weights must be 'balanced' or a number, got: {v!r}"
                raise ValueError(msg)
            return v
        if v <= 0:
            msg = "class_weights must be positive"
            raise ValueError(msg)
        return float(v)


class DownloadConfig(BaseModel):
    """Network fetch behaviour."""

    model_config = ConfigDict(frozen=True)

    retries: int = Field(default=3, ge=0, le=10)
    backoff_s: float = Field(default=2.0, ge=0.0)
    timeout_s: float = Field(default=120.0, gt=0.0)


class OutputConfig(BaseModel):
    """Output paths configuration.

    Structure: ./output/{project}/plots, ./output/{project}/predictions, etc.
    """

    model_config = ConfigDict(frozen=True)

    output_root: Path = Field(default=Path("./output"))
    plot_format: str = Field(default="png")
    dpi: int = Field(default=150, gt=0)


class PipelineConfig(BaseModel):
    """Complete pipeline configuration.

    The project name drives the output directory structure:
    ./output/{project}/
    """

    model_config = ConfigDict(frozen=True)

    project: str = Field(description="Project identifier (e.g. 'bombus-vosnesenskii')")
    data_root: Path = Field(default=Path("./data"))
    cache_root: Path | None = Field(
        default=None, description="Shared download cache (defaults to the project cache dir)"
    )

    extent: ExtentConfig
    boundary: BoundaryConfig = Field(default_factory=BoundaryConfig)
    layers: LayerConfig = Field(default_factory=LayerConfig)
    occurrences: OccurrenceConfig
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @model_validator(mode="after")
    def validate_sources(self) -> "PipelineConfig":
        """Require paths for file-backed sources."""
        if self.boundary.source == BoundarySourceType.FILE and self.boundary.path is None:
            msg = "boundary.path is required when boundary.source is 'file'"
            raise ValueError(msg)
        if self.layers.source == LayerSourceType.DIRECTORY and self.layers.directory is None:
            msg = "layers.directory is required when layers.source is 'directory'"
            raise ValueError(msg)
        return self

    @property
    def species(self) -> str:
        """Convenience accessor for the modelled species."""
        return self.occurrences.species

    def resolve(self, path: Path) -> Path:
        """Resolve a relative data path against data_root."""
        return path if path.is_absolute() else self.data_root / path

    # Output path helpers
    @property
    def project_dir(self) -> Path:
        """Root output directory for this project."""
        return self.output.output_root / self.project

    @property
    def plots_dir(self) -> Path:
        """Path to plots output directory."""
        return self.project_dir / "plots"

    @property
    def predictions_dir(self) -> Path:
        """Path to prediction rasters output directory."""
        return self.project_dir / "predictions"

    @property
    def models_dir(self) -> Path:
        """Path to fitted model output directory."""
        return self.project_dir / "models"

    @property
    def cache_dir(self) -> Path:
        """Path to cache directory (downloads and parsed layers)."""
        if self.cache_root is not None:
            return self.cache_root
        return self.project_dir / "cache"

    def summary(self) -> dict[str, Any]:
        """Flat view of the recognised run options."""
        return {
            "extent": self.extent.as_tuple(),
            "country": self.boundary.country,
            "variable_group": self.layers.variable_group,
            "resolution": self.layers.resolution.value,
            "feature_classes": [fc.value for fc in self.model.feature_classes],
            "regularization": self.model.regularization,
            "max_iterations": self.model.max_iterations,
            "background_count": self.sampling.background_count,
            "seed": self.sampling.seed,
        }
