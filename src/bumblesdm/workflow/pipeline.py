"""
SDM pipeline implementation.

Runs the five stages in order (study area, layers, occurrences,
assembly, model), each consuming the complete output of the one before.
A failing stage aborts the run; its error carries the stage name.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from bumblesdm.config.settings import (
    BoundarySourceType,
    LayerSourceType,
    PipelineConfig,
)
from bumblesdm.errors import SDMError
from bumblesdm.evaluation.metrics import ClassificationMetrics, RocCurve, compute_roc, evaluate_model
from bumblesdm.features.assembly import FeatureTable, SampleWithDataAssembler
from bumblesdm.ingestion.boundaries import (
    BoundarySource,
    GADMBoundarySource,
    GeoDataFrameBoundarySource,
    StudyAreaResolver,
)
from bumblesdm.ingestion.climate import (
    EnvironmentalLayerProvider,
    GeoTiffLayerSource,
    LayerSource,
    WorldClimLayerSource,
)
from bumblesdm.ingestion.occurrences import (
    BackgroundSample,
    OccurrenceDatasetBuilder,
    OccurrenceSet,
)
from bumblesdm.modeling.inference import PredictionSurface
from bumblesdm.modeling.maxent import DistributionModelTrainer, FittedModel, ResponseCurve
from bumblesdm.spatial.stack import EnvironmentalStack
from bumblesdm.spatial.study_area import StudyArea
from bumblesdm.utils.cache import CacheManager
from bumblesdm.utils.logging import get_logger, log_context

log = get_logger(__name__)

STAGES = ("study_area", "layers", "occurrences", "assemble", "model")


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """
    Result of a pipeline run.

    Attributes:
        config: Configuration the run used.
        study_area: Resolved study area.
        stack: Clipped covariate stack.
        occurrences: Loaded presence records.
        background: Background sample.
        feature_table: Assembled sample-with-data table.
        model: Fitted model.
        metrics: Training discrimination metrics.
        roc: Training ROC curve.
        response_curves: One curve per reported covariate.
        surface: Prediction over the clipped stack.
        timings: Seconds spent per stage.
    """

    config: PipelineConfig
    study_area: StudyArea
    stack: EnvironmentalStack
    occurrences: OccurrenceSet
    background: BackgroundSample
    feature_table: FeatureTable
    model: FittedModel
    metrics: ClassificationMetrics
    roc: RocCurve
    response_curves: list[ResponseCurve]
    surface: PredictionSurface
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def species(self) -> str:
        """Modelled species."""
        return self.feature_table.species


def _get_cache(config: PipelineConfig) -> CacheManager:
    """Get cache manager for parsed boundaries and layers."""
    return CacheManager(config.cache_dir / "parsed")


def build_boundary_source(config: PipelineConfig) -> BoundarySource:
    """Boundary source described by the configuration."""
    if config.boundary.source == BoundarySourceType.FILE:
        return GeoDataFrameBoundarySource(config.resolve(config.boundary.path))
    return GADMBoundarySource(
        config.cache_dir / "downloads",
        config.download,
        cache=_get_cache(config),
    )


def build_layer_source(config: PipelineConfig) -> LayerSource:
    """Layer source described by the configuration."""
    if config.layers.source == LayerSourceType.DIRECTORY:
        return GeoTiffLayerSource(config.resolve(config.layers.directory))
    return WorldClimLayerSource(config.cache_dir / "downloads", config.download)


class SDMPipeline:
    """
    Maxent species distribution pipeline for one species.

    Sources default to the ones the configuration describes; tests and
    batch runs inject their own (a shared provider lets several runs
    reuse one set of fetched layers).
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        boundary_source: BoundarySource | None = None,
        layer_provider: EnvironmentalLayerProvider | None = None,
        occurrence_source: Path | pd.DataFrame | None = None,
    ) -> None:
        """
        Initialize pipeline.

        Args:
            config: Pipeline configuration.
            boundary_source: Overrides the configured boundary source.
            layer_provider: Overrides the configured layer provider.
            occurrence_source: Overrides the configured occurrence file.
        """
        self.config = config
        self.resolver = StudyAreaResolver(
            boundary_source
            if boundary_source is not None or config.boundary.country is None
            else build_boundary_source(config)
        )
        self.provider = layer_provider or EnvironmentalLayerProvider(
            build_layer_source(config),
            cache=_get_cache(config) if config.layers.source == LayerSourceType.WORLDCLIM else None,
        )
        self.occurrence_source = occurrence_source
        self.builder = OccurrenceDatasetBuilder(
            config.occurrences, config.sampling, data_root=config.data_root
        )
        self.assembler = SampleWithDataAssembler()
        self.trainer = DistributionModelTrainer(config.model)
        self.timings: dict[str, float] = {}

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        """Bind the stage to log events, time it and tag its errors."""
        start = time.perf_counter()
        with log_context(stage=name, species=self.config.species):
            log.info("Stage started")
            try:
                yield
            except SDMError as e:
                e.stage = name
                log.error("Stage failed", error=str(e))
                raise
            self.timings[name] = time.perf_counter() - start
            log.info("Stage finished", duration_s=round(self.timings[name], 3))

    def resolve_study_area(self) -> StudyArea:
        """Stage 1: extent and boundary."""
        with self._stage("study_area"):
            boundary = self.config.boundary
            return self.resolver.resolve(
                self.config.extent,
                country=boundary.country,
                admin_level=boundary.admin_level,
                names=boundary.names,
            )

    def build_stack(self, study_area: StudyArea) -> EnvironmentalStack:
        """Stage 2: fetch, clip and select covariates."""
        layers = self.config.layers
        with self._stage("layers"):
            stack = self.provider.fetch(
                self.config.boundary.country,
                layers.variable_group,
                layers.resolution,
                study_area=study_area,
            )
            if layers.variables:
                stack = stack.select(layers.variables)
            return self.provider.clip(stack, study_area, mask=layers.mask_to_boundary)

    def build_points(self, stack: EnvironmentalStack) -> tuple[OccurrenceSet, BackgroundSample]:
        """Stage 3: presence records and background sample."""
        with self._stage("occurrences"):
            occurrences = self.builder.load_occurrences(stack.crs, self.occurrence_source)
            background = self.builder.sample_background(
                stack, reference_layer=self.config.layers.reference_layer
            )
            return occurrences, background

    def assemble(
        self,
        occurrences: OccurrenceSet,
        background: BackgroundSample,
        stack: EnvironmentalStack,
    ) -> FeatureTable:
        """Stage 4: sample-with-data table."""
        with self._stage("assemble"):
            return self.assembler.assemble(self.config.species, occurrences, background, stack)

    def train(
        self, table: FeatureTable, stack: EnvironmentalStack
    ) -> tuple[FittedModel, ClassificationMetrics, RocCurve, list[ResponseCurve], PredictionSurface]:
        """Stage 5: fit, evaluate and predict."""
        with self._stage("model"):
            self.trainer.check_response_variables(table.variable_names)
            model = self.trainer.fit(table)
            metrics = evaluate_model(model)
            roc = compute_roc(model.training_labels, model.training_scores())
            curves = self.trainer.response_curves(model)
            surface = self.trainer.predict_surface(model, stack)
            return model, metrics, roc, curves, surface

    def run(self) -> PipelineResult:
        """
        Run all stages.

        Returns:
            PipelineResult with every stage output.

        Raises:
            SDMError: From the failing stage, tagged with its name.
        """
        log.info("Starting SDM pipeline", project=self.config.project, **self.config.summary())
        self.timings = {}

        study_area = self.resolve_study_area()
        stack = self.build_stack(study_area)
        occurrences, background = self.build_points(stack)
        table = self.assemble(occurrences, background, stack)
        model, metrics, roc, curves, surface = self.train(table, stack)

        log.info(
            "SDM pipeline complete",
            training_auc=round(model.training_auc, 4),
            presence=table.n_presence,
            background=table.n_background,
            total_s=round(sum(self.timings.values()), 3),
        )
        return PipelineResult(
            config=self.config,
            study_area=study_area,
            stack=stack,
            occurrences=occurrences,
            background=background,
            feature_table=table,
            model=model,
            metrics=metrics,
            roc=roc,
            response_curves=curves,
            surface=surface,
            timings=dict(self.timings),
        )


def write_outputs(result: PipelineResult) -> dict[str, Path]:
    """
    Write plots, the prediction raster and the fitted model of a run.

    Returns:
        Mapping of output name to written path.
    """
    from bumblesdm.evaluation.report import export_report
    from bumblesdm.modeling.persistence import save_model

    config = result.config
    paths = export_report(
        result,
        config.plots_dir,
        config.predictions_dir,
        plot_format=config.output.plot_format,
        dpi=config.output.dpi,
    )
    stem = result.species.lower().replace(" ", "_")
    model_path, metadata_path = save_model(
        result.model,
        config.models_dir / stem,
        extra={"config": config.summary(), "metrics": result.metrics.to_dict()},
    )
    paths["model"] = model_path
    paths["model_metadata"] = metadata_path
    return paths
