"""
Report rendering.

Plots and exports consume the values the pipeline returns; nothing here
feeds back into a computation. Figures are built and returned so callers
decide whether to save them, which keeps tests free of file output.
"""

from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import LinearSegmentedColormap
from matplotlib.figure import Figure
from rich.console import Console
from rich.table import Table

from bumblesdm.evaluation.metrics import RocCurve
from bumblesdm.modeling.inference import PredictionSurface
from bumblesdm.modeling.maxent import ResponseCurve
from bumblesdm.spatial.raster_io import write_geotiff
from bumblesdm.utils.logging import get_logger

if TYPE_CHECKING:
    from bumblesdm.ingestion.occurrences import OccurrenceSet
    from bumblesdm.spatial.study_area import StudyArea
    from bumblesdm.workflow.pipeline import PipelineResult

log = get_logger(__name__)

# Low suitability in blue, fading through white into a yellow-red ramp
PREDICTION_COLORS = ("#2166ac", "#92c5de", "#f7f7f7", "#fee08b", "#fc8d59", "#d73027", "#7f0000")
PREDICTION_CMAP = LinearSegmentedColormap.from_list("suitability", PREDICTION_COLORS)

LINK_LABELS = {
    "raw": "Raw score",
    "logistic": "Suitability (logistic)",
    "cloglog": "Suitability (cloglog)",
}


def save_figure(fig: Figure, path: Path, dpi: int = 150) -> Path:
    """Write a figure to disk and close it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    log.info("Saved figure", path=str(path))
    return path


def plot_response_curves(curves: list[ResponseCurve], species: str | None = None) -> Figure:
    """
    One panel per covariate response curve.

    Args:
        curves: Curves to draw.
        species: Used in the figure title.

    Returns:
        Matplotlib figure.
    """
    if not curves:
        msg = "No response curves to plot"
        raise ValueError(msg)

    n_cols = min(3, len(curves))
    n_rows = int(np.ceil(len(curves) / n_cols))
    fig, axes = plt.subplots(
        n_rows, n_cols, figsize=(4 * n_cols, 3.2 * n_rows), squeeze=False, sharey=True
    )

    for ax, curve in zip(axes.flat, curves, strict=False):
        ax.plot(curve.values, curve.scores, color="#d73027", linewidth=2)
        ax.set_xlabel(curve.variable, fontsize=10)
        ax.grid(True, alpha=0.3)
        if curve.link.value != "raw":
            ax.set_ylim(0, 1)
    for ax in axes.flat[len(curves) :]:
        ax.set_visible(False)
    for ax in axes[:, 0]:
        ax.set_ylabel(LINK_LABELS[curves[0].link.value], fontsize=10)

    title = "Response curves"
    if species:
        title = f"{species}: {title.lower()}"
    fig.suptitle(title, fontsize=12)
    fig.tight_layout()
    return fig


def plot_roc(roc: RocCurve, species: str | None = None) -> Figure:
    """ROC curve with the AUC in the legend."""
    fig, ax = plt.subplots(figsize=(5, 5))
    ax.plot(roc.fpr, roc.tpr, color="#d73027", linewidth=2, label=f"Training AUC = {roc.auc:.3f}")
    ax.plot([0, 1], [0, 1], "k--", alpha=0.5, linewidth=1, label="Random")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_xlabel("False positive rate (background)", fontsize=10)
    ax.set_ylabel("True positive rate (presence)", fontsize=10)
    ax.set_title(f"{species}: ROC" if species else "ROC", fontsize=12)
    ax.legend(loc="lower right")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig


def plot_prediction_map(
    surface: PredictionSurface,
    study_area: "StudyArea | None" = None,
    occurrences: "OccurrenceSet | None" = None,
    title: str | None = None,
) -> Figure:
    """
    Map of a prediction surface.

    Args:
        surface: Prediction to draw.
        study_area: Boundary outline drawn on top, if it has one.
        occurrences: Presence points drawn on top.
        title: Figure title (default: species name).

    Returns:
        Matplotlib figure.
    """
    import geopandas as gpd
    from rasterio.transform import array_bounds

    height, width = surface.shape
    west, south, east, north = array_bounds(height, width, surface.transform)

    fig, ax = plt.subplots(figsize=(8, 8))
    bounded = surface.link.value != "raw"
    image = ax.imshow(
        np.ma.masked_invalid(surface.values),
        extent=(west, east, south, north),
        cmap=PREDICTION_CMAP,
        vmin=0.0 if bounded else None,
        vmax=1.0 if bounded else None,
        interpolation="nearest",
    )
    colorbar = fig.colorbar(image, ax=ax, shrink=0.7)
    colorbar.set_label(LINK_LABELS[surface.link.value], fontsize=10)

    if study_area is not None and study_area.boundary is not None:
        outline = gpd.GeoSeries([study_area.boundary], crs=study_area.crs).to_crs(surface.crs)
        outline.boundary.plot(ax=ax, color="black", linewidth=0.8)

    if occurrences is not None and len(occurrences):
        ax.scatter(
            occurrences.xs,
            occurrences.ys,
            s=8,
            c="black",
            alpha=0.6,
            edgecolors="none",
            label="Occurrences",
        )
        ax.legend(loc="lower left")

    ax.set_xlim(west, east)
    ax.set_ylim(south, north)
    ax.set_title(title or surface.species or "Prediction", fontsize=12)
    fig.tight_layout()
    return fig


def write_prediction_raster(surface: PredictionSurface, path: Path) -> Path:
    """Write a prediction surface as a single-band GeoTIFF."""
    return write_geotiff(
        surface.values,
        path,
        surface.transform,
        surface.crs,
        band_names=[f"{surface.link.value}_score"],
    )


def print_summary(result: "PipelineResult", console: Console | None = None) -> None:
    """Print a run summary table."""
    console = console or Console()
    model = result.model

    table = Table(title=f"{result.species} Maxent run")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green", justify="right")

    occurrences = result.occurrences
    table.add_row("Occurrences read", str(occurrences.n_read))
    table.add_row("Occurrences rejected (coordinates)", str(occurrences.n_rejected))
    table.add_row("Background points", str(len(result.background)))
    table.add_row("Excluded: outside extent", str(result.feature_table.n_outside_extent))
    table.add_row("Excluded: missing covariates", str(result.feature_table.n_missing_values))
    table.add_row("Presence rows", str(result.feature_table.n_presence))
    table.add_row("Background rows", str(result.feature_table.n_background))
    table.add_row("Covariates", ", ".join(model.variable_names))
    table.add_row("Feature classes", ", ".join(fc.value for fc in model.feature_classes))
    table.add_row("Regularization", f"{model.regularization:g}")
    table.add_row("Iterations", f"{model.n_iterations} / {model.max_iterations}")
    table.add_row("Training AUC", f"{model.training_auc:.4f}")
    low, high = result.surface.value_range()
    table.add_row("Prediction range", f"{low:.3f} - {high:.3f}")

    console.print(table)


def export_report(
    result: "PipelineResult",
    plots_dir: Path,
    predictions_dir: Path,
    *,
    plot_format: str = "png",
    dpi: int = 150,
) -> dict[str, Path]:
    """
    Write the plots and the prediction raster of a run.

    Returns:
        Mapping of output name to written path.
    """
    stem = result.species.lower().replace(" ", "_")
    paths = {
        "response_curves": save_figure(
            plot_response_curves(result.response_curves, result.species),
            plots_dir / f"{stem}_response_curves.{plot_format}",
            dpi,
        ),
        "roc": save_figure(
            plot_roc(result.roc, result.species),
            plots_dir / f"{stem}_roc.{plot_format}",
            dpi,
        ),
        "prediction_map": save_figure(
            plot_prediction_map(result.surface, result.study_area, result.occurrences),
            plots_dir / f"{stem}_prediction.{plot_format}",
            dpi,
        ),
        "prediction_raster": write_prediction_raster(
            result.surface, predictions_dir / f"{stem}_prediction.tif"
        ),
    }
    return paths
