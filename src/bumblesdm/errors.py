"""
Error types raised by the pipeline stages.

Every error carries the name of the stage that failed and the inputs that
identify the failure, so a caller can report which stage failed and why.
Row-level rejections (bad coordinates, missing covariate values) are not
errors; they are counted in the stage results instead.
"""

from typing import Any


class SDMError(Exception):
    """Base class for all pipeline errors."""

    default_stage: str | None = None

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.context = context

    def __str__(self) -> str:
        parts = [self.message]
        if self.context:
            details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            parts.append(f"({details})")
        if self.stage:
            parts.insert(0, f"[{self.stage}]")
        return " ".join(parts)


class InvalidExtent(SDMError, ValueError):
    """Extent bounds do not satisfy min < max on both axes."""

    default_stage = "study_area"


class BoundaryUnavailable(SDMError):
    """The requested country/admin level cannot be resolved."""

    default_stage = "study_area"


class DataUnavailable(SDMError):
    """Requested data does not exist upstream or could not be fetched."""


class MisalignedLayers(SDMError):
    """Raster layers disagree on grid shape, transform or CRS."""

    default_stage = "layers"


class InsufficientBackgroundCells(SDMError):
    """More background points were requested than valid cells exist."""

    default_stage = "occurrences"


class EmptyFeatureTable(SDMError):
    """Not enough presence or background rows to fit a model."""

    default_stage = "model"


class ConvergenceFailure(SDMError):
    """The optimizer did not converge within the iteration limit."""

    default_stage = "model"
