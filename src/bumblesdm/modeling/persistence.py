"""
Fitted model persistence (save/load).

A model is stored as two files next to each other:
    - {base}.model.joblib: the pickled FittedModel
    - {base}.model.json: human-readable metadata
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import joblib

from bumblesdm import __version__
from bumblesdm.modeling.maxent import FittedModel
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)

MODEL_SUFFIX = ".model.joblib"
METADATA_SUFFIX = ".model.json"


def _paths(path: Path) -> tuple[Path, Path]:
    """Model and metadata paths for a base path or a .model.joblib path."""
    name = path.name
    if name.endswith(MODEL_SUFFIX):
        name = name[: -len(MODEL_SUFFIX)]
    return path.with_name(name + MODEL_SUFFIX), path.with_name(name + METADATA_SUFFIX)


def save_model(
    model: FittedModel,
    output_path: Path,
    extra: dict[str, Any] | None = None,
) -> tuple[Path, Path]:
    """Save a fitted model and its metadata.

    Args:
        model: Fitted model.
        output_path: Base output path (without extension).
        extra: Additional metadata (e.g. run configuration summary).

    Returns:
        Tuple of (model_path, metadata_path).
    """
    model_path, metadata_path = _paths(Path(output_path))
    model_path.parent.mkdir(parents=True, exist_ok=True)

    joblib.dump(model, model_path)
    log.info("Saved model", path=str(model_path))

    metadata: dict[str, Any] = {
        **model.summary(),
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "bumblesdm_version": __version__,
    }
    if extra:
        metadata["extra"] = extra

    with open(metadata_path, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2, default=str)
    log.info("Saved model metadata", path=str(metadata_path))

    return model_path, metadata_path


def load_model(path: Path) -> tuple[FittedModel, dict[str, Any]]:
    """Load a fitted model and its metadata.

    Accepts either the .model.joblib path or the base path.

    Raises:
        FileNotFoundError: If the model file doesn't exist.
        TypeError: If the file does not hold a FittedModel.
    """
    model_path, metadata_path = _paths(Path(path))
    if not model_path.exists():
        msg = f"Model file not found: {model_path}"
        raise FileNotFoundError(msg)

    model = joblib.load(model_path)
    if not isinstance(model, FittedModel):
        msg = f"{model_path} does not contain a FittedModel (got {type(model).__name__})"
        raise TypeError(msg)
    log.info("Loaded model", path=str(model_path))

    metadata: dict[str, Any] = {}
    if metadata_path.exists():
        with open(metadata_path, encoding="utf-8") as f:
            metadata = json.load(f)
    else:
        log.warning("Model metadata not found", path=str(metadata_path))

    return model, metadata
