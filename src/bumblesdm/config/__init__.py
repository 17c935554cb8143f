"""
Configuration management with typed Pydantic models.

Every stage receives its parameters explicitly from a PipelineConfig
loaded from YAML.
"""

from bumblesdm.config.loader import load_config
from bumblesdm.config.settings import (
    BoundaryConfig,
    DownloadConfig,
    ExtentConfig,
    FeatureClass,
    LayerConfig,
    LinkType,
    ModelConfig,
    OccurrenceConfig,
    OutputConfig,
    PipelineConfig,
    Resolution,
    SamplingConfig,
)

__all__ = [
    "BoundaryConfig",
    "DownloadConfig",
    "ExtentConfig",
    "FeatureClass",
    "LayerConfig",
    "LinkType",
    "ModelConfig",
    "OccurrenceConfig",
    "OutputConfig",
    "PipelineConfig",
    "Resolution",
    "SamplingConfig",
    "load_config",
]
