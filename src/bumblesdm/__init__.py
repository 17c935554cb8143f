"""
bumblesdm: Maxent species distribution modelling for a single bumblebee species.

This package resolves a study area, fetches bioclimatic rasters, joins
occurrence and background points against them and fits a Maxent-style
model with evaluation and full-raster prediction.
"""

from importlib.metadata import version

__version__ = version("bumblesdm")

__all__ = ["__version__"]
