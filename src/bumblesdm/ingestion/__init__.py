"""
Data ingestion layer: boundaries, covariate rasters and occurrences.

Raw inputs enter the pipeline only through this package, so parsing,
reprojection and validation happen once at the system boundary.
"""
