"""Shared utilities: logging, caching and downloads."""
