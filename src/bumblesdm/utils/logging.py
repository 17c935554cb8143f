"""Structured logging for pipeline runs, built on structlog."""

import logging
import sys
from typing import Any

import structlog

# Libraries that log chatty per-file or per-request detail at INFO
_NOISY_LOGGERS = ("rasterio", "pyogrio", "fiona", "urllib3", "matplotlib", "PIL")


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog for a pipeline run.

    Events go to stderr, so the rich summary on stdout stays clean.
    Raster, vector and HTTP libraries log through stdlib logging and are
    held at WARNING unless ``level`` is DEBUG.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Render JSON lines instead of the console format.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(name)s: %(message)s", stream=sys.stderr, level=log_level)
    library_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=False),
    ]
    if json_output:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for a module; pass ``__name__``."""
    return structlog.get_logger(name)


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """
    Bind key-value pairs to every event logged inside the block.

    The pipeline wraps each stage in one of these::

        with log_context(stage="assemble", species="Bombus vosnesenskii"):
            log.info("Joining points")  # carries stage and species

    Args:
        **kwargs: Values to bind.

    Returns:
        Context manager that unbinds them on exit.
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
