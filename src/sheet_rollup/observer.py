"""Pipeline observer: how ingestion and export report progress and warnings."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "sheet_rollup"


class PipelineObserver(Protocol):
    def info(self, message: str) -> None: ...

    def warn(self, warning: Warning) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingObserver:
    """Forward pipeline events to :mod:`logging` and keep the warnings."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.warnings: list[str] = []

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warn(self, warning: Warning) -> None:
        message = str(warning)
        self.warnings.append(message)
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)


def setup_logging(
    *, quiet: bool = False, verbose: bool = False, console: Console | None = None
) -> logging.Logger:
    """Attach a single rich handler to the package logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAME)
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
