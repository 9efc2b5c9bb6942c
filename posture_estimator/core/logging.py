"""
Logging Configuration Module
============================

Log setup for estimation runs.

Counting runs on two layers of worker threads, so the file log carries
the thread name next to the logger name. Cloud SDKs log every HTTP
request at DEBUG; their loggers stay at WARNING unless a run asks for
SDK tracing.

Functions
---------
setup_logging
    Install the Rich console handler and the optional file handler.
sdk_logging
    Context manager that sets the log level of one cloud's SDK.

Classes
-------
LogContext
    Temporarily changes a logger's level.

Example
-------
>>> setup_logging(level="INFO", log_file="estimate.log")
>>> with sdk_logging(EnvironmentType.AWS, debug=True):
...     summary = engine.run()
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from posture_estimator.core.models import EnvironmentType

CONSOLE_FORMAT = "%(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Root logger of each cloud SDK
SDK_LOGGERS: Dict[EnvironmentType, str] = {
    EnvironmentType.AWS: "botocore",
    EnvironmentType.AZURE: "azure",
    EnvironmentType.GCP: "google",
}

NOISY_LOGGERS = (
    "boto3",
    *SDK_LOGGERS.values(),
    "azure.core.pipeline.policies.http_logging_policy",
    "googleapiclient",
    "urllib3",
)


def _level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[str] = None,
    rich_tracebacks: bool = True,
    console: Optional[Console] = None,
) -> None:
    """
    Configure the root logger for a run.

    Parameters
    ----------
    level : str or int, default="INFO"
        Level of the root logger and both handlers.
    log_file : str, optional
        Also append records to this file.
    rich_tracebacks : bool, default=True
        Render exception tracebacks with Rich.
    console : Console, optional
        Console for the Rich handler; stderr by default, keeping stdout
        free for the report.

    Notes
    -----
    Existing root handlers are replaced, so calling this twice does not
    duplicate output.
    """
    level = _level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=True,
        show_path=False,
        rich_tracebacks=rich_tracebacks,
        tracebacks_show_locals=False,
        markup=False,
    )
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(
        f"Logging configured: level={logging.getLevelName(level)}, "
        f"file={log_file or 'None'}"
    )


class LogContext:
    """
    Set a logger's level for the duration of a ``with`` block.

    Parameters
    ----------
    logger : logging.Logger or str
        Logger, or the name of one.
    level : str or int
        Level inside the block. The previous level is restored on exit,
        also when the block raises.
    """

    def __init__(
        self,
        logger: Union[logging.Logger, str],
        level: Union[str, int],
    ) -> None:
        self.logger = logging.getLogger(logger) if isinstance(logger, str) else logger
        self.new_level = _level(level)
        self.original_level: Optional[int] = None

    def __enter__(self) -> logging.Logger:
        self.original_level = self.logger.level
        self.logger.setLevel(self.new_level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.original_level is not None:
            self.logger.setLevel(self.original_level)


def sdk_logging(environment: EnvironmentType, debug: bool = False) -> LogContext:
    """SDK request logging of ``environment`` at DEBUG, else WARNING."""
    return LogContext(SDK_LOGGERS[environment], "DEBUG" if debug else "WARNING")
