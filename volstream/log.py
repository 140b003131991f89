"""Logging setup for the CLI and long-running pipelines."""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from . import config


def setup_logging(level: str = None, log_file: Optional[Union[str, Path]] = None) -> None:
    """
    Replace loguru's default sink with the project format.

    Library code only ever calls ``logger.*``; sinks are configured once by
    the entry point. ``log_file`` adds a size-rotated DEBUG sink.
    """
    if level is None:
        level = config.LOG_LEVEL

    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=config.LOG_FORMAT)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            rotation="10 MB",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function} - {message}",
        )
