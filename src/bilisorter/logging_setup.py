"""Runtime logging configuration."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from bilisorter.config.models import BiliSorterConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def configure_logging(config: BiliSorterConfig, *, verbose: bool = False, console: Optional[Console] = None) -> None:
    """Install console and rotating-file handlers on the package logger.

    Args:
        config: Resolved configuration supplying levels, sizes and the state directory.
        verbose: Force DEBUG regardless of the configured level.
        console: Console the rich handler renders to; stderr when omitted.
    """
    settings = config.logging
    level = logging.DEBUG if verbose else getattr(logging, settings.level.upper(), logging.WARNING)

    logger = logging.getLogger("bilisorter")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if settings.file_name:
        directory = Path(config.state.directory).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            directory / settings.file_name,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)
        logger.setLevel(min(level, file_handler.level))


__all__ = ["configure_logging"]
