"""Loguru sink setup."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from relaybot.core.config.schema import Config

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(config: Config) -> None:
    """Replace the default loguru sink with the configured ones."""
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level, format=_FORMAT)
    if config.logging.file:
        logger.add(
            config.logging.file,
            level=config.logging.level,
            rotation=config.logging.rotation,
            retention=f"{config.memory.log_retention_days} days",
            encoding="utf-8",
        )
    logger.debug(f"Logging configured (level={config.logging.level})")
