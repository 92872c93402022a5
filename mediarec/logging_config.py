from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mediarec.config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = logging.INFO, force: bool = False) -> None:
    """Configure root logging the same way for every entry point."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout, force=force)


def configure_logging_from_config(config: Config, force: bool = False) -> None:
    """Apply the level stored in *config* (``MEDIAREC_LOG_LEVEL`` by default)."""
    configure_logging(config.log_level, force=force)
