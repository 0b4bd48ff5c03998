"""Logging setup shared by the API server and the CLI."""

import logging
import sys
from typing import Optional

from config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    Args:
        level: Log level name; defaults to LOG_LEVEL from config.
    """
    root_logger = logging.getLogger()
    resolved = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
    root_logger.setLevel(resolved)
    logging.getLogger("httpx").setLevel(logging.WARNING)
