from __future__ import annotations

# Logging setup for the CLI entrypoints.
#
# Library modules only do `from loguru import logger`; sinks are installed
# here, once, by whichever process hosts them.

import sys

from loguru import logger

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | {level} | {name} | {message}"


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), enqueue=True, format=LOG_FORMAT)
