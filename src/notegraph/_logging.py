"""Logging configuration for notegraph.

This module provides consistent logging across the codebase.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

    log.debug("Detailed info for debugging")
    log.info("General operational info")
    log.warning("Unexpected but handled situation")

The log level can be configured via the NOTEGRAPH_LOG_LEVEL environment variable:
    - DEBUG: Detailed debugging information (e.g. regex fallbacks)
    - INFO: General operational messages (default)
    - WARNING: Degraded auxiliary signals (semantic search, statistics)
    - ERROR: Errors that prevented an operation
"""

import logging
import os
import sys


def configure_logging() -> None:
    """Configure logging for the notegraph package.

    Call this once at application startup (cli.py or server.py).
    Subsequent calls are no-ops.
    """
    root_logger = logging.getLogger("notegraph")

    # Skip if already configured (has handlers)
    if root_logger.handlers:
        return

    level_name = os.environ.get("NOTEGRAPH_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="[%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    root_logger.propagate = False
