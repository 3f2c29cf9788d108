"""
Logging configuration for the GSC MCP server.

Transport, router and GSC client modules import ``logger`` from here.
Formatting helpers and tool renderers should not log.
"""

import logging
import sys

logger = logging.getLogger("gsc_mcp")


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the package logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Only add handler if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)


# NOTE: configure_logging() is called from server_http.main(); importing this
# module has no side effects.
