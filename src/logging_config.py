"""Logging configuration for the collector."""

import logging
import os
import sys


def configure_logging(debug: bool = False) -> None:
    """Configure application-wide logging.

    Respects the COLLECTOR_LOG_LEVEL environment variable (default: INFO).
    Logs to stderr with timestamp, level, module name, and message.

    Args:
        debug: Force DEBUG level regardless of COLLECTOR_LOG_LEVEL
            (set from KUSTO_DEBUG=true).

    Examples:
        # Default INFO level
        $ ping-collector 8.8.8.8

        # Quiet mode
        $ COLLECTOR_LOG_LEVEL=WARNING ping-collector 8.8.8.8
    """
    log_level_str = os.environ.get("COLLECTOR_LOG_LEVEL", "INFO").upper()

    log_level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    log_level = logging.DEBUG if debug else log_level_map.get(log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured: level=%s", logging.getLevelName(log_level))
