"""
Logging configuration for cleaner CLI output.

Usage:
    from cfmm_arbitrage import logging_config
    logging_config.setup()
"""

import logging
import sys


def setup(level=logging.INFO):
    """
    Configure the root logger for command line runs.

    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    - Quiets solver backends unless debugging
    """

    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)

    # Minimal format: time + level + message
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    # Suppress noisy loggers
    logging.getLogger("cvxpy").setLevel(max(level, logging.WARNING))
    logging.getLogger("__cvxpy__").setLevel(max(level, logging.WARNING))

    # Module loggers carry their own handler; route everything through the root
    package = logging.getLogger("cfmm_arbitrage")
    package.setLevel(level)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith("cfmm_arbitrage") and isinstance(logger, logging.Logger):
            logger.handlers.clear()
            logger.setLevel(level)


def setup_minimal():
    """
    Only warnings and errors.
    """
    setup(level=logging.WARNING)


def setup_debug():
    """
    Verbose logging, solver backends included.
    """
    setup(level=logging.DEBUG)
    logging.getLogger("cvxpy").setLevel(logging.INFO)
