"""
Common utilities and helper functions for the CFMM arbitrage system.

This module provides centralized helpers for logging, unit conversions,
token normalization and number formatting.
"""

import logging
import re
from typing import Any, Dict, Optional, Union

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Token utilities
def normalize_token(token: Any) -> str:
    """
    Return the canonical representation of a token identifier.

    20-byte hex addresses are lower-cased so the same address written with or
    without checksum casing maps to one graph node. Any other label (e.g. a
    ticker symbol) is only stripped of surrounding whitespace.

    Raises:
        ValueError: If the token is empty or not a string/bytes value
    """
    if isinstance(token, (bytes, bytearray)):
        if len(token) != 20:
            raise ValueError(f"Token bytes must be 20 long, got {len(token)}")
        return "0x" + bytes(token).hex()
    if not isinstance(token, str):
        raise ValueError(f"Token must be a string, got {type(token).__name__}")

    value = token.strip()
    if not value:
        raise ValueError("Token identifier cannot be empty")
    if _ADDRESS_RE.match(value):
        return value.lower()
    return value


def short_token(token: str, width: int = 10) -> str:
    """Shorten long hex addresses for log and table output."""
    if _ADDRESS_RE.match(token) and len(token) > width:
        return f"{token[:6]}..{token[-4:]}"
    return token


# Math utilities
def basis_points_to_decimal(bps: float) -> float:
    """Convert basis points to decimal (100 bps = 0.01)."""
    return bps / 10000.0


# Logging utilities
def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    extra: Optional[Dict[str, Any]] = None,
    minimal: bool = False,
) -> logging.Logger:
    """
    Get a structured logger with consistent formatting and extra context.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        extra: Additional context fields to include in all log messages
        minimal: If True, use simplified format (time + message only)

    Returns:
        Configured logger with structured output
    """
    logger = logging.getLogger(name)

    # Set level if not already set
    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    # Add structured formatter if no handlers exist
    if not logger.handlers:
        handler = logging.StreamHandler()

        if minimal:
            format_str = "%(asctime)s | %(message)s"
        else:
            format_str = (
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | " "%(message)s"
            )

        if extra:
            extra_fields = " | ".join([f"{k}=%(extra_{k})s" for k in extra.keys()])
            format_str = format_str.replace(
                " | %(message)s", f" | {extra_fields} | %(message)s"
            )

        formatter = logging.Formatter(format_str, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if extra:
            logger = logging.LoggerAdapter(
                logger, {"extra_" + k: v for k, v in extra.items()}
            )

    return logger


def format_profit(decimal_profit):
    """Format a decimal profit value as a percentage string.

    Converts a decimal profit value (e.g., 0.0123) to a formatted
    percentage string with a sign prefix (e.g., "+1.23%").

    Args:
        decimal_profit (float): The profit as a decimal value.
                               Positive values indicate profit,
                               negative values indicate loss.

    Returns:
        str: Formatted percentage string with sign prefix.

    Examples:
        >>> format_profit(0.0123)
        '+1.23%'
        >>> format_profit(-0.0456)
        '-4.56%'
        >>> format_profit(0.0)
        '+0.00%'
    """
    percentage = decimal_profit * 100

    if percentage >= 0:
        return f"+{percentage:.2f}%"
    else:
        return f"{percentage:.2f}%"
