"""
Unit tests for cfmm_arbitrage.utils module.
"""

import logging

import pytest

from cfmm_arbitrage.utils import (
    basis_points_to_decimal,
    format_duration,
    format_profit,
    get_logger,
    normalize_token,
    short_token,
)

ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"


class TestTokenUtils:
    def test_address_is_lower_cased(self):
        assert normalize_token(ADDRESS) == ADDRESS.lower()

    def test_symbol_is_stripped_only(self):
        assert normalize_token("  WETH ") == "WETH"

    def test_bytes_address(self):
        assert normalize_token(bytes(range(20))) == "0x" + bytes(range(20)).hex()

    @pytest.mark.parametrize("bad", ["", "   ", None, 42, b"short"])
    def test_invalid_tokens(self, bad):
        with pytest.raises(ValueError):
            normalize_token(bad)

    def test_short_token(self):
        assert short_token(ADDRESS) == "0xC02a..6Cc2"
        assert short_token("WETH") == "WETH"


class TestNumberUtils:
    def test_basis_points(self):
        assert basis_points_to_decimal(30) == pytest.approx(0.003)

    def test_format_duration(self):
        assert format_duration(0.5) == "500.0ms"
        assert format_duration(2) == "2.00s"
        assert format_duration(120) == "2.0m"
        assert format_duration(7200) == "2.0h"

    def test_format_profit(self):
        assert format_profit(0.0123) == "+1.23%"
        assert format_profit(-0.0456) == "-4.56%"
        assert format_profit(0.0) == "+0.00%"


class TestLogging:
    def test_get_logger_adds_one_handler(self):
        logger = get_logger("cfmm_arbitrage.tests.utils")
        again = get_logger("cfmm_arbitrage.tests.utils")
        assert logger is again
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO

    def test_get_logger_with_extra(self):
        logger = get_logger("cfmm_arbitrage.tests.extra", extra={"cycle": "A"})
        assert isinstance(logger, logging.LoggerAdapter)
