"""
Unit tests for Prometheus search metrics
"""

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from cfmm_arbitrage.metrics import SearchMetrics


@pytest.fixture
def test_registry():
    """Create a test-specific registry"""
    return CollectorRegistry()


@pytest.fixture
def metrics(test_registry):
    return SearchMetrics(test_registry)


class TestSearchMetrics:
    def test_initialization(self, metrics, test_registry):
        assert metrics.registry is test_registry
        assert hasattr(metrics, "cycles_enumerated_total")
        assert hasattr(metrics, "solve_duration_seconds")

    def test_private_registry_by_default(self):
        first = SearchMetrics()
        second = SearchMetrics()
        first.record_failure("SolverError")
        assert second.value("cfmm_arbitrage_cycle_failures_total", error_type="SolverError") == 0.0

    def test_cycle_counters(self, metrics):
        metrics.record_enumerated("WETH", 7)
        metrics.record_solved("linear", 0.02)
        metrics.record_solved("linear", 0.03)
        metrics.record_failure("InfeasibleConstraints")

        assert metrics.value(
            "cfmm_arbitrage_cycles_enumerated_total", start_token="WETH"
        ) == 7
        assert metrics.value("cfmm_arbitrage_cycles_solved_total", formulation="linear") == 2
        assert metrics.value(
            "cfmm_arbitrage_cycle_failures_total", error_type="InfeasibleConstraints"
        ) == 1
        assert metrics.value(
            "cfmm_arbitrage_solve_duration_seconds_count", formulation="linear"
        ) == 2
        assert metrics.value(
            "cfmm_arbitrage_solve_duration_seconds_sum", formulation="linear"
        ) == pytest.approx(0.05)

    def test_search_metrics(self, metrics):
        metrics.record_search("WETH", 1.5, 3.25)
        assert metrics.value("cfmm_arbitrage_best_profit", start_token="WETH") == 3.25
        assert metrics.value("cfmm_arbitrage_search_duration_seconds_count") == 1

    def test_unset_value_is_zero(self, metrics):
        assert metrics.value("cfmm_arbitrage_best_profit", start_token="DAI") == 0.0

    def test_exposition(self, metrics):
        metrics.record_enumerated("A", 1)
        output = generate_latest(metrics.registry).decode("utf-8")
        assert "cfmm_arbitrage_cycles_enumerated_total" in output

    def test_snapshot(self, metrics):
        metrics.record_failure("DegenerateCycle")
        snapshot = metrics.snapshot()
        assert snapshot["cfmm_arbitrage_cycle_failures_total{error_type=DegenerateCycle}"] == 1
