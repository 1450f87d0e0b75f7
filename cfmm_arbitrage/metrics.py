"""
Prometheus metrics for cycle searches.

Metrics live on a private ``CollectorRegistry`` unless one is passed in, so
several searches (and tests) can run in one process without name clashes.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class SearchMetrics:
    """
    Search statistics:
    - cycles enumerated and solved
    - per-cycle failures by error type
    - solve duration
    - best profit of the last search
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.RLock()
        self._initialize_metrics()

    def _initialize_metrics(self):
        self.cycles_enumerated_total = Counter(
            "cfmm_arbitrage_cycles_enumerated_total",
            "Total number of cycles enumerated",
            ["start_token"],
            registry=self.registry,
        )

        self.cycles_solved_total = Counter(
            "cfmm_arbitrage_cycles_solved_total",
            "Total number of cycles solved to optimality",
            ["formulation"],
            registry=self.registry,
        )

        self.cycle_failures_total = Counter(
            "cfmm_arbitrage_cycle_failures_total",
            "Per-cycle failures by error type",
            ["error_type"],
            registry=self.registry,
        )

        self.solve_duration_seconds = Histogram(
            "cfmm_arbitrage_solve_duration_seconds",
            "Assemble and solve time per cycle",
            ["formulation"],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
            registry=self.registry,
        )

        self.search_duration_seconds = Histogram(
            "cfmm_arbitrage_search_duration_seconds",
            "Wall-clock time of a full search",
            buckets=[0.01, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
            registry=self.registry,
        )

        self.best_profit = Gauge(
            "cfmm_arbitrage_best_profit",
            "Best cycle profit of the last search, in start-token units",
            ["start_token"],
            registry=self.registry,
        )

    def record_enumerated(self, start_token: str, count: int):
        with self._lock:
            self.cycles_enumerated_total.labels(start_token=start_token).inc(count)

    def record_solved(self, formulation: str, duration: float):
        with self._lock:
            self.cycles_solved_total.labels(formulation=formulation).inc()
            self.solve_duration_seconds.labels(formulation=formulation).observe(
                duration
            )

    def record_failure(self, error_type: str):
        with self._lock:
            self.cycle_failures_total.labels(error_type=error_type).inc()

    def record_search(self, start_token: str, duration: float, best_profit: float):
        with self._lock:
            self.search_duration_seconds.observe(duration)
            self.best_profit.labels(start_token=start_token).set(best_profit)

    def snapshot(self) -> Dict[str, Any]:
        """Plain values of every sample, keyed by sample name and labels."""
        values: Dict[str, Any] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.labels:
                    labels = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                    key = f"{sample.name}{{{labels}}}"
                else:
                    key = sample.name
                values[key] = sample.value
        return values

    def value(self, name: str, **labels) -> float:
        """Current value of one sample; 0.0 when it was never set."""
        result = self.registry.get_sample_value(name, labels or None)
        return result if result is not None else 0.0
