"""
Search orchestration.

Enumerates cycles on the calling thread, fans the per-cycle assemble and
solve work out to a worker pool, isolates per-cycle failures and finally
runs path selection over the successful results.
"""

import time
from collections import Counter
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from cfmm_arbitrage.assembler import CycleResult, assemble
from cfmm_arbitrage.config_loader import build_registry
from cfmm_arbitrage.config_schema import ArbitrageConfig
from cfmm_arbitrage.constraints import Formulation
from cfmm_arbitrage.exceptions import (
    ConfigurationError,
    DegenerateCycle,
    GraphLookupMiss,
    SolverError,
    ValidationError,
)
from cfmm_arbitrage.graph import Cycle, TokenGraph
from cfmm_arbitrage.metrics import SearchMetrics
from cfmm_arbitrage.pools import Pool
from cfmm_arbitrage.registry import PoolRegistry
from cfmm_arbitrage.selector import PathSelector, SelectionResult
from cfmm_arbitrage.solver import SolverSettings, solve_with_retry
from cfmm_arbitrage.utils import (
    format_duration,
    format_profit,
    get_logger,
    normalize_token,
)

logger = get_logger(__name__)

# Errors confined to a single cycle; anything else is a bug and propagates
CYCLE_ERRORS = (DegenerateCycle, SolverError, ValidationError, GraphLookupMiss)


@dataclass(frozen=True)
class CycleFailure:
    cycle: Cycle
    error_type: str
    message: str


@dataclass(frozen=True)
class CycleTask:
    """Immutable inputs of one worker call."""

    cycle: Cycle
    pools: Tuple[Pool, ...]
    formulation: Formulation
    settings: SolverSettings
    budget: Optional[float] = None
    prices: Optional[Tuple[Tuple[str, float], ...]] = None
    max_trade_fraction: Optional[float] = None


@dataclass
class SearchReport:
    start: str
    cycles_considered: int = 0
    results: List[CycleResult] = field(default_factory=list)
    profitable: List[CycleResult] = field(default_factory=list)
    failures: List[CycleFailure] = field(default_factory=list)
    failure_counts: Dict[str, int] = field(default_factory=dict)
    selection: Optional[SelectionResult] = None
    elapsed: float = 0.0

    @property
    def best(self) -> Optional[CycleResult]:
        return self.results[0] if self.results else None

    def summary(self) -> Dict[str, object]:
        best = self.best
        return {
            "start": self.start,
            "cycles_considered": self.cycles_considered,
            "solved": len(self.results),
            "profitable": len(self.profitable),
            "failures": dict(self.failure_counts),
            "best_cycle": str(best.cycle) if best else None,
            "best_profit": best.realized_profit if best else 0.0,
            "selected": [str(r.cycle) for r in self.selection.selected]
            if self.selection
            else [],
            "elapsed": self.elapsed,
        }


def solve_cycle(task: CycleTask) -> Union[CycleResult, CycleFailure]:
    """
    Assemble and solve one cycle.

    Module level so process pools can pickle it.
    """
    try:
        problem = assemble(
            task.cycle,
            task.pools,
            task.formulation,
            prices=dict(task.prices) if task.prices else None,
            max_trade_fraction=task.max_trade_fraction,
        )
        if task.budget is not None:
            problem = problem.with_budget(task.budget)
        result = solve_with_retry(problem.system, task.settings)
        return problem.interpret(result)
    except CYCLE_ERRORS as e:
        return CycleFailure(task.cycle, type(e).__name__, str(e))


class ArbitrageSearch:
    """
    Runs one search over a pool registry.

    Args:
        registry: Pools to search
        config: Validated configuration
        metrics: Optional metrics sink
    """

    def __init__(
        self,
        registry: PoolRegistry,
        config: ArbitrageConfig,
        metrics: Optional[SearchMetrics] = None,
    ):
        self.registry = registry
        self.config = config
        self.metrics = metrics or SearchMetrics()
        self.settings = SolverSettings.from_config(config.solver)

    def _formulation(self) -> Formulation:
        try:
            return Formulation(self.config.search.formulation)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown formulation '{self.config.search.formulation}'"
            ) from e

    def _executor(self):
        search = self.config.search
        if search.use_processes:
            return ProcessPoolExecutor(max_workers=search.max_workers)
        return ThreadPoolExecutor(
            max_workers=search.max_workers, thread_name_prefix="cycle-solver"
        )

    def _tasks(
        self, cycles: Sequence[Cycle], formulation: Formulation
    ) -> List[CycleTask]:
        search = self.config.search
        pools: Mapping[str, Pool] = self.registry.as_mapping()
        prices = tuple(sorted(search.prices.items())) if search.prices else None
        return [
            CycleTask(
                cycle=cycle,
                pools=tuple(pools[p] for p in cycle.pool_ids),
                formulation=formulation,
                settings=self.settings,
                budget=search.budget,
                prices=prices,
                max_trade_fraction=search.max_trade_fraction,
            )
            for cycle in cycles
        ]

    def _select(
        self, results: List[CycleResult], tasks: List[CycleTask]
    ) -> Optional[SelectionResult]:
        search = self.config.search
        selector = PathSelector(
            self.settings,
            max_selected=search.max_selected,
            strategy=search.selection,
            exact_count=search.exact_count,
            min_profit=search.min_profit,
        )
        try:
            if search.selection == "milp":
                solved = {r.cycle for r in results}
                problems = [
                    assemble(t.cycle, t.pools, t.formulation)
                    for t in tasks
                    if t.cycle in solved
                ]
                return selector.select(problems, search.budget)
            return selector.choose(results, search.budget)
        except SolverError as e:
            logger.warning("Path selection failed: %s", e)
            return None

    def run(self, start: Optional[str] = None) -> SearchReport:
        """
        Search all cycles through ``start`` (default: the configured token).

        Raises:
            ConfigurationError: If the registry is empty, the formulation
                is unknown or the start token is malformed
        """
        if len(self.registry) == 0:
            raise ConfigurationError("Pool registry is empty")
        formulation = self._formulation()
        search = self.config.search
        try:
            start = normalize_token(start or search.start_token)
        except ValueError as e:
            raise ConfigurationError(f"Invalid start token: {e}") from e
        started = time.perf_counter()

        graph = TokenGraph.from_registry(self.registry)
        if not graph.has_token(start):
            logger.warning("Start token %s is not traded by any pool", start)
        cycles = graph.enumerate_cycles(
            start, max_length=search.max_cycle_length, max_cycles=search.max_cycles
        )
        self.metrics.record_enumerated(start, len(cycles))
        logger.info("Enumerated %d cycles from %s", len(cycles), start)

        tasks = self._tasks(cycles, formulation)
        results: List[CycleResult] = []
        failures: List[CycleFailure] = []
        if tasks:
            with self._executor() as executor:
                for outcome in executor.map(solve_cycle, tasks):
                    if isinstance(outcome, CycleFailure):
                        failures.append(outcome)
                        self.metrics.record_failure(outcome.error_type)
                        logger.debug(
                            "Cycle %s failed: %s", outcome.cycle, outcome.message
                        )
                    else:
                        results.append(outcome)
                        self.metrics.record_solved(
                            formulation.value, outcome.solve_time
                        )

        results.sort(key=lambda r: r.realized_profit, reverse=True)
        profitable = [r for r in results if r.realized_profit > search.min_profit]
        selection = self._select(results, tasks)

        elapsed = time.perf_counter() - started
        failure_counts = dict(Counter(f.error_type for f in failures))
        best_profit = results[0].realized_profit if results else 0.0
        self.metrics.record_search(start, elapsed, best_profit)

        logger.info(
            "Search from %s: %d cycles, %d solved, %d profitable, %d failed in %s",
            start,
            len(cycles),
            len(results),
            len(profitable),
            len(failures),
            format_duration(elapsed),
        )
        if profitable:
            best = profitable[0]
            pct = best.realized_profit / best.amount_in if best.amount_in else 0.0
            logger.info(
                "Best cycle %s: profit %.6g (%s)",
                best.cycle,
                best.realized_profit,
                format_profit(pct),
            )

        return SearchReport(
            start=start,
            cycles_considered=len(cycles),
            results=results,
            profitable=profitable,
            failures=failures,
            failure_counts=failure_counts,
            selection=selection,
            elapsed=elapsed,
        )


def run_search(
    config: ArbitrageConfig,
    registry: Optional[PoolRegistry] = None,
    start: Optional[str] = None,
) -> SearchReport:
    """Build the registry from ``config`` when not given and run one search."""
    if registry is None:
        registry = build_registry(config)
    return ArbitrageSearch(registry, config).run(start)
