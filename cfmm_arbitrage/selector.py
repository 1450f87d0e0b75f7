"""
Path selection under a budget.

Two strategies:

* ``enumerate`` solves every cycle on its own with the start-token input
  capped at the budget, then picks the best set of at most ``max_selected``
  cycles that fits the budget and shares no pool (an exact 0/1 knapsack
  for more than one cycle).
* ``milp`` is the big-M formulation over zero-size path coefficients:
  ``x_i <= budget * z_i``, ``sum(z) <= K``, ``sum(x) <= budget``, maximize
  ``sum((coef_i - 1) * x_i)``. The objective is linear in ``x``, so the
  whole budget goes to the best coefficient; the chosen cycles are then
  re-simulated through the exact invariants for their reported profit.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from cfmm_arbitrage.assembler import ArbitrageProblem, CycleResult
from cfmm_arbitrage.exceptions import (
    InfeasibleConstraints,
    NumericalFailure,
    ValidationError,
)
from cfmm_arbitrage.solver import SolverSettings, solve_with_retry
from cfmm_arbitrage.utils import get_logger

logger = get_logger(__name__)

STRATEGIES = ("enumerate", "milp")

# Budget slack when checking that chosen inputs fit
BUDGET_TOLERANCE = 1e-9


@dataclass
class SelectionResult:
    selected: List[CycleResult] = field(default_factory=list)
    candidates: int = 0
    budget: float = 0.0
    total_input: float = 0.0
    total_profit: float = 0.0
    strategy: str = "enumerate"

    @property
    def best(self) -> Optional[CycleResult]:
        if not self.selected:
            return None
        return max(self.selected, key=lambda r: r.realized_profit)


def _result(selected, candidates, budget, strategy) -> SelectionResult:
    return SelectionResult(
        selected=list(selected),
        candidates=candidates,
        budget=float(budget),
        total_input=float(sum(r.amount_in for r in selected)),
        total_profit=float(sum(r.realized_profit for r in selected)),
        strategy=strategy,
    )


class PathSelector:
    """
    Choose which cycles to trade with a limited amount of the start token.

    Args:
        settings: Solver bounds used for the per-cycle solves
        max_selected: Maximum number of cycles to trade (K)
        strategy: ``enumerate`` or ``milp``
        exact_count: Require exactly K cycles (``milp`` strategy only)
        min_profit: Candidates must beat this profit
    """

    def __init__(
        self,
        settings: Optional[SolverSettings] = None,
        max_selected: int = 1,
        strategy: str = "enumerate",
        exact_count: bool = False,
        min_profit: float = 0.0,
    ):
        if strategy not in STRATEGIES:
            raise ValidationError(
                f"Unknown selection strategy '{strategy}'",
                details={"allowed": list(STRATEGIES)},
            )
        if max_selected < 1:
            raise ValidationError(f"max_selected must be >= 1, got {max_selected}")
        self.settings = settings or SolverSettings()
        self.max_selected = int(max_selected)
        self.strategy = strategy
        self.exact_count = exact_count
        self.min_profit = float(min_profit)

    def select(
        self, problems: Sequence[ArbitrageProblem], budget: float
    ) -> SelectionResult:
        """
        Raises:
            ValidationError: If the budget is not positive
            InfeasibleConstraints: If ``exact_count`` cannot be met
        """
        if budget <= 0:
            raise ValidationError(f"Budget must be positive, got {budget}")
        if self.strategy == "milp":
            return self._select_milp(problems, budget)

        results = []
        for problem in problems:
            capped = problem.with_budget(budget)
            solved = solve_with_retry(capped.system, self.settings)
            if not solved.ok:
                logger.debug("Skipping %s: %s", problem.cycle, solved.status.value)
                continue
            results.append(capped.interpret(solved))
        return self.choose(results, budget)

    def choose(self, results: Sequence[CycleResult], budget: float) -> SelectionResult:
        """
        Pick the best combination among already solved cycles.

        Candidates are ranked by realized profit, so a relaxed plan whose
        exact walk loses money is never chosen.
        """
        candidates = [
            r
            for r in results
            if r.realized_profit > self.min_profit
            and r.amount_in <= budget * (1 + BUDGET_TOLERANCE) + BUDGET_TOLERANCE
        ]
        if not candidates:
            return _result([], 0, budget, "enumerate")

        if self.max_selected == 1:
            best = max(candidates, key=lambda r: r.realized_profit)
            return _result([best], len(candidates), budget, "enumerate")

        return _result(
            self._knapsack(candidates, budget), len(candidates), budget, "enumerate"
        )

    def _knapsack(
        self, candidates: Sequence[CycleResult], budget: float
    ) -> List[CycleResult]:
        n = len(candidates)
        profits = np.array([r.realized_profit for r in candidates])
        inputs = np.array([r.amount_in for r in candidates])

        rows = [inputs, np.ones(n)]
        upper = [budget, self.max_selected]

        # No two chosen cycles may trade against the same pool
        pools = sorted({p for r in candidates for p in r.pool_ids})
        for pool_id in pools:
            row = np.array([1.0 if pool_id in r.pool_ids else 0.0 for r in candidates])
            if row.sum() > 1:
                rows.append(row)
                upper.append(1.0)

        res = milp(
            c=-profits,
            constraints=LinearConstraint(np.vstack(rows), -np.inf, np.array(upper)),
            integrality=np.ones(n),
            bounds=Bounds(0, 1),
            options={"time_limit": self.settings.time_limit_sec},
        )
        if res.x is None:
            raise NumericalFailure(
                f"Knapsack selection failed: {res.message}", status=str(res.status)
            )
        chosen = [candidates[i] for i in range(n) if res.x[i] > 0.5]
        return sorted(chosen, key=lambda r: r.realized_profit, reverse=True)

    def _select_milp(
        self, problems: Sequence[ArbitrageProblem], budget: float
    ) -> SelectionResult:
        n = len(problems)
        if n == 0:
            return _result([], 0, budget, "milp")

        coefficients = np.array([p.path_coefficient() for p in problems])
        k = self.max_selected
        if self.exact_count and k > n:
            raise InfeasibleConstraints(
                f"Cannot select exactly {k} of {n} cycles", status="infeasible"
            )

        # Variables: x_0..x_{n-1} (amounts), z_0..z_{n-1} (selection flags)
        c = np.concatenate([-(coefficients - 1.0), np.zeros(n)])
        linking = np.hstack([np.eye(n), -budget * np.eye(n)])
        count = np.concatenate([np.zeros(n), np.ones(n)]).reshape(1, -1)
        spend = np.concatenate([np.ones(n), np.zeros(n)]).reshape(1, -1)
        constraints = [
            LinearConstraint(linking, -np.inf, 0.0),
            LinearConstraint(count, k if self.exact_count else 0, k),
            LinearConstraint(spend, 0, budget),
        ]
        res = milp(
            c=c,
            constraints=constraints,
            integrality=np.concatenate([np.zeros(n), np.ones(n)]),
            bounds=Bounds(
                np.zeros(2 * n), np.concatenate([np.full(n, budget), np.ones(n)])
            ),
            options={"time_limit": self.settings.time_limit_sec},
        )
        if res.status == 2:
            raise InfeasibleConstraints(
                f"Big-M selection infeasible: {res.message}", status="infeasible"
            )
        if res.x is None:
            raise NumericalFailure(
                f"Big-M selection failed: {res.message}", status=str(res.status)
            )

        selected = []
        for i in range(n):
            if res.x[n + i] > 0.5:
                amount = max(float(res.x[i]), 0.0)
                predicted = (coefficients[i] - 1.0) * amount
                selected.append(problems[i].simulate(amount, objective=predicted))
                logger.debug(
                    "Selected %s with %.6g (coefficient %.6f)",
                    problems[i].cycle,
                    amount,
                    coefficients[i],
                )
        selected.sort(key=lambda r: r.profit, reverse=True)
        return _result(selected, n, budget, "milp")
