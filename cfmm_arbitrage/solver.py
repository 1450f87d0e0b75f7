"""
Solver adapters.

``LinearProgramSolver`` wraps ``scipy.optimize.linprog`` (HiGHS) for systems
without cones; ``ConicSolver`` hands systems with geometric-mean cones to
cvxpy. Both return a ``SolveResult`` with a status from one shared enum and
never raise on solver outcomes; ``SolveResult.raise_for_status`` turns a
non-optimal outcome into the matching ``SolverError``.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

import cvxpy as cp
import numpy as np
from scipy.optimize import linprog

from cfmm_arbitrage.constraints import ConeType, ConstraintSystem
from cfmm_arbitrage.exceptions import (
    InfeasibleConstraints,
    NumericalFailure,
    NumericalNonConvergence,
    UnboundedProblem,
    ValidationError,
)
from cfmm_arbitrage.utils import format_duration, get_logger

logger = get_logger(__name__)


class SolveStatus(Enum):
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    NUMERICAL_FAILURE = "numerical_failure"
    ITERATION_LIMIT = "iteration_limit"


# scipy.optimize.linprog status codes
LINPROG_STATUS = {
    0: SolveStatus.OPTIMAL,
    1: SolveStatus.ITERATION_LIMIT,
    2: SolveStatus.INFEASIBLE,
    3: SolveStatus.UNBOUNDED,
    4: SolveStatus.NUMERICAL_FAILURE,
}

CVXPY_STATUS = {
    cp.OPTIMAL: SolveStatus.OPTIMAL,
    cp.OPTIMAL_INACCURATE: SolveStatus.OPTIMAL,
    cp.INFEASIBLE: SolveStatus.INFEASIBLE,
    cp.INFEASIBLE_INACCURATE: SolveStatus.INFEASIBLE,
    cp.UNBOUNDED: SolveStatus.UNBOUNDED,
    cp.UNBOUNDED_INACCURATE: SolveStatus.UNBOUNDED,
    cp.USER_LIMIT: SolveStatus.ITERATION_LIMIT,
}


@dataclass(frozen=True)
class SolverSettings:
    """Iteration, tolerance and wall-clock bounds for every solve."""

    max_iterations: int = 10000
    tolerance: float = 1e-7
    time_limit_sec: float = 10.0
    conic_solver: str = "CLARABEL"
    retry_relaxed: bool = True
    relax_factor: float = 100.0

    @classmethod
    def from_config(cls, config) -> "SolverSettings":
        """Build settings from a ``SolverConfig``."""
        return cls(
            max_iterations=config.max_iterations,
            tolerance=config.tolerance,
            time_limit_sec=config.time_limit_sec,
            conic_solver=config.conic_solver,
            retry_relaxed=config.retry_relaxed,
            relax_factor=config.relax_factor,
        )

    def relaxed(self) -> "SolverSettings":
        return replace(self, tolerance=self.tolerance * self.relax_factor)


@dataclass
class SolveResult:
    """Outcome of one solve; ``x`` is None when no point is available."""

    status: SolveStatus
    x: Optional[np.ndarray] = None
    duals: Dict[str, np.ndarray] = field(default_factory=dict)
    objective: Optional[float] = None
    iterations: Optional[int] = None
    elapsed: float = 0.0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is SolveStatus.OPTIMAL and self.x is not None

    def raise_for_status(self) -> "SolveResult":
        """
        Raise the ``SolverError`` matching a non-optimal status.

        Returns:
            self, when the solve succeeded
        """
        if self.ok:
            return self
        details = {"iterations": self.iterations, "elapsed": self.elapsed}
        message = f"Solver returned {self.status.value}: {self.message}"
        if self.status is SolveStatus.INFEASIBLE:
            raise InfeasibleConstraints(message, self.status.value, details)
        if self.status is SolveStatus.UNBOUNDED:
            raise UnboundedProblem(message, self.status.value, details)
        if self.status is SolveStatus.ITERATION_LIMIT:
            raise NumericalNonConvergence(
                message, self.status.value, iterations=self.iterations, details=details
            )
        raise NumericalFailure(message, self.status.value, details)


class LinearProgramSolver:
    """HiGHS through ``scipy.optimize.linprog``."""

    def __init__(self, settings: Optional[SolverSettings] = None):
        self.settings = settings or SolverSettings()

    def _options(self) -> Dict[str, Any]:
        return {
            "maxiter": int(self.settings.max_iterations),
            "time_limit": float(self.settings.time_limit_sec),
            "primal_feasibility_tolerance": float(self.settings.tolerance),
            "dual_feasibility_tolerance": float(self.settings.tolerance),
        }

    def solve(self, system: ConstraintSystem) -> SolveResult:
        if system.cone_type is not ConeType.NONNEGATIVE_ORTHANT:
            raise ValidationError(
                "Linear solver cannot handle cone constraints",
                details={"cone_type": system.cone_type.value},
            )

        has_ineq = system.G.shape[0] > 0
        has_eq = system.A.shape[0] > 0
        start = time.perf_counter()
        # linprog minimizes; bounds are free because G carries the sign rows
        res = linprog(
            -system.c,
            A_ub=system.G if has_ineq else None,
            b_ub=system.h if has_ineq else None,
            A_eq=system.A if has_eq else None,
            b_eq=system.b if has_eq else None,
            bounds=(None, None),
            method="highs",
            options=self._options(),
        )
        elapsed = time.perf_counter() - start

        status = LINPROG_STATUS.get(res.status, SolveStatus.NUMERICAL_FAILURE)
        duals = {}
        if status is SolveStatus.OPTIMAL:
            if has_ineq and getattr(res, "ineqlin", None) is not None:
                duals["inequality"] = np.asarray(res.ineqlin.marginals)
            if has_eq and getattr(res, "eqlin", None) is not None:
                duals["equality"] = np.asarray(res.eqlin.marginals)

        x = np.asarray(res.x) if res.x is not None else None
        result = SolveResult(
            status=status,
            x=x,
            duals=duals,
            objective=-float(res.fun) if res.fun is not None and x is not None else None,
            iterations=int(getattr(res, "nit", 0) or 0),
            elapsed=elapsed,
            message=str(res.message),
        )
        logger.debug(
            "linprog %s in %s (%s iterations)",
            status.value,
            format_duration(elapsed),
            result.iterations,
        )
        return result


class ConicSolver:
    """cvxpy with a conic backend (CLARABEL by default)."""

    def __init__(self, settings: Optional[SolverSettings] = None):
        self.settings = settings or SolverSettings()

    def _solver_options(self, tolerance: float) -> Dict[str, Any]:
        name = self.settings.conic_solver.upper()
        max_iter = int(self.settings.max_iterations)
        time_limit = float(self.settings.time_limit_sec)
        if name == "CLARABEL":
            return {
                "max_iter": max_iter,
                "time_limit": time_limit,
                "tol_feas": tolerance,
                "tol_gap_abs": tolerance,
                "tol_gap_rel": tolerance,
            }
        if name == "ECOS":
            return {
                "max_iters": max_iter,
                "abstol": tolerance,
                "reltol": tolerance,
                "feastol": tolerance,
            }
        if name == "SCS":
            return {
                "max_iters": max_iter,
                "eps_abs": tolerance,
                "eps_rel": tolerance,
                "time_limit_secs": time_limit,
            }
        return {}

    def build_problem(self, system: ConstraintSystem):
        """Translate a constraint system into a cvxpy problem."""
        x = cp.Variable(system.n_vars, name="x")
        constraints = []
        if system.G.shape[0] > 0:
            constraints.append(system.G @ x <= system.h)
        if system.A.shape[0] > 0:
            constraints.append(system.A @ x == system.b)
        for cone in system.cones:
            F, g = cone.matrix(system.n_vars)
            constraints.append(cp.geo_mean(F @ x + g, p=list(cone.weights)) >= cone.floor)
        problem = cp.Problem(cp.Maximize(system.c @ x), constraints)
        return problem, x, constraints

    def solve(self, system: ConstraintSystem) -> SolveResult:
        problem, x, constraints = self.build_problem(system)
        name = self.settings.conic_solver.upper()
        start = time.perf_counter()
        try:
            problem.solve(
                solver=name, **self._solver_options(float(self.settings.tolerance))
            )
        except cp.SolverError as e:
            elapsed = time.perf_counter() - start
            logger.debug("%s failed after %s: %s", name, format_duration(elapsed), e)
            return SolveResult(
                status=SolveStatus.NUMERICAL_FAILURE, elapsed=elapsed, message=str(e)
            )
        elapsed = time.perf_counter() - start

        status = CVXPY_STATUS.get(problem.status, SolveStatus.NUMERICAL_FAILURE)
        values = x.value if status is SolveStatus.OPTIMAL else None
        duals = {}
        if values is not None:
            for index, constraint in enumerate(constraints):
                if constraint.dual_value is not None:
                    duals[f"constraint_{index}"] = np.atleast_1d(
                        np.asarray(constraint.dual_value, dtype=float)
                    )

        stats = problem.solver_stats
        iterations = getattr(stats, "num_iters", None) if stats is not None else None
        result = SolveResult(
            status=status,
            x=np.asarray(values, dtype=float) if values is not None else None,
            duals=duals,
            objective=float(problem.value) if values is not None else None,
            iterations=iterations,
            elapsed=elapsed,
            message=str(problem.status),
        )
        logger.debug(
            "%s %s in %s (%s iterations)",
            name,
            status.value,
            format_duration(elapsed),
            iterations,
        )
        return result


def solver_for(system: ConstraintSystem, settings: Optional[SolverSettings] = None):
    """Pick the adapter able to handle the system's cone type."""
    if system.cone_type is ConeType.NONNEGATIVE_ORTHANT:
        return LinearProgramSolver(settings)
    return ConicSolver(settings)


def solve(
    system: ConstraintSystem, settings: Optional[SolverSettings] = None
) -> SolveResult:
    return solver_for(system, settings).solve(system)


def solve_with_retry(
    system: ConstraintSystem, settings: Optional[SolverSettings] = None
) -> SolveResult:
    """
    Solve, retrying once with relaxed tolerance when the iteration cap is hit.

    Args:
        system: Constraint system to solve
        settings: Solver bounds; ``retry_relaxed`` and ``relax_factor``
            control the retry

    Returns:
        Result of the last attempt
    """
    settings = settings or SolverSettings()
    result = solve(system, settings)
    if result.status is SolveStatus.ITERATION_LIMIT and settings.retry_relaxed:
        relaxed = settings.relaxed()
        logger.warning(
            "Iteration limit after %s iterations, retrying with tolerance %.1e",
            result.iterations,
            relaxed.tolerance,
        )
        retry = solve(system, relaxed)
        retry.elapsed += result.elapsed
        return retry
    return result
