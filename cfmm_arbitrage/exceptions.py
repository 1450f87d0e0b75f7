"""
Exception hierarchy for the CFMM arbitrage system.

Provides specific exception types for different error categories so that
per-cycle failures can be isolated and reported while structural errors
stop a run.
"""

from typing import Any, Dict, Optional, Sequence


class CfmmArbitrageError(Exception):
    """Base exception for all CFMM arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(CfmmArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(CfmmArbitrageError):
    """Raised when validation of data or configuration fails."""

    pass


class InvalidPoolInvariant(ValidationError):
    """Raised when a pool record violates its invariant (e.g. zero reserve)."""

    def __init__(
        self,
        message: str,
        pool_id: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool_id = pool_id
        self.field = field


class GraphLookupMiss(CfmmArbitrageError):
    """Raised when a token or pool is not present in the graph or registry."""

    def __init__(
        self,
        message: str,
        token: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.token = token


class DegenerateCycle(CfmmArbitrageError):
    """Raised when a cycle uses the same pool more than once."""

    def __init__(
        self,
        message: str,
        cycle: Optional[Sequence[str]] = None,
        pool_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.cycle = list(cycle) if cycle is not None else None
        self.pool_id = pool_id


class SolverError(CfmmArbitrageError):
    """Raised when the numerical solver does not return an optimal point."""

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status = status


class InfeasibleConstraints(SolverError):
    """The constraint system has no feasible point."""

    pass


class UnboundedProblem(SolverError):
    """The objective is unbounded over the constraint system."""

    pass


class NumericalFailure(SolverError):
    """The solver failed for numerical reasons."""

    pass


class NumericalNonConvergence(SolverError):
    """The solver hit its iteration or time cap before converging."""

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        iterations: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status, details)
        self.iterations = iterations
