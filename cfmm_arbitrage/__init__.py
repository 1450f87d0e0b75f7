"""
CFMM Cycle Arbitrage.

Searches a network of AMM liquidity pools (constant product, weighted
geometric mean and constant sum) for closed trade cycles that return more of
the starting token than they consume, sizes every trade with a linear or
conic program, and selects the best cycles under a budget.
"""

from cfmm_arbitrage.version import __version__

PROJECT_NAME = "CFMM-Cycle-Arbitrage"
VERSION = __version__

# Export main components for easier imports
from cfmm_arbitrage.pools import (
    ConstantProduct,
    ConstantSum,
    Pool,
    Token,
    WeightedGeometricMean,
)
from cfmm_arbitrage.registry import PoolRegistry
from cfmm_arbitrage.graph import Cycle, TokenGraph
from cfmm_arbitrage.constraints import (
    ConeType,
    ConstraintSystem,
    Formulation,
    build_constraints,
)
from cfmm_arbitrage.assembler import (
    ArbitrageProblem,
    ArbitrageProblemAssembler,
    CycleResult,
    HopTrade,
)
from cfmm_arbitrage.solver import SolverSettings, SolveResult, SolveStatus
from cfmm_arbitrage.selector import PathSelector, SelectionResult
from cfmm_arbitrage.search import ArbitrageSearch, SearchReport

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "ConstantProduct",
    "ConstantSum",
    "Pool",
    "Token",
    "WeightedGeometricMean",
    "PoolRegistry",
    "Cycle",
    "TokenGraph",
    "ConeType",
    "ConstraintSystem",
    "Formulation",
    "build_constraints",
    "ArbitrageProblem",
    "ArbitrageProblemAssembler",
    "CycleResult",
    "HopTrade",
    "SolverSettings",
    "SolveResult",
    "SolveStatus",
    "PathSelector",
    "SelectionResult",
    "ArbitrageSearch",
    "SearchReport",
]
