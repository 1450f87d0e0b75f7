"""
Arbitrage problem assembly.

Combines the per-hop constraint blocks of one cycle into a single system,
links consecutive hops so no hop spends more than the previous one
delivered, and maps a solver result back to per-pool trades.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from cfmm_arbitrage import amm
from cfmm_arbitrage.constraints import (
    DELTA_IN,
    LAMBDA_OUT,
    VARS_PER_HOP,
    ConstraintBlock,
    ConstraintSystem,
    Formulation,
    build_constraints,
)
from cfmm_arbitrage.exceptions import DegenerateCycle, ValidationError
from cfmm_arbitrage.graph import Cycle
from cfmm_arbitrage.pools import Pool
from cfmm_arbitrage.registry import PoolRegistry
from cfmm_arbitrage.utils import get_logger, normalize_token

logger = get_logger(__name__)

# Solver noise below this is reported as zero
AMOUNT_EPSILON = 1e-9


@dataclass(frozen=True)
class HopTrade:
    """Amounts moved through one pool."""

    pool_id: str
    token_in: str
    amount_in: float
    token_out: str
    amount_out: float


@dataclass
class CycleResult:
    """Solved (or simulated) trade plan for one cycle."""

    cycle: Cycle
    trades: List[HopTrade]
    amount_in: float
    amount_out: float
    profit: float
    profit_pct: float
    objective: float
    simulated_out: float
    simulated_profit: float
    path_coefficient: float = 1.0
    source: str = "solver"
    solve_time: float = 0.0

    @property
    def pool_ids(self) -> Tuple[str, ...]:
        return self.cycle.pool_ids

    @property
    def realized_profit(self) -> float:
        """
        Profit the plan can actually earn.

        Tangent rows overstate what a constant-product or weighted pool pays
        away from its current reserves, so the exact walk of the same input
        caps the solver's figure.
        """
        return min(self.profit, self.simulated_profit)

    @property
    def is_profitable(self) -> bool:
        return self.realized_profit > 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "cycle": str(self.cycle),
            "pools": list(self.cycle.pool_ids),
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "profit": self.profit,
            "profit_pct": self.profit_pct,
            "simulated_profit": self.simulated_profit,
            "realized_profit": self.realized_profit,
            "trades": [
                {
                    "pool_id": t.pool_id,
                    "token_in": t.token_in,
                    "amount_in": t.amount_in,
                    "token_out": t.token_out,
                    "amount_out": t.amount_out,
                }
                for t in self.trades
            ],
        }


def _clean(value: float) -> float:
    return 0.0 if abs(value) < AMOUNT_EPSILON else float(value)


@dataclass
class ArbitrageProblem:
    """
    Constraint system of one cycle plus the bookkeeping needed to read the
    solution back.

    Attributes:
        cycle: Cycle being traded
        pools: Pool of each hop, in hop order
        system: Assembled constraint system
        offsets: First variable index of each hop block
        formulation: Formulation the system was built with
    """

    cycle: Cycle
    pools: Tuple[Pool, ...]
    system: ConstraintSystem
    offsets: Tuple[int, ...]
    formulation: Formulation
    values: Dict[str, float] = field(default_factory=dict)

    @property
    def input_index(self) -> int:
        """Index of the start-token deposit into the first pool."""
        return self.offsets[0] + DELTA_IN

    @property
    def output_index(self) -> int:
        """Index of the start-token withdrawal from the last pool."""
        return self.offsets[-1] + LAMBDA_OUT

    def hops(self) -> List[amm.Hop]:
        return [
            (token_in, pool, token_out)
            for (token_in, _, token_out), pool in zip(self.cycle.hops, self.pools)
        ]

    def path_coefficient(self) -> float:
        return amm.path_coefficient(self.hops())

    def with_budget(self, budget: float) -> "ArbitrageProblem":
        """Copy of the problem with the start-token input capped at ``budget``."""
        return replace(
            self,
            system=self.system.with_upper_bound(
                self.input_index, budget, label="budget"
            ),
        )

    def simulate(self, amount_in: float, objective: float = 0.0) -> CycleResult:
        """Trade plan from the exact AMM walk at ``amount_in``."""
        amounts = amm.simulate_hops(self.hops(), amount_in)
        trades = [
            HopTrade(pool_id, token_in, amounts[k], token_out, amounts[k + 1])
            for k, (token_in, pool_id, token_out) in enumerate(self.cycle.hops)
        ]
        amount_in = float(amount_in)
        profit = amounts[-1] - amount_in
        return CycleResult(
            cycle=self.cycle,
            trades=trades,
            amount_in=amount_in,
            amount_out=amounts[-1],
            profit=profit,
            profit_pct=profit / amount_in if amount_in > 0 else 0.0,
            objective=objective,
            simulated_out=amounts[-1],
            simulated_profit=profit,
            path_coefficient=self.path_coefficient(),
            source="simulation",
        )

    def interpret(self, result) -> CycleResult:
        """
        Map a successful ``SolveResult`` to per-pool trades.

        Raises:
            SolverError: If the result carries no optimal point
        """
        result.raise_for_status()
        x = result.x

        trades = []
        for k, (token_in, pool_id, token_out) in enumerate(self.cycle.hops):
            offset = self.offsets[k]
            received = x[offset + LAMBDA_OUT] * (1.0 - self.pools[k].tax)
            trades.append(
                HopTrade(
                    pool_id=pool_id,
                    token_in=token_in,
                    amount_in=_clean(x[offset + DELTA_IN]),
                    token_out=token_out,
                    amount_out=_clean(received),
                )
            )

        amount_in = trades[0].amount_in
        amount_out = trades[-1].amount_out
        profit = amount_out - amount_in
        simulated_out = amm.simulate_hops(self.hops(), amount_in)[-1]

        return CycleResult(
            cycle=self.cycle,
            trades=trades,
            amount_in=amount_in,
            amount_out=amount_out,
            profit=profit,
            profit_pct=profit / amount_in if amount_in > 0 else 0.0,
            objective=float(result.objective),
            simulated_out=simulated_out,
            simulated_profit=simulated_out - amount_in,
            path_coefficient=self.path_coefficient(),
            solve_time=result.elapsed,
        )


def _variable_names(k: int, pool: Pool, token_in: str, token_out: str) -> List[str]:
    prefix = f"{k}:{pool.id}"
    return [
        f"{prefix}:lambda[{token_in}]",
        f"{prefix}:delta[{token_in}]",
        f"{prefix}:lambda[{token_out}]",
        f"{prefix}:delta[{token_out}]",
    ]


def _check_cycle(cycle: Cycle, pools: Sequence[Pool]) -> None:
    repeated = cycle.repeated_pool()
    if repeated is not None:
        raise DegenerateCycle(
            f"Pool {repeated} appears twice in cycle {cycle}",
            cycle=cycle.tokens,
            pool_id=repeated,
        )
    for (token_in, pool_id, token_out), pool in zip(cycle.hops, pools):
        if pool.id != pool_id:
            raise ValidationError(
                f"Hop expects pool {pool_id}, got {pool.id}",
                details={"cycle": str(cycle)},
            )
        if not (pool.holds(token_in) and pool.holds(token_out)):
            raise ValidationError(
                f"Pool {pool.id} does not hold {token_in} and {token_out}",
                details={"cycle": str(cycle), "pool_id": pool.id},
            )


def _build(
    cycle: Cycle,
    pools: Sequence[Pool],
    formulation: Formulation,
    prices: Optional[Mapping[str, float]],
    max_trade_fraction: Optional[float],
) -> ArbitrageProblem:
    _check_cycle(cycle, pools)

    if prices:
        values = {normalize_token(t): float(v) for t, v in prices.items()}
    else:
        values = {cycle.start: 1.0}

    block = ConstraintBlock()
    names: List[str] = []
    offsets = []
    for k, ((token_in, _, token_out), pool) in enumerate(zip(cycle.hops, pools)):
        offset = k * VARS_PER_HOP
        offsets.append(offset)
        block.extend(
            build_constraints(
                pool,
                token_in,
                token_out,
                offset,
                formulation,
                max_trade_fraction=max_trade_fraction,
                values=values,
            )
        )
        names.extend(_variable_names(k, pool, token_in, token_out))

    # Flow linking: a hop may spend at most what the previous hop delivered
    for k in range(1, len(offsets)):
        previous = pools[k - 1]
        block.add_inequality(
            {
                offsets[k] + DELTA_IN: 1.0,
                offsets[k - 1] + LAMBDA_OUT: -(1.0 - previous.tax),
            },
            0.0,
            f"flow:{k - 1}->{k}",
        )

    system = ConstraintSystem.from_block(block, len(names), names)
    logger.debug(
        "Assembled %s: %d variables, %d inequalities, %d equalities, %d cones",
        cycle,
        system.n_vars,
        system.G.shape[0],
        system.A.shape[0],
        len(system.cones),
    )
    return ArbitrageProblem(
        cycle=cycle,
        pools=tuple(pools),
        system=system,
        offsets=tuple(offsets),
        formulation=formulation,
        values=values,
    )


class ArbitrageProblemAssembler:
    """
    Builds one ``ArbitrageProblem`` per cycle from a registry.

    Args:
        registry: Pools referenced by the cycles
        formulation: Linear tangent or exact conic invariants
        prices: Numéraire value per token; defaults to 1 for the cycle's
            start token and 0 for everything else
        max_trade_fraction: Optional per-hop cap as a fraction of reserves
    """

    def __init__(
        self,
        registry: PoolRegistry,
        formulation: Formulation = Formulation.LINEAR,
        prices: Optional[Mapping[str, float]] = None,
        max_trade_fraction: Optional[float] = None,
    ):
        self.registry = registry
        self.formulation = Formulation(formulation)
        self.prices = dict(prices) if prices else None
        self.max_trade_fraction = max_trade_fraction

    def assemble(self, cycle: Cycle) -> ArbitrageProblem:
        """
        Raises:
            DegenerateCycle: If a pool is used twice
            GraphLookupMiss: If a pool id is not registered
            ValidationError: If a pool does not hold its hop's tokens
        """
        if cycle.is_degenerate:
            _check_cycle(cycle, ())
        pools = [self.registry.get(pool_id) for pool_id in cycle.pool_ids]
        return _build(
            cycle, pools, self.formulation, self.prices, self.max_trade_fraction
        )


def assemble(
    cycle: Cycle,
    pools_in_cycle: Union[Mapping[str, Pool], Sequence[Pool]],
    formulation: Formulation = Formulation.LINEAR,
    prices: Optional[Mapping[str, float]] = None,
    max_trade_fraction: Optional[float] = None,
) -> ArbitrageProblem:
    """
    Assemble the problem of one cycle.

    Args:
        cycle: Cycle to trade
        pools_in_cycle: Pools by id, or one pool per hop in hop order

    Raises:
        DegenerateCycle: If a pool is used twice
        ValidationError: If the pools do not match the cycle's hops
    """
    if cycle.is_degenerate:
        _check_cycle(cycle, ())
    if isinstance(pools_in_cycle, Mapping):
        missing = [p for p in cycle.pool_ids if p not in pools_in_cycle]
        if missing:
            raise ValidationError(
                f"No pool data for {missing}", details={"cycle": str(cycle)}
            )
        pools = [pools_in_cycle[p] for p in cycle.pool_ids]
    else:
        pools = list(pools_in_cycle)
        if len(pools) != cycle.length:
            raise ValidationError(
                f"{len(pools)} pools for {cycle.length} hops",
                details={"cycle": str(cycle)},
            )
    return _build(cycle, pools, Formulation(formulation), prices, max_trade_fraction)
