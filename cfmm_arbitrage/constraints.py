"""
Invariant constraint builder.

Translates one pool hop of a cycle into rows of a shared constraint system:

    maximize    c @ x
    subject to  G @ x <= h
                A @ x == b
                geo_mean(F_k @ x + g_k; p_k) >= floor_k   (conic formulation)

Every hop owns four variables ``[lambda_in, delta_in, lambda_out, delta_out]``
starting at a caller-supplied offset: ``lambda`` is withdrawn from the pool,
``delta`` is deposited before the fee.

Two formulations exist and must be chosen explicitly:

* ``Formulation.LINEAR`` uses tangent (first-order) forms of the constant
  product and weighted invariants. They are exact only at the current
  reserves and relax the invariant elsewhere, so large trades are
  overestimated; use ``max_trade_fraction`` to stay near the tangent point.
* ``Formulation.CONIC`` states the invariants exactly as weighted geometric
  means, which cvxpy reduces to second-order cones.

Constant-sum invariants are linear and exact in both formulations.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from cfmm_arbitrage.exceptions import ValidationError
from cfmm_arbitrage.pools import ConstantProduct, ConstantSum, Pool
from cfmm_arbitrage.utils import get_logger

logger = get_logger(__name__)

VARS_PER_HOP = 4
LAMBDA_IN, DELTA_IN, LAMBDA_OUT, DELTA_OUT = range(VARS_PER_HOP)


class Formulation(Enum):
    """How pool invariants are expressed."""

    LINEAR = "linear"
    CONIC = "conic"


class ConeType(Enum):
    """Cone family the solver has to enforce."""

    NONNEGATIVE_ORTHANT = "nonnegative_orthant"
    SECOND_ORDER = "second_order"


SparseRow = Dict[int, float]


@dataclass(frozen=True)
class GeoMeanCone:
    """
    ``geo_mean(F @ x + g, p=weights) >= floor``.

    ``F`` is stored sparsely as one ``((index, coefficient), ...)`` tuple per
    entry of the affine vector.
    """

    rows: Tuple[Tuple[Tuple[int, float], ...], ...]
    offsets: Tuple[float, ...]
    weights: Tuple[float, ...]
    floor: float = 1.0
    label: str = ""

    def matrix(self, n_vars: int) -> Tuple[np.ndarray, np.ndarray]:
        F = np.zeros((len(self.rows), n_vars))
        for r, row in enumerate(self.rows):
            for index, coefficient in row:
                F[r, index] = coefficient
        return F, np.asarray(self.offsets, dtype=float)

    def shifted(self, offset: int) -> "GeoMeanCone":
        rows = tuple(tuple((i + offset, v) for i, v in row) for row in self.rows)
        return replace(self, rows=rows)

    def value(self, x: Sequence[float]) -> float:
        """Weighted geometric mean of the affine vector at ``x``."""
        x = np.asarray(x, dtype=float)
        F, g = self.matrix(len(x))
        entries = F @ x + g
        if np.any(entries < 0):
            return -math.inf
        weights = np.asarray(self.weights, dtype=float)
        weights = weights / weights.sum()
        return float(np.prod(entries**weights))

    def is_satisfied(self, x: Sequence[float], tolerance: float = 1e-7) -> bool:
        return self.value(x) >= self.floor - tolerance


@dataclass
class ConstraintBlock:
    """Rows contributed by one hop, indexed in the shared variable vector."""

    ineq_rows: List[SparseRow] = field(default_factory=list)
    ineq_bounds: List[float] = field(default_factory=list)
    ineq_labels: List[str] = field(default_factory=list)
    eq_rows: List[SparseRow] = field(default_factory=list)
    eq_bounds: List[float] = field(default_factory=list)
    eq_labels: List[str] = field(default_factory=list)
    cones: List[GeoMeanCone] = field(default_factory=list)
    objective: SparseRow = field(default_factory=dict)

    def add_inequality(self, row: SparseRow, bound: float, label: str) -> None:
        """Add ``row @ x <= bound``."""
        self.ineq_rows.append(dict(row))
        self.ineq_bounds.append(float(bound))
        self.ineq_labels.append(label)

    def add_equality(self, row: SparseRow, bound: float, label: str) -> None:
        """Add ``row @ x == bound``."""
        self.eq_rows.append(dict(row))
        self.eq_bounds.append(float(bound))
        self.eq_labels.append(label)

    def extend(self, other: "ConstraintBlock") -> None:
        self.ineq_rows.extend(other.ineq_rows)
        self.ineq_bounds.extend(other.ineq_bounds)
        self.ineq_labels.extend(other.ineq_labels)
        self.eq_rows.extend(other.eq_rows)
        self.eq_bounds.extend(other.eq_bounds)
        self.eq_labels.extend(other.eq_labels)
        self.cones.extend(other.cones)
        for index, value in other.objective.items():
            self.objective[index] = self.objective.get(index, 0.0) + value


def _dense(rows: Sequence[SparseRow], n_vars: int) -> np.ndarray:
    matrix = np.zeros((len(rows), n_vars))
    for r, row in enumerate(rows):
        for index, value in row.items():
            matrix[r, index] += value
    return matrix


@dataclass
class ConstraintSystem:
    """
    Dense problem data handed to a solver: maximize ``c @ x`` subject to
    ``G @ x <= h``, ``A @ x == b`` and the cone constraints.
    """

    c: np.ndarray
    G: np.ndarray
    h: np.ndarray
    A: np.ndarray
    b: np.ndarray
    cones: Tuple[GeoMeanCone, ...] = ()
    variable_names: Tuple[str, ...] = ()
    ineq_labels: Tuple[str, ...] = ()
    eq_labels: Tuple[str, ...] = ()

    @classmethod
    def from_block(
        cls, block: ConstraintBlock, n_vars: int, variable_names: Sequence[str] = ()
    ) -> "ConstraintSystem":
        c = np.zeros(n_vars)
        for index, value in block.objective.items():
            c[index] += value
        return cls(
            c=c,
            G=_dense(block.ineq_rows, n_vars),
            h=np.asarray(block.ineq_bounds, dtype=float),
            A=_dense(block.eq_rows, n_vars),
            b=np.asarray(block.eq_bounds, dtype=float),
            cones=tuple(block.cones),
            variable_names=tuple(variable_names),
            ineq_labels=tuple(block.ineq_labels),
            eq_labels=tuple(block.eq_labels),
        )

    @property
    def n_vars(self) -> int:
        return int(self.c.shape[0])

    @property
    def cone_type(self) -> ConeType:
        if self.cones:
            return ConeType.SECOND_ORDER
        return ConeType.NONNEGATIVE_ORTHANT

    def with_upper_bound(
        self, index: int, cap: float, label: str = "upper_bound"
    ) -> "ConstraintSystem":
        """Copy of the system with ``x[index] <= cap`` appended."""
        row = np.zeros((1, self.n_vars))
        row[0, index] = 1.0
        return replace(
            self,
            G=np.vstack([self.G, row]),
            h=np.append(self.h, float(cap)),
            ineq_labels=self.ineq_labels + (label,),
        )

    def objective_value(self, x: Sequence[float]) -> float:
        return float(self.c @ np.asarray(x, dtype=float))

    def is_feasible(self, x: Sequence[float], tolerance: float = 1e-7) -> bool:
        """Check a candidate point against every constraint."""
        x = np.asarray(x, dtype=float)
        if self.G.size and np.any(self.G @ x - self.h > tolerance):
            return False
        if self.A.size and np.any(np.abs(self.A @ x - self.b) > tolerance):
            return False
        return all(cone.is_satisfied(x, tolerance) for cone in self.cones)


def _hop_label(pool: Pool, name: str) -> str:
    return f"{pool.id}:{name}"


def build_constraints(
    pool: Pool,
    token_in: str,
    token_out: str,
    offset: int,
    formulation: Formulation = Formulation.LINEAR,
    max_trade_fraction: Optional[float] = None,
    values: Optional[Mapping[str, float]] = None,
) -> ConstraintBlock:
    """
    Emit the rows bounding trades against ``pool`` for one hop.

    Objective entries value withdrawals net of the pool's transfer tax.

    Args:
        pool: Pool traded against
        token_in: Token deposited into the pool
        token_out: Token withdrawn from the pool
        offset: Index of this hop's first variable in the shared vector
        formulation: Linear tangent forms or exact conic forms
        max_trade_fraction: Optional cap on trade size as a fraction of the
            corresponding reserve
        values: Numéraire value per token for the objective; missing
            tokens are worth 0

    Returns:
        ConstraintBlock with absolute variable indices

    Raises:
        ValidationError: If the pool does not hold both tokens
    """
    if not (pool.holds(token_in) and pool.holds(token_out)) or token_in == token_out:
        raise ValidationError(
            f"Pool {pool.id} cannot trade {token_in} -> {token_out}",
            details={"pool_id": pool.id, "token_in": token_in, "token_out": token_out},
        )
    values = values or {}

    lam_in, del_in = offset + LAMBDA_IN, offset + DELTA_IN
    lam_out, del_out = offset + LAMBDA_OUT, offset + DELTA_OUT
    r_in = pool.reserve_of(token_in)
    r_out = pool.reserve_of(token_out)
    gamma = pool.fee

    block = ConstraintBlock()

    for index, name in (
        (lam_in, "lambda_in"),
        (del_in, "delta_in"),
        (lam_out, "lambda_out"),
        (del_out, "delta_out"),
    ):
        block.add_inequality({index: -1.0}, 0.0, _hop_label(pool, f"{name}>=0"))

    # new_reserve_j = R_j + gamma*delta_j - lambda_j >= 0
    block.add_inequality(
        {lam_in: 1.0, del_in: -gamma}, r_in, _hop_label(pool, "reserve_in>=0")
    )
    block.add_inequality(
        {lam_out: 1.0, del_out: -gamma}, r_out, _hop_label(pool, "reserve_out>=0")
    )

    # The hop trades in one direction only
    block.add_equality({lam_in: 1.0}, 0.0, _hop_label(pool, "lambda_in=0"))
    block.add_equality({del_out: 1.0}, 0.0, _hop_label(pool, "delta_out=0"))

    if max_trade_fraction is not None:
        if not (0 < max_trade_fraction <= 1):
            raise ValidationError(
                f"max_trade_fraction must be in (0, 1], got {max_trade_fraction}"
            )
        block.add_inequality(
            {del_in: 1.0}, max_trade_fraction * r_in, _hop_label(pool, "delta_in_cap")
        )
        block.add_inequality(
            {lam_out: 1.0},
            max_trade_fraction * r_out,
            _hop_label(pool, "lambda_out_cap"),
        )

    if isinstance(pool.kind, ConstantSum):
        block.add_inequality(
            {lam_in: 1.0, del_in: -gamma, lam_out: 1.0, del_out: -gamma},
            0.0,
            _hop_label(pool, "constant_sum"),
        )
    elif formulation is Formulation.CONIC:
        if isinstance(pool.kind, ConstantProduct):
            weights = (1.0, 1.0)
        else:
            weights = (pool.weight_of(token_in), pool.weight_of(token_out))
        # Reserves normalized by their current value; other pool tokens stay put
        block.cones.append(
            GeoMeanCone(
                rows=(
                    ((lam_in, -1.0 / r_in), (del_in, gamma / r_in)),
                    ((lam_out, -1.0 / r_out), (del_out, gamma / r_out)),
                ),
                offsets=(1.0, 1.0),
                weights=weights,
                floor=1.0,
                label=_hop_label(pool, f"{pool.kind_name}_cone"),
            )
        )
    else:
        # Tangent rows scaled by sqrt(R_in * R_out); scaling keeps the feasible set
        if isinstance(pool.kind, ConstantProduct):
            w_in = w_out = 0.5
        else:
            w_in, w_out = pool.weight_of(token_in), pool.weight_of(token_out)
            logger.debug(
                "Pool %s: weighted invariant linearized, valid for small trades only",
                pool.id,
            )
        scale = math.sqrt(r_in * r_out)
        k_in = w_in * scale / r_in
        k_out = w_out * scale / r_out
        block.add_inequality(
            {
                lam_in: k_in,
                del_in: -gamma * k_in,
                lam_out: k_out,
                del_out: -gamma * k_out,
            },
            0.0,
            _hop_label(pool, f"{pool.kind_name}_tangent"),
        )

    # Withdrawals reach the trader net of the transfer tax
    for token, lam, dlt in ((token_in, lam_in, del_in), (token_out, lam_out, del_out)):
        value = float(values.get(token, 0.0))
        if value:
            block.objective[lam] = block.objective.get(lam, 0.0) + value * (
                1.0 - pool.tax
            )
            block.objective[dlt] = block.objective.get(dlt, 0.0) - value

    return block
