"""
Core data types for CFMM pools.

A pool is an immutable record of reserves, fee and invariant kind. Pools are
validated when they are created, so a pool that reaches constraint building
always has strictly positive, finite reserves.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar, NewType, Sequence, Tuple, Union

from cfmm_arbitrage.exceptions import InvalidPoolInvariant
from cfmm_arbitrage.utils import basis_points_to_decimal, normalize_token

Token = NewType("Token", str)

Reserve = Union[int, float, Decimal]

WEIGHT_SUM_TOLERANCE = 1e-9


@dataclass(frozen=True)
class ConstantProduct:
    """Uniswap V2 style pool: ``x * y = k``."""

    name: ClassVar[str] = "constant_product"


@dataclass(frozen=True)
class WeightedGeometricMean:
    """
    Balancer style pool: ``prod(x_i ** w_i) = k``.

    Attributes:
        weights: One positive weight per pool token, summing to 1
    """

    weights: Tuple[float, ...]

    name: ClassVar[str] = "weighted"

    def __post_init__(self):
        weights = tuple(float(w) for w in self.weights)
        object.__setattr__(self, "weights", weights)
        if len(weights) < 2:
            raise InvalidPoolInvariant(
                "Weighted pools need at least two weights", field="weights"
            )
        if any(not math.isfinite(w) or w <= 0 for w in weights):
            raise InvalidPoolInvariant(
                f"Pool weights must be positive, got {weights}", field="weights"
            )
        if abs(sum(weights) - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise InvalidPoolInvariant(
                f"Pool weights must sum to 1, got {sum(weights):.12f}",
                field="weights",
            )

    @classmethod
    def equal(cls, n_tokens: int) -> "WeightedGeometricMean":
        """Equal-weight pool over ``n_tokens`` tokens."""
        return cls(weights=tuple([1.0 / n_tokens] * n_tokens))


@dataclass(frozen=True)
class ConstantSum:
    """Stable-swap limit pool: ``sum(x_i) = k``, trades 1:1 before fees."""

    name: ClassVar[str] = "constant_sum"


PoolKind = Union[ConstantProduct, WeightedGeometricMean, ConstantSum]

POOL_KINDS = {
    ConstantProduct.name: ConstantProduct,
    WeightedGeometricMean.name: WeightedGeometricMean,
    ConstantSum.name: ConstantSum,
}


def _check_reserve(pool_id: str, value: Reserve) -> Reserve:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidPoolInvariant(
            f"Pool {pool_id}: reserve {value!r} is not a number",
            pool_id=pool_id,
            field="reserves",
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidPoolInvariant(
            f"Pool {pool_id}: reserve {value!r} is not finite",
            pool_id=pool_id,
            field="reserves",
        )
    if isinstance(value, Decimal) and not value.is_finite():
        raise InvalidPoolInvariant(
            f"Pool {pool_id}: reserve {value!r} is not finite",
            pool_id=pool_id,
            field="reserves",
        )
    if value <= 0:
        raise InvalidPoolInvariant(
            f"Pool {pool_id}: reserve must be positive, got {value}",
            pool_id=pool_id,
            field="reserves",
        )
    return value


@dataclass(frozen=True)
class Pool:
    """
    Immutable liquidity pool record.

    Attributes:
        id: Pool identifier (e.g. the pair contract address)
        tokens: Pool tokens in pool order; two for constant product pools
        reserves: Reserve per token, raw units (ints stay exact until the
            constraint builder converts them to float)
        fee: Fee fraction applied to deposits (0.997 for a 30 bps pool)
        kind: Invariant kind
        tax: Transfer tax fraction applied to tokens leaving the pool
    """

    id: str
    tokens: Tuple[Token, ...]
    reserves: Tuple[Reserve, ...]
    fee: float = 0.997
    kind: PoolKind = field(default_factory=ConstantProduct)
    tax: float = 0.0

    def __post_init__(self):
        pool_id = str(self.id)
        object.__setattr__(self, "id", pool_id)

        try:
            tokens = tuple(Token(normalize_token(t)) for t in self.tokens)
        except ValueError as e:
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: {e}", pool_id=pool_id, field="tokens"
            ) from e
        object.__setattr__(self, "tokens", tokens)

        if len(tokens) < 2:
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: needs at least two tokens",
                pool_id=pool_id,
                field="tokens",
            )
        if len(set(tokens)) != len(tokens):
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: tokens must be distinct, got {tokens}",
                pool_id=pool_id,
                field="tokens",
            )

        reserves = tuple(_check_reserve(pool_id, r) for r in self.reserves)
        object.__setattr__(self, "reserves", reserves)
        if len(reserves) != len(tokens):
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: {len(reserves)} reserves for {len(tokens)} tokens",
                pool_id=pool_id,
                field="reserves",
            )

        fee = float(self.fee)
        if not (0 < fee <= 1):
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: fee fraction must be in (0, 1], got {fee}",
                pool_id=pool_id,
                field="fee",
            )
        object.__setattr__(self, "fee", fee)

        tax = float(self.tax)
        if not (0 <= tax < 1):
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: tax must be in [0, 1), got {tax}",
                pool_id=pool_id,
                field="tax",
            )
        object.__setattr__(self, "tax", tax)

        if isinstance(self.kind, ConstantProduct) and len(tokens) != 2:
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: constant product pools hold exactly two tokens",
                pool_id=pool_id,
                field="tokens",
            )
        if isinstance(self.kind, WeightedGeometricMean) and len(
            self.kind.weights
        ) != len(tokens):
            raise InvalidPoolInvariant(
                f"Pool {pool_id}: {len(self.kind.weights)} weights for "
                f"{len(tokens)} tokens",
                pool_id=pool_id,
                field="weights",
            )

    @classmethod
    def from_fee_bps(
        cls,
        id: str,
        tokens: Sequence[str],
        reserves: Sequence[Reserve],
        fee_bps: float,
        kind: PoolKind = None,
        tax_bps: float = 0,
    ) -> "Pool":
        """Create a pool from a router fee and tax expressed in basis points."""
        return cls(
            id=id,
            tokens=tuple(tokens),
            reserves=tuple(reserves),
            fee=1.0 - basis_points_to_decimal(fee_bps),
            kind=kind if kind is not None else ConstantProduct(),
            tax=basis_points_to_decimal(tax_bps),
        )

    @property
    def token_a(self) -> Token:
        return self.tokens[0]

    @property
    def token_b(self) -> Token:
        return self.tokens[1]

    @property
    def kind_name(self) -> str:
        return self.kind.name

    def holds(self, token: str) -> bool:
        return token in self.tokens

    def index_of(self, token: str) -> int:
        try:
            return self.tokens.index(token)
        except ValueError:
            raise KeyError(f"Token {token} is not in pool {self.id}") from None

    def reserve_of(self, token: str) -> float:
        """Reserve of ``token`` as float (the constraint-building precision)."""
        return float(self.reserves[self.index_of(token)])

    def float_reserves(self) -> Tuple[float, ...]:
        return tuple(float(r) for r in self.reserves)

    def other(self, token: str) -> Token:
        """The counterpart token of a two-token pool."""
        if len(self.tokens) != 2:
            raise ValueError(f"Pool {self.id} holds {len(self.tokens)} tokens")
        return self.tokens[1 - self.index_of(token)]

    def weight_of(self, token: str) -> float:
        """Invariant weight of ``token``; equal weights for non-weighted pools."""
        index = self.index_of(token)
        if isinstance(self.kind, WeightedGeometricMean):
            return self.kind.weights[index]
        return 1.0 / len(self.tokens)

    def spot_rate(self, token_in: str, token_out: str) -> float:
        """
        Marginal amount of ``token_out`` received per unit of ``token_in``
        at zero trade size, fee and tax included.
        """
        r_in = self.reserve_of(token_in)
        r_out = self.reserve_of(token_out)
        if isinstance(self.kind, ConstantSum):
            rate = 1.0
        else:
            w_in = self.weight_of(token_in)
            w_out = self.weight_of(token_out)
            rate = (r_out / w_out) / (r_in / w_in)
        return rate * self.fee * (1.0 - self.tax)

    def __str__(self) -> str:
        return f"{self.kind_name} pool {self.id} ({'/'.join(self.tokens)})"
