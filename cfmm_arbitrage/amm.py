"""
Exact AMM swap math.

Used to re-simulate solver output through the true invariants (the
linearized formulations overestimate large trades) and to compute the
near-zero-size path coefficients the path selector works with.
"""

import math
from typing import List, Mapping, Sequence, Tuple

from cfmm_arbitrage.pools import ConstantSum, Pool, WeightedGeometricMean

Hop = Tuple[str, Pool, str]


def amount_out(pool: Pool, token_in: str, token_out: str, amount_in: float) -> float:
    """
    Exact output of a single swap, fee and transfer tax included.

    Args:
        pool: Pool to trade against
        token_in: Token deposited
        token_out: Token withdrawn
        amount_in: Deposit before fee

    Returns:
        Amount of ``token_out`` received by the trader
    """
    if amount_in <= 0:
        return 0.0
    if token_in == token_out:
        raise ValueError(f"Cannot swap {token_in} for itself in pool {pool.id}")

    r_in = pool.reserve_of(token_in)
    r_out = pool.reserve_of(token_out)
    effective_in = pool.fee * amount_in

    if isinstance(pool.kind, ConstantSum):
        out = min(effective_in, r_out)
    elif isinstance(pool.kind, WeightedGeometricMean):
        exponent = pool.weight_of(token_in) / pool.weight_of(token_out)
        out = r_out * (1.0 - (r_in / (r_in + effective_in)) ** exponent)
    else:
        out = (r_out * effective_in) / (r_in + effective_in)

    return out * (1.0 - pool.tax)


def resolve_hops(cycle, pools: Mapping[str, Pool]) -> List[Hop]:
    """Turn a cycle's ``(token_in, pool_id, token_out)`` hops into pool hops."""
    return [(t_in, pools[pool_id], t_out) for t_in, pool_id, t_out in cycle.hops]


def simulate_hops(hops: Sequence[Hop], amount_in: float) -> List[float]:
    """
    Walk ``amount_in`` through consecutive swaps.

    Returns:
        Amounts held after each step; element 0 is the input
    """
    amounts = [float(amount_in)]
    current = float(amount_in)
    for token_in, pool, token_out in hops:
        current = amount_out(pool, token_in, token_out, current)
        amounts.append(current)
    return amounts


def simulate_cycle(cycle, pools: Mapping[str, Pool], amount_in: float) -> List[float]:
    """Exact amounts along ``cycle`` when starting with ``amount_in``."""
    return simulate_hops(resolve_hops(cycle, pools), amount_in)


def cycle_profit(cycle, pools: Mapping[str, Pool], amount_in: float) -> float:
    """Exact round-trip profit in the start token."""
    return simulate_cycle(cycle, pools, amount_in)[-1] - float(amount_in)


def path_coefficient(hops: Sequence[Hop]) -> float:
    """
    Output/input ratio of a path at zero trade size, net of fees and taxes.

    A cycle is profitable for small trades only when this exceeds 1.
    """
    coefficient = 1.0
    for token_in, pool, token_out in hops:
        coefficient *= pool.spot_rate(token_in, token_out)
    return coefficient


def _is_mobius_hop(pool: Pool, token_in: str, token_out: str) -> bool:
    if isinstance(pool.kind, ConstantSum):
        return False
    return math.isclose(pool.weight_of(token_in), pool.weight_of(token_out))


def optimal_input(hops: Sequence[Hop]) -> float:
    """
    Closed-form profit-maximizing input for a chain of constant-product hops.

    Each hop maps ``y -> A*y / (B + C*y)``; the composition keeps that form
    ``a*x / (b + c*x)``, whose profit ``a*x/(b + c*x) - x`` peaks at
    ``x* = (sqrt(a*b) - b) / c``.

    Raises:
        ValueError: If a hop is not constant-product shaped
    """
    a, b, c = 1.0, 1.0, 0.0
    for token_in, pool, token_out in hops:
        if not _is_mobius_hop(pool, token_in, token_out):
            raise ValueError(
                f"Closed form needs constant-product hops, got {pool.kind_name} "
                f"pool {pool.id}"
            )
        hop_a = pool.fee * pool.reserve_of(token_out) * (1.0 - pool.tax)
        hop_b = pool.reserve_of(token_in)
        hop_c = pool.fee
        a, b, c = hop_a * a, hop_b * b, hop_b * c + hop_c * a

    if a <= b or c == 0:
        return 0.0
    return (math.sqrt(a * b) - b) / c
