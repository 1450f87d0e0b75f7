"""
Integration tests on a two-pool, two-token loop.

Pools p1 and p2 both trade A/B. Buying B in p2 and selling it in p1 is
profitable whenever p2 prices B below p1 by more than the fees.
"""

import math

import pytest

from cfmm_arbitrage import amm
from cfmm_arbitrage.assembler import assemble
from cfmm_arbitrage.constraints import Formulation
from cfmm_arbitrage.exceptions import InvalidPoolInvariant
from cfmm_arbitrage.graph import Cycle
from cfmm_arbitrage.pools import Pool
from cfmm_arbitrage.solver import solve_with_retry

pytestmark = pytest.mark.integration

FEE = 0.997
CYCLE = Cycle(("A", "B", "A"), ("p2", "p1"))
REVERSE = Cycle(("A", "B", "A"), ("p1", "p2"))


def pools(second_reserves):
    return {
        "p1": Pool("p1", ("A", "B"), (100, 10), fee=FEE),
        "p2": Pool("p2", ("A", "B"), second_reserves, fee=FEE),
    }


def solve_loop(cycle, pool_map, formulation):
    problem = assemble(cycle, pool_map, formulation)
    return problem.interpret(solve_with_retry(problem.system))


def round_trip(x, second_reserves):
    """A -> B in p2, then B -> A in p1, written out by hand."""
    r2a, r2b = second_reserves
    b = r2b * FEE * x / (r2a + FEE * x)
    return 100 * FEE * b / (10 + FEE * b)


def closed_form_optimum(second_reserves):
    # round_trip(x) = K x / (M + N x)
    r2a, r2b = second_reserves
    k = FEE * FEE * r2b * 100
    m = r2a * 10
    n = FEE * 10 + FEE * FEE * r2b
    return (math.sqrt(k * m) - m) / n


class TestNoArbitrage:
    """p2 at (90, 9) quotes the same price as p1 at (100, 10)."""

    @pytest.mark.parametrize("formulation", list(Formulation))
    @pytest.mark.parametrize("cycle", [CYCLE, REVERSE])
    def test_profit_is_not_positive(self, formulation, cycle):
        result = solve_loop(cycle, pools((90, 9)), formulation)
        assert result.profit <= 1e-6

    def test_closed_form_agrees(self):
        assert amm.optimal_input(
            [("A", pools((90, 9))["p2"], "B"), ("B", pools((90, 9))["p1"], "A")]
        ) == 0.0


class TestPriceGap:
    @pytest.mark.parametrize("second_reserves", [(90, 15), (90, 20)])
    def test_conic_matches_manual_round_trip(self, second_reserves):
        result = solve_loop(CYCLE, pools(second_reserves), Formulation.CONIC)

        x_star = closed_form_optimum(second_reserves)
        expected_profit = round_trip(x_star, second_reserves) - x_star

        assert expected_profit > 0
        assert result.profit == pytest.approx(expected_profit, abs=1e-3)
        assert result.amount_in == pytest.approx(x_star, rel=1e-2)
        assert result.simulated_profit == pytest.approx(result.profit, abs=1e-4)

    def test_bigger_gap_bigger_profit(self):
        small = solve_loop(CYCLE, pools((90, 15)), Formulation.CONIC)
        large = solve_loop(CYCLE, pools((90, 20)), Formulation.CONIC)
        assert 0 < small.profit < large.profit

    def test_linear_relaxation_overestimates(self):
        conic = solve_loop(CYCLE, pools((90, 20)), Formulation.CONIC)
        linear = solve_loop(CYCLE, pools((90, 20)), Formulation.LINEAR)
        assert linear.profit > 0
        assert linear.profit >= conic.profit - 1e-6
        # The exact walk of the linear plan's input earns less than promised
        assert linear.simulated_profit < linear.profit

    def test_reverse_direction_stays_flat(self):
        result = solve_loop(REVERSE, pools((90, 20)), Formulation.CONIC)
        assert result.profit <= 1e-6

    def test_trades_follow_the_cycle(self):
        result = solve_loop(CYCLE, pools((90, 20)), Formulation.CONIC)
        first, second = result.trades
        assert (first.pool_id, first.token_in, first.token_out) == ("p2", "A", "B")
        assert (second.pool_id, second.token_in, second.token_out) == ("p1", "B", "A")
        assert second.amount_in == pytest.approx(first.amount_out, rel=1e-5)


class TestZeroReserve:
    @pytest.mark.parametrize("reserves", [(0, 10), (90, 0)])
    def test_rejected_before_constraint_building(self, reserves):
        with pytest.raises(InvalidPoolInvariant):
            pools(reserves)
