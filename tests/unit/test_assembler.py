"""Tests for per-cycle problem assembly."""

import numpy as np
import pytest

from cfmm_arbitrage.assembler import (
    ArbitrageProblemAssembler,
    CycleResult,
    assemble,
)
from cfmm_arbitrage.constraints import ConeType, Formulation
from cfmm_arbitrage.exceptions import (
    DegenerateCycle,
    GraphLookupMiss,
    InfeasibleConstraints,
    ValidationError,
)
from cfmm_arbitrage.graph import Cycle
from cfmm_arbitrage.pools import Pool
from cfmm_arbitrage.registry import PoolRegistry
from cfmm_arbitrage.solver import SolveResult, SolveStatus


@pytest.fixture
def pools():
    return {
        "p1": Pool("p1", ("A", "B"), (100, 10), fee=1.0),
        "p2": Pool("p2", ("A", "B"), (90, 20), fee=1.0),
    }


@pytest.fixture
def cycle():
    return Cycle(("A", "B", "A"), ("p2", "p1"))


class TestAssemble:
    def test_variable_layout(self, cycle, pools):
        problem = assemble(cycle, pools)
        assert problem.system.n_vars == 8
        assert problem.offsets == (0, 4)
        assert problem.input_index == 1
        assert problem.output_index == 6
        assert problem.system.variable_names[1] == "0:p2:delta[A]"
        assert problem.system.variable_names[6] == "1:p1:lambda[A]"

    def test_objective_values_start_token(self, cycle, pools):
        problem = assemble(cycle, pools)
        c = problem.system.c
        assert c[problem.input_index] == -1.0
        assert c[problem.output_index] == 1.0
        # B carries no value by default
        assert c[2] == 0.0
        assert c[5] == 0.0

    def test_explicit_prices(self, cycle, pools):
        problem = assemble(cycle, pools, prices={"A": 2.0, "B": 5.0})
        assert problem.system.c[2] == 5.0
        assert problem.system.c[5] == -5.0
        assert problem.values == {"A": 2.0, "B": 5.0}

    def test_flow_linking_row(self, cycle, pools):
        problem = assemble(cycle, pools)
        labels = problem.system.ineq_labels
        assert "flow:0->1" in labels
        row = problem.system.G[labels.index("flow:0->1")]
        assert row[5] == 1.0
        assert row[2] == -1.0

    def test_flow_linking_nets_out_tax(self, cycle):
        taxed = {
            "p1": Pool("p1", ("A", "B"), (100, 10), fee=1.0),
            "p2": Pool("p2", ("A", "B"), (90, 20), fee=1.0, tax=0.1),
        }
        problem = assemble(cycle, taxed)
        row = problem.system.G[problem.system.ineq_labels.index("flow:0->1")]
        assert row[2] == pytest.approx(-0.9)

    def test_sequence_of_pools(self, cycle, pools):
        problem = assemble(cycle, [pools["p2"], pools["p1"]])
        assert [p.id for p in problem.pools] == ["p2", "p1"]

    def test_conic_formulation(self, cycle, pools):
        problem = assemble(cycle, pools, Formulation.CONIC)
        assert problem.system.cone_type is ConeType.SECOND_ORDER
        assert len(problem.system.cones) == 2
        assert problem.formulation is Formulation.CONIC

    def test_formulation_from_string(self, cycle, pools):
        assert assemble(cycle, pools, "conic").formulation is Formulation.CONIC

    def test_degenerate_cycle(self, pools):
        with pytest.raises(DegenerateCycle) as exc_info:
            assemble(Cycle(("A", "B", "A"), ("p1", "p1")), pools)
        assert exc_info.value.pool_id == "p1"

    def test_missing_pool(self, cycle, pools):
        del pools["p1"]
        with pytest.raises(ValidationError, match="No pool data"):
            assemble(cycle, pools)

    def test_wrong_pool_count(self, cycle, pools):
        with pytest.raises(ValidationError):
            assemble(cycle, [pools["p2"]])

    def test_pool_order_must_match_hops(self, cycle, pools):
        with pytest.raises(ValidationError, match="Hop expects pool"):
            assemble(cycle, [pools["p1"], pools["p2"]])

    def test_pool_must_hold_hop_tokens(self):
        pools = {
            "p1": Pool("p1", ("A", "B"), (100, 10)),
            "p2": Pool("p2", ("A", "C"), (90, 20)),
        }
        with pytest.raises(ValidationError):
            assemble(Cycle(("A", "B", "A"), ("p2", "p1")), pools)

    def test_with_budget(self, cycle, pools):
        problem = assemble(cycle, pools)
        budgeted = problem.with_budget(5.0)
        assert budgeted.system.ineq_labels[-1] == "budget"
        assert budgeted.system.G[-1, problem.input_index] == 1.0
        assert budgeted.system.h[-1] == 5.0
        assert problem.system.ineq_labels[-1] != "budget"


class TestAssembler:
    def test_assemble_from_registry(self, cycle, pools):
        assembler = ArbitrageProblemAssembler(PoolRegistry(pools.values()))
        problem = assembler.assemble(cycle)
        assert problem.system.n_vars == 8

    def test_unknown_pool(self, pools):
        assembler = ArbitrageProblemAssembler(PoolRegistry(pools.values()))
        with pytest.raises(GraphLookupMiss):
            assembler.assemble(Cycle(("A", "B", "A"), ("p1", "p9")))

    def test_degenerate_cycle(self, pools):
        assembler = ArbitrageProblemAssembler(PoolRegistry(pools.values()))
        with pytest.raises(DegenerateCycle):
            assembler.assemble(Cycle(("A", "B", "A"), ("p2", "p2")))


class TestInterpret:
    def test_maps_solution_to_trades(self, cycle, pools):
        problem = assemble(cycle, pools)
        x = np.zeros(8)
        x[1], x[2] = 9.0, 20 * 9 / 99
        x[5], x[6] = 20 * 9 / 99, 50.0
        result = problem.interpret(
            SolveResult(SolveStatus.OPTIMAL, x=x, objective=41.0, elapsed=0.25)
        )

        assert isinstance(result, CycleResult)
        assert [t.pool_id for t in result.trades] == ["p2", "p1"]
        assert result.trades[0].token_in == "A"
        assert result.trades[0].amount_in == 9.0
        assert result.amount_in == 9.0
        assert result.amount_out == 50.0
        assert result.profit == pytest.approx(41.0)
        assert result.objective == 41.0
        assert result.solve_time == 0.25
        assert result.source == "solver"
        # The exact walk delivers far less than the relaxed plan
        assert result.simulated_profit < result.profit
        assert result.realized_profit == result.simulated_profit
        assert result.path_coefficient == pytest.approx((20 / 90) * (100 / 10))

    def test_solver_noise_is_zeroed(self, cycle, pools):
        problem = assemble(cycle, pools)
        x = np.full(8, 1e-12)
        result = problem.interpret(SolveResult(SolveStatus.OPTIMAL, x=x, objective=0))
        assert result.amount_in == 0.0
        assert result.profit == 0.0
        assert result.profit_pct == 0.0
        assert not result.is_profitable

    def test_non_optimal_raises(self, cycle, pools):
        problem = assemble(cycle, pools)
        with pytest.raises(InfeasibleConstraints):
            problem.interpret(SolveResult(SolveStatus.INFEASIBLE, message="no point"))

    def test_simulate(self, cycle, pools):
        result = assemble(cycle, pools).simulate(9.0)
        assert result.source == "simulation"
        assert result.trades[0].amount_out == pytest.approx(20 * 9 / 99)
        assert result.profit == pytest.approx(result.simulated_profit)

    def test_to_dict(self, cycle, pools):
        data = assemble(cycle, pools).simulate(9.0).to_dict()
        assert data["cycle"] == "A -> B -> A"
        assert data["pools"] == ["p2", "p1"]
        assert len(data["trades"]) == 2
