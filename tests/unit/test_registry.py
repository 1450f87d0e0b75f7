"""Tests for the pool registry."""

import logging

import pytest

from cfmm_arbitrage.exceptions import (
    GraphLookupMiss,
    InvalidPoolInvariant,
    ValidationError,
)
from cfmm_arbitrage.pools import ConstantSum, Pool, WeightedGeometricMean
from cfmm_arbitrage.registry import PoolRegistry, pool_from_record


@pytest.fixture
def registry():
    return PoolRegistry(
        [
            Pool("p1", ("A", "B"), (100, 10)),
            Pool("p2", ("B", "A"), (20, 90)),
            Pool("p3", ("B", "C"), (50, 50)),
        ]
    )


class TestPoolFromRecord:
    def test_pair_record(self):
        pool = pool_from_record(
            {
                "address": "0xpair",
                "token0": "WETH",
                "token1": "USDC",
                "reserve0": "1000",
                "reserve1": "0x10",
                "router_fee": 30,
                "fees0": 100,
                "fees1": "50",
            }
        )
        assert pool.id == "0xpair"
        assert pool.reserves == (1000, 16)
        assert pool.fee == pytest.approx(0.997)
        assert pool.tax == pytest.approx(0.01)

    def test_pair_record_defaults_to_30_bps(self):
        pool = pool_from_record(
            {"address": "x", "token0": "A", "token1": "B", "reserve0": 1, "reserve1": 2}
        )
        assert pool.fee == pytest.approx(0.997)
        assert pool.tax == 0.0

    def test_generic_record(self):
        pool = pool_from_record(
            {
                "id": "bal",
                "tokens": ["A", "B", "C"],
                "reserves": [1, 2, "3.5"],
                "fee": 0.998,
                "kind": "weighted",
                "weights": [0.5, 0.25, 0.25],
            }
        )
        assert isinstance(pool.kind, WeightedGeometricMean)
        assert pool.reserve_of("C") == 3.5
        assert pool.fee == 0.998

    def test_generic_record_fee_bps(self):
        pool = pool_from_record(
            {
                "id": "s",
                "tokens": ["A", "B"],
                "reserves": [1, 1],
                "fee_bps": 4,
                "kind": "constant_sum",
            }
        )
        assert isinstance(pool.kind, ConstantSum)
        assert pool.fee == pytest.approx(0.9996)

    def test_missing_field(self):
        with pytest.raises(InvalidPoolInvariant) as exc_info:
            pool_from_record({"id": "p", "tokens": ["A", "B"]})
        assert exc_info.value.field == "reserves"

    def test_unknown_kind(self):
        with pytest.raises(InvalidPoolInvariant, match="Unknown pool kind"):
            pool_from_record(
                {"id": "p", "tokens": ["A", "B"], "reserves": [1, 1], "kind": "curve"}
            )

    def test_malformed_amount(self):
        with pytest.raises(InvalidPoolInvariant):
            pool_from_record(
                {"id": "p", "tokens": ["A", "B"], "reserves": ["lots", 1]}
            )

    def test_zero_reserve(self):
        with pytest.raises(InvalidPoolInvariant):
            pool_from_record({"id": "p", "tokens": ["A", "B"], "reserves": [0, 1]})


class TestPoolRegistry:
    def test_len_iter_contains(self, registry):
        assert len(registry) == 3
        assert [p.id for p in registry] == ["p1", "p2", "p3"]
        assert "p2" in registry
        assert "p9" not in registry

    def test_pools_between_keeps_parallel_pools(self, registry):
        assert [p.id for p in registry.pools_between("A", "B")] == ["p1", "p2"]
        assert [p.id for p in registry.pools_between("B", "A")] == ["p1", "p2"]
        assert registry.pools_between("A", "C") == []

    def test_first_pool_between(self, registry):
        assert registry.first_pool_between("B", "C").id == "p3"
        assert registry.first_pool_between("A", "C") is None

    def test_tokens_in_first_seen_order(self, registry):
        assert registry.tokens() == ["A", "B", "C"]

    def test_get(self, registry):
        assert registry.get("p3").tokens == ("B", "C")
        with pytest.raises(GraphLookupMiss):
            registry.get("missing")

    def test_duplicate_id(self, registry):
        with pytest.raises(ValidationError, match="Duplicate pool id"):
            registry.add(Pool("p1", ("C", "D"), (1, 1)))

    def test_from_records(self):
        registry = PoolRegistry.from_records(
            [
                {"id": "p1", "tokens": ["A", "B"], "reserves": [1, 2]},
                {"id": "p2", "tokens": ["B", "C"], "reserves": [3, 4]},
            ]
        )
        assert len(registry) == 2

    def test_from_records_rejects_invalid(self):
        with pytest.raises(InvalidPoolInvariant):
            PoolRegistry.from_records(
                [{"id": "bad", "tokens": ["A", "B"], "reserves": [0, 2]}]
            )

    def test_from_records_skip_invalid(self, caplog):
        records = [
            {"id": "bad", "tokens": ["A", "B"], "reserves": [0, 2]},
            {"id": "good", "tokens": ["A", "B"], "reserves": [1, 2]},
        ]
        with caplog.at_level(logging.WARNING, logger="cfmm_arbitrage.registry"):
            registry = PoolRegistry.from_records(records, skip_invalid=True)
        assert [p.id for p in registry] == ["good"]
        assert "Skipping pool record 0" in caplog.text

    def test_as_mapping_is_a_copy(self, registry):
        mapping = registry.as_mapping()
        mapping.pop("p1")
        assert "p1" in registry
