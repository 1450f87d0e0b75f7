"""
Pool registry.

Holds validated pool records and indexes them by unordered token pair so that
all pools between two tokens, including parallel ones, are found in O(1).
"""

from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional

from cfmm_arbitrage.exceptions import (
    GraphLookupMiss,
    InvalidPoolInvariant,
    ValidationError,
)
from cfmm_arbitrage.pools import (
    ConstantProduct,
    ConstantSum,
    Pool,
    PoolKind,
    Token,
    WeightedGeometricMean,
)
from cfmm_arbitrage.utils import get_logger, normalize_token

logger = get_logger(__name__)


def _pair_key(token_a: str, token_b: str) -> FrozenSet[str]:
    return frozenset((token_a, token_b))


def _parse_amount(value: Any) -> Any:
    """Keep integers exact; parse numeric strings (JSON U256 values arrive as strings)."""
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        try:
            return int(text)
        except ValueError:
            return Decimal(text)
    return value


def _parse_kind(record: Mapping[str, Any], n_tokens: int) -> PoolKind:
    kind_name = record.get("kind", ConstantProduct.name)
    if kind_name == ConstantProduct.name:
        return ConstantProduct()
    if kind_name == ConstantSum.name:
        return ConstantSum()
    if kind_name == WeightedGeometricMean.name:
        weights = record.get("weights")
        if weights is None:
            return WeightedGeometricMean.equal(n_tokens)
        return WeightedGeometricMean(weights=tuple(weights))
    raise InvalidPoolInvariant(
        f"Unknown pool kind '{kind_name}'",
        pool_id=str(record.get("id", record.get("address"))),
        field="kind",
    )


def pool_from_record(record: Mapping[str, Any]) -> Pool:
    """
    Build a pool from a plain mapping.

    Two record shapes are accepted:

    * pair records: ``address``, ``token0``, ``token1``, ``reserve0``,
      ``reserve1``, ``router_fee`` (bps) and optional ``fees0``/``fees1``
      token tax (bps, the larger one is used as the pool tax);
    * generic records: ``id``, ``tokens``, ``reserves``, ``fee`` (fraction)
      or ``fee_bps``, ``kind``, ``weights``, ``tax_bps``.

    Raises:
        InvalidPoolInvariant: If the record violates a pool invariant or
            misses required fields
    """
    try:
        if "token0" in record:
            pool_id = str(record.get("address", record.get("id")))
            tax_bps = max(
                float(_parse_amount(record.get("fees0", 0))),
                float(_parse_amount(record.get("fees1", 0))),
            )
            return Pool.from_fee_bps(
                id=pool_id,
                tokens=(record["token0"], record["token1"]),
                reserves=(
                    _parse_amount(record["reserve0"]),
                    _parse_amount(record["reserve1"]),
                ),
                fee_bps=float(_parse_amount(record.get("router_fee", 30))),
                tax_bps=tax_bps,
            )

        pool_id = str(record["id"])
        tokens = tuple(record["tokens"])
        reserves = tuple(_parse_amount(r) for r in record["reserves"])
        kind = _parse_kind(record, len(tokens))
        tax_bps = float(record.get("tax_bps", 0))
        if "fee_bps" in record:
            return Pool.from_fee_bps(
                id=pool_id,
                tokens=tokens,
                reserves=reserves,
                fee_bps=float(record["fee_bps"]),
                kind=kind,
                tax_bps=tax_bps,
            )
        return Pool(
            id=pool_id,
            tokens=tokens,
            reserves=reserves,
            fee=float(record.get("fee", 0.997)),
            kind=kind,
            tax=tax_bps / 10000.0,
        )
    except KeyError as e:
        raise InvalidPoolInvariant(
            f"Pool record missing field {e}", field=str(e.args[0])
        ) from e
    except (TypeError, ValueError, ArithmeticError) as e:
        raise InvalidPoolInvariant(f"Malformed pool record: {e}") from e


class PoolRegistry:
    """
    Read-only-per-run collection of pools.

    Pools are indexed by id and by unordered token pair. Multiple pools between
    the same pair are kept in insertion order and never collapsed.
    """

    def __init__(self, pools: Iterable[Pool] = ()):
        self._pools: Dict[str, Pool] = {}
        self._by_pair: Dict[FrozenSet[str], List[Pool]] = defaultdict(list)
        self._tokens: Dict[Token, None] = {}
        for pool in pools:
            self.add(pool)

    @classmethod
    def from_records(
        cls, records: Iterable[Mapping[str, Any]], skip_invalid: bool = False
    ) -> "PoolRegistry":
        """
        Build a registry from plain pool records.

        Args:
            records: Pool mappings (see ``pool_from_record``)
            skip_invalid: Log and skip records that fail validation instead
                of raising

        Raises:
            InvalidPoolInvariant: On the first invalid record unless
                ``skip_invalid`` is set
        """
        registry = cls()
        skipped = 0
        for index, record in enumerate(records):
            try:
                registry.add(pool_from_record(record))
            except InvalidPoolInvariant as e:
                if not skip_invalid:
                    raise
                skipped += 1
                logger.warning("Skipping pool record %d: %s", index, e)
        if skipped:
            logger.info("Loaded %d pools, skipped %d invalid", len(registry), skipped)
        return registry

    def add(self, pool: Pool) -> None:
        """Register a pool; ids must be unique."""
        if pool.id in self._pools:
            raise ValidationError(
                f"Duplicate pool id {pool.id}", details={"pool_id": pool.id}
            )
        self._pools[pool.id] = pool
        tokens = pool.tokens
        for i, token_a in enumerate(tokens):
            self._tokens.setdefault(token_a, None)
            for token_b in tokens[i + 1 :]:
                self._by_pair[_pair_key(token_a, token_b)].append(pool)

    def get(self, pool_id: str) -> Pool:
        try:
            return self._pools[pool_id]
        except KeyError:
            raise GraphLookupMiss(f"Unknown pool {pool_id}") from None

    def pools_between(self, token_a: str, token_b: str) -> List[Pool]:
        """All pools trading the unordered pair, in insertion order."""
        key = _pair_key(normalize_token(token_a), normalize_token(token_b))
        return list(self._by_pair.get(key, ()))

    def first_pool_between(self, token_a: str, token_b: str) -> Optional[Pool]:
        pools = self.pools_between(token_a, token_b)
        return pools[0] if pools else None

    def tokens(self) -> List[Token]:
        """Tokens in first-seen order."""
        return list(self._tokens)

    def as_mapping(self) -> Mapping[str, Pool]:
        return dict(self._pools)

    def __contains__(self, pool_id: object) -> bool:
        return pool_id in self._pools

    def __iter__(self) -> Iterator[Pool]:
        return iter(self._pools.values())

    def __len__(self) -> int:
        return len(self._pools)
