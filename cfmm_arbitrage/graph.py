"""
Token graph and trading-cycle enumeration.

The graph is a NetworkX multigraph over tokens with one directed edge per
(pool, ordered token pair), keyed by the pool id, so parallel pools between
the same tokens stay distinct. Cycles are enumerated with an explicit-stack
depth-first search that yields lazily.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import networkx as nx

from cfmm_arbitrage.exceptions import GraphLookupMiss, ValidationError
from cfmm_arbitrage.pools import Pool, Token
from cfmm_arbitrage.registry import PoolRegistry
from cfmm_arbitrage.utils import get_logger, normalize_token

logger = get_logger(__name__)


@dataclass(frozen=True)
class Cycle:
    """
    Closed trade path ``(t0, t1, ..., t0)`` and the pool used for every hop.

    Cycles reference pools by id only; they are recomputed for every search.
    """

    tokens: Tuple[Token, ...]
    pool_ids: Tuple[str, ...]

    def __post_init__(self):
        tokens = tuple(self.tokens)
        pool_ids = tuple(str(p) for p in self.pool_ids)
        object.__setattr__(self, "tokens", tokens)
        object.__setattr__(self, "pool_ids", pool_ids)

        if len(tokens) < 3:
            raise ValidationError(
                f"A cycle needs at least two hops, got {list(tokens)}",
                details={"tokens": list(tokens)},
            )
        if tokens[0] != tokens[-1]:
            raise ValidationError(
                f"A cycle must end at its start token, got {list(tokens)}",
                details={"tokens": list(tokens)},
            )
        interior = tokens[1:-1]
        if tokens[0] in interior or len(set(interior)) != len(interior):
            raise ValidationError(
                f"Cycle tokens repeat: {list(tokens)}",
                details={"tokens": list(tokens)},
            )
        if len(pool_ids) != len(tokens) - 1:
            raise ValidationError(
                f"{len(pool_ids)} pools for {len(tokens) - 1} hops",
                details={"tokens": list(tokens), "pool_ids": list(pool_ids)},
            )

    @property
    def start(self) -> Token:
        return self.tokens[0]

    @property
    def length(self) -> int:
        """Number of hops."""
        return len(self.pool_ids)

    @property
    def hops(self) -> List[Tuple[Token, str, Token]]:
        return [
            (self.tokens[i], self.pool_ids[i], self.tokens[i + 1])
            for i in range(len(self.pool_ids))
        ]

    @property
    def is_degenerate(self) -> bool:
        """True when a pool is used more than once."""
        return len(set(self.pool_ids)) != len(self.pool_ids)

    def repeated_pool(self) -> Optional[str]:
        seen = set()
        for pool_id in self.pool_ids:
            if pool_id in seen:
                return pool_id
            seen.add(pool_id)
        return None

    def __str__(self) -> str:
        return " -> ".join(self.tokens)


class TokenGraph:
    """Directed multigraph of tokens whose edges are pools."""

    def __init__(self, pools: Iterable[Pool] = ()):
        self._graph = nx.MultiDiGraph()
        self._pools = {}
        for pool in pools:
            self._add_pool(pool)

    @classmethod
    def build(cls, pools: Iterable[Pool]) -> "TokenGraph":
        graph = cls(pools)
        logger.debug(
            "Graph built with %d tokens and %d pool edges",
            graph._graph.number_of_nodes(),
            graph._graph.number_of_edges(),
        )
        return graph

    @classmethod
    def from_registry(cls, registry: PoolRegistry) -> "TokenGraph":
        return cls.build(iter(registry))

    def _add_pool(self, pool: Pool) -> None:
        if pool.id in self._pools:
            raise ValidationError(f"Duplicate pool id {pool.id} in graph")
        self._pools[pool.id] = pool
        for token in pool.tokens:
            self._graph.add_node(token)
        for token_in in pool.tokens:
            for token_out in pool.tokens:
                if token_in != token_out:
                    self._graph.add_edge(token_in, token_out, key=pool.id)

    # Read-only access

    @property
    def pools(self) -> Mapping[str, Pool]:
        return dict(self._pools)

    def has_token(self, token: str) -> bool:
        try:
            return normalize_token(token) in self._graph
        except ValueError:
            return False

    def nodes(self) -> Iterator[Token]:
        return iter(self._graph.nodes)

    def edges(self) -> Iterator[Tuple[Token, Token, str]]:
        """Yield ``(token_in, token_out, pool_id)`` for every directed edge."""
        for token_in, token_out, pool_id in self._graph.edges(keys=True):
            yield token_in, token_out, pool_id

    def neighbors(self, token: str) -> List[Token]:
        token = normalize_token(token)
        if token not in self._graph:
            return []
        return list(self._graph.successors(token))

    def as_networkx(self) -> nx.MultiDiGraph:
        """Read-only view of the underlying graph."""
        return self._graph.copy(as_view=True)

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    # Cycle enumeration

    def iter_cycles(
        self,
        start: str,
        max_length: Optional[int] = None,
        max_cycles: Optional[int] = None,
    ) -> Iterator[Cycle]:
        """
        Lazily yield simple cycles through ``start``.

        Every outgoing edge of a node, parallel pools included, is explored
        in insertion order before backtracking, so the output order is
        deterministic. Intermediate tokens never repeat and no pool is used
        twice within one cycle.

        Args:
            start: Start (and end) token
            max_length: Maximum number of hops per cycle
            max_cycles: Stop after this many cycles

        Yields:
            Cycle objects; nothing when ``start`` is not in the graph
        """
        try:
            start = Token(normalize_token(start))
        except ValueError:
            start = None
        if start is None or start not in self._graph:
            logger.debug("Start token %s not in graph, no cycles", start)
            return
        if max_length is not None and max_length < 2:
            return
        if max_cycles is not None and max_cycles <= 0:
            return

        emitted = 0
        visited = {start}
        # Each frame owns its path and its position in the node's edge list
        stack = [(start, (start,), (), iter(self._graph.out_edges(start, keys=True)))]

        while stack:
            node, tokens, pool_ids, edges = stack[-1]
            descended = False

            for _, neighbor, pool_id in edges:
                if pool_id in pool_ids:
                    continue
                hops = len(pool_ids) + 1

                if neighbor == start:
                    if hops >= 2:
                        yield Cycle(tokens + (start,), pool_ids + (pool_id,))
                        emitted += 1
                        if max_cycles is not None and emitted >= max_cycles:
                            return
                    continue

                if neighbor in visited:
                    continue
                # Closing the loop from neighbor needs one more hop
                if max_length is not None and hops + 1 > max_length:
                    continue

                visited.add(neighbor)
                stack.append(
                    (
                        neighbor,
                        tokens + (neighbor,),
                        pool_ids + (pool_id,),
                        iter(self._graph.out_edges(neighbor, keys=True)),
                    )
                )
                descended = True
                break

            if not descended:
                stack.pop()
                visited.discard(node)

    def enumerate_cycles(
        self,
        start: str,
        max_length: Optional[int] = None,
        max_cycles: Optional[int] = None,
    ) -> List[Cycle]:
        return list(self.iter_cycles(start, max_length, max_cycles))

    # Cycle helpers

    def resolve_cycle(self, tokens: Sequence[str]) -> Cycle:
        """
        Build a cycle from a token path, using the first registered pool for
        every hop. The closing token may be omitted.

        Raises:
            GraphLookupMiss: If some hop has no pool
        """
        path = [normalize_token(t) for t in tokens]
        if path and path[0] != path[-1]:
            path.append(path[0])

        pool_ids = []
        for token_in, token_out in zip(path, path[1:]):
            if token_in not in self._graph or not self._graph.has_edge(
                token_in, token_out
            ):
                raise GraphLookupMiss(
                    f"No pool between {token_in} and {token_out}", token=token_in
                )
            pool_ids.append(next(iter(self._graph[token_in][token_out])))
        return Cycle(tuple(path), tuple(pool_ids))

    def verify_cycle(self, cycle: Cycle) -> bool:
        """True when every hop is backed by a known pool holding both tokens."""
        for token_in, pool_id, token_out in cycle.hops:
            pool = self._pools.get(pool_id)
            if pool is None or not (pool.holds(token_in) and pool.holds(token_out)):
                return False
        return True


def build(pools: Iterable[Pool]) -> TokenGraph:
    """Build a token graph from pools."""
    return TokenGraph.build(pools)


def enumerate_cycles(
    graph: TokenGraph,
    start: str,
    max_length: Optional[int] = None,
    max_cycles: Optional[int] = None,
) -> List[Cycle]:
    """All cycles through ``start``; empty when ``start`` is unknown."""
    return graph.enumerate_cycles(start, max_length=max_length, max_cycles=max_cycles)
