"""
Incremental adjacent-pair index over a :class:`SymbolStream`.

The index maps every adjacent pair to the stream nodes where it starts and
keeps a lazily invalidated heap for the most frequent pair. Rewriting the
stream through the index only touches the neighbourhood of each rewritten
node, so a merge costs time proportional to its occurrences rather than to
the corpus size.
"""

from collections import defaultdict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
import heapq
import logging
import os
from math import ceil

from .errors import InvariantError
from .stream import NIL, SymbolStream
from .types import Pair, Position, TokenId

log = logging.getLogger(__name__)

# streams shorter than this are scanned on the calling thread
_MIN_SHARD = 1 << 16

type Sites = list[tuple[Position, Position]]
# (position, nodes inserted after it) per re-expanded occurrence
type SpreadSites = list[tuple[Position, list[Position]]]


def _scan_shard(
    tokens: list[TokenId],
    order: list[Position],
    start: int,
    stop: int,
    blocked: frozenset[TokenId],
    allowed: Callable[[Pair], bool] | None,
) -> dict[Pair, list[Position]]:
    """Collect pair positions for pairs starting in ``order[start:stop]``."""
    found: dict[Pair, list[Position]] = defaultdict(list)
    last = len(order) - 1
    for i in range(start, min(stop, last)):
        pos = order[i]
        left, right = tokens[pos], tokens[order[i + 1]]
        if left in blocked or right in blocked:
            continue
        if allowed is not None and not allowed((left, right)):
            continue
        found[(left, right)].append(pos)
    return found


class PairIndex:
    """
    Pair positions, counts and a max-count priority queue.

    :param blocked: Token ids that never take part in a pair (fallback digits).
    :param tracked_from: Token ids at or above this value get per-token
        occurrence sets, used to score and re-expand tokens.
    :param allowed: Optional filter; pairs it rejects are never indexed.
    """

    def __init__(
        self,
        blocked: frozenset[TokenId] = frozenset(),
        tracked_from: TokenId = 0,
        allowed: Callable[[Pair], bool] | None = None,
    ) -> None:
        self.blocked = blocked
        self.allowed = allowed
        self.tracked_from = tracked_from
        self._positions: dict[Pair, set[Position]] = {}
        self._occurrences: dict[TokenId, set[Position]] = defaultdict(set)
        # entries are (-count, left, right): max count, then smallest ids
        self._heap: list[tuple[int, TokenId, TokenId]] = []
        self._dirty: set[Pair] = set()

    # Construction
    # ---------------------------------------------------------------------

    def build(self, stream: SymbolStream, num_workers: int | None = None) -> None:
        """
        Index every adjacent pair of ``stream`` from scratch.

        Pairs are counted over disjoint shards of the stream and the partial
        results are summed; the outcome does not depend on ``num_workers``.
        """
        order = list(stream.nodes())
        tokens = stream.tokens
        if num_workers is None:
            num_workers = os.cpu_count() or 1

        n_shards = max(1, min(num_workers, len(order) // _MIN_SHARD))
        shard_len = ceil(len(order) / n_shards) if order else 0

        if n_shards == 1:
            partials = [
                _scan_shard(tokens, order, 0, len(order), self.blocked, self.allowed)
            ]
        else:
            log.debug(f"counting initial pairs over {n_shards} shards")
            with ThreadPoolExecutor(max_workers=n_shards) as executor:
                futures = [
                    executor.submit(
                        _scan_shard,
                        tokens,
                        order,
                        i * shard_len,
                        (i + 1) * shard_len,
                        self.blocked,
                        self.allowed,
                    )
                    for i in range(n_shards)
                ]
                partials = [f.result() for f in futures]

        self._positions = {}
        for partial in partials:
            for pair, positions in partial.items():
                self._positions.setdefault(pair, set()).update(positions)

        self._occurrences = defaultdict(set)
        for pos in order:
            if tokens[pos] >= self.tracked_from:
                self._occurrences[tokens[pos]].add(pos)

        self._heap = [(-len(p), a, b) for (a, b), p in self._positions.items()]
        heapq.heapify(self._heap)
        self._dirty.clear()
        log.debug(f"indexed {len(self._positions)} distinct pairs")

    # Queries
    # ---------------------------------------------------------------------

    def count(self, pair: Pair) -> int:
        """Number of stream positions where ``pair`` starts."""
        return len(self._positions.get(pair, ()))

    def counts(self) -> dict[Pair, int]:
        """Snapshot of every pair count."""
        return {pair: len(p) for pair, p in self._positions.items()}

    def positions(self, pair: Pair) -> frozenset[Position]:
        return frozenset(self._positions.get(pair, ()))

    def occurrences(self, tok: TokenId) -> int:
        """Number of stream positions holding a tracked token."""
        return len(self._occurrences.get(tok, ()))

    def top(self, min_count: int = 2) -> Pair | None:
        """
        Return the most frequent pair with at least ``min_count`` occurrences.

        Ties go to the smaller left id, then the smaller right id.
        """
        self._flush()
        heap = self._heap
        while heap:
            neg_count, left, right = heap[0]
            if self.count((left, right)) != -neg_count:
                # stale entry
                heapq.heappop(heap)
                continue
            if -neg_count < min_count:
                return None
            return (left, right)
        return None

    # Rewrites
    # ---------------------------------------------------------------------

    def merge(self, stream: SymbolStream, pair: Pair, new_tok: TokenId) -> Sites:
        """
        Replace every occurrence of ``pair`` with ``new_tok``.

        Runs of a repeated token are merged left to right from the start of
        the run, so the result depends only on stream content.

        :returns: ``(position, removed_node)`` per merge, in application order.
        """
        left, right = pair
        sites: Sites = []
        candidates = sorted(self._positions.get(pair, ()))
        tokens, prev, nxt = stream.tokens, stream.prev, stream.next

        def starts_pair(pos: Position) -> bool:
            return (
                stream.alive[pos]
                and tokens[pos] == left
                and nxt[pos] != NIL
                and tokens[nxt[pos]] == right
            )

        for pos in candidates:
            if not starts_pair(pos):
                continue
            if left == right:
                # back up to the first token of the run
                while prev[pos] != NIL and tokens[prev[pos]] == left:
                    pos = prev[pos]
                while pos != NIL and starts_pair(pos):
                    sites.append((pos, self._merge_at(stream, pos, new_tok)))
                    pos = nxt[pos]
            else:
                sites.append((pos, self._merge_at(stream, pos, new_tok)))

        self._flush()
        return sites

    def unmerge(self, stream: SymbolStream, pair: Pair, sites: Sites) -> None:
        """Undo :meth:`merge` given the sites it returned."""
        left, _ = pair
        for pos, node in reversed(sites):
            p = stream.prev[pos]
            self._unindex(stream, p)
            self._unindex(stream, pos)
            self._untrack(stream, pos)
            stream.unmerge_at(pos, left, node)
            self._track(stream, pos)
            self._track(stream, node)
            self._index(stream, p)
            self._index(stream, pos)
            self._index(stream, node)
        self._flush()

    def split(
        self, stream: SymbolStream, tok: TokenId, spelling: Sequence[TokenId]
    ) -> SpreadSites:
        """
        Re-expand every occurrence of ``tok`` into the tokens of ``spelling``.

        A merge token is spelled by its pair; a demoted byte by its fallback
        digits.

        :returns: ``(position, inserted_nodes)`` per occurrence.
        """
        sites: SpreadSites = []
        for pos in sorted(self._occurrences.get(tok, ())):
            p = stream.prev[pos]
            self._unindex(stream, p)
            self._unindex(stream, pos)
            self._untrack(stream, pos)
            nodes = stream.spread_at(pos, spelling)
            for node in (pos, *nodes):
                self._track(stream, node)
            self._index(stream, p)
            for node in (pos, *nodes):
                self._index(stream, node)
            sites.append((pos, nodes))
        self._flush()
        return sites

    def unsplit(self, stream: SymbolStream, tok: TokenId, sites: SpreadSites) -> None:
        """Undo :meth:`split` given the sites it returned."""
        for pos, nodes in reversed(sites):
            p = stream.prev[pos]
            self._unindex(stream, p)
            for node in (pos, *nodes):
                self._unindex(stream, node)
                self._untrack(stream, node)
            stream.gather_at(pos, tok, nodes)
            self._track(stream, pos)
            self._index(stream, p)
            self._index(stream, pos)
        self._flush()

    # Internals
    # ---------------------------------------------------------------------

    def _merge_at(self, stream: SymbolStream, pos: Position, new_tok: TokenId) -> Position:
        p = stream.prev[pos]
        r = stream.next[pos]
        self._unindex(stream, p)
        self._unindex(stream, pos)
        self._unindex(stream, r)
        self._untrack(stream, pos)
        self._untrack(stream, r)
        node = stream.merge_at(pos, new_tok)
        self._track(stream, pos)
        self._index(stream, p)
        self._index(stream, pos)
        return node

    def _pair_at(self, stream: SymbolStream, pos: Position) -> Pair | None:
        if pos == NIL:
            return None
        nxt = stream.next[pos]
        if nxt == NIL:
            return None
        pair = (stream.tokens[pos], stream.tokens[nxt])
        if pair[0] in self.blocked or pair[1] in self.blocked:
            return None
        if self.allowed is not None and not self.allowed(pair):
            return None
        return pair

    def _index(self, stream: SymbolStream, pos: Position) -> None:
        pair = self._pair_at(stream, pos)
        if pair is None:
            return
        self._positions.setdefault(pair, set()).add(pos)
        self._dirty.add(pair)

    def _unindex(self, stream: SymbolStream, pos: Position) -> None:
        pair = self._pair_at(stream, pos)
        if pair is None:
            return
        try:
            self._positions[pair].remove(pos)
        except KeyError:
            raise InvariantError(f"pair {pair} is not indexed at node {pos}") from None
        self._dirty.add(pair)

    def _track(self, stream: SymbolStream, pos: Position) -> None:
        tok = stream.tokens[pos]
        if tok >= self.tracked_from:
            self._occurrences[tok].add(pos)

    def _untrack(self, stream: SymbolStream, pos: Position) -> None:
        tok = stream.tokens[pos]
        if tok >= self.tracked_from:
            try:
                self._occurrences[tok].remove(pos)
            except KeyError:
                raise InvariantError(
                    f"token {tok} is not tracked at node {pos}"
                ) from None

    def _flush(self) -> None:
        """Push fresh heap entries for pairs whose count changed."""
        for pair in self._dirty:
            positions = self._positions.get(pair)
            if positions:
                heapq.heappush(self._heap, (-len(positions), pair[0], pair[1]))
            elif positions is not None:
                del self._positions[pair]
        self._dirty.clear()


__all__ = ["PairIndex", "Sites", "SpreadSites"]
