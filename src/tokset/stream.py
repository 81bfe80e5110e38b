"""
Mutable token sequence with constant-time merge and re-expansion.

Nodes live in parallel arrays and are chained by ``prev``/``next`` links,
so rewriting one occurrence never shifts the rest of the corpus. Node
positions are stable handles: the pair index refers to them directly.
"""

from typing import Iterator, Sequence

from .errors import InvariantError
from .types import Position, TokenId

NIL: Position = -1


class SymbolStream:
    """The corpus as a linked sequence of token ids."""

    def __init__(self, tokens: list[TokenId]) -> None:
        n = len(tokens)
        self.tokens: list[TokenId] = list(tokens)
        self.prev: list[Position] = list(range(-1, n - 1))
        self.next: list[Position] = list(range(1, n + 1))
        if n:
            self.next[-1] = NIL
        self.alive = bytearray(b"\x01") * n
        self.head: Position = 0 if n else NIL
        self._len = n
        # dead nodes that no undo record refers to
        self._free: list[Position] = []

    def __len__(self) -> int:
        """Number of live tokens."""
        return self._len

    def __iter__(self) -> Iterator[TokenId]:
        for pos in self.nodes():
            yield self.tokens[pos]

    def nodes(self) -> Iterator[Position]:
        """Live node positions in stream order."""
        pos = self.head
        while pos != NIL:
            yield pos
            pos = self.next[pos]

    def to_list(self) -> list[TokenId]:
        return list(self)

    def merge_at(self, pos: Position, new_tok: TokenId) -> Position:
        """
        Replace the pair starting at ``pos`` with ``new_tok``.

        :returns: The right node, now unlinked. It keeps its token so the
            merge can be undone with :meth:`unmerge_at`.
        """
        right = self.next[pos]
        if right == NIL:
            raise InvariantError(f"no pair starts at node {pos}")
        self.tokens[pos] = new_tok
        self._unlink(right)
        return right

    def unmerge_at(self, pos: Position, left: TokenId, right_node: Position) -> None:
        """Undo :meth:`merge_at` by relinking ``right_node`` after ``pos``."""
        if self.alive[right_node]:
            raise InvariantError(f"node {right_node} is still linked")
        self.tokens[pos] = left
        self._link_after(pos, right_node)

    def spread_at(self, pos: Position, spelling: Sequence[TokenId]) -> list[Position]:
        """
        Replace the token at ``pos`` with the tokens of ``spelling``.

        ``pos`` keeps the first token; the rest go into nodes linked after it.

        :returns: The inserted nodes, in stream order.
        """
        self.tokens[pos] = spelling[0]
        nodes: list[Position] = []
        at = pos
        for tok in spelling[1:]:
            node = self._new_node(tok)
            self._link_after(at, node)
            nodes.append(node)
            at = node
        return nodes

    def gather_at(self, pos: Position, tok: TokenId, nodes: Sequence[Position]) -> None:
        """Undo :meth:`spread_at`, releasing ``nodes`` for reuse."""
        at = pos
        for node in nodes:
            if self.next[at] != node:
                raise InvariantError(f"node {node} does not follow node {at}")
            at = node
        for node in reversed(nodes):
            self._unlink(node)
            self._free.append(node)
        self.tokens[pos] = tok

    def split_at(self, pos: Position, left: TokenId, right: TokenId) -> Position:
        """Replace the token at ``pos`` with ``left`` followed by ``right``."""
        return self.spread_at(pos, (left, right))[0]

    def unsplit_at(self, pos: Position, tok: TokenId, node: Position) -> None:
        self.gather_at(pos, tok, (node,))

    def renumber(self, remap: dict[TokenId, TokenId]) -> None:
        """Rewrite every live token through ``remap``."""
        for pos in self.nodes():
            self.tokens[pos] = remap[self.tokens[pos]]

    def _new_node(self, tok: TokenId) -> Position:
        if self._free:
            node = self._free.pop()
            self.tokens[node] = tok
            return node
        self.tokens.append(tok)
        self.prev.append(NIL)
        self.next.append(NIL)
        self.alive.append(0)
        return len(self.tokens) - 1

    def _unlink(self, node: Position) -> None:
        p, n = self.prev[node], self.next[node]
        if p != NIL:
            self.next[p] = n
        else:
            self.head = n
        if n != NIL:
            self.prev[n] = p
        self.alive[node] = 0
        self._len -= 1

    def _link_after(self, pos: Position, node: Position) -> None:
        n = self.next[pos]
        self.prev[node] = pos
        self.next[node] = n
        self.next[pos] = node
        if n != NIL:
            self.prev[n] = node
        self.alive[node] = 1
        self._len += 1


__all__ = ["NIL", "SymbolStream"]
