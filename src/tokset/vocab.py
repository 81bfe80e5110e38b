"""
Token records and the id-indexed vocabulary arena.
"""

from dataclasses import dataclass
from enum import Enum
import logging
from typing import NamedTuple

from .errors import InvariantError
from .processing import Marker
from .types import Pair, Symbol, TokenId

log = logging.getLogger(__name__)


class TokenKind(str, Enum):
    """What a token stands for."""

    FALLBACK = "fallback"
    BASE = "base"
    MARKER = "marker"
    MERGE = "merge"


@dataclass(frozen=True, slots=True)
class Token:
    """
    One vocabulary entry.

    ``value`` holds the fallback digit, byte or marker symbol; merge tokens
    reference their children by id instead.
    """

    kind: TokenKind
    value: int = -1
    left: TokenId = -1
    right: TokenId = -1

    @classmethod
    def fallback(cls, digit: int) -> "Token":
        return cls(TokenKind.FALLBACK, value=digit)

    @classmethod
    def base(cls, byte: int) -> "Token":
        return cls(TokenKind.BASE, value=byte)

    @classmethod
    def marker(cls, marker: Marker) -> "Token":
        return cls(TokenKind.MARKER, value=int(marker))

    @classmethod
    def merge(cls, left: TokenId, right: TokenId) -> "Token":
        return cls(TokenKind.MERGE, left=left, right=right)

    @property
    def is_merge(self) -> bool:
        return self.kind is TokenKind.MERGE

    @property
    def pair(self) -> Pair:
        if not self.is_merge:
            raise InvariantError(f"{self.kind.value} token has no children")
        return (self.left, self.right)

    def describe(self) -> str:
        """Short record used by the artifact format."""
        match self.kind:
            case TokenKind.MERGE:
                return f"merge {self.left} {self.right}"
            case TokenKind.MARKER:
                return f"marker {Marker(self.value).name.lower()}"
            case _:
                return f"{self.kind.value} {self.value}"


@dataclass(frozen=True, slots=True)
class MergeRecord:
    """One committed merge, in training order."""

    pair: Pair
    token: TokenId
    step: int


class _Edges(NamedTuple):
    """Newline structure of a token's spelling, for paragraph splitting."""

    starts_nl: bool
    ends_nl: bool
    all_nl: bool
    # contains two consecutive newlines
    has_break: bool


_NL = _Edges(True, True, True, False)
_OTHER = _Edges(False, False, False, False)


class Vocabulary:
    """
    Dense arena of tokens addressed by id.

    Merge tokens only point at smaller ids, so id order is a topological
    order and doubles as merge priority. Retired ids stay reserved as
    tombstones until :meth:`compact` renumbers the survivors.
    """

    def __init__(self, tokens: list[Token] | None = None) -> None:
        self._tokens: list[Token] = []
        self._retired: set[TokenId] = set()
        # merge pair -> live merge token
        self._merges: dict[Pair, TokenId] = {}
        # number of initial symbols each token spans
        self._spans: list[int] = []
        # live merges using a token as a child
        self._parents: list[int] = []
        self._edges: list[_Edges] = []
        for tok in tokens or []:
            self.add(tok)

    def __len__(self) -> int:
        """Number of ids handed out, tombstones included."""
        return len(self._tokens)

    def __getitem__(self, tok_id: TokenId) -> Token:
        return self._tokens[tok_id]

    def __iter__(self):
        return iter(self._tokens)

    @property
    def live_size(self) -> int:
        """Number of tokens that are not retired."""
        return len(self._tokens) - len(self._retired)

    @property
    def retired(self) -> frozenset[TokenId]:
        return frozenset(self._retired)

    def is_live(self, tok_id: TokenId) -> bool:
        return 0 <= tok_id < len(self._tokens) and tok_id not in self._retired

    def add(self, token: Token) -> TokenId:
        """Append ``token`` and return its id."""
        new_id = len(self._tokens)
        span = 1
        if token.is_merge:
            for child in token.pair:
                if not 0 <= child < new_id or child in self._retired:
                    raise InvariantError(
                        f"merge {token.pair} references missing child {child}"
                    )
            if token.pair in self._merges:
                raise InvariantError(f"duplicate merge {token.pair}")
            span = self._spans[token.left] + self._spans[token.right]
            self._parents[token.left] += 1
            self._parents[token.right] += 1
            self._merges[token.pair] = new_id
            left, right = self._edges[token.left], self._edges[token.right]
            edges = _Edges(
                starts_nl=left.starts_nl,
                ends_nl=right.ends_nl,
                all_nl=left.all_nl and right.all_nl,
                has_break=left.has_break
                or right.has_break
                or (left.ends_nl and right.starts_nl),
            )
        elif token.kind is TokenKind.BASE and token.value == 0x0A:
            edges = _NL
        else:
            edges = _OTHER
        self._tokens.append(token)
        self._spans.append(span)
        self._parents.append(0)
        self._edges.append(edges)
        return new_id

    def merge_id(self, pair: Pair) -> TokenId | None:
        """Return the live merge token for ``pair``, if any."""
        return self._merges.get(pair)

    def span(self, tok_id: TokenId) -> int:
        """Number of initial symbols ``tok_id`` expands to."""
        return self._spans[tok_id]

    def has_parents(self, tok_id: TokenId) -> bool:
        """Whether a live merge uses ``tok_id`` as a child."""
        return self._parents[tok_id] > 0

    def crosses_paragraph(self, pair: Pair) -> bool:
        """
        Whether merging ``pair`` would put anything but newlines after a
        blank line (two consecutive newlines) inside one token.
        """
        left, right = self._edges[pair[0]], self._edges[pair[1]]
        if right.all_nl:
            return False
        return left.has_break or (left.ends_nl and right.starts_nl)

    def retire(self, tok_id: TokenId) -> None:
        """
        Tombstone a merge or base token that no live merge depends on.

        Retired base bytes are spelled with fallback digits from then on.
        """
        token = self._tokens[tok_id]
        if token.kind not in (TokenKind.MERGE, TokenKind.BASE) or tok_id in self._retired:
            raise InvariantError(f"cannot retire token {tok_id}")
        if self._parents[tok_id]:
            raise InvariantError(f"token {tok_id} is still a child of a live merge")
        self._retired.add(tok_id)
        if token.is_merge:
            self._parents[token.left] -= 1
            self._parents[token.right] -= 1
            del self._merges[token.pair]

    def restore(self, tok_id: TokenId) -> None:
        """Undo :meth:`retire`."""
        if tok_id not in self._retired:
            raise InvariantError(f"token {tok_id} is not retired")
        token = self._tokens[tok_id]
        self._retired.discard(tok_id)
        if token.is_merge:
            self._parents[token.left] += 1
            self._parents[token.right] += 1
            self._merges[token.pair] = tok_id

    def pop(self) -> Token:
        """Remove the most recently added token."""
        tok_id = len(self._tokens) - 1
        token = self._tokens[tok_id]
        if self._parents[tok_id] or tok_id in self._retired:
            raise InvariantError(f"cannot pop token {tok_id}")
        if token.is_merge:
            self._parents[token.left] -= 1
            self._parents[token.right] -= 1
            del self._merges[token.pair]
        self._tokens.pop()
        self._spans.pop()
        self._parents.pop()
        self._edges.pop()
        return token

    def expand(self, tok_id: TokenId) -> list[TokenId]:
        """Expand a token into the non-merge tokens it is built from."""
        out: list[TokenId] = []
        stack = [tok_id]
        while stack:
            tid = stack.pop()
            token = self._tokens[tid]
            if token.is_merge:
                # right first so the left child is expanded first
                stack.append(token.right)
                stack.append(token.left)
            else:
                out.append(tid)
        return out

    def symbols(self, tok_id: TokenId) -> list[Symbol]:
        """Expand a token into bytes and markers, skipping fallback digits."""
        return [
            self._tokens[t].value
            for t in self.expand(tok_id)
            if self._tokens[t].kind is not TokenKind.FALLBACK
        ]

    def compact(self) -> dict[TokenId, TokenId]:
        """
        Drop tombstones and renumber the surviving tokens densely.

        Relative order is kept, so children remain smaller than their parents.

        :returns: Mapping from every surviving old id to its new id.
        """
        remap: dict[TokenId, TokenId] = {}
        survivors: list[Token] = []
        for old_id, token in enumerate(self._tokens):
            if old_id in self._retired:
                continue
            remap[old_id] = len(survivors)
            if token.is_merge:
                token = Token.merge(remap[token.left], remap[token.right])
            survivors.append(token)

        if self._retired:
            log.debug(
                f"compacted vocabulary: {len(self._retired)} retired ids released"
            )
        fresh = Vocabulary(survivors)
        self._tokens = fresh._tokens
        self._retired = fresh._retired
        self._merges = fresh._merges
        self._spans = fresh._spans
        self._parents = fresh._parents
        self._edges = fresh._edges
        return remap

    def merges(self) -> list[tuple[Pair, TokenId]]:
        """Live merges in priority (id) order."""
        return sorted(
            ((pair, tok) for pair, tok in self._merges.items()), key=lambda x: x[1]
        )

    def bases(self) -> list[TokenId]:
        """Live base byte tokens in id order."""
        return [
            tok_id
            for tok_id, token in enumerate(self._tokens)
            if token.kind is TokenKind.BASE and tok_id not in self._retired
        ]


__all__ = ["TokenKind", "Token", "MergeRecord", "Vocabulary"]
