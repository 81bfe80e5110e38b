"""Greedy pairwise-merge training."""

from dataclasses import dataclass, field
from enum import Enum
import logging

from ._decorators import measure_time
from ._progress import Progress
from .errors import TrainingError
from .pair_index import PairIndex, Sites
from .stream import SymbolStream
from .types import Pair, TokenId
from .vocab import MergeRecord, Token, TokenKind, Vocabulary

log = logging.getLogger(__name__)


class TrainerState(str, Enum):
    """Where a training run stands."""

    GROWING = "growing"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class MergeDelta:
    """
    Everything one :meth:`Trainer.step` changed, in application order.

    A step may first re-apply merges that already have a live token (pairs
    reappear when the optimizer re-expands a token) before creating one new
    token.
    """

    batches: list[tuple[Pair, TokenId, Sites]] = field(default_factory=list)
    new_token: TokenId | None = None

    @property
    def pair(self) -> Pair | None:
        """Pair of the newly created token."""
        if self.new_token is None:
            return None
        return self.batches[-1][0]

    @property
    def saved(self) -> int:
        """Stream tokens removed by this step."""
        return sum(len(sites) for _, _, sites in self.batches)


def _first_symbol_id(vocab: Vocabulary) -> TokenId:
    # fallback digits come first and are never tracked
    for tok_id, token in enumerate(vocab):
        if token.kind is not TokenKind.FALLBACK:
            return tok_id
    return len(vocab)


class Trainer:
    """
    Grow a vocabulary by repeatedly merging the most frequent adjacent pair.

    The trainer owns ``stream`` and its pair index for the whole run.

    Example:
       >>> vocab = Vocabulary([Token.base(b) for b in b" a"])
       >>> stream = SymbolStream([1, 1, 1, 1, 0] * 8)
       >>> trainer = Trainer(vocab, stream, n_tokens=4)
       >>> trainer.train()
       <TrainerState.CONVERGED: 'converged'>
    """

    def __init__(
        self,
        vocab: Vocabulary,
        stream: SymbolStream,
        n_tokens: int,
        *,
        num_workers: int | None = None,
        min_count: int = 2,
        split_paragraphs: bool = False,
        progress_every: int = 1000,
    ) -> None:
        if n_tokens < vocab.live_size:
            raise TrainingError(
                f"target of {n_tokens} tokens is below the {vocab.live_size} initial tokens",
                n_tokens=n_tokens,
            )
        self.vocab = vocab
        self.stream = stream
        self.n_tokens = n_tokens
        self.min_count = min_count
        self.split_paragraphs = split_paragraphs
        self.progress_every = progress_every
        self.num_workers = num_workers
        self.history: list[MergeRecord] = []
        # stream length before any merge, the baseline for savings
        self.initial_length = len(stream)
        self._exhausted = False

        blocked = frozenset(
            tok_id
            for tok_id, token in enumerate(vocab)
            if token.kind is TokenKind.FALLBACK
        )
        self.index = PairIndex(
            blocked=blocked,
            tracked_from=_first_symbol_id(vocab),
            allowed=self._within_paragraph if split_paragraphs else None,
        )
        self.index.build(stream, num_workers=num_workers)

    @property
    def state(self) -> TrainerState:
        if self.vocab.live_size >= self.n_tokens:
            return TrainerState.CONVERGED
        if self._exhausted:
            return TrainerState.EXHAUSTED
        return TrainerState.GROWING

    def step(self) -> MergeDelta:
        """
        Merge the top pair into one new token.

        Does not record the merge; call :meth:`commit` to keep it or
        :meth:`undo` to roll it back. ``new_token`` is ``None`` when the
        vocabulary is full or no pair occurs often enough.
        """
        delta = MergeDelta()
        if self.vocab.live_size >= self.n_tokens:
            return delta

        while True:
            pair = self.index.top(self.min_count)
            if pair is None:
                return delta
            existing = self.vocab.merge_id(pair)
            if existing is not None:
                sites = self.index.merge(self.stream, pair, existing)
                delta.batches.append((pair, existing, sites))
                continue
            new_tok = self.vocab.add(Token.merge(*pair))
            sites = self.index.merge(self.stream, pair, new_tok)
            delta.batches.append((pair, new_tok, sites))
            delta.new_token = new_tok
            return delta

    def commit(self, delta: MergeDelta) -> MergeRecord:
        """Append the token created by ``delta`` to the merge history."""
        if delta.new_token is None:
            raise TrainingError("cannot commit a step that created no token")
        record = MergeRecord(delta.pair, delta.new_token, len(self.history))
        self.history.append(record)
        return record

    def undo(self, delta: MergeDelta) -> None:
        """Roll back an uncommitted step."""
        for pair, _, sites in reversed(delta.batches):
            self.index.unmerge(self.stream, pair, sites)
        if delta.new_token is not None:
            self.vocab.pop()

    @measure_time("training")
    def train(self, verbose: bool = False) -> TrainerState:
        """
        Merge until the vocabulary reaches ``n_tokens`` or no pair repeats.

        :param verbose: Log each learned merge when ``True``.
        :returns: The terminal state.
        """
        n_merges = self.n_tokens - self.vocab.live_size
        log.info(
            f"training from {self.vocab.live_size} tokens to {self.n_tokens} "
            f"over {len(self.stream)} stream tokens"
        )
        progress = Progress(log, "merges", n_merges, self.progress_every)
        for i in range(n_merges):
            delta = self.step()
            if delta.new_token is None:
                self._exhausted = True
                log.warning(
                    f"no pair occurs {self.min_count} times after {i} merges "
                    f"(requested {n_merges}). stopping early with "
                    f"{self.vocab.live_size} tokens."
                )
                break
            record = self.commit(delta)
            if verbose:
                log.info(
                    "merge %d/%d: %s -> %d (%d sites)",
                    i + 1,
                    n_merges,
                    record.pair,
                    record.token,
                    delta.saved,
                )
            else:
                progress.update(i + 1, f"{len(self.stream)} stream tokens")
        return self.state

    def _within_paragraph(self, pair: Pair) -> bool:
        return not self.vocab.crosses_paragraph(pair)

    def reindex(self) -> None:
        """Rebuild the pair index after token ids were renumbered."""
        self.index.tracked_from = _first_symbol_id(self.vocab)
        self.index.build(self.stream, num_workers=self.num_workers)
        self._exhausted = False

    def remap_history(self, remap: dict[TokenId, TokenId]) -> None:
        """Renumber the merge history, dropping tokens that no longer exist."""
        self.history = [
            MergeRecord((remap[r.pair[0]], remap[r.pair[1]]), remap[r.token], r.step)
            for r in self.history
            if r.token in remap
        ]


__all__ = ["TrainerState", "MergeDelta", "Trainer"]
