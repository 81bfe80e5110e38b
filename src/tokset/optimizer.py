"""
Token replacement search on top of a trained vocabulary.

The optimizer repeatedly takes the token that saves the fewest symbols,
re-expands it, lets the trainer spend the freed slot on one new merge, and
keeps the swap only when the acceptance policy approves of the resulting
corpus length. Merge tokens are re-expanded into their pair. Base bytes are
demoted to their fallback digits, which frees a slot whenever a rare byte
is worth less than another merge. Every change is an invertible delta, so a
rejected swap is rolled back without copying the stream.
"""

from dataclasses import dataclass, field
import logging
from typing import Callable

from ._decorators import measure_time
from ._progress import Progress
from .errors import InvariantError
from .fallback import FallbackScheme
from .pair_index import SpreadSites
from .policy import AcceptancePolicy, StrictImprovementPolicy
from .trainer import Trainer
from .types import TokenId
from .vocab import TokenKind

log = logging.getLogger(__name__)


@dataclass
class RetireDelta:
    """Occurrences of ``token`` that were re-expanded into ``spelling``."""

    token: TokenId
    spelling: tuple[TokenId, ...]
    sites: SpreadSites


@dataclass
class OptimizationResult:
    """Summary of one optimizer run."""

    attempts: int = 0
    accepted: int = 0
    passes: int = 0
    tokens_before: int = 0
    tokens_after: int = 0
    # (retired id, replacement id) before compaction
    replacements: list[tuple[TokenId, TokenId]] = field(default_factory=list)
    # byte values whose base token was given up for a merge
    demoted_bytes: list[int] = field(default_factory=list)
    budget_exhausted: bool = False

    @property
    def saved(self) -> int:
        return self.tokens_before - self.tokens_after


class Optimizer:
    """
    Local search that swaps low-value tokens for better merges.

    :param trainer: A trainer that has reached a terminal state. The
        optimizer mutates its vocabulary, stream and index.
    :param policy: Decides which swaps are kept. Defaults to strict improvement.
    :param max_iterations: Upper bound on attempted swaps; ``None`` runs to a
        fixed point.
    :param scheme: Fallback scheme of the vocabulary. Base bytes are only
        considered for demotion when it has fallback digits.
    """

    def __init__(
        self,
        trainer: Trainer,
        policy: AcceptancePolicy | None = None,
        max_iterations: int | None = None,
        scheme: FallbackScheme | None = None,
        progress_every: int = 100,
    ) -> None:
        self.trainer = trainer
        self.policy = policy or StrictImprovementPolicy()
        self.max_iterations = max_iterations
        self.scheme = scheme
        self.progress_every = progress_every

    @property
    def corpus_value(self) -> int:
        """Stream tokens saved by all live merges together."""
        return self.trainer.initial_length - len(self.trainer.stream)

    @property
    def demotes_bytes(self) -> bool:
        return self.scheme is not None and not self.scheme.covers_all_bytes

    def value(self, tok: TokenId) -> int:
        """Symbols saved by merge ``tok``: occurrences times (span - 1)."""
        vocab = self.trainer.vocab
        return self.trainer.index.occurrences(tok) * (vocab.span(tok) - 1)

    def byte_value(self, tok: TokenId) -> int:
        """Stream tokens base byte ``tok`` saves over its fallback spelling."""
        return self.trainer.index.occurrences(tok) * (self.scheme.arity - 1)

    def candidates(self, ineligible: set[TokenId] | None = None) -> list[TokenId]:
        """Live merge tokens that no other live merge is built from."""
        vocab = self.trainer.vocab
        ineligible = ineligible or set()
        return [
            tok
            for _, tok in vocab.merges()
            if tok not in ineligible and not vocab.has_parents(tok)
        ]

    def byte_candidates(self, ineligible: set[TokenId] | None = None) -> list[TokenId]:
        """Live base bytes that no live merge is built from."""
        if not self.demotes_bytes:
            return []
        vocab = self.trainer.vocab
        ineligible = ineligible or set()
        return [
            tok
            for tok in vocab.bases()
            if tok not in ineligible and not vocab.has_parents(tok)
        ]

    def retire(self, tok: TokenId) -> RetireDelta:
        """Re-expand every occurrence of ``tok`` and tombstone it."""
        vocab = self.trainer.vocab
        token = vocab[tok]
        if token.is_merge:
            spelling = token.pair
        elif token.kind is TokenKind.BASE and self.demotes_bytes:
            spelling = self.scheme.encode(token.value)
        else:
            raise InvariantError(f"token {tok} cannot be re-expanded")
        sites = self.trainer.index.split(self.trainer.stream, tok, spelling)
        vocab.retire(tok)
        return RetireDelta(tok, tuple(spelling), sites)

    def unretire(self, delta: RetireDelta) -> None:
        """Undo :meth:`retire`."""
        self.trainer.vocab.restore(delta.token)
        self.trainer.index.unsplit(self.trainer.stream, delta.token, delta.sites)

    def try_replace(self, tok: TokenId) -> TokenId | None:
        """
        Retire ``tok``, refill its slot with one merge and judge the result.

        :returns: The replacement token id if the swap was kept.
        """
        before = len(self.trainer.stream)
        retired = self.retire(tok)
        step = self.trainer.step()
        after = len(self.trainer.stream)

        if step.new_token is not None and self.policy.accept(before, after):
            self.trainer.commit(step)
            log.debug(
                f"replaced token {tok} {retired.spelling} with {step.new_token} "
                f"{step.pair}: {before} -> {after} stream tokens"
            )
            return step.new_token

        self.trainer.undo(step)
        self.unretire(retired)
        if len(self.trainer.stream) != before:
            raise InvariantError(
                f"rollback left {len(self.trainer.stream)} stream tokens, expected {before}"
            )
        return None

    @measure_time("optimization")
    def run(self) -> OptimizationResult:
        """
        Search until a round keeps no swap or the iteration budget runs out.

        Each round is a pass over merge tokens followed by a pass over base
        bytes. Ids of kept swaps are compacted at the end of the run.
        """
        result = OptimizationResult(tokens_before=len(self.trainer.stream))
        log.info(
            f"optimizing {self.trainer.vocab.live_size} tokens "
            f"with {self.policy!r}, initial value {self.corpus_value}"
        )
        progress = Progress(
            log, "swap attempts", self.max_iterations, self.progress_every
        )

        while not result.budget_exhausted:
            result.passes += 1
            kept = self._pass(result, progress, self.candidates, self.value)
            if self.demotes_bytes and not result.budget_exhausted:
                kept += self._pass(
                    result, progress, self.byte_candidates, self.byte_value
                )
            result.accepted += kept
            log.info(
                f"round {result.passes}: kept {kept} swaps, "
                f"{len(self.trainer.stream)} stream tokens"
            )
            if not kept:
                break

        self.compact()
        result.tokens_after = len(self.trainer.stream)
        if result.demoted_bytes:
            log.info(f"demoted {len(result.demoted_bytes)} bytes to fallback")
        log.info(
            f"optimization kept {result.accepted}/{result.attempts} swaps, "
            f"saved {result.saved} stream tokens"
        )
        return result

    def _pass(
        self,
        result: OptimizationResult,
        progress: Progress,
        candidates: Callable[[set[TokenId]], list[TokenId]],
        value: Callable[[TokenId], int],
    ) -> int:
        """Try the cheapest candidate until every one was rejected once."""
        vocab = self.trainer.vocab
        ineligible: set[TokenId] = set()
        kept = 0
        while True:
            budget = self.max_iterations
            if budget is not None and result.attempts >= budget:
                result.budget_exhausted = True
                return kept
            cands = candidates(ineligible)
            if not cands:
                return kept
            tok = min(cands, key=lambda t: (value(t), t))
            token = vocab[tok]
            result.attempts += 1
            new_tok = self.try_replace(tok)
            progress.update(
                result.attempts, f"{len(self.trainer.stream)} stream tokens"
            )
            if new_tok is None:
                ineligible.add(tok)
                continue
            kept += 1
            result.replacements.append((tok, new_tok))
            if token.kind is TokenKind.BASE:
                result.demoted_bytes.append(token.value)

    def reset(self) -> None:
        """
        Retire every merge token, leaving only the initial tokens.

        Bytes demoted by an earlier run stay demoted.
        """
        vocab = self.trainer.vocab
        # parents have larger ids than their children
        for _, tok in reversed(vocab.merges()):
            self.retire(tok)
        self.compact()
        self.trainer.history.clear()

    def compact(self) -> dict[TokenId, TokenId]:
        """Release retired ids and renumber stream, history and index."""
        trainer = self.trainer
        if not trainer.vocab.retired:
            return {tok: tok for tok in range(len(trainer.vocab))}
        remap = trainer.vocab.compact()
        trainer.stream.renumber(remap)
        trainer.remap_history(remap)
        trainer.reindex()
        return remap


__all__ = ["RetireDelta", "OptimizationResult", "Optimizer"]
