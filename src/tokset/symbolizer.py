"""Map processed symbols to initial token ids."""

from collections import Counter
from dataclasses import dataclass
import logging
from typing import Iterable, Sequence

from .errors import ConfigurationError, InputFormatError
from .fallback import FallbackScheme
from .processing import Marker, Processing
from .stream import SymbolStream
from .types import Symbol, TokenId
from .vocab import Token, TokenKind, Vocabulary

log = logging.getLogger(__name__)

_N_SYMBOLS = 256 + len(Marker)


class Symbolizer:
    """
    Lookup from every symbol to its token id or fallback expansion.

    The initial vocabulary is laid out as: fallback alphabet, markers, then
    base tokens in byte order.
    """

    def __init__(
        self,
        scheme: FallbackScheme,
        processing: Processing,
        byte_tokens: Iterable[int],
    ) -> None:
        self.scheme = scheme
        self.processing = processing

        tokens = [Token.fallback(d) for d in range(scheme.alphabet_size)]
        tokens += [Token.marker(m) for m in processing.markers]
        if scheme.covers_all_bytes:
            byte_tokens = range(256)
        tokens += [Token.base(b) for b in sorted(set(byte_tokens))]
        self.initial_tokens: tuple[Token, ...] = tuple(tokens)
        self._build_lookup()

    @classmethod
    def from_vocabulary(
        cls, vocab: Iterable[Token], scheme: FallbackScheme, processing: Processing
    ) -> "Symbolizer":
        """Recover the symbolizer that produced ``vocab``."""
        byte_tokens = [t.value for t in vocab if t.kind is TokenKind.BASE]
        return cls(scheme, processing, byte_tokens)

    @classmethod
    def for_corpus(
        cls,
        symbols: Sequence[Symbol],
        scheme: FallbackScheme,
        processing: Processing,
        n_tokens: int,
    ) -> "Symbolizer":
        """
        Pick base tokens for the bytes of ``symbols``.

        Every byte that occurs gets a base token when the budget allows;
        otherwise the most frequent bytes win (ties go to the smaller byte)
        and the rest fall back.
        """
        if scheme.covers_all_bytes:
            return cls(scheme, processing, range(256))

        budget = n_tokens - scheme.alphabet_size - len(processing.markers)
        if budget < 0:
            raise ConfigurationError(
                f"{scheme.NAME} with {processing.value} processing needs more tokens",
                n_tokens=n_tokens,
                min_tokens=scheme.alphabet_size + len(processing.markers),
            )
        counts = Counter(s for s in symbols if s < 256)
        ranked = sorted(counts, key=lambda b: (-counts[b], b))
        chosen = ranked[:budget]
        if len(chosen) < len(ranked):
            log.info(
                f"{len(ranked) - len(chosen)} of {len(ranked)} observed bytes "
                f"use {scheme.NAME} fallback"
            )
        return cls(scheme, processing, chosen)

    def _build_lookup(self) -> None:
        lookup: list[tuple[TokenId, ...] | None] = [None] * _N_SYMBOLS
        for tok_id, token in enumerate(self.initial_tokens):
            if token.kind in (TokenKind.BASE, TokenKind.MARKER):
                lookup[token.value] = (tok_id,)
        if not self.scheme.covers_all_bytes:
            # fallback digit d is token id d
            for byte in range(256):
                if lookup[byte] is None:
                    lookup[byte] = self.scheme.encode(byte)
        self._lookup = lookup

    def vocabulary(self) -> Vocabulary:
        """A fresh vocabulary holding only the initial tokens."""
        return Vocabulary(list(self.initial_tokens))

    def symbolize(self, symbols: Sequence[Symbol]) -> list[TokenId]:
        """
        Convert symbols to initial token ids.

        :raises InputFormatError: If a symbol has no representation, such as a
            marker under raw processing.
        """
        out: list[TokenId] = []
        lookup = self._lookup
        for pos, sym in enumerate(symbols):
            ids = lookup[sym] if 0 <= sym < _N_SYMBOLS else None
            if ids is None:
                raise InputFormatError(
                    f"symbol {sym} cannot be represented", position=pos
                )
            out.extend(ids)
        return out

    def stream(self, symbols: Sequence[Symbol]) -> SymbolStream:
        return SymbolStream(self.symbolize(symbols))


@dataclass
class SymbolizedCorpus:
    """Initial training state for one corpus."""

    symbolizer: Symbolizer
    vocab: Vocabulary
    stream: SymbolStream


def symbolize_corpus(
    symbols: Sequence[Symbol],
    scheme: FallbackScheme,
    processing: Processing,
    n_tokens: int,
) -> SymbolizedCorpus:
    """Choose the initial vocabulary for ``symbols`` and build its stream."""
    symbolizer = Symbolizer.for_corpus(symbols, scheme, processing, n_tokens)
    vocab = symbolizer.vocabulary()
    stream = symbolizer.stream(symbols)
    log.info(
        f"symbolized {len(symbols)} symbols into {len(stream)} tokens "
        f"with {len(vocab)} initial tokens"
    )
    return SymbolizedCorpus(symbolizer, vocab, stream)


__all__ = ["Symbolizer", "SymbolizedCorpus", "symbolize_corpus"]
