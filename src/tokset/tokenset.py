"""
Immutable token set model and its on-disk artifact.
"""

from dataclasses import dataclass, field
from functools import cached_property
import logging
from pathlib import Path
from typing import Final, Sequence

from ._sanitise import render_symbols
from .errors import (
    InvariantError,
    MalformedInputError,
    ModelLoadError,
    TokSetError,
)
from .fallback import FallbackScheme, get_scheme
from .pair_index import PairIndex
from .processing import Marker, Processing
from .stream import SymbolStream
from .symbolizer import Symbolizer
from .trainer import TrainerState
from .types import Pair, Symbol, TokenId
from .vocab import Token, TokenKind, Vocabulary

PREFIX: Final[str] = "TokSet"
FORMAT_VERSION: Final[str] = "1"
MODEL_SUFFIX: Final[str] = ".model"
VOCAB_SUFFIX: Final[str] = ".vocab"

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSetStats:
    """How well a token set compressed the data it was measured on."""

    total_tokens: int
    scanned_bytes: int

    @property
    def bytes_per_token(self) -> float:
        if not self.total_tokens:
            return 0.0
        return self.scanned_bytes / self.total_tokens


@dataclass(frozen=True)
class TokenSet:
    """
    A finished vocabulary together with the codec and processing it expects.

    Merge priority is id order: when encoding, the merge with the smallest
    id is always applied first.
    """

    tokens: tuple[Token, ...]
    scheme_name: str
    processing: Processing
    target_size: int
    status: TrainerState = TrainerState.CONVERGED
    stats: TokenSetStats | None = None
    # trained without merges across blank lines
    split_paragraphs: bool = False
    _merges: dict[Pair, TokenId] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        for tok_id, token in enumerate(self.tokens):
            if token.is_merge:
                if not (0 <= token.left < tok_id and 0 <= token.right < tok_id):
                    raise InvariantError(
                        f"merge token {tok_id} references child outside [0, {tok_id})"
                    )
                if token.pair in self._merges:
                    raise InvariantError(f"duplicate merge {token.pair} at token {tok_id}")
                self._merges[token.pair] = tok_id

        # initial tokens must sit where the symbolizer puts them
        initial = self._symbolizer.initial_tokens
        if self.tokens[: len(initial)] != initial or any(
            not token.is_merge for token in self.tokens[len(initial) :]
        ):
            raise InvariantError(
                f"token layout does not match {self.scheme_name} "
                f"with {self.processing.value} processing"
            )

    @classmethod
    def from_vocabulary(
        cls,
        vocab: Vocabulary,
        scheme: FallbackScheme,
        processing: Processing,
        target_size: int,
        status: TrainerState,
        stats: TokenSetStats | None = None,
        split_paragraphs: bool = False,
    ) -> "TokenSet":
        """Snapshot a compacted training vocabulary."""
        if vocab.retired:
            raise InvariantError("vocabulary must be compacted before snapshotting")
        return cls(
            tokens=tuple(vocab),
            scheme_name=scheme.NAME,
            processing=processing,
            target_size=target_size,
            status=status,
            stats=stats,
            split_paragraphs=split_paragraphs,
        )

    def __len__(self) -> int:
        return len(self.tokens)

    @cached_property
    def scheme(self) -> FallbackScheme:
        return get_scheme(self.scheme_name)

    @cached_property
    def _vocab(self) -> Vocabulary:
        return Vocabulary(list(self.tokens))

    @cached_property
    def _fallback_ids(self) -> frozenset[TokenId]:
        return frozenset(
            tok_id
            for tok_id, token in enumerate(self.tokens)
            if token.kind is TokenKind.FALLBACK
        )

    @cached_property
    def _symbolizer(self) -> Symbolizer:
        return Symbolizer.from_vocabulary(self.tokens, self.scheme, self.processing)

    @property
    def name(self) -> str:
        return f"tokens{len(self.tokens)}_{self.processing.value}_{self.scheme_name}"

    @property
    def n_merges(self) -> int:
        return len(self._merges)

    # Encoding
    # ---------------------------------------------------------------------

    def encode(self, data: bytes) -> list[TokenId]:
        """Encode raw bytes into token ids."""
        return self.stream(data).to_list()

    def stream(self, data: bytes, num_workers: int | None = None) -> SymbolStream:
        """
        Encode ``data`` into a linked stream, ready to resume training on.

        Merges are applied once each in id order. A merge only creates pairs
        that involve its own id, which is larger than every earlier merge,
        so no earlier merge can apply again afterwards.
        """
        stream = self._symbolizer.stream(self.processing.encode(data))
        # no token is tracked, encoding never re-expands
        index = PairIndex(blocked=self._fallback_ids, tracked_from=len(self.tokens))
        index.build(stream, num_workers=num_workers)
        for pair, tok_id in self._merges.items():
            if index.count(pair):
                index.merge(stream, pair, tok_id)
        return stream

    def decode(self, ids: Sequence[TokenId]) -> bytes:
        """
        Decode token ids back into the original bytes.

        :raises MalformedInputError: On unknown ids, incomplete fallback
            groups or misplaced markers.
        """
        return self.processing.decode(self.symbols(ids))

    def symbols(self, ids: Sequence[TokenId]) -> list[Symbol]:
        """Expand token ids into processed symbols, decoding fallback runs."""
        out: list[Symbol] = []
        digits: list[int] = []
        # token position where the pending digit run started
        run_start = 0
        for pos, tok_id in enumerate(ids):
            if not 0 <= tok_id < len(self.tokens):
                raise MalformedInputError(f"unknown token id {tok_id}", position=pos)
            for leaf in self._vocab.expand(tok_id):
                token = self.tokens[leaf]
                if token.kind is TokenKind.FALLBACK:
                    if not digits:
                        run_start = pos
                    digits.append(token.value)
                    continue
                if digits:
                    out.extend(self._decode_digits(digits, run_start))
                    digits = []
                out.append(token.value)
        if digits:
            out.extend(self._decode_digits(digits, run_start))
        return out

    def _decode_digits(self, digits: list[int], run_start: int) -> bytes:
        try:
            return self.scheme.decode_stream(digits)
        except MalformedInputError as e:
            raise MalformedInputError(
                f"fallback run starting at token {run_start} is malformed: {e}",
                position=run_start,
            ) from e

    def expand(self, tok_id: TokenId) -> list[Symbol]:
        """Symbols spelled by one token; fallback digits are skipped."""
        if not 0 <= tok_id < len(self.tokens):
            raise MalformedInputError(f"unknown token id {tok_id}")
        return self._vocab.symbols(tok_id)

    def measure(self, data: bytes) -> TokenSetStats:
        """Encode ``data`` and report its compression."""
        return TokenSetStats(len(self.encode(data)), len(data))

    # Serialization
    # ---------------------------------------------------------------------

    def save(self, tokens_dir: str | Path) -> Path:
        """
        Write the ``.model`` artifact and a readable ``.vocab`` listing.

        :returns: Path of the ``.model`` file.
        """
        prefix = Path(tokens_dir) / self.name
        log.info(f"saving token set to {prefix}")
        model_path = self._save_model(prefix)
        self._save_vocab(prefix)
        log.info("token set saved successfully")
        return model_path

    def _save_model(self, prefix: Path) -> Path:
        model_path = prefix.with_suffix(MODEL_SUFFIX)
        model_path.parent.mkdir(parents=True, exist_ok=True)

        with model_path.open("w", encoding="utf-8", newline="\n") as f:
            # header: format version, codec, processing, run outcome
            f.write(f"{PREFIX} {FORMAT_VERSION}\n")
            f.write(f"scheme {self.scheme_name}\n")
            f.write(f"processing {self.processing.value}\n")
            f.write(f"target {self.target_size}\n")
            f.write(f"status {self.status.value}\n")
            f.write(f"split_paragraphs {str(self.split_paragraphs).lower()}\n")
            if self.stats is not None:
                f.write(f"stats {self.stats.total_tokens} {self.stats.scanned_bytes}\n")
            else:
                f.write("stats -\n")
            f.write("---\n")
            f.write(f"{len(self.tokens)}\n")
            # body: one record per token in id order
            for token in self.tokens:
                f.write(f"{token.describe()}\n")
        return model_path

    def _save_vocab(self, prefix: Path) -> Path:
        vocab_path = prefix.with_suffix(VOCAB_SUFFIX)
        vocab_path.parent.mkdir(parents=True, exist_ok=True)

        with vocab_path.open("w", encoding="utf-8", newline="\n") as f:
            for tok_id, token in enumerate(self.tokens):
                match token.kind:
                    case TokenKind.FALLBACK:
                        f.write(f"[{tok_id}] <fallback {token.value}>\n")
                    case TokenKind.MERGE:
                        left = render_symbols(self.expand(token.left))
                        right = render_symbols(self.expand(token.right))
                        whole = render_symbols(self.expand(tok_id))
                        f.write(f"[{tok_id}] [{left}][{right}] -> {whole}\n")
                    case _:
                        f.write(f"[{tok_id}] {render_symbols([token.value])}\n")
        return vocab_path

    @classmethod
    def load(cls, model_filename: str | Path) -> "TokenSet":
        """
        Load a token set from a ``.model`` file.

        :raises ModelLoadError: If the file is missing, has the wrong suffix or
            holds an invalid record.
        """
        path = Path(model_filename)

        if not path.exists():
            raise ModelLoadError("model filepath does not exist", model_path=str(path))

        if path.suffix != MODEL_SUFFIX:
            raise ModelLoadError("expected .model file", model_path=str(path))

        log.info(f"loading token set from {path}")

        with path.open("r", encoding="utf-8") as f:
            lines = [line.rstrip("\n") for line in f]

        def header(lineno: int, key: str) -> str:
            if lineno >= len(lines) or not lines[lineno].startswith(f"{key} "):
                raise ModelLoadError(
                    f"expected '{key}' header", model_path=str(path), line=lineno + 1
                )
            return lines[lineno][len(key) + 1 :]

        version = header(0, PREFIX)
        if version != FORMAT_VERSION:
            raise ModelLoadError(
                "model version mismatch",
                model_path=str(path),
                version_mismatch=(version, FORMAT_VERSION),
            )
        try:
            scheme = get_scheme(header(1, "scheme"))
            processing = Processing.get(header(2, "processing"))
            target_size = int(header(3, "target"))
            status = TrainerState(header(4, "status"))
            split_paragraphs = _parse_flag(header(5, "split_paragraphs"))
            raw_stats = header(6, "stats")
            stats = None
            if raw_stats != "-":
                total, scanned = map(int, raw_stats.split())
                stats = TokenSetStats(total, scanned)
        except (TokSetError, ValueError) as e:
            if isinstance(e, ModelLoadError):
                raise
            raise ModelLoadError(f"invalid header: {e}", model_path=str(path)) from e

        if len(lines) < 9 or lines[7] != "---":
            raise ModelLoadError(
                "token section marker missing", model_path=str(path), line=8
            )
        try:
            n_tokens = int(lines[8])
        except ValueError:
            raise ModelLoadError(
                f"invalid token count: {lines[8]}", model_path=str(path), line=9
            )
        records = lines[9:]
        if len(records) != n_tokens:
            raise ModelLoadError(
                f"expected {n_tokens} token records, found {len(records)}",
                model_path=str(path),
            )

        tokens = [
            _parse_record(record, lineno, str(path))
            for lineno, record in enumerate(records, start=10)
        ]
        try:
            token_set = cls(
                tokens=tuple(tokens),
                scheme_name=scheme.NAME,
                processing=processing,
                target_size=target_size,
                status=status,
                stats=stats,
                split_paragraphs=split_paragraphs,
            )
        except InvariantError as e:
            raise ModelLoadError(str(e), model_path=str(path)) from e

        log.info(
            f"token set loaded successfully: {len(token_set)} tokens, "
            f"{token_set.n_merges} merges"
        )
        return token_set


def _parse_flag(value: str) -> bool:
    if value not in ("true", "false"):
        raise ValueError(f"expected true or false, got {value!r}")
    return value == "true"


def _parse_record(record: str, lineno: int, path: str) -> Token:
    parts = record.split()
    try:
        match parts:
            case ["fallback", digit]:
                return Token.fallback(int(digit))
            case ["base", byte] if 0 <= int(byte) <= 255:
                return Token.base(int(byte))
            case ["marker", name]:
                return Token.marker(Marker.from_name(name))
            case ["merge", left, right]:
                return Token.merge(int(left), int(right))
    except (TokSetError, ValueError):
        pass
    raise ModelLoadError(f"invalid token record: {record!r}", model_path=path, line=lineno)


def from_pretrained(model_path: str | Path) -> TokenSet:
    """
    Load a saved token set.

    .. code-block:: python

        token_set = from_pretrained("tokens/tokens1024_capswords_bits4.model")
        ids = token_set.encode(b"Hello world")
    """
    return TokenSet.load(model_path)


__all__ = ["TokenSet", "TokenSetStats", "from_pretrained"]
