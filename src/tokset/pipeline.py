"""End-to-end runs behind the command line."""

from collections import Counter
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path

from .config import TrainingConfig
from .corpus import check_line_terminators, read_corpus
from .errors import ConfigurationError, InputFormatError
from .optimizer import OptimizationResult, Optimizer
from .processing import Processing, to_display_bytes
from .symbolizer import symbolize_corpus
from .tokenset import TokenSet, TokenSetStats
from .trainer import Trainer, TrainerState
from .types import TokenId
from .vocab import MergeRecord, TokenKind, Vocabulary

log = logging.getLogger(__name__)


@dataclass
class TrainingRun:
    """Outcome of training and optimizing one token set."""

    token_set: TokenSet
    state: TrainerState
    history: list[MergeRecord] = field(default_factory=list)
    optimization: OptimizationResult | None = None
    model_path: Path | None = None


def _check_resumable(base: TokenSet, config: TrainingConfig) -> None:
    """Refuse to grow ``base`` under options it was not trained with."""
    mismatches = [
        (name, ours, theirs)
        for name, ours, theirs in [
            ("scheme", config.scheme, base.scheme_name),
            ("processing", config.processing_stage.value, base.processing.value),
            ("split_paragraphs", config.split_paragraphs, base.split_paragraphs),
        ]
        if ours != theirs
    ]
    if mismatches:
        name, ours, theirs = mismatches[0]
        raise ConfigurationError(
            f"cannot resume {base.name}: {name} is {theirs}, run asks for {ours}"
        )
    if config.n_tokens < len(base):
        raise ConfigurationError(
            f"cannot shrink {base.name} below its {len(base)} tokens",
            n_tokens=config.n_tokens,
            min_tokens=len(base),
        )


def build_token_set(
    data: bytes,
    config: TrainingConfig,
    verbose: bool = False,
    base: TokenSet | None = None,
) -> TrainingRun:
    """
    Train and optionally optimize a token set on ``data``.

    Nothing is written; the returned token set is only built once training
    reached a terminal state.

    :param base: A saved token set to continue from. Its tokens keep their
        ids and training adds merges on top of them.
    """
    check_line_terminators(data)
    processing = config.processing_stage
    scheme = config.fallback

    if base is None:
        symbols = processing.encode(data)
        corpus = symbolize_corpus(symbols, scheme, processing, config.n_tokens)
        vocab, stream = corpus.vocab, corpus.stream
    else:
        _check_resumable(base, config)
        log.info(f"resuming from {base.name} with {base.n_merges} merges")
        vocab = Vocabulary(list(base.tokens))
        stream = base.stream(data, num_workers=config.num_workers)

    trainer = Trainer(
        vocab,
        stream,
        config.n_tokens,
        num_workers=config.num_workers,
        split_paragraphs=config.split_paragraphs,
    )
    state = trainer.train(verbose=verbose)
    log.info(
        f"training {state.value}: {trainer.vocab.live_size} tokens, "
        f"{len(trainer.stream)} stream tokens"
    )

    optimization = None
    if config.optimize:
        optimizer = Optimizer(
            trainer, config.acceptance, config.max_iterations, scheme=scheme
        )
        optimization = optimizer.run()

    if state is TrainerState.EXHAUSTED:
        log.warning(
            f"target of {config.n_tokens} tokens not reached, "
            f"token set has {trainer.vocab.live_size} tokens"
        )

    token_set = TokenSet.from_vocabulary(
        trainer.vocab,
        scheme,
        processing,
        target_size=config.n_tokens,
        status=state,
        stats=TokenSetStats(len(trainer.stream), len(data)),
        split_paragraphs=config.split_paragraphs,
    )
    log.info(
        f"built {token_set.name}: {token_set.stats.bytes_per_token:.3f} bytes/token"
    )
    return TrainingRun(token_set, state, list(trainer.history), optimization)


def optimize(
    training_file: str | Path,
    tokens_dir: str | Path,
    config: TrainingConfig,
    verbose: bool = False,
    input_tokens: str | Path | None = None,
) -> TrainingRun:
    """
    Build a token set from ``training_file`` and save it into ``tokens_dir``.

    :param input_tokens: Optional ``.model`` file to resume from.
    """
    base = TokenSet.load(input_tokens) if input_tokens is not None else None
    data = read_corpus(training_file)
    log.info(
        f"optimizing a token set with {config.n_tokens} tokens from data in {training_file}"
    )
    run = build_token_set(data, config, verbose=verbose, base=base)
    run.model_path = run.token_set.save(tokens_dir)
    return run


def process(raw_file: str | Path, output_file: str | Path) -> int:
    """
    Write the capswords transform of ``raw_file`` for inspection.

    Markers are written as the control bytes 0x14, 0x15 and 0x16.

    :returns: Number of bytes written.
    """
    data = read_corpus(raw_file)
    processed = to_display_bytes(Processing.CAPSWORDS.encode(data))
    output = Path(output_file)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(processed)
    log.info(f"wrote {len(processed)} processed bytes to {output}")
    return len(processed)


def evaluate(
    data_file: str | Path,
    model_path: str | Path,
    tokens_dir: str | Path | None = None,
) -> TokenSetStats:
    """
    Measure how a saved token set compresses ``data_file``.

    With ``tokens_dir``, the measurement and per-token counts are also
    written to ``<tokens_dir>/<name>.json``.
    """
    token_set = TokenSet.load(model_path)
    data = read_corpus(data_file)
    ids = token_set.encode(data)
    stats = TokenSetStats(len(ids), len(data))
    log.info(
        f"{token_set.name}: {stats.total_tokens} tokens for {stats.scanned_bytes} bytes "
        f"({stats.bytes_per_token:.3f} bytes/token)"
    )
    if tokens_dir is not None:
        _save_stats(token_set, stats, ids, Path(tokens_dir))
    return stats


def _save_stats(
    token_set: TokenSet, stats: TokenSetStats, ids: list[TokenId], tokens_dir: Path
) -> Path:
    counts = Counter(ids)
    fallback_ids = [
        i for i, t in enumerate(token_set.tokens) if t.kind is TokenKind.FALLBACK
    ]
    report = {
        "name": token_set.name,
        "ntokens": len(token_set),
        "scheme": token_set.scheme_name,
        "processing": token_set.processing.value,
        "split_paragraphs": token_set.split_paragraphs,
        "scanned_bytes": stats.scanned_bytes,
        "total_tokens": stats.total_tokens,
        "fallback_tokens": sum(counts[i] for i in fallback_ids),
        "bytes_per_token": stats.bytes_per_token,
        "token_counts": [counts[i] for i in range(len(token_set))],
    }
    tokens_dir.mkdir(parents=True, exist_ok=True)
    path = tokens_dir / f"{token_set.name}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, ensure_ascii=True, indent=2)
    log.info(f"wrote token statistics to {path}")
    return path


def count_chars(data_file: str | Path) -> Counter[str]:
    """
    Count the UTF-8 characters of ``data_file`` and log a summary.

    :raises InputFormatError: If the file is not valid UTF-8.
    """
    data = read_corpus(data_file)
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InputFormatError(
            f"data is not valid UTF-8: {e.reason}", position=e.start, path=str(data_file)
        ) from e
    counts = Counter(text)
    log.info(f"total: {len(text)} characters, {len(counts)} distinct")
    for char in sorted(c for c in counts if ord(c) < 256):
        log.info(f"{char!r} {counts[char]}")
    if counts:
        log.info(f"max char: {max(counts)!r}")
    return counts


__all__ = [
    "TrainingRun",
    "build_token_set",
    "optimize",
    "process",
    "evaluate",
    "count_chars",
]
