"""End-to-end tests for the pipeline and the ``tokset`` command line."""

import json
import logging

import pytest

from tokset import TrainingConfig, build_token_set
from tokset.cli import main
from tokset.errors import ConfigurationError, InputFormatError, SchemeError
from tokset.pipeline import count_chars
from tokset.tokenset import TokenSet

TEXT = (
    b"It was the best of times, it was the worst of times,\n"
    b"it was the age of wisdom, it was the age of foolishness,\n"
    b"It Was The Epoch Of Belief, IT WAS THE EPOCH OF INCREDULITY.\n"
) * 15


# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def data_file(tmp_path):
    """Return a small LF-terminated training file."""
    path = tmp_path / "train.txt"
    path.write_bytes(TEXT)
    return path


def optimize_args(data_file, tokens_dir, *extra):
    return [
        "optimize",
        "-d", str(data_file),
        "-t", str(tokens_dir),
        "--type", "bits4",
        "-p", "capswords",
        *extra,
    ]


# Configuration
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("n_tokens", [1, 18, 65537])
def test_config_rejects_token_counts(n_tokens):
    """Token counts outside the valid range, or too small to spell every byte."""
    with pytest.raises(ConfigurationError):
        TrainingConfig(n_tokens=n_tokens, scheme="bits4", processing="capswords")


def test_config_rejects_unknown_scheme():
    with pytest.raises(SchemeError) as excinfo:
        TrainingConfig(n_tokens=64, scheme="bits3")
    assert excinfo.value.invalid_name == "bits3"


def test_config_min_tokens():
    """Each scheme needs its alphabet plus one token per marker."""
    assert TrainingConfig(n_tokens=19, scheme="bits4", processing="capswords")
    assert TrainingConfig(n_tokens=2, scheme="bits1")
    with pytest.raises(ConfigurationError):
        TrainingConfig(n_tokens=255, scheme="bytes")


# Pipeline
# ---------------------------------------------------------------------------


def test_build_rejects_crlf():
    """CRLF line terminators are refused before any work."""
    with pytest.raises(InputFormatError) as excinfo:
        build_token_set(b"a\r\nb", TrainingConfig(n_tokens=64))
    assert excinfo.value.position == 1


def test_optimization_never_hurts():
    """The optimized token set compresses at least as well as greedy."""
    greedy = build_token_set(TEXT, TrainingConfig(n_tokens=96, optimize=False))
    optimized = build_token_set(TEXT, TrainingConfig(n_tokens=96))
    assert greedy.optimization is None
    assert optimized.optimization is not None
    assert optimized.token_set.stats.total_tokens <= greedy.token_set.stats.total_tokens
    assert len(optimized.token_set) == len(greedy.token_set)


def test_builds_are_deterministic():
    """The same data and options give the same token set."""
    config = TrainingConfig(n_tokens=96, processing="capswords")
    first = build_token_set(TEXT, config).token_set
    second = build_token_set(TEXT, config).token_set
    assert first == second


# Command line
# ---------------------------------------------------------------------------


def test_optimize_writes_model(data_file, tmp_path):
    tokens_dir = tmp_path / "tokens"
    assert main(optimize_args(data_file, tokens_dir, "-n", "64")) == 0
    assert (tokens_dir / "tokens64_capswords_bits4.model").exists()
    assert (tokens_dir / "tokens64_capswords_bits4.vocab").exists()


def test_optimize_then_evaluate(data_file, tmp_path):
    tokens_dir = tmp_path / "tokens"
    main(optimize_args(data_file, tokens_dir, "-n", "64", "--max-iterations", "5"))
    model = tokens_dir / "tokens64_capswords_bits4.model"
    assert main(["evaluate", "-d", str(data_file), "-i", str(model)]) == 0


def test_optimize_rejects_crlf(tmp_path):
    """CRLF data fails without writing a token set."""
    data_file = tmp_path / "crlf.txt"
    data_file.write_bytes(b"hello\r\nworld\r\n")
    tokens_dir = tmp_path / "tokens"
    assert main(optimize_args(data_file, tokens_dir, "-n", "64")) == 1
    assert not tokens_dir.exists()


@pytest.mark.parametrize("n_tokens", ["1", "70000"])
def test_optimize_rejects_token_count(data_file, tmp_path, n_tokens):
    tokens_dir = tmp_path / "tokens"
    assert main(optimize_args(data_file, tokens_dir, "-n", n_tokens)) == 1
    assert not tokens_dir.exists()


def test_optimize_missing_data(tmp_path):
    missing = tmp_path / "missing.txt"
    assert main(optimize_args(missing, tmp_path / "tokens", "-n", "64")) == 1


def test_unknown_type_is_a_usage_error(data_file, tmp_path):
    """argparse rejects unknown scheme names before any work."""
    args = [
        "optimize", "-d", str(data_file), "-t", str(tmp_path), "--type", "bits3", "-n", "64"
    ]
    with pytest.raises(SystemExit):
        main(args)


def test_process_writes_display_bytes(tmp_path):
    """Markers are written as control bytes."""
    raw = tmp_path / "raw.txt"
    raw.write_bytes(b"Hello World.\n")
    out = tmp_path / "out" / "processed.txt"
    assert main(["process", "-d", str(raw), "-o", str(out)]) == 0
    assert out.read_bytes() == b"\x14hello\x16\x14world\x16.\n"


def test_evaluate_missing_model(data_file, tmp_path):
    args = ["evaluate", "-d", str(data_file), "-i", str(tmp_path / "none.model")]
    assert main(args) == 1


def test_exhausted_run_still_writes_model(tmp_path, caplog):
    """Running out of repeated pairs is a warning, not a failure."""
    data_file = tmp_path / "tiny.txt"
    data_file.write_bytes(b"abab\n")
    tokens_dir = tmp_path / "tokens"
    args = ["optimize", "-d", str(data_file), "-t", str(tokens_dir), "--type", "bits4",
            "-n", "500"]

    with caplog.at_level(logging.INFO):
        assert main(args) == 0

    model = tokens_dir / "tokens20_raw_bits4.model"
    header = model.read_text().splitlines()[:7]
    assert "target 500" in header
    assert "status exhausted" in header
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("not reached" in r.getMessage() for r in warnings)


# Resuming
# ---------------------------------------------------------------------------


def test_resume_continues_greedy_training():
    """Growing a saved greedy token set matches training the larger one directly."""
    small = build_token_set(TEXT, TrainingConfig(n_tokens=64, optimize=False))
    resumed = build_token_set(
        TEXT, TrainingConfig(n_tokens=96, optimize=False), base=small.token_set
    )
    direct = build_token_set(TEXT, TrainingConfig(n_tokens=96, optimize=False))
    assert resumed.token_set.tokens[:64] == small.token_set.tokens
    assert resumed.token_set.tokens == direct.token_set.tokens
    assert resumed.token_set.stats == direct.token_set.stats


def test_resume_refuses_other_options():
    """A saved token set only grows under its own scheme and to a larger size."""
    small = build_token_set(TEXT, TrainingConfig(n_tokens=64, optimize=False)).token_set
    with pytest.raises(ConfigurationError):
        build_token_set(TEXT, TrainingConfig(n_tokens=96, scheme="bits2"), base=small)
    with pytest.raises(ConfigurationError):
        build_token_set(TEXT, TrainingConfig(n_tokens=48), base=small)


def test_optimize_from_input_tokens(data_file, tmp_path):
    """The command line takes scheme and processing from the input model."""
    tokens_dir = tmp_path / "tokens"
    assert main(optimize_args(data_file, tokens_dir, "-n", "64")) == 0
    small = tokens_dir / "tokens64_capswords_bits4.model"

    out_dir = tmp_path / "grown"
    args = ["optimize", "-d", str(data_file), "-t", str(out_dir), "-n", "80",
            "-i", str(small)]
    assert main(args) == 0
    [grown_path] = out_dir.glob("*.model")
    grown = TokenSet.load(grown_path)
    assert grown.scheme_name == "bits4"
    assert grown.processing.value == "capswords"
    assert len(grown) > 64

    args = ["optimize", "-d", str(data_file), "-t", str(out_dir), "-n", "80",
            "-i", str(small), "--type", "bits2"]
    assert main(args) == 1


def test_optimize_needs_type_without_input_tokens(data_file, tmp_path):
    args = ["optimize", "-d", str(data_file), "-t", str(tmp_path), "-n", "64"]
    assert main(args) == 1


# Paragraphs
# ---------------------------------------------------------------------------

PARAGRAPHS = b"the cat sat\n\nthe dog ran\n\n" * 40


def spans_blank_line(token_set, tok_id):
    spelled = bytes(token_set.expand(tok_id))
    at = spelled.find(b"\n\n")
    return at >= 0 and spelled[at:].strip(b"\n") != b""


def test_split_paragraphs_keeps_tokens_inside_paragraphs():
    """No token continues past a blank line when paragraphs are split."""
    joined = build_token_set(PARAGRAPHS, TrainingConfig(n_tokens=60)).token_set
    split = build_token_set(
        PARAGRAPHS, TrainingConfig(n_tokens=60, split_paragraphs=True)
    ).token_set

    assert any(spans_blank_line(joined, t) for t in range(len(joined)))
    assert not any(spans_blank_line(split, t) for t in range(len(split)))
    assert split.split_paragraphs
    assert split.decode(split.encode(PARAGRAPHS)) == PARAGRAPHS


def test_split_paragraphs_flag_is_saved(tmp_path):
    data_file = tmp_path / "paragraphs.txt"
    data_file.write_bytes(PARAGRAPHS)
    tokens_dir = tmp_path / "tokens"
    args = ["optimize", "-d", str(data_file), "-t", str(tokens_dir), "--type", "bits4",
            "-n", "40", "--split-paragraphs"]
    assert main(args) == 0
    [model] = tokens_dir.glob("*.model")
    assert "split_paragraphs true" in model.read_text().splitlines()
    assert TokenSet.load(model).split_paragraphs


# Statistics and character counts
# ---------------------------------------------------------------------------


def test_evaluate_writes_statistics(data_file, tmp_path):
    """Evaluation can save its measurement next to the token sets."""
    tokens_dir = tmp_path / "tokens"
    main(optimize_args(data_file, tokens_dir, "-n", "64", "--no-optimize"))
    model = tokens_dir / "tokens64_capswords_bits4.model"
    stats_dir = tmp_path / "stats"

    args = ["evaluate", "-d", str(data_file), "-i", str(model), "-t", str(stats_dir)]
    assert main(args) == 0

    report = json.loads((stats_dir / "tokens64_capswords_bits4.json").read_text())
    assert report["ntokens"] == 64
    assert report["scanned_bytes"] == len(TEXT)
    assert report["total_tokens"] == sum(report["token_counts"])
    assert report["total_tokens"] == TokenSet.load(model).stats.total_tokens
    assert report["bytes_per_token"] == pytest.approx(len(TEXT) / report["total_tokens"])


def test_count_chars(tmp_path):
    """Characters are counted after UTF-8 decoding."""
    path = tmp_path / "chars.txt"
    path.write_bytes("héllo wörld\n".encode("utf-8"))
    counts = count_chars(path)
    assert counts["l"] == 3
    assert counts["é"] == 1
    assert sum(counts.values()) == 12
    assert main(["count-chars", "-d", str(path)]) == 0


def test_count_chars_rejects_invalid_utf8(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_bytes(b"ok\xff\n")
    with pytest.raises(InputFormatError) as excinfo:
        count_chars(path)
    assert excinfo.value.position == 2
    assert main(["count-chars", "-d", str(path)]) == 1
