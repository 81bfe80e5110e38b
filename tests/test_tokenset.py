"""Unit tests for token set encode/decode, edge cases, and serialization."""

import pytest

import tokset
from tokset.errors import InvariantError, MalformedInputError, ModelLoadError
from tokset.pipeline import build_token_set
from tokset.processing import Processing
from tokset.tokenset import TokenSet
from tokset.trainer import TrainerState
from tokset.vocab import Token

TEXT = (
    b"Hello World. The quick brown fox jumps over the lazy dog.\n"
    b"THE QUICK BROWN FOX said Hello to the Dog, and the dog said hello.\n"
) * 10


def build(n_tokens=64, scheme="bits4", processing="capswords", **kwargs):
    config = tokset.TrainingConfig(
        n_tokens=n_tokens, scheme=scheme, processing=processing, num_workers=1, **kwargs
    )
    return build_token_set(TEXT, config).token_set


# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def token_set():
    """Return a 64 token set with bits4 fallback and capswords processing."""
    return build()


# Encode-decode round-trip
# ---------------------------------------------------------------------------


def test_encode_decode_roundtrip(token_set):
    """Encode then decode returns the training text."""
    ids = token_set.encode(TEXT)
    assert token_set.decode(ids) == TEXT
    assert all(0 <= i < len(token_set) for i in ids)
    assert len(ids) < len(TEXT)


def test_roundtrip_unseen_bytes(token_set):
    """Bytes never seen in training are spelled with fallback digits."""
    data = "naïve café ✓ \x00\xff".encode("utf-8") + bytes([0x80, 0xFE, 0x0D])
    assert token_set.decode(token_set.encode(data)) == data


def test_roundtrip_empty(token_set):
    """Empty input encodes to no tokens."""
    assert token_set.encode(b"") == []
    assert token_set.decode([]) == b""


@pytest.mark.parametrize("scheme", ["bits1", "bits2", "bits4", "bytes"])
def test_roundtrip_every_scheme(scheme):
    """All fallback schemes round-trip arbitrary bytes."""
    ts = build(n_tokens=300, scheme=scheme, processing="raw")
    data = bytes(range(256)) + b"Hello world"
    assert ts.decode(ts.encode(data)) == data


def test_smallest_token_set_is_pure_fallback():
    """Two tokens with bits1 spell every byte as eight binary digits."""
    ts = build(n_tokens=2, scheme="bits1", processing="raw")
    assert len(ts) == 2
    assert ts.n_merges == 0
    assert ts.status is TrainerState.CONVERGED
    data = b"\x00\xffhi"
    ids = ts.encode(data)
    assert len(ids) == 8 * len(data)
    assert ts.decode(ids) == data
    assert ts.stats.total_tokens == 8 * len(TEXT)


def test_encoding_reproduces_the_training_stream():
    """Applying merges in id order gives the greedy training stream back."""
    greedy = build(optimize=False)
    assert len(greedy.encode(TEXT)) == greedy.stats.total_tokens


def test_encode_long_input(token_set):
    """Long inputs round-trip and compress like the training text."""
    data = TEXT * 200
    ids = token_set.encode(data)
    assert len(ids) < len(data)
    assert token_set.decode(ids) == data


# Layout and naming
# ---------------------------------------------------------------------------


def test_layout_and_name(token_set):
    """Fallback digits come first, then markers, then base bytes."""
    assert len(token_set) == 64
    assert token_set.name == "tokens64_capswords_bits4"
    assert token_set.tokens[:16] == tuple(Token.fallback(d) for d in range(16))
    kinds = [t.kind.value for t in token_set.tokens[16:19]]
    assert kinds == ["marker"] * 3
    assert token_set.status is TrainerState.CONVERGED
    assert token_set.stats.scanned_bytes == len(TEXT)


def test_invalid_layout_rejected(token_set):
    """Merges that point forward are not a valid token set."""
    tokens = token_set.tokens[:-1] + (Token.merge(70, 0),)
    with pytest.raises(InvariantError):
        TokenSet(tokens, "bits4", Processing.CAPSWORDS, target_size=64)


# Malformed ids
# ---------------------------------------------------------------------------


def test_decode_unknown_id(token_set):
    """Ids outside the vocabulary are rejected."""
    with pytest.raises(MalformedInputError) as excinfo:
        token_set.decode([len(token_set)])
    assert excinfo.value.position == 0


def test_decode_incomplete_fallback_group(token_set):
    """A lone fallback digit cannot be decoded."""
    with pytest.raises(MalformedInputError):
        token_set.decode([0])


def test_decode_reports_start_of_broken_fallback_run(token_set):
    """Digit runs that do not split into whole bytes point at their first token."""
    first_base = 16 + 3
    byte = token_set.tokens[first_base].value
    assert token_set.symbols([first_base, 0, 1]) == [byte, 0x01]
    with pytest.raises(MalformedInputError) as excinfo:
        token_set.symbols([first_base, 0, 1, 2])
    assert excinfo.value.position == 1


def test_decode_misplaced_marker(token_set):
    """A trailing case marker is not valid capswords output."""
    with pytest.raises(MalformedInputError):
        token_set.decode([16])


# Serialization
# ---------------------------------------------------------------------------


def test_save_load_roundtrip(token_set, tmp_path):
    """A saved token set loads back identical."""
    model_path = token_set.save(tmp_path)
    assert model_path == tmp_path / "tokens64_capswords_bits4.model"
    assert (tmp_path / "tokens64_capswords_bits4.vocab").exists()

    loaded = tokset.from_pretrained(model_path)
    assert loaded == token_set
    assert loaded.encode(TEXT) == token_set.encode(TEXT)


def test_model_file_header(token_set, tmp_path):
    """The artifact starts with its version and the codec it expects."""
    lines = token_set.save(tmp_path).read_text().splitlines()
    assert lines[:6] == [
        "TokSet 1",
        "scheme bits4",
        "processing capswords",
        "target 64",
        "status converged",
        "split_paragraphs false",
    ]
    assert lines[7] == "---"
    assert lines[8] == "64"
    assert lines[9] == "fallback 0"
    assert len(lines) == 9 + 64


def test_load_missing_file(tmp_path):
    with pytest.raises(ModelLoadError):
        TokenSet.load(tmp_path / "missing.model")


def test_load_wrong_suffix(token_set, tmp_path):
    path = token_set.save(tmp_path)
    other = path.rename(path.with_suffix(".txt"))
    with pytest.raises(ModelLoadError):
        TokenSet.load(other)


def test_load_version_mismatch(token_set, tmp_path):
    """Artifacts from another format version are refused."""
    path = token_set.save(tmp_path)
    path.write_text(path.read_text().replace("TokSet 1", "TokSet 9", 1))
    with pytest.raises(ModelLoadError) as excinfo:
        TokenSet.load(path)
    assert excinfo.value.version_mismatch == ("9", "1")


def test_load_invalid_record(token_set, tmp_path):
    """Unparseable token records report their line."""
    path = token_set.save(tmp_path)
    lines = path.read_text().splitlines()
    lines[10] = "fallback x"
    path.write_text("\n".join(lines) + "\n")
    with pytest.raises(ModelLoadError) as excinfo:
        TokenSet.load(path)
    assert excinfo.value.line == 11


def test_load_forward_reference(token_set, tmp_path):
    """A merge that references a later token is refused."""
    path = token_set.save(tmp_path)
    lines = path.read_text().splitlines()
    lines[-1] = "merge 63 0"
    path.write_text("\n".join(lines) + "\n")
    with pytest.raises(ModelLoadError):
        TokenSet.load(path)


def test_load_truncated(token_set, tmp_path):
    """Missing token records are detected."""
    path = token_set.save(tmp_path)
    lines = path.read_text().splitlines()
    path.write_text("\n".join(lines[:-3]) + "\n")
    with pytest.raises(ModelLoadError):
        TokenSet.load(path)


def test_expand_merge_token(token_set):
    """A merge token spells the concatenation of its children."""
    tok_id = len(token_set) - 1
    token = token_set.tokens[tok_id]
    assert token.is_merge
    assert token_set.expand(tok_id) == (
        token_set.expand(token.left) + token_set.expand(token.right)
    )
    with pytest.raises(MalformedInputError):
        token_set.expand(len(token_set))
