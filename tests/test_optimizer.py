"""Unit tests for the token replacement search and acceptance policies."""

from typing import override

import pytest

from tokset.errors import ConfigurationError, SchemeError
from tokset.fallback import get_scheme
from tokset.optimizer import Optimizer
from tokset.policy import AcceptancePolicy, MinGainPolicy, get_policy
from tokset.processing import Processing
from tokset.symbolizer import symbolize_corpus
from tokset.tokenset import TokenSet
from tokset.trainer import Trainer

DATA = b"the cat sat on the mat, the rat ate the hat and the bat " * 20
N_TOKENS = 40


class AcceptAll(AcceptancePolicy):
    NAME = "all"

    @override
    def accept(self, before: int, after: int) -> bool:
        return True


class RejectAll(AcceptancePolicy):
    NAME = "none"

    @override
    def accept(self, before: int, after: int) -> bool:
        return False


def expanded(trainer):
    return [t for tok in trainer.stream for t in trainer.vocab.expand(tok)]


# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def corpus():
    """Return the symbolized corpus for DATA under bits4 fallback."""
    return symbolize_corpus(list(DATA), get_scheme("bits4"), Processing.RAW, N_TOKENS)


@pytest.fixture
def trainer(corpus):
    """Return a trainer that greedily trained on the corpus."""
    t = Trainer(corpus.vocab, corpus.stream, N_TOKENS, num_workers=1)
    t.train()
    return t


@pytest.fixture
def initial_ids(corpus):
    """Return the corpus as initial token ids."""
    return corpus.symbolizer.symbolize(list(DATA))


# Scoring
# ---------------------------------------------------------------------------


def test_corpus_value_is_sum_of_token_values(trainer):
    """Each merge saves occurrences times (span - 1) stream tokens."""
    opt = Optimizer(trainer)
    total = sum(opt.value(tok) for _, tok in trainer.vocab.merges())
    assert opt.corpus_value == total
    assert opt.corpus_value == trainer.initial_length - len(trainer.stream)


def test_candidates_have_no_parents(trainer):
    """Tokens that other merges are built from are never retired."""
    opt = Optimizer(trainer)
    cands = opt.candidates()
    assert cands
    for _, tok in trainer.vocab.merges():
        assert (tok in cands) == (not trainer.vocab.has_parents(tok))
    assert opt.candidates(ineligible=set(cands)) == []


# Replacement
# ---------------------------------------------------------------------------


def test_rejected_swaps_leave_everything_unchanged(trainer):
    """A policy that keeps nothing restores stream, vocabulary and history."""
    stream = trainer.stream.to_list()
    tokens = list(trainer.vocab)
    history = list(trainer.history)
    n_cands = len(Optimizer(trainer).candidates())

    result = Optimizer(trainer, RejectAll()).run()

    assert result.accepted == 0
    assert result.attempts == n_cands
    assert result.passes == 1
    assert trainer.stream.to_list() == stream
    assert list(trainer.vocab) == tokens
    assert trainer.history == history


def test_kept_swap_replaces_token(trainer, initial_ids):
    """A kept swap tombstones the old token and records the new one."""
    opt = Optimizer(trainer, AcceptAll())
    tok = opt.candidates()[0]
    new_tok = opt.try_replace(tok)

    assert new_tok is not None
    assert trainer.vocab.retired == {tok}
    assert trainer.vocab.live_size == N_TOKENS
    assert trainer.history[-1].token == new_tok
    assert expanded(trainer) == initial_ids

    opt.compact()
    assert not trainer.vocab.retired
    assert len(trainer.vocab) == N_TOKENS
    assert expanded(trainer) == initial_ids


def test_run_never_increases_stream_length(trainer, initial_ids):
    """The search keeps the vocabulary size and never loses compression."""
    before = len(trainer.stream)
    result = Optimizer(trainer).run()

    assert result.tokens_before == before
    assert result.tokens_after == len(trainer.stream) <= before
    assert result.saved >= 0
    assert len(trainer.vocab) == trainer.vocab.live_size == N_TOKENS
    assert expanded(trainer) == initial_ids
    for tok_id, token in enumerate(trainer.vocab):
        if token.is_merge:
            assert token.left < tok_id and token.right < tok_id


def test_zero_iteration_budget(trainer):
    """No swap is attempted with a budget of zero."""
    stream = trainer.stream.to_list()
    result = Optimizer(trainer, max_iterations=0).run()
    assert result.attempts == 0
    assert result.budget_exhausted
    assert trainer.stream.to_list() == stream


def test_reset_then_retrain_reproduces_greedy(trainer, initial_ids):
    """Dropping every merge and training again gives the greedy vocabulary."""
    greedy_tokens = list(trainer.vocab)
    greedy_history = list(trainer.history)
    opt = Optimizer(trainer)
    opt.run()

    opt.reset()
    assert trainer.vocab.live_size == len(trainer.vocab) < N_TOKENS
    assert trainer.stream.to_list() == initial_ids
    assert trainer.history == []

    trainer.train()
    assert list(trainer.vocab) == greedy_tokens
    assert trainer.history == greedy_history


# Byte reallocation
# ---------------------------------------------------------------------------

RARE_BYTES = bytes(range(128, 256))
SKEWED = b"the cat sat on the mat. " * 200 + RARE_BYTES


@pytest.fixture
def skewed_trainer():
    """Return a bits4 trainer on text padded with 128 bytes seen once each."""
    corpus = symbolize_corpus(list(SKEWED), get_scheme("bits4"), Processing.RAW, 160)
    t = Trainer(corpus.vocab, corpus.stream, 160, num_workers=1)
    t.train()
    return t


def test_byte_value_counts_saved_digits(skewed_trainer):
    """A base byte saves arity - 1 stream tokens per occurrence."""
    opt = Optimizer(skewed_trainer, scheme=get_scheme("bits4"))
    cands = opt.byte_candidates()
    rare = [tok for tok in cands if skewed_trainer.vocab[tok].value in RARE_BYTES]
    assert len(rare) == len(RARE_BYTES)
    assert {opt.byte_value(tok) for tok in rare} == {1}
    assert min(opt.byte_value(tok) for tok in cands) == 1


def test_rare_bytes_give_their_slots_to_merges(skewed_trainer):
    """Demoting bytes seen once buys merges that save far more."""
    scheme = get_scheme("bits4")
    greedy_length = len(skewed_trainer.stream)
    greedy_merges = len(skewed_trainer.vocab.merges())

    result = Optimizer(skewed_trainer, scheme=scheme).run()

    assert result.demoted_bytes
    assert set(result.demoted_bytes) <= set(RARE_BYTES)
    assert len(skewed_trainer.vocab) == skewed_trainer.vocab.live_size == 160
    assert len(skewed_trainer.vocab.merges()) > greedy_merges + 10
    assert len(skewed_trainer.stream) < greedy_length // 2

    token_set = TokenSet.from_vocabulary(
        skewed_trainer.vocab, scheme, Processing.RAW, 160, skewed_trainer.state
    )
    assert token_set.decode(skewed_trainer.stream.to_list()) == SKEWED
    assert token_set.decode(token_set.encode(RARE_BYTES)) == RARE_BYTES


def test_rejected_demotions_are_rolled_back(skewed_trainer):
    """Undoing a demotion restores the base token and its occurrences."""
    stream = skewed_trainer.stream.to_list()
    tokens = list(skewed_trainer.vocab)
    result = Optimizer(skewed_trainer, RejectAll(), scheme=get_scheme("bits4")).run()

    assert result.demoted_bytes == []
    assert result.attempts > len(RARE_BYTES)
    assert skewed_trainer.stream.to_list() == stream
    assert list(skewed_trainer.vocab) == tokens


def test_bytes_scheme_never_demotes(trainer):
    """Without fallback digits there is nothing to demote a byte to."""
    opt = Optimizer(trainer, scheme=get_scheme("bytes"))
    assert opt.byte_candidates() == []


# Policies
# ---------------------------------------------------------------------------


def test_strict_policy():
    """Strict improvement needs at least one saved token."""
    policy = get_policy("strict")
    assert policy.accept(10, 9)
    assert not policy.accept(10, 10)


def test_min_gain_policy():
    """The min-gain policy compares the saving with its threshold."""
    policy = get_policy("min-gain", min_gain=3)
    assert isinstance(policy, MinGainPolicy)
    assert policy.accept(10, 7)
    assert not policy.accept(10, 8)
    with pytest.raises(ConfigurationError):
        MinGainPolicy(0)


def test_unknown_policy_raises():
    """Unknown policy names list the available ones."""
    with pytest.raises(SchemeError) as excinfo:
        get_policy("greedy")
    assert excinfo.value.available == ["strict", "min-gain"]
