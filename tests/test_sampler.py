"""Iteration control: configuration, trace bookkeeping and the jitted driver."""

from __future__ import annotations

import logging

import numpy as np
import jax
import jax.numpy as jnp
import pytest

from lda_gibbs.errors import EmptyCorpus, InvalidConfig, VocabMismatch
from lda_gibbs.inference.sampler import GibbsSampler, SamplerConfig, run
from lda_gibbs.models.lda import LDAModel, log_likelihood, run_gibbs
from lda_gibbs.utils.process import Corpus


@pytest.mark.parametrize(
    "overrides",
    [
        dict(num_topics=0),
        dict(alpha=0.0),
        dict(eta=-0.1),
        dict(iterations=-1),
    ],
)
def test_run_rejects_bad_config(small_corpus, overrides):
    kwargs = dict(num_topics=2, alpha=1.0, eta=0.1, iterations=1, seed=0)
    kwargs.update(overrides)
    with pytest.raises(InvalidConfig):
        run(small_corpus, 6, **kwargs)


def test_run_validates_docs():
    with pytest.raises(EmptyCorpus):
        run([[], []], 3, num_topics=2, alpha=1.0, eta=0.1, iterations=1)
    with pytest.raises(VocabMismatch):
        run([[0, 7]], 3, num_topics=2, alpha=1.0, eta=0.1, iterations=1)


def test_run_rejects_corpus_of_other_size(small_corpus):
    with pytest.raises(VocabMismatch):
        run(small_corpus, 8, num_topics=2, alpha=1.0, eta=0.1, iterations=1)


def _prebuilt(word_ids, doc_ids, doc_ptrs):
    return Corpus(
        jnp.asarray(word_ids, dtype=jnp.int32),
        jnp.asarray(doc_ids, dtype=jnp.int32),
        ["a", "b", "c"],
        jnp.asarray(doc_ptrs, dtype=jnp.int32),
    )


@pytest.mark.parametrize(
    "word_ids, doc_ids",
    [
        ([0, 5, 1], [0, 0, 1]),   # word id past the vocabulary
        ([0, -1, 1], [0, 0, 1]),  # negative word id
        ([0, 2, 1], [0, 0, 4]),   # document id past the last document
    ],
)
def test_run_rejects_prebuilt_corpus_with_bad_ids(word_ids, doc_ids):
    corpus = _prebuilt(word_ids, doc_ids, [0, 2, 3])
    with pytest.raises(VocabMismatch):
        run(corpus, 3, num_topics=2, alpha=1.0, eta=0.1, iterations=2)
    with pytest.raises(VocabMismatch):
        LDAModel(2, 3).init_state(corpus, key=jax.random.PRNGKey(0))


def test_run_on_valid_prebuilt_corpus_keeps_totals(check_invariants):
    corpus = _prebuilt([0, 2, 1], [0, 0, 1], [0, 2, 3])
    _, state = run(corpus, 3, num_topics=2, alpha=1.0, eta=0.1, iterations=2)
    assert int(state.n_kw.sum()) == int(state.n_dk.sum()) == 3
    check_invariants(state, corpus, 2)


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(num_iters=-1),
        dict(num_iters=5, burn_in=-1),
        dict(num_iters=5, burn_in=5),
        dict(num_iters=5, thin=0),
        dict(num_iters=5, log_every=-2),
    ],
)
def test_sampler_config_validation(kwargs):
    with pytest.raises(InvalidConfig):
        SamplerConfig(**kwargs)


def test_zero_iterations_returns_initial_state(small_corpus, check_invariants):
    _, state = run(small_corpus, 6, num_topics=3, alpha=1.0, eta=0.1, iterations=0, seed=12)

    init_key, _ = jax.random.split(jax.random.PRNGKey(12))
    expected = LDAModel(3, 6, 1.0, 0.1).init_state(small_corpus, key=init_key)
    np.testing.assert_array_equal(np.asarray(state.z), np.asarray(expected.z))
    check_invariants(state, small_corpus, 3)


def test_same_seed_same_result(small_corpus):
    args = dict(num_topics=3, alpha=0.5, eta=0.05, iterations=30)
    _, a = run(small_corpus, 6, seed=77, **args)
    _, b = run(small_corpus, 6, seed=77, **args)
    for x, y in zip(a, b):
        np.testing.assert_array_equal(np.asarray(x), np.asarray(y))


def test_run_accepts_plain_lists(check_invariants):
    corpus, state = run([[0, 1, 1], [2, 2, 0]], 3, num_topics=2, alpha=1.0, eta=0.1, iterations=3)
    assert isinstance(corpus, Corpus)
    check_invariants(state, corpus, 2)

################################################################################
# GibbsSampler #################################################################
################################################################################

def test_burn_in_and_thinning(small_corpus):
    model = LDAModel(num_topics=2, vocab_size=6)
    config = SamplerConfig(num_iters=9, burn_in=4, thin=2, seed=3, show_progress=False)
    sampler = GibbsSampler(small_corpus, model, config)
    trace = sampler.run()

    # sweeps 4, 6 and 8 are recorded; 8 is the last one
    assert len(trace) == 3
    assert sampler.trace is trace
    np.testing.assert_array_equal(np.asarray(trace[-1]["n_kw"]), np.asarray(sampler.state.n_kw))

    phi = np.asarray(sampler.posterior_phi())
    theta = np.asarray(sampler.posterior_theta())
    assert phi.shape == (2, 6) and theta.shape == (5, 2)
    np.testing.assert_allclose(phi.sum(axis=1), 1.0, rtol=1e-5)
    np.testing.assert_allclose(theta.sum(axis=1), 1.0, rtol=1e-5)


def test_posterior_without_trace_uses_final_state(small_corpus):
    model = LDAModel(num_topics=2, vocab_size=6, eta=0.2)
    config = SamplerConfig(num_iters=3, show_progress=False, collect=False)
    sampler = GibbsSampler(small_corpus, model, config)

    with pytest.raises(RuntimeError):
        sampler.posterior_phi()

    assert sampler.run() == []
    np.testing.assert_allclose(
        np.asarray(sampler.posterior_phi()),
        (np.asarray(sampler.state.n_kw) + 0.2)
        / (np.asarray(sampler.state.n_kw).sum(axis=1, keepdims=True) + 6 * 0.2),
        rtol=1e-5,
    )


def test_sampler_needs_tokens():
    empty = Corpus(
        np.zeros(0, dtype=np.int32), np.zeros(0, dtype=np.int32), ["w0"], np.zeros(2, dtype=np.int32)
    )
    with pytest.raises(EmptyCorpus):
        GibbsSampler(empty, LDAModel(2, 1), SamplerConfig(num_iters=1))


def test_log_every_reports_likelihood(small_corpus, caplog):
    caplog.set_level(logging.INFO, logger="lda_gibbs.inference.sampler")
    config = SamplerConfig(num_iters=4, log_every=2, show_progress=False)
    GibbsSampler(small_corpus, LDAModel(2, 6), config).run()

    messages = [r.getMessage() for r in caplog.records if "log-likelihood" in r.getMessage()]
    assert len(messages) == 2
    assert messages[0].startswith("sweep 2/4")

################################################################################
# Fully jitted driver ##########################################################
################################################################################

def test_run_gibbs_history(small_corpus, check_invariants):
    model = LDAModel(num_topics=3, vocab_size=6, alpha=0.5, eta=0.1)
    final, history = run_gibbs(small_corpus, model, num_iters=6, key=jax.random.PRNGKey(8), keep_history=True)

    assert len(history) == 6
    for st in history:
        check_invariants(st, small_corpus, 3)
    np.testing.assert_array_equal(np.asarray(history[-1].z), np.asarray(final.z))


def test_run_gibbs_is_deterministic(small_corpus):
    model = LDAModel(num_topics=2, vocab_size=6)
    a, none = run_gibbs(small_corpus, model, num_iters=5, key=jax.random.PRNGKey(1))
    b, _ = run_gibbs(small_corpus, model, num_iters=5, key=jax.random.PRNGKey(1))
    assert none is None
    np.testing.assert_array_equal(np.asarray(a.n_kw), np.asarray(b.n_kw))
    assert np.isfinite(float(log_likelihood(a, model)))


def test_run_gibbs_zero_sweeps(small_corpus):
    model = LDAModel(num_topics=2, vocab_size=6)
    _, history = run_gibbs(small_corpus, model, num_iters=0, key=jax.random.PRNGKey(0), keep_history=True)
    assert history == []
    with pytest.raises(InvalidConfig):
        run_gibbs(small_corpus, model, num_iters=-3, key=jax.random.PRNGKey(0))
