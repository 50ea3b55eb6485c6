"""Shared fixtures: a tiny corpus and a count-state consistency checker."""

from __future__ import annotations

import numpy as np
import pytest

from lda_gibbs.utils.process import corpus_from_docs


SMALL_DOCS = [
    [0, 1, 0, 2],
    [3, 4, 3],
    [],
    [1, 2, 5, 5, 0],
    [4],
]


@pytest.fixture
def small_corpus():
    return corpus_from_docs(SMALL_DOCS, 6)


def _check(state, corpus, num_topics):
    z    = np.asarray(state.z)
    n_dk = np.asarray(state.n_dk)
    n_kw = np.asarray(state.n_kw)
    n_k  = np.asarray(state.n_k)

    assert z.min() >= 0 and z.max() < num_topics
    assert (n_dk >= 0).all() and (n_kw >= 0).all() and (n_k >= 0).all()

    # per-document totals and corpus totals
    np.testing.assert_array_equal(n_dk.sum(axis=1), np.asarray(corpus.doc_lengths))
    assert n_kw.sum() == n_dk.sum() == corpus.num_tokens
    np.testing.assert_array_equal(n_k, n_kw.sum(axis=1))

    # aggregates agree with the authoritative assignments
    expected_dk = np.zeros_like(n_dk)
    expected_kw = np.zeros_like(n_kw)
    np.add.at(expected_dk, (np.asarray(corpus.doc_ids), z), 1)
    np.add.at(expected_kw, (z, np.asarray(corpus.word_ids)), 1)
    np.testing.assert_array_equal(n_dk, expected_dk)
    np.testing.assert_array_equal(n_kw, expected_kw)


@pytest.fixture
def check_invariants():
    return _check
