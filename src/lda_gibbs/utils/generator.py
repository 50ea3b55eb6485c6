"""lda_gibbs.utils.generator
==========================

Synthetic corpora drawn from the LDA generative model, for checking that the
sampler recovers known topics.  The token lists go through
:func:`lda_gibbs.utils.process.corpus_from_docs`, so a synthetic corpus has
exactly the layout and validation of real input.
"""

from __future__ import annotations

from typing import List, NamedTuple, Sequence, Union

import numpy as np
import jax
from jax import Array
import jax.numpy as jnp

from lda_gibbs.errors import InvalidConfig
from lda_gibbs.utils.process import Corpus, corpus_from_docs

__all__ = ["LDASynthetic", "generate_lda_corpus"]


class LDASynthetic(NamedTuple):
    """Return object for :func:`generate_lda_corpus`."""

    corpus: Corpus
    z:      Array  # (N,)   true topic per token, corpus order
    theta:  Array  # (D, K) true document–topic mixtures
    beta:   Array  # (K, W) true topic–word distributions


def _lengths(doc_length: Union[int, Sequence[int]], num_docs: int) -> List[int]:
    if isinstance(doc_length, int):
        lengths = [doc_length] * num_docs
    else:
        lengths = [int(n) for n in doc_length]
    if len(lengths) != num_docs:
        raise InvalidConfig(f"expected {num_docs} document lengths, got {len(lengths)}")
    if min(lengths) < 0:
        raise InvalidConfig("document lengths must be >= 0")
    return lengths


def generate_lda_corpus(
    key: Array,
    *,
    num_docs: int,
    num_topics: int,
    vocab_size: int,
    doc_length: Union[int, Sequence[int]],
    alpha: float = 0.1,
    eta: float = 0.1,
) -> LDASynthetic:
    """Draw ``num_docs`` documents from a symmetric-prior LDA model.

    ``doc_length`` is one length for every document or one per document.
    Every word of the generated vocabulary is kept even if it is never
    drawn, so ``corpus.vocab_size == vocab_size``.
    """
    if num_docs < 1 or num_topics < 1 or vocab_size < 1:
        raise InvalidConfig("num_docs, num_topics and vocab_size must all be >= 1")
    if not (alpha > 0 and eta > 0):
        raise InvalidConfig(f"alpha and eta must be positive, got {alpha}, {eta}")
    lengths = _lengths(doc_length, num_docs)

    beta_key, theta_key, doc_key = jax.random.split(key, 3)
    beta  = jax.random.dirichlet(beta_key, jnp.full((vocab_size,), eta), shape=(num_topics,))
    theta = jax.random.dirichlet(theta_key, jnp.full((num_topics,), alpha), shape=(num_docs,))
    log_beta = jnp.log(beta)

    docs, topics = [], []
    for d, (n_d, k_d) in enumerate(zip(lengths, jax.random.split(doc_key, num_docs))):
        z_key, w_key = jax.random.split(k_d)
        z_d = jax.random.categorical(z_key, jnp.log(theta[d]), shape=(n_d,))
        w_d = jax.random.categorical(w_key, log_beta[z_d], axis=-1)
        docs.append(np.asarray(w_d).tolist())
        topics.append(np.asarray(z_d, dtype=np.int32))

    corpus = corpus_from_docs(docs, vocab_size)
    z = jnp.asarray(np.concatenate(topics), dtype=jnp.int32)
    return LDASynthetic(corpus, z, theta, beta)
