"""lda_gibbs.models.lda
=====================

Latent Dirichlet Allocation with a **collapsed Gibbs** kernel written in JAX.

----------------------------------------------------------------------
Data structures
----------------------------------------------------------------------

``Corpus``  (from :pymod:`lda_gibbs.utils.process`)
    Flat token arrays; only ``word_ids`` and ``doc_ids`` are scanned.

``LDAState``
    The latent variables and their sufficient statistics:

    ========== ==================== =======================================
    field       shape / dtype        notes
    ========== ==================== =======================================
    ``z``       ``(N,)  int32``      topic per token (``-1`` = unassigned)
    ``n_dk``    ``(D,K) int32``      doc–topic counts
    ``n_kw``    ``(K,W) int32``      topic–word counts
    ``n_k``     ``(K,)  int32``      topic totals (row-sum of ``n_kw``)
    ========== ==================== =======================================

    ``z`` is authoritative; the three count tables are aggregates of it and
    agree with it after every single-token update.

----------------------------------------------------------------------
Key API
----------------------------------------------------------------------

* :meth:`LDAModel.init_state` – uniform random topic per token.
* :func:`decrement` / :func:`increment` – remove / add one token's counts.
* :func:`token_conditional` – collapsed ``P(z_i = k | z_-i, w)``.
* :func:`resample_token` – decrement, draw, increment for one token.
* :func:`collapsed_gibbs_step` – **one sweep** over all tokens, in corpus order.
* :func:`run_gibbs` – fully jitted multi-sweep driver.
* :func:`log_likelihood` – joint log-prob under the collapsed model.

A sweep is inherently sequential: token ``i`` is resampled against the counts
left behind by tokens ``0 .. i-1`` of the same sweep, hence ``lax.scan``
rather than ``vmap``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import List, NamedTuple, Optional, Tuple

import numpy as np
import jax
import jax.numpy as jnp
from jax import Array
from jax.scipy.special import gammaln

from lda_gibbs.errors import DegenerateDistribution, InvalidConfig, VocabMismatch
from lda_gibbs.utils.process import Corpus

__all__ = [
    "LDAState",
    "LDAModel",
    "decrement",
    "increment",
    "token_conditional",
    "resample_token",
    "collapsed_gibbs_step",
    "run_gibbs",
    "log_likelihood",
]

################################################################################
# Containers ###################################################################
################################################################################

class LDAState(NamedTuple):
    """Latent variables tracked during collapsed Gibbs inference."""

    z: Array      # (N,)  topic per token
    n_dk: Array   # (D,K) doc-topic counts
    n_kw: Array   # (K,W) topic-word counts
    n_k: Array    # (K,)  topic totals

    @property
    def word_topic_counts(self) -> Array:
        """Word-major ``(W, K)`` view of ``n_kw``."""
        return self.n_kw.T


@dataclass(frozen=True)
class LDAModel:
    """Fixed hyper-parameters of the LDA generative model.

    Instances are hashable, so they are passed to the jitted kernels as
    static arguments.
    """

    num_topics: int  # K
    vocab_size: int  # W
    alpha: float = 0.1  # symmetric Dir_K(alpha)
    eta: float = 0.1    # symmetric Dir_W(eta)

    def __post_init__(self):
        if self.num_topics < 1:
            raise InvalidConfig(f"num_topics must be >= 1, got {self.num_topics}")
        if self.vocab_size < 1:
            raise InvalidConfig(f"vocab_size must be >= 1, got {self.vocab_size}")
        if not self.alpha > 0:
            raise InvalidConfig(f"alpha must be > 0, got {self.alpha}")
        if not self.eta > 0:
            raise InvalidConfig(f"eta must be > 0, got {self.eta}")

    def check_corpus(self, corpus: Corpus) -> None:
        """Reject a corpus whose ids fall outside this model's count tables.

        Must run before any scatter-add: JAX drops out-of-range indices.
        """
        if corpus.vocab_size != self.vocab_size:
            raise VocabMismatch(
                f"corpus vocabulary has {corpus.vocab_size} words, model expects {self.vocab_size}"
            )

        word_ids = np.asarray(corpus.word_ids)
        bad = (word_ids < 0) | (word_ids >= self.vocab_size)
        if bad.any():
            pos = int(np.flatnonzero(bad)[0])
            raise VocabMismatch(
                f"token {pos} has word id {int(word_ids[pos])} outside [0, {self.vocab_size})"
            )

        doc_ids = np.asarray(corpus.doc_ids)
        if doc_ids.shape != word_ids.shape:
            raise VocabMismatch(
                f"corpus has {word_ids.size} word ids but {doc_ids.size} document ids"
            )
        if doc_ids.size and (doc_ids.min() < 0 or doc_ids.max() >= corpus.num_docs):
            raise VocabMismatch(f"document ids must lie in [0, {corpus.num_docs})")

    def init_state(self, corpus: Corpus, *, key: Array) -> LDAState:
        """Randomly assign each token to a topic and build count tables."""
        self.check_corpus(corpus)
        D, K, W = corpus.num_docs, self.num_topics, self.vocab_size

        z = jax.random.randint(key, shape=(corpus.num_tokens,), minval=0, maxval=K, dtype=jnp.int32)

        n_dk = jnp.zeros((D, K), dtype=jnp.int32)
        n_kw = jnp.zeros((K, W), dtype=jnp.int32)
        n_k  = jnp.zeros((K,),   dtype=jnp.int32)

        n_dk = n_dk.at[corpus.doc_ids, z].add(1)
        n_kw = n_kw.at[z, corpus.word_ids].add(1)
        n_k  = n_k.at[z].add(1)

        return LDAState(z, n_dk, n_kw, n_k)

################################################################################
# Count updates ################################################################
################################################################################

def decrement(state: LDAState, idx, doc_id, word_id) -> LDAState:
    """Remove token ``idx`` from the counts of its current topic."""
    k_old = state.z[idx]
    return state._replace(
        z    = state.z.at[idx].set(-1),
        n_dk = state.n_dk.at[doc_id, k_old].add(-1),
        n_kw = state.n_kw.at[k_old, word_id].add(-1),
        n_k  = state.n_k.at[k_old].add(-1),
    )


def increment(state: LDAState, idx, doc_id, word_id, topic) -> LDAState:
    """Assign ``topic`` to token ``idx`` and add it to the counts."""
    topic = jnp.asarray(topic, dtype=jnp.int32)
    return state._replace(
        z    = state.z.at[idx].set(topic),
        n_dk = state.n_dk.at[doc_id, topic].add(1),
        n_kw = state.n_kw.at[topic, word_id].add(1),
        n_k  = state.n_k.at[topic].add(1),
    )

################################################################################
# Collapsed Gibbs kernel ########################################################
################################################################################

def _conditional(state: LDAState, doc_id, word_id, model: LDAModel) -> Tuple[Array, Array]:
    """Normalised conditional plus a flag that every denominator was > 0."""
    K, W = model.num_topics, model.vocab_size
    alpha, eta = model.alpha, model.eta

    word_den = state.n_k + W * eta                       # (K,)
    doc_den  = state.n_dk[doc_id].sum() + K * alpha      # ()

    likelihood = (state.n_kw[:, word_id] + eta) / word_den
    prior      = (state.n_dk[doc_id] + alpha) / doc_den
    weights    = likelihood * prior
    total      = weights.sum()

    ok = jnp.all(word_den > 0) & (doc_den > 0) & (total > 0)
    return weights / total, ok


def token_conditional(state: LDAState, doc_id: int, word_id: int, model: LDAModel) -> Array:
    """Collapsed conditional ``P(z = k | rest)`` for one token, shape ``(K,)``.

    Evaluated on ``state`` as given: to leave the token itself out, pass the
    state returned by :func:`decrement`.
    """
    probs, ok = _conditional(state, doc_id, word_id, model)
    if not bool(ok):
        raise DegenerateDistribution(
            f"non-positive normaliser for token (doc {doc_id}, word {word_id})"
        )
    return probs


def _resample(state: LDAState, idx, doc_id, word_id, model: LDAModel, key: Array):
    state     = decrement(state, idx, doc_id, word_id)
    probs, ok = _conditional(state, doc_id, word_id, model)
    k_new     = jax.random.categorical(key, jnp.log(probs)).astype(jnp.int32)
    state     = increment(state, idx, doc_id, word_id, k_new)
    return state, k_new, ok


def resample_token(
    state: LDAState, idx: int, doc_id: int, word_id: int, model: LDAModel, *, key: Array
) -> Tuple[LDAState, Array]:
    """Resample the topic of a single token.

    Returns the updated state and the newly drawn topic.
    """
    state, k_new, ok = _resample(state, idx, doc_id, word_id, model, key)
    if not bool(ok):
        raise DegenerateDistribution(
            f"non-positive normaliser for token {idx} (doc {doc_id}, word {word_id})"
        )
    return state, k_new


def _sweep_body(state: LDAState, word_ids: Array, doc_ids: Array, model: LDAModel, key: Array):
    num_tokens = word_ids.shape[0]
    token_keys = jax.random.split(key, num_tokens)

    def _update_token(carry, xs):
        st, ok = carry
        idx, k = xs
        st, _, tok_ok = _resample(st, idx, doc_ids[idx], word_ids[idx], model, k)
        return (st, ok & tok_ok), None

    (state, ok), _ = jax.lax.scan(
        _update_token, (state, jnp.array(True)), (jnp.arange(num_tokens), token_keys)
    )
    return state, ok


_sweep = jax.jit(_sweep_body, static_argnames=("model",))


def collapsed_gibbs_step(state: LDAState, corpus: Corpus, model: LDAModel, *, key: Array) -> LDAState:
    """One full sweep over **all tokens** (word-level Gibbs)."""
    state, ok = _sweep(state, corpus.word_ids, corpus.doc_ids, model, key)
    if not bool(ok):
        raise DegenerateDistribution("non-positive normaliser during Gibbs sweep")
    return state

################################################################################
# Driver #######################################################################
################################################################################

@partial(jax.jit, static_argnames=("model", "num_iters", "keep_history"))
def _run_sweeps(state, word_ids, doc_ids, model, key, num_iters, keep_history):
    def _one_sweep(carry, sweep_key):
        st, ok = carry
        st, sweep_ok = _sweep_body(st, word_ids, doc_ids, model, sweep_key)
        return (st, ok & sweep_ok), (st if keep_history else None)

    sweep_keys = jax.random.split(key, num_iters)
    (state, ok), states = jax.lax.scan(_one_sweep, (state, jnp.array(True)), sweep_keys)
    return state, states, ok


def run_gibbs(
    corpus: Corpus,
    model: LDAModel,
    *,
    num_iters: int,
    key: Array,
    keep_history: bool = False,
) -> Tuple[LDAState, Optional[List[LDAState]]]:
    """Run collapsed Gibbs for a fixed number of sweeps inside one ``jit``.

    Parameters
    ----------
    corpus
        Bag-of-words data.
    model
        ``LDAModel`` with hyper-parameters.
    num_iters
        Number of full sweeps; ``0`` returns the initial state.
    key
        JAX PRNG key; split into an initialisation key and a chain key.
    keep_history
        If *True* also return the state after every sweep.
    """
    if num_iters < 0:
        raise InvalidConfig(f"num_iters must be >= 0, got {num_iters}")

    init_key, chain_key = jax.random.split(key)
    state = model.init_state(corpus, key=init_key)
    if num_iters == 0:
        return state, ([] if keep_history else None)

    state, states, ok = _run_sweeps(
        state, corpus.word_ids, corpus.doc_ids, model, chain_key, num_iters, keep_history
    )
    if not bool(ok):
        raise DegenerateDistribution("non-positive normaliser during Gibbs sweep")

    if not keep_history:
        return state, None
    # `states` has a leading (num_iters,) axis on every leaf
    history = [jax.tree_util.tree_map(lambda x, i=i: x[i], states) for i in range(num_iters)]
    return state, history

################################################################################
# Likelihood ###################################################################
################################################################################

def log_likelihood(state: LDAState, model: LDAModel) -> Array:
    """Compute the *joint* log-prob ``log P(z, w | alpha, eta)`` in collapsed form.

    For convergence diagnostics only; the sampler never uses it.
    """
    K, W = model.num_topics, model.vocab_size

    def _dirichlet_multinomial(counts_row, conc):
        return (
            gammaln(conc.sum())
            - gammaln(conc.sum() + counts_row.sum())
            + gammaln(conc + counts_row).sum()
            - gammaln(conc).sum()
        )

    alpha_vec = jnp.full((K,), model.alpha)
    ll_docs = jax.vmap(_dirichlet_multinomial, in_axes=(0, None))(state.n_dk, alpha_vec).sum()

    eta_vec = jnp.full((W,), model.eta)
    ll_topics = jax.vmap(_dirichlet_multinomial, in_axes=(0, None))(state.n_kw, eta_vec).sum()

    return ll_docs + ll_topics
