"""lda_gibbs.inference.estimators
===============================

Turn final Gibbs counts into interpretable output.

* :func:`compute_phi` / :func:`compute_theta` – smoothed point estimates of
  the topic–word and document–topic distributions.
* :func:`top_n_terms` – highest-probability words per topic.
* :func:`assign_topic` – most probable topic per document.

All four are pure functions of their inputs.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

import numpy as np
import jax.numpy as jnp
from jax import Array

from lda_gibbs.errors import DegenerateDistribution, InvalidConfig

__all__ = [
    "compute_phi",
    "compute_theta",
    "top_n_terms",
    "assign_topic",
]

logger = logging.getLogger(__name__)

################################################################################
# Distribution estimates ########################################################
################################################################################

def _row_normalise(counts: Array, conc: float, name: str) -> Array:
    counts = jnp.asarray(counts)
    if counts.ndim != 2:
        raise ValueError(f"{name} counts must be 2-D, got shape {counts.shape}")
    if not conc > 0:
        raise InvalidConfig(f"{name} concentration must be > 0, got {conc}")

    width = counts.shape[1]
    denom = counts.sum(axis=1, keepdims=True) + width * conc
    if bool(jnp.any(denom <= 0)):
        raise DegenerateDistribution(f"non-positive row normaliser while computing {name}")

    out = (counts + conc) / denom
    logger.debug("computed %s with shape %s", name, out.shape)
    return out


def compute_phi(n_kw: Array, eta: float) -> Array:
    """Topic–word distributions, shape ``(K, W)``.

    ``phi[k, w] = (n_kw[k, w] + eta) / (n_k[k] + W * eta)``; every row sums
    to one.
    """
    return _row_normalise(n_kw, eta, "phi")


def compute_theta(n_dk: Array, alpha: float) -> Array:
    """Document–topic distributions, shape ``(D, K)``.

    A document without tokens gets the uniform row ``1 / K``.
    """
    return _row_normalise(n_dk, alpha, "theta")

################################################################################
# Ranking ######################################################################
################################################################################

def top_n_terms(
    phi: Array,
    n: int,
    vocab: Optional[Sequence[str]] = None,
) -> List[List[Union[str, int]]]:
    """The ``n`` most probable words of every topic, best first.

    Exactly equal probabilities are ordered by lower vocabulary id.  Entries
    are words from ``vocab`` when given, else integer ids; ``n`` larger than
    the vocabulary returns the whole vocabulary.
    """
    if n < 0:
        raise InvalidConfig(f"n must be >= 0, got {n}")
    phi = np.asarray(phi)
    if vocab is not None and len(vocab) != phi.shape[1]:
        raise ValueError(f"vocab has {len(vocab)} entries but phi has {phi.shape[1]} columns")

    ids = np.arange(phi.shape[1])
    out = []
    for row in phi:
        # lexsort sorts by the last key first
        order = np.lexsort((ids, -row))[:n]
        if vocab is None:
            out.append([int(w) for w in order])
        else:
            out.append([vocab[w] for w in order])
    return out


def assign_topic(theta: Array) -> np.ndarray:
    """Argmax topic per document; ties go to the lowest topic id."""
    return np.asarray(theta).argmax(axis=1)
