"""lda_gibbs.inference.sampler
============================

High-level driver that **orchestrates MCMC** for the collapsed-Gibbs kernel
in :pymod:`lda_gibbs.models.lda`:

* :func:`run` – the one-call entry point: validate, initialise, sweep a fixed
  number of times, return the final counts.
* :class:`GibbsSampler` – the same loop with burn-in, thinning, a progress
  bar, periodic log-likelihood logging and a trace of recorded draws.

The random stream is an explicit ``jax.random.PRNGKey`` built from the seed
and split deterministically, so a fixed ``(corpus, config, seed)`` always
yields the same assignments.
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import jax
from jax import Array
from tqdm import tqdm
import jax.numpy as jnp

from lda_gibbs.errors import EmptyCorpus, InvalidConfig
from lda_gibbs.inference.estimators import compute_phi, compute_theta
from lda_gibbs.models.lda import LDAModel, LDAState, collapsed_gibbs_step, log_likelihood
from lda_gibbs.utils.process import Corpus, corpus_from_docs

__all__ = [
    "SamplerConfig",
    "GibbsSampler",
    "run",
]

logger = logging.getLogger(__name__)

################################################################################
# Config dataclass #############################################################
################################################################################

@dataclass(slots=True)
class SamplerConfig:
    """Settings controlling an MCMC run."""

    num_iters: int                   # total sweeps (including burn-in)
    burn_in: int = 0                 # number of initial sweeps not recorded
    thin: int = 1                    # record every `thin`-th sweep
    seed: int = 0                    # seed for the PRNG stream
    show_progress: bool = True       # tqdm progress bar
    collect: bool = True             # keep post-burn-in draws in the trace
    log_every: int = 0               # log the joint log-likelihood every n sweeps

    def __post_init__(self):
        if self.num_iters < 0:
            raise InvalidConfig(f"num_iters must be >= 0, got {self.num_iters}")
        if self.burn_in < 0:
            raise InvalidConfig(f"burn_in must be >= 0, got {self.burn_in}")
        if self.burn_in and self.burn_in >= self.num_iters:
            raise InvalidConfig(
                f"burn_in ({self.burn_in}) must be smaller than num_iters ({self.num_iters})"
            )
        if self.thin < 1:
            raise InvalidConfig(f"thin must be >= 1, got {self.thin}")
        if self.log_every < 0:
            raise InvalidConfig(f"log_every must be >= 0, got {self.log_every}")

################################################################################
# Protocol for kernels #########################################################
################################################################################

class GibbsKernelFn(Protocol):
    """Signature a Gibbs sweep kernel must satisfy."""

    def __call__(
        self, state: LDAState, corpus: Corpus, model: LDAModel, *, key: Array
    ) -> LDAState: ...

################################################################################
# Sampler driver ###############################################################
################################################################################

def _default_store(state: LDAState) -> dict[str, Array]:
    return {"n_kw": state.n_kw, "n_dk": state.n_dk}


@dataclass
class GibbsSampler:
    """Thin wrapper that executes a Gibbs kernel repeatedly.

    Parameters
    ----------
    corpus
        Tokenised corpus.
    model
        `LDAModel` instance holding hyper-parameters.
    config
        Run-time configuration (iterations, burn-in, seed).
    kernel
        A callable implementing the Gibbs sweep.  Defaults to
        `lda_gibbs.models.lda.collapsed_gibbs_step`.
    store_state
        A function ``fn(state) -> dict`` that extracts what is kept from each
        recorded draw.  By default the **n_kw** and **n_dk** count matrices,
        which are all :meth:`posterior_phi` / :meth:`posterior_theta` need.
    """

    corpus: Corpus
    model: LDAModel
    config: SamplerConfig
    kernel: GibbsKernelFn = collapsed_gibbs_step
    store_state: Callable[[LDAState], dict[str, Array]] = _default_store

    _state: Optional[LDAState] = field(init=False, repr=False, default=None)
    _trace: List = field(init=False, repr=False, default_factory=list)

    def __post_init__(self):
        if self.corpus.num_tokens == 0:
            raise EmptyCorpus("corpus has no tokens")
        self.model.check_corpus(self.corpus)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> LDAState:
        """Count state after the last completed sweep."""
        if self._state is None:
            raise RuntimeError("sampler has not been run; call run() first")
        return self._state

    @property
    def trace(self) -> Sequence[dict[str, Array]]:
        """Draws recorded by the last :meth:`run`, oldest first."""
        return self._trace

    def run(self) -> Sequence[dict[str, Array]]:
        """Execute Gibbs sampling according to ``SamplerConfig``."""
        cfg = self.config
        init_key, chain_key = jax.random.split(jax.random.PRNGKey(cfg.seed))
        self._state = self.model.init_state(self.corpus, key=init_key)
        self._trace = []

        logger.info(
            "running %i sweeps over %i tokens in %i documents (K=%i, alpha=%g, eta=%g, seed=%i)",
            cfg.num_iters, self.corpus.num_tokens, self.corpus.num_docs,
            self.model.num_topics, self.model.alpha, self.model.eta, cfg.seed,
        )
        if cfg.num_iters == 0:
            return self._trace

        sweep_keys = jax.random.split(chain_key, cfg.num_iters)
        iterator = range(cfg.num_iters)
        if cfg.show_progress:
            iterator = tqdm(iterator, desc="Gibbs")

        for it in iterator:
            self._state = self.kernel(self._state, self.corpus, self.model, key=sweep_keys[it])

            if cfg.log_every and (it + 1) % cfg.log_every == 0:
                logger.info(
                    "sweep %i/%i: log-likelihood %.4f",
                    it + 1, cfg.num_iters, float(log_likelihood(self._state, self.model)),
                )
            else:
                logger.debug("finished sweep %i/%i", it + 1, cfg.num_iters)

            if cfg.collect and it >= cfg.burn_in and (it - cfg.burn_in) % cfg.thin == 0:
                self._trace.append(self.store_state(self._state))

        logger.info("finished %i sweeps, recorded %i draws", cfg.num_iters, len(self._trace))
        return self._trace

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------

    def _draws(self, name: str) -> List[Array]:
        if self._trace:
            return [d[name] for d in self._trace]
        return [getattr(self.state, name)]

    def posterior_phi(self) -> Array:
        """Posterior mean of φ over recorded draws, shape ``(K, W)``.

        Falls back to the final state when nothing was recorded.
        """
        phis = [compute_phi(n_kw, self.model.eta) for n_kw in self._draws("n_kw")]
        return jnp.stack(phis).mean(axis=0)

    def posterior_theta(self) -> Array:
        """Posterior mean of θ over recorded draws, shape ``(D, K)``."""
        thetas = [compute_theta(n_dk, self.model.alpha) for n_dk in self._draws("n_dk")]
        return jnp.stack(thetas).mean(axis=0)

################################################################################
# One-call entry point #########################################################
################################################################################

def run(
    docs: Union[Corpus, Iterable[Iterable[int]]],
    vocab_size: Union[int, Sequence[str]],
    *,
    num_topics: int,
    alpha: float,
    eta: float,
    iterations: int,
    seed: int = 0,
    show_progress: bool = False,
) -> Tuple[Corpus, LDAState]:
    """Fit LDA by collapsed Gibbs sampling and return the final count state.

    Exactly ``iterations`` sweeps are performed; there is no convergence
    test.  ``docs`` may be an already-built :class:`Corpus` or plain
    sequences of word ids, in which case ``vocab_size`` (or a vocabulary
    list) is used to validate them.
    """
    model = LDAModel(num_topics=num_topics, vocab_size=_vocab_len(vocab_size), alpha=alpha, eta=eta)
    config = SamplerConfig(num_iters=iterations, seed=seed, show_progress=show_progress, collect=False)

    corpus = docs if isinstance(docs, Corpus) else corpus_from_docs(docs, vocab_size)
    sampler = GibbsSampler(corpus, model, config)
    sampler.run()
    return corpus, sampler.state


def _vocab_len(vocab: Union[int, Sequence[str]]) -> int:
    return int(vocab) if isinstance(vocab, numbers.Integral) else len(vocab)
