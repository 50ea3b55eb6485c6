"""lda_gibbs.utils.process
========================

Helpers that turn documents into the flat ``(word_ids, doc_ids)`` layout the
Gibbs kernels scan over:

1. **Corpus container** – token arrays in document-major order.
2. **Validation** – :func:`corpus_from_docs` checks integer id sequences
   against the vocabulary.
3. **Pre-processing** – vocabulary building and an optional spaCy tokeniser
   for raw text.
"""

from __future__ import annotations

import itertools
import logging
from collections import Counter
from typing import List, NamedTuple, Optional, Sequence, Union, Iterable

import numpy as np
import jax.numpy as jnp

from lda_gibbs.errors import EmptyCorpus, InvalidConfig, VocabMismatch

__all__ = [
    "Corpus",
    "corpus_from_docs",
    "build_vocab",
    "corpus_from_tokens",
    "corpus_from_texts",
]

logger = logging.getLogger(__name__)

################################################################################
# 1. Corpus container ###########################################################
################################################################################

class Corpus(NamedTuple):
    """Bag-of-words corpus, one entry per token.

    Tokens are laid out document-major, position-minor; this is also the
    order in which a Gibbs sweep visits them.
    """

    word_ids: jnp.ndarray              # shape (N,)
    doc_ids:  jnp.ndarray              # shape (N,)
    vocab:    List[str]
    doc_ptrs: jnp.ndarray              # shape (D + 1,)

    @property
    def num_tokens(self) -> int:  # noqa: D401
        """Total tokens N."""
        return int(self.word_ids.size)

    @property
    def num_docs(self) -> int:  # noqa: D401
        """Number of documents D."""
        return int(self.doc_ptrs.size - 1)

    @property
    def vocab_size(self) -> int:  # noqa: D401
        """Vocabulary size W."""
        return len(self.vocab)

    @property
    def doc_lengths(self) -> jnp.ndarray:
        """Tokens per document, shape (D,)."""
        return jnp.diff(self.doc_ptrs)

################################################################################
# 2. Validation #################################################################
################################################################################

def _as_id_array(doc: Iterable[int], d: int) -> np.ndarray:
    arr = np.asarray(list(doc))
    if arr.size == 0:
        return np.zeros(0, dtype=np.int64)
    if arr.ndim != 1 or not np.issubdtype(arr.dtype, np.integer):
        raise VocabMismatch(f"document {d} must be a flat sequence of integer word ids")
    return arr.astype(np.int64)


def corpus_from_docs(
    docs: Iterable[Iterable[int]],
    vocab: Union[int, Sequence[str]],
) -> Corpus:
    """Build a :class:`Corpus` from per-document word-id sequences.

    Parameters
    ----------
    docs
        Ordered documents, each an ordered sequence of ints in ``[0, W)``.
    vocab
        Either the vocabulary size ``W`` or the id → word list itself.  With
        a bare size, placeholder words ``w0 .. w{W-1}`` are used.

    Ids outside ``[0, W)`` raise :class:`VocabMismatch`.  ``W`` may exceed
    the number of distinct ids actually used: vocabulary entries that never
    occur only log a warning, since a fixed vocabulary is often shared by
    several corpora.
    """
    if isinstance(vocab, (int, np.integer)):
        if vocab < 1:
            raise InvalidConfig(f"vocab_size must be >= 1, got {vocab}")
        vocab = [f"w{i}" for i in range(int(vocab))]
    else:
        vocab = list(vocab)
        if not vocab:
            raise InvalidConfig("vocabulary is empty")
    W = len(vocab)

    id_arrays = [_as_id_array(doc, d) for d, doc in enumerate(docs)]
    if not id_arrays:
        raise EmptyCorpus("corpus contains no documents")

    doc_lengths = np.array([a.size for a in id_arrays], dtype=np.int64)
    if doc_lengths.sum() == 0:
        raise EmptyCorpus(f"all {len(id_arrays)} documents have zero tokens")

    word_ids_np = np.concatenate(id_arrays)
    bad = (word_ids_np < 0) | (word_ids_np >= W)
    if bad.any():
        pos = int(np.flatnonzero(bad)[0])
        d = int(np.searchsorted(np.cumsum(doc_lengths), pos, side="right"))
        raise VocabMismatch(
            f"word id {int(word_ids_np[pos])} in document {d} is outside [0, {W})"
        )

    num_used = np.unique(word_ids_np).size
    if num_used < W:
        logger.warning("%i of %i vocabulary ids never occur in the corpus", W - num_used, W)

    doc_ids_np = np.repeat(np.arange(len(id_arrays)), doc_lengths)

    word_ids = jnp.asarray(word_ids_np, dtype=jnp.int32)
    doc_ids  = jnp.asarray(doc_ids_np,  dtype=jnp.int32)
    doc_ptrs = jnp.concatenate([
        jnp.array([0], dtype=jnp.int32),
        jnp.cumsum(jnp.asarray(doc_lengths, dtype=jnp.int32), dtype=jnp.int32),
    ])

    logger.info(
        "built corpus: %i documents, %i tokens, vocabulary of %i words",
        len(id_arrays), int(doc_lengths.sum()), W,
    )
    return Corpus(word_ids, doc_ids, vocab, doc_ptrs)

################################################################################
# 3. Pre-processing utilities ###################################################
################################################################################

def _tokenize_texts(
    texts: Sequence[str],
    *,
    lowercase: bool = True,
    allowed_pos: Optional[Sequence[str]] = None,
) -> List[List[str]]:
    """Light-weight tokeniser using a rules-only spaCy pipeline."""
    import spacy  # Local import keeps spaCy optional until actually used.

    nlp = spacy.blank("en")
    out: List[List[str]] = []
    for doc in nlp.pipe(texts):
        toks = [
            t.text.lower() if lowercase else t.text
            for t in doc
            if t.is_alpha and not t.is_stop and (allowed_pos is None or t.pos_ in allowed_pos)
        ]
        out.append(toks)
    return out


def build_vocab(
    token_lists: Sequence[Sequence[str]],
    *,
    min_count: int = 5,
    max_vocab: int = 50_000,
) -> List[str]:
    """Frequency-filtered vocabulary sorted by descending count."""
    counts = Counter(itertools.chain.from_iterable(token_lists))
    vocab = [w for w, c in counts.items() if c >= min_count]
    vocab.sort(key=lambda w: (-counts[w], w))
    return vocab[:max_vocab]


def corpus_from_tokens(
    token_lists: Sequence[Sequence[str]],
    *,
    min_count: int = 5,
    max_vocab: int = 50_000,
) -> Corpus:
    """Map already-tokenised documents onto a fresh vocabulary."""
    vocab = build_vocab(token_lists, min_count=min_count, max_vocab=max_vocab)
    word2id = {w: i for i, w in enumerate(vocab)}

    docs, dropped = [], 0
    for toks in token_lists:
        ids = [word2id[w] for w in toks if w in word2id]
        dropped += len(toks) - len(ids)
        docs.append(ids)

    if dropped:
        logger.warning("dropped %i out-of-vocabulary tokens", dropped)
    if not vocab:
        raise EmptyCorpus(f"no word reaches min_count={min_count}")
    return corpus_from_docs(docs, vocab)


def corpus_from_texts(
    texts: Sequence[str],
    *,
    min_count: int = 5,
    max_vocab: int = 50_000,
    lowercase: bool = True,
    allowed_pos: Optional[Sequence[str]] = None,
) -> Corpus:
    """Convert raw text documents into a :class:`Corpus`."""
    token_lists = _tokenize_texts(texts, lowercase=lowercase, allowed_pos=allowed_pos)
    return corpus_from_tokens(token_lists, min_count=min_count, max_vocab=max_vocab)
