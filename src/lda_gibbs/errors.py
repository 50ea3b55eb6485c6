"""lda_gibbs.errors
=================

Exceptions raised by the inference code.  All derive from :class:`LDAError`
(itself a ``ValueError``) so callers can catch the whole family at once.
Nothing here is retried: fix the configuration or the input and rerun.
"""

__all__ = [
    "LDAError",
    "InvalidConfig",
    "EmptyCorpus",
    "VocabMismatch",
    "DegenerateDistribution",
]


class LDAError(ValueError):
    """Base class for every error raised by :pymod:`lda_gibbs`."""


class InvalidConfig(LDAError):
    """A hyper-parameter or run setting is out of range."""


class EmptyCorpus(LDAError):
    """No documents, or every document has zero tokens."""


class VocabMismatch(LDAError):
    """A token references a word id outside ``[0, W)``."""


class DegenerateDistribution(LDAError):
    """A normalisation denominator was not strictly positive."""
