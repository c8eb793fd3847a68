"""Exception taxonomy for lexmatch.

- ValidationError: caller mistakes, surfaced immediately and never retried.
- NormalizationUnavailable: the external normalization service failed.
- IndexCorrupt / IndexUnavailable: a compiled index could not be loaded.
- ConcurrentCompileRejected: a compile for the same vocabulary is running.

Contract breaches between components are asserted, not raised as these.
"""

from __future__ import annotations


class LexmatchError(Exception):
    """Base class for all lexmatch errors."""


class ValidationError(LexmatchError, ValueError):
    """Malformed input: threshold, token window, labels, names, tags."""


class UnknownVocabularyError(ValidationError):
    """A requested vocabulary name does not exist."""

    def __init__(self, names: list[str] | str) -> None:
        if isinstance(names, str):
            names = [names]
        self.names = list(names)
        super().__init__(f"unknown vocabulary: {', '.join(self.names)}.")


class InvalidTransitionError(ValidationError):
    """An entry lifecycle transition is not allowed from the current mode."""


class NormalizationUnavailable(LexmatchError):
    """The normalization collaborator could not produce a normalized form."""

    def __init__(self, message: str, profile: str | None = None) -> None:
        self.profile = profile
        super().__init__(message)


# Name used by the normalization contract.
NormalizationError = NormalizationUnavailable


class IndexCorrupt(LexmatchError):
    """An on-disk index artifact failed to load."""


class IndexUnavailable(LexmatchError):
    """A vocabulary's index failed to load and to rebuild; recompile required."""


class ConcurrentCompileRejected(LexmatchError):
    """A compile is already running for this vocabulary."""

    def __init__(self, vocabulary: str) -> None:
        self.vocabulary = vocabulary
        super().__init__(f"compile already running for vocabulary {vocabulary!r}")
