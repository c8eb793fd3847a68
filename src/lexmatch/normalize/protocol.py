"""Normalizer Protocol for the normalization collaborator.

A profile is an analyzer name: ``normalizer1`` (typographic) or
``normalizer2`` (typographic + morphosyntactic), optionally with a
language suffix such as ``_ko`` or ``_ja``.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Normalizer(Protocol):
    """Protocol for normalization backends (Elasticsearch, local, ...)."""

    def normalize(self, text: str, profile: str) -> str:
        """Return the normalized form of ``text``.

        Raises:
            ValidationError: If ``text`` is empty.
            NormalizationUnavailable: If the backend cannot be reached.
        """
        ...

    def batch_normalize(self, texts: list[str], profile: str) -> list[str]:
        """Normalize many texts at once; output aligns 1:1 with ``texts``.

        A text whose tokens are all removed normalizes to ``""``.
        """
        ...
