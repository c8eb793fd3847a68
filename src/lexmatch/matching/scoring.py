"""String similarity between a query span and a vocabulary entry.

Each language profile bundles the settings that depend on a vocabulary's
``language``: the n-gram order and measure of its approximate index, the
analyzer names used for normalization, and the scoring function.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass

from lexmatch.index.ngram import COSINE, JACCARD, Measure

# Weight of the norm2 similarity relative to each of the other two.
NORM2_WEIGHT = 10


def circular_trigrams(text: str) -> set[str]:
    """Trigrams of ``text`` wrapped around its ends (last char + text + first char)."""
    if not text:
        return set()
    wrapped = text[-1] + text + text[0]
    return {wrapped[i:i + 3] for i in range(len(wrapped) - 2)}


def circular_bigrams(text: str) -> set[str]:
    """Bigrams of ``text`` + its first char."""
    if not text:
        return set()
    wrapped = text + text[0]
    return {wrapped[i:i + 2] for i in range(len(wrapped) - 1)}


def jaccard(a: set[str], b: set[str]) -> float:
    """|A ∩ B| / |A ∪ B|, or 0.0 if either set is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def ngram_cosine(s1: str, s2: str, n: int) -> float:
    """Cosine of the n-gram count vectors of two strings."""
    v1 = Counter(s1[i:i + n] for i in range(len(s1) - n + 1))
    v2 = Counter(s2[i:i + n] for i in range(len(s2) - n + 1))
    if not v1 or not v2:
        return 0.0
    dot = sum(count * v2[gram] for gram, count in v1.items())
    norm = math.sqrt(sum(c * c for c in v1.values())) * math.sqrt(sum(c * c for c in v2.values()))
    return dot / norm


def _combined(grams: Callable[[str], set[str]]) -> Callable[..., float]:
    def score(query, query_norm1, query_norm2, label, norm1, norm2) -> float:
        surface = jaccard(grams(query), grams(label))
        typographic = jaccard(grams(query_norm1), grams(norm1))
        if not query_norm2 and not norm2:
            return (surface + typographic) / 2
        deep = jaccard(grams(query_norm2), grams(norm2))
        return (surface + typographic + NORM2_WEIGHT * deep) / (NORM2_WEIGHT + 2)
    return score


score_trigram = _combined(circular_trigrams)
score_bigram = _combined(circular_bigrams)


def score_surface_cosine(query, query_norm1, query_norm2, label, norm1, norm2) -> float:
    """0.7 unigram cosine + 0.3 bigram cosine on the surface strings only."""
    return 0.7 * ngram_cosine(query, label, 1) + 0.3 * ngram_cosine(query, label, 2)


@dataclass(frozen=True)
class LanguageProfile:
    """Language-dependent matching settings for a vocabulary."""

    name: str
    ngram_order: int
    measure: Measure
    analyzer_suffix: str
    scorer: Callable[..., float]

    @property
    def normalizer1(self) -> str:
        return "normalizer1" + self.analyzer_suffix

    @property
    def normalizer2(self) -> str:
        return "normalizer2" + self.analyzer_suffix


DEFAULT_PROFILE = LanguageProfile("default", 3, JACCARD, "", score_trigram)

PROFILES: dict[str, LanguageProfile] = {
    "kor": LanguageProfile("kor", 2, COSINE, "_ko", score_bigram),
    "jpn": LanguageProfile("jpn", 1, COSINE, "_ja", score_surface_cosine),
}


def language_profile(language: str | None) -> LanguageProfile:
    """Profile for a vocabulary language; unknown or missing languages get the default."""
    if not language:
        return DEFAULT_PROFILE
    return PROFILES.get(language, DEFAULT_PROFILE)


def score(
    query: str,
    query_norm1: str,
    query_norm2: str,
    entry_label: str,
    entry_norm1: str,
    entry_norm2: str,
    profile: LanguageProfile = DEFAULT_PROFILE,
) -> float:
    """Similarity in [0, 1] between a query and an entry under ``profile``."""
    value = profile.scorer(query, query_norm1 or "", query_norm2 or "",
                           entry_label, entry_norm1 or "", entry_norm2 or "")
    assert 0.0 <= value <= 1.0 + 1e-9, f"score out of range: {value}"
    return min(value, 1.0)
