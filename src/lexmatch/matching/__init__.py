"""Scoring and multi-vocabulary matching."""

from lexmatch.matching.matcher import VocabularyMatcher, rank, search_vocabulary
from lexmatch.matching.scoring import (
    LanguageProfile,
    circular_bigrams,
    circular_trigrams,
    jaccard,
    language_profile,
    score,
)

__all__ = [
    "LanguageProfile",
    "VocabularyMatcher",
    "circular_bigrams",
    "circular_trigrams",
    "jaccard",
    "language_profile",
    "rank",
    "score",
    "search_vocabulary",
]
