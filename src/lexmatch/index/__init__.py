"""Approximate n-gram matching index."""

from lexmatch.index.ngram import (
    COSINE,
    JACCARD,
    CosineMeasure,
    CPMergeSearcher,
    JaccardMeasure,
    LinearSearcher,
    Measure,
    NgramIndex,
    Searcher,
    get_measure,
    ngram_features,
)

__all__ = [
    "COSINE",
    "JACCARD",
    "CosineMeasure",
    "CPMergeSearcher",
    "JaccardMeasure",
    "LinearSearcher",
    "Measure",
    "NgramIndex",
    "Searcher",
    "get_measure",
    "ngram_features",
]
