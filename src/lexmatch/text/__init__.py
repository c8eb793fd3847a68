"""Surface-text tokenization and candidate span generation."""

from lexmatch.text.spans import (
    SpanGenerator,
    SpanStopWords,
    enumerate_spans,
    is_stopword,
    stem_word,
    tokenize,
)

__all__ = [
    "SpanGenerator",
    "SpanStopWords",
    "enumerate_spans",
    "is_stopword",
    "stem_word",
    "tokenize",
]
