"""Candidate span generation over raw surface text.

Tokens are runs of word characters; every other non-space character
(punctuation, underscore) is a token of its own. Spans are contiguous token
windows, sliced from the original text so that offsets always point at the
literal surface string.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from lexmatch.errors import ValidationError
from lexmatch.text.constants import (
    ARTICLE_PREFIXES,
    BOUNDARY_PUNCTUATION,
    NO_BEGIN_WORDS,
    NO_END_WORDS,
    NO_TERM_WORDS,
    STOP_TERMS,
)
from lexmatch.types import CandidateSpan, SpanOptions

_TOKEN_RE = re.compile(r"[^\W_]+|[^\w\s]|_")
_NUMERIC_RE = re.compile(r"^[\d.]+$")
_DIGIT_LETTER_RE = re.compile(r"^\d[a-zA-Z]$")

_Stemmer = None
_local = threading.local()


def _get_stemmer():
    """Lazy import of PyStemmer; one stemmer per thread."""
    global _Stemmer
    if _Stemmer is None:
        try:
            import Stemmer
            _Stemmer = Stemmer
        except ImportError:
            raise ImportError(
                "PyStemmer package required for span stemming. "
                "Install with: pip install PyStemmer"
            )
    stemmer = getattr(_local, "stemmer", None)
    if stemmer is None:
        stemmer = _Stemmer.Stemmer("porter")
        _local.stemmer = stemmer
    return stemmer


def stem_word(word: str) -> str:
    return _get_stemmer().stemWord(word)


def tokenize(text: str) -> list[tuple[int, int]]:
    """Return ``(begin, end)`` character offsets of each token in ``text``."""
    return [m.span() for m in _TOKEN_RE.finditer(text)]


def is_stopword(span: str) -> bool:
    """True if the span is never worth querying.

    Applied to the raw span before any transform.
    """
    lowered = span.lower()
    return (
        lowered in STOP_TERMS
        or len(span) <= 1
        or lowered.startswith(ARTICLE_PREFIXES)
        or span.startswith(BOUNDARY_PUNCTUATION)
        or span.endswith(BOUNDARY_PUNCTUATION)
        or _NUMERIC_RE.match(span) is not None
        or _DIGIT_LETTER_RE.match(span) is not None
    )


def validate_window(min_tokens: int, max_tokens: int) -> None:
    if min_tokens < 1:
        raise ValidationError(f"min_tokens must be >= 1, got {min_tokens}")
    if max_tokens < min_tokens:
        raise ValidationError(f"max_tokens ({max_tokens}) must be >= min_tokens ({min_tokens})")


@dataclass(frozen=True)
class SpanStopWords:
    """Word lists that rule out a span by its tokens.

    A span is rejected when any of its words is in ``no_term``, its first
    word is in ``no_begin``, or its last word is in ``no_end``. Words are
    compared lowercased.
    """

    no_term: frozenset[str] = NO_TERM_WORDS
    no_begin: frozenset[str] = NO_BEGIN_WORDS
    no_end: frozenset[str] = NO_END_WORDS

    @classmethod
    def from_labels(cls, labels: Iterable[str]) -> SpanStopWords:
        """Built-in lists minus the words the labels themselves use.

        Any word of a label is allowed inside spans; it only stays blocked
        at a span boundary unless some label begins or ends with it.
        """
        used: set[str] = set()
        first: set[str] = set()
        last: set[str] = set()
        for label in labels:
            words = [label[b:e].lower() for b, e in tokenize(label)]
            if not words:
                continue
            used.update(words)
            first.add(words[0])
            last.add(words[-1])
        return cls(
            no_term=NO_TERM_WORDS - used,
            no_begin=NO_BEGIN_WORDS - first,
            no_end=NO_END_WORDS - last,
        )

    @classmethod
    def from_dict(cls, data: dict | None) -> SpanStopWords:
        if not data:
            return cls()
        return cls(
            no_term=frozenset(data["no_term"]),
            no_begin=frozenset(data["no_begin"]),
            no_end=frozenset(data["no_end"]),
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "no_term": sorted(self.no_term),
            "no_begin": sorted(self.no_begin),
            "no_end": sorted(self.no_end),
        }

    def intersection(self, other: SpanStopWords) -> SpanStopWords:
        """Words blocked by both lists; used when spans serve several vocabularies."""
        return SpanStopWords(
            no_term=self.no_term & other.no_term,
            no_begin=self.no_begin & other.no_begin,
            no_end=self.no_end & other.no_end,
        )

    def rejects(self, words: list[str]) -> bool:
        return (
            words[0] in self.no_begin
            or words[-1] in self.no_end
            or any(word in self.no_term for word in words)
        )


def iter_spans(text: str, min_tokens: int, max_tokens: int) -> Iterator[tuple[CandidateSpan, int, int]]:
    """Yield every token window with its first and last+1 token index."""
    validate_window(min_tokens, max_tokens)
    offsets = tokenize(text)
    for length in range(min_tokens, max_tokens + 1):
        for i in range(len(offsets) - length + 1):
            begin = offsets[i][0]
            end = offsets[i + length - 1][1]
            yield CandidateSpan(text[begin:end], begin, end), i, i + length


def enumerate_spans(text: str, min_tokens: int, max_tokens: int) -> list[CandidateSpan]:
    """All contiguous token spans of ``min_tokens``..``max_tokens`` tokens minus stopwords.

    Ordered by span length, then start position.
    """
    return [
        span
        for span, _, _ in iter_spans(text, min_tokens, max_tokens)
        if not is_stopword(span.text)
    ]


def stem_span(text: str, offsets: list[tuple[int, int]], first: int, last: int) -> str:
    """Replace each token of ``offsets[first:last]`` by its stem, keeping separators."""
    parts = []
    for t in range(first, last):
        if t > first:
            parts.append(text[offsets[t - 1][1]:offsets[t][0]])
        begin, end = offsets[t]
        parts.append(stem_word(text[begin:end]))
    return "".join(parts)


class SpanGenerator:
    """Turns raw text into query strings mapped to every offset they occur at.

    Example:
        >>> gen = SpanGenerator(1, 2)
        >>> sorted(gen.queries("the cat sat"))
        ['cat', 'cat sat', 'sat']
    """

    def __init__(
        self,
        min_tokens: int = 1,
        max_tokens: int = 6,
        options: SpanOptions | None = None,
        stop_words: SpanStopWords | None = None,
    ):
        validate_window(min_tokens, max_tokens)
        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        self.options = options or SpanOptions()
        self.stop_words = stop_words

    def queries(self, text: str) -> dict[str, list[tuple[int, int]]]:
        """Map each distinct (transformed) query string to its occurrences.

        Keys are in first-seen order; occurrences in enumeration order.
        """
        result: dict[str, list[tuple[int, int]]] = {}
        if not text:
            return result

        opts = self.options
        stop_words = self.stop_words
        offsets = tokenize(text) if opts.stemming or stop_words is not None else []
        words = [text[b:e].lower() for b, e in offsets] if stop_words is not None else []
        for span, first, last in iter_spans(text, self.min_tokens, self.max_tokens):
            if is_stopword(span.text):
                continue
            if stop_words is not None and stop_words.rejects(words[first:last]):
                continue
            query = stem_span(text, offsets, first, last) if opts.stemming else span.text
            if opts.case_insensitive:
                query = query.lower()
            if opts.replace_hyphen:
                query = query.replace("-", " ")
            assert 0 <= span.begin < span.end <= len(text)
            result.setdefault(query, []).append((span.begin, span.end))
        return result
