"""Core data types for vocabulary matching.

Entries are the mutable curation records owned by a vocabulary; every other
type here is an immutable value produced per query:

    text → CandidateSpan → (query string, offsets) → AnnotationResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class EntryMode(IntEnum):
    """Curation state of an entry.

    The integer values are the ones persisted by the storage layer.
    """

    GRAY = 0
    WHITE = 1
    BLACK = 2
    AUTO_EXPANDED = 3

    @property
    def is_active(self) -> bool:
        """Active entries are the ones the approximate index is built from."""
        return self in (EntryMode.GRAY, EntryMode.WHITE)


ACTIVE_MODES: tuple[EntryMode, ...] = (EntryMode.GRAY, EntryMode.WHITE)


class Ranking(str, Enum):
    """Ranking policy applied to the merged hits of one query string."""

    ALL_ABOVE_THRESHOLD = "all"
    TOP_ONLY = "top"


@dataclass
class Entry:
    """One vocabulary term.

    Attributes:
        label: Surface string.
        identifier: External concept id (many labels may share one).
        norm1: Typographic normalization of the label.
        norm2: Typographic + morphosyntactic normalization (may be empty).
        mode: Curation state.
        dirty: True when the entry is not reflected in the compiled index yet.
        tags: Optional filter labels.
        score: Provenance confidence, only set for AUTO_EXPANDED entries.
        id: Storage row id (None until persisted).
    """

    label: str
    identifier: str
    norm1: str = ""
    norm2: str = ""
    mode: EntryMode = EntryMode.GRAY
    dirty: bool = False
    tags: frozenset[str] = field(default_factory=frozenset)
    score: float | None = None
    id: int | None = None


@dataclass(frozen=True)
class CandidateSpan:
    """A literal substring of the input text bounded by token offsets."""

    text: str
    begin: int
    end: int


@dataclass(frozen=True)
class Hit:
    """A scored entry for one query string, before offsets are attached."""

    label: str
    identifier: str
    vocabulary: str
    score: float
    tags: tuple[str, ...] = ()
    norm1: str = ""
    norm2: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.vocabulary, self.identifier, self.label)

    def to_record(self) -> dict:
        """Verbose lookup record."""
        d = {
            "label": self.label,
            "norm1": self.norm1,
            "norm2": self.norm2,
            "identifier": self.identifier,
            "score": self.score,
            "dictionary": self.vocabulary,
        }
        if self.tags:
            d["tags"] = list(self.tags)
        return d


@dataclass(frozen=True)
class AnnotationResult:
    """One annotation: a hit expanded to one occurrence in the text."""

    begin: int
    end: int
    matched_string: str
    identifier: str
    vocabulary_name: str
    score: float
    tags: tuple[str, ...] = ()
    span_text: str = ""

    def to_denotation(self) -> dict:
        """Serialize in the annotation (denotation) wire format.

        ``span`` and ``obj`` repeat the offsets and identifier in the nested
        form annotation tools exchange.
        """
        d = {
            "begin": self.begin,
            "end": self.end,
            "identifier": self.identifier,
            "label": self.matched_string,
            "dictionary": self.vocabulary_name,
            "score": self.score,
            "span": {"begin": self.begin, "end": self.end},
            "obj": self.identifier,
        }
        if self.tags:
            d["tags"] = list(self.tags)
        return d


@dataclass(frozen=True)
class VocabularyConfig:
    """Stored per-vocabulary defaults."""

    threshold: float = 0.85
    min_tokens: int = 1
    max_tokens: int = 6
    language: str | None = None


@dataclass(frozen=True)
class SpanOptions:
    """Pre-scoring transforms applied to each candidate span."""

    case_insensitive: bool = False
    replace_hyphen: bool = False
    stemming: bool = False


@dataclass(frozen=True)
class MatchOptions:
    """Per-call options for VocabularyMatcher.match.

    ``None`` for min_tokens/max_tokens/threshold means "use each vocabulary's
    stored default".
    """

    min_tokens: int | None = None
    max_tokens: int | None = None
    threshold: float | None = None
    tag_filter: frozenset[str] = frozenset()
    ranking: Ranking = Ranking.TOP_ONLY
    spans: SpanOptions = SpanOptions()
    use_ngram: bool = True
    partial_on_normalization_error: bool = False


@dataclass
class MatchReport:
    """Annotations plus the spans dropped by partial degradation."""

    annotations: list[AnnotationResult] = field(default_factory=list)
    failed_spans: list[str] = field(default_factory=list)
