"""Tests for core value types and the error taxonomy."""

import pytest

from lexmatch.errors import (
    ConcurrentCompileRejected,
    IndexCorrupt,
    InvalidTransitionError,
    LexmatchError,
    NormalizationError,
    NormalizationUnavailable,
    UnknownVocabularyError,
    ValidationError,
)
from lexmatch.types import (
    ACTIVE_MODES,
    AnnotationResult,
    EntryMode,
    Hit,
    MatchOptions,
    Ranking,
)


class TestEntryMode:
    """Tests for EntryMode."""

    def test_persisted_values(self):
        """Mode integers are stable."""
        assert [int(m) for m in EntryMode] == [0, 1, 2, 3]

    def test_active_modes(self):
        """Only GRAY and WHITE are indexed."""
        assert set(ACTIVE_MODES) == {EntryMode.GRAY, EntryMode.WHITE}
        assert EntryMode.GRAY.is_active
        assert not EntryMode.BLACK.is_active
        assert not EntryMode.AUTO_EXPANDED.is_active


class TestAnnotationResult:
    """Tests for the denotation wire format."""

    def test_to_denotation(self):
        """Denotation carries offsets, identifier, label, dictionary and score."""
        result = AnnotationResult(
            begin=4, end=11, matched_string="aspirin", identifier="D001",
            vocabulary_name="drugs", score=1.0, span_text="aspirin",
        )
        assert result.to_denotation() == {
            "begin": 4,
            "end": 11,
            "identifier": "D001",
            "label": "aspirin",
            "dictionary": "drugs",
            "score": 1.0,
            "span": {"begin": 4, "end": 11},
            "obj": "D001",
        }

    def test_tags_included_when_present(self):
        """Tags appear only when the entry has some."""
        result = AnnotationResult(0, 4, "IL-2", "GENE:3", "genes", 0.9, tags=("cytokine",))
        assert result.to_denotation()["tags"] == ["cytokine"]


class TestHit:
    """Tests for Hit."""

    def test_to_record(self):
        """Verbose record names the vocabulary as dictionary."""
        hit = Hit("aspirin", "D001", "drugs", 0.95, norm1="aspirin", norm2="aspirin")
        record = hit.to_record()
        assert record["dictionary"] == "drugs"
        assert record["score"] == 0.95
        assert "tags" not in record
        assert hit.key == ("drugs", "D001", "aspirin")


class TestMatchOptions:
    """Tests for MatchOptions defaults."""

    def test_defaults_defer_to_vocabulary(self):
        """Unset window and threshold mean per-vocabulary defaults."""
        options = MatchOptions()
        assert options.threshold is None
        assert options.min_tokens is None
        assert options.ranking == Ranking.TOP_ONLY
        assert options.use_ngram is True


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_validation_errors_are_value_errors(self):
        """Caller mistakes can be caught as ValueError."""
        assert issubclass(ValidationError, ValueError)
        assert issubclass(InvalidTransitionError, ValidationError)
        assert issubclass(UnknownVocabularyError, ValidationError)

    def test_unknown_vocabulary_lists_names(self):
        """All unknown names are reported together."""
        error = UnknownVocabularyError(["foo", "bar"])
        assert error.names == ["foo", "bar"]
        assert "foo, bar" in str(error)
        assert UnknownVocabularyError("baz").names == ["baz"]

    def test_normalization_error_alias(self):
        """NormalizationError is the same class as NormalizationUnavailable."""
        assert NormalizationError is NormalizationUnavailable
        error = NormalizationUnavailable("down", profile="normalizer2")
        assert error.profile == "normalizer2"

    def test_common_base(self):
        """Every lexmatch error shares one base class."""
        for cls in (IndexCorrupt, NormalizationUnavailable, ValidationError):
            assert issubclass(cls, LexmatchError)
        assert ConcurrentCompileRejected("genes").vocabulary == "genes"
