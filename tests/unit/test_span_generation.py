"""Tests for tokenization, stopword filtering and candidate span generation."""

import pytest

from lexmatch.errors import ValidationError
from lexmatch.text.spans import (
    SpanGenerator,
    SpanStopWords,
    enumerate_spans,
    is_stopword,
    stem_word,
    tokenize,
)
from lexmatch.types import SpanOptions


class TestTokenize:
    """Tests for tokenize."""

    def test_punctuation_is_its_own_token(self):
        """Hyphens split words into separate tokens."""
        assert tokenize("NF-kappaB activity") == [(0, 2), (2, 3), (3, 9), (10, 18)]

    def test_underscore_is_a_token(self):
        """Underscore is not treated as a word character."""
        assert tokenize("a_b") == [(0, 1), (1, 2), (2, 3)]

    def test_empty(self):
        """Empty text has no tokens."""
        assert tokenize("") == []


class TestIsStopword:
    """Tests for is_stopword."""

    @pytest.mark.parametrize("span", [
        "the", "The", "a", "the cat", "an apple", "(foo", "foo.", "-bar", "12.5", "1a", "dna binding",
    ])
    def test_filtered(self, span):
        """Stop terms, articles, boundary punctuation and numbers are filtered."""
        assert is_stopword(span)

    @pytest.mark.parametrize("span", ["p53", "aspirin", "IL-2", "NF-kappaB", "cat sat"])
    def test_kept(self, span):
        """Ordinary terms are kept."""
        assert not is_stopword(span)


class TestEnumerateSpans:
    """Tests for enumerate_spans."""

    def test_the_cat_sat(self):
        """Spans come ordered by length then start, minus stopwords."""
        spans = enumerate_spans("the cat sat", 1, 2)
        assert [s.text for s in spans] == ["cat", "sat", "cat sat"]
        assert [(s.begin, s.end) for s in spans] == [(4, 7), (8, 11), (4, 11)]

    def test_offsets_slice_original_text(self):
        """Every span is the literal substring at its offsets."""
        text = "Human NF-kappaB (p65) binds DNA."
        for span in enumerate_spans(text, 1, 6):
            assert text[span.begin:span.end] == span.text
            assert 0 <= span.begin < span.end <= len(text)

    def test_window_longer_than_text(self):
        """A window wider than the text yields what fits."""
        assert [s.text for s in enumerate_spans("aspirin", 1, 6)] == ["aspirin"]

    @pytest.mark.parametrize("min_tokens,max_tokens", [(0, 3), (3, 2)])
    def test_invalid_window(self, min_tokens, max_tokens):
        """Window bounds are validated."""
        with pytest.raises(ValidationError):
            enumerate_spans("the cat sat", min_tokens, max_tokens)


class TestSpanGenerator:
    """Tests for SpanGenerator.queries."""

    def test_repeated_span_maps_to_all_offsets(self):
        """A repeated query string is generated once with every occurrence."""
        queries = SpanGenerator(1, 1).queries("cat and cat")
        assert queries == {"cat": [(0, 3), (8, 11)]}

    def test_case_insensitive(self):
        """Lowercasing changes the query, not the offsets."""
        queries = SpanGenerator(1, 1, SpanOptions(case_insensitive=True)).queries("Aspirin")
        assert queries == {"aspirin": [(0, 7)]}

    def test_replace_hyphen(self):
        """Hyphens become spaces in the query string."""
        queries = SpanGenerator(1, 3, SpanOptions(replace_hyphen=True)).queries("IL-2")
        assert queries["IL 2"] == [(0, 4)]
        assert "IL-2" not in queries

    def test_stemming(self):
        """Each token is stemmed, separators are kept."""
        queries = SpanGenerator(1, 2, SpanOptions(stemming=True)).queries("running dogs")
        assert queries["run dog"] == [(0, 12)]
        assert stem_word("dogs") == "dog"

    def test_stopword_filter_uses_raw_span(self):
        """Filtering happens before transforms, so a stemmed stop term survives."""
        queries = SpanGenerator(1, 1, SpanOptions(stemming=True)).queries("running")
        assert queries == {"run": [(0, 7)]}

    def test_empty_text(self):
        """Empty text yields no queries."""
        assert SpanGenerator().queries("") == {}


class TestSpanStopWords:
    """Tests for label-derived span stop words."""

    def test_defaults_reject_function_words(self):
        """Spans containing, opening or closing with function words are skipped."""
        gen = SpanGenerator(1, 3, stop_words=SpanStopWords())
        queries = gen.queries("aspirin and ibuprofen for pain")
        assert "aspirin and ibuprofen" not in queries
        assert "ibuprofen for" not in queries
        assert "for pain" not in queries
        assert {"aspirin", "ibuprofen", "pain"} <= set(queries)

    def test_labels_lift_restrictions(self):
        """Words used by labels are allowed where the labels use them."""
        stop_words = SpanStopWords.from_labels(["Vitamin A", "on-off switch", "salt and pepper"])
        assert "and" not in stop_words.no_term
        assert "a" not in stop_words.no_end
        assert "a" in stop_words.no_begin
        assert "on" not in stop_words.no_begin
        assert "off" in stop_words.no_begin

        queries = SpanGenerator(1, 3, stop_words=stop_words).queries("salt and pepper with vitamin A")
        assert "salt and pepper" in queries
        assert "vitamin A" in queries
        assert "pepper with" not in queries

    def test_none_disables_filter(self):
        """Without stop words only the fixed stopword filter applies."""
        assert "aspirin and ibuprofen" in SpanGenerator(1, 3).queries("aspirin and ibuprofen")

    def test_words_compared_lowercased(self):
        """Capitalized function words are still rejected."""
        queries = SpanGenerator(2, 2, stop_words=SpanStopWords()).queries("With aspirin")
        assert queries == {}

    def test_dict_roundtrip_and_intersection(self):
        """Lists persist as sorted lists; combining keeps words blocked by both."""
        drugs = SpanStopWords.from_labels(["salt and pepper"])
        genes = SpanStopWords.from_labels(["A and B"])
        assert SpanStopWords.from_dict(drugs.to_dict()) == drugs
        assert SpanStopWords.from_dict(None) == SpanStopWords()
        combined = drugs.intersection(genes)
        assert "and" not in combined.no_term
        assert "a" not in combined.no_begin
        assert combined.no_term == SpanStopWords().no_term - {"and"}
