"""Tests for the n-gram similarity index."""

import math
import random

import numpy as np
import pytest

from lexmatch.errors import IndexCorrupt, ValidationError
from lexmatch.index.ngram import (
    COSINE,
    JACCARD,
    LinearSearcher,
    NgramIndex,
    get_measure,
    ngram_features,
)


def _random_strings(seed, n=200, alphabet="abcde", max_len=10):
    rng = random.Random(seed)
    return [
        "".join(rng.choice(alphabet) for _ in range(rng.randint(1, max_len)))
        for _ in range(n)
    ]


def _oracle(keys, query, order, measure, threshold):
    q = ngram_features(query, order)
    return sorted(k for k in set(keys) if measure.between(q, ngram_features(k, order)) >= threshold)


class TestNgramFeatures:
    """Tests for ngram_features."""

    def test_trigrams(self):
        """Features are the plain n-grams of the string."""
        assert ngram_features("abcd", 3) == {"abc", "bcd"}

    def test_repeats_are_numbered(self):
        """Repeated n-grams stay distinct features."""
        assert ngram_features("aaaa", 3) == {"aaa", "aaa\x001"}

    def test_short_string(self):
        """A string shorter than the order is its own feature."""
        assert ngram_features("ab", 3) == {"ab"}
        assert ngram_features("", 3) == frozenset()


class TestMeasures:
    """Tests for the set similarity measures."""

    def test_lookup(self):
        """Measures are found by name."""
        assert get_measure("Jaccard") is JACCARD
        assert get_measure("cosine") is COSINE
        with pytest.raises(ValidationError):
            get_measure("dice")

    def test_values(self):
        """Jaccard and cosine agree with their definitions."""
        assert JACCARD.similarity(2, 3, 3) == pytest.approx(0.5)
        assert COSINE.similarity(2, 4, 1) == pytest.approx(1.0)
        assert COSINE.similarity(1, 4, 4) == pytest.approx(0.25)


class TestRetrieve:
    """Tests for NgramIndex.retrieve against a brute-force oracle."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    @pytest.mark.parametrize("measure", [JACCARD, COSINE])
    @pytest.mark.parametrize("order", [2, 3])
    def test_matches_oracle(self, seed, measure, order):
        """No false positives and no false negatives."""
        keys = _random_strings(seed)
        index = NgramIndex(order=order)
        index.build((k, None) for k in keys)
        rng = random.Random(seed + 100)
        for query in rng.sample(keys, 10) + _random_strings(seed + 200, n=10):
            for threshold in (0.3, 0.5, 0.7, 0.9, 1.0):
                assert index.retrieve(query, measure, threshold) == \
                    _oracle(keys, query, order, measure, threshold)

    def test_linear_searcher_agrees(self):
        """The reference searcher returns the same keys."""
        keys = _random_strings(7)
        fast = NgramIndex(order=3)
        slow = NgramIndex(order=3, searcher=LinearSearcher())
        fast.build((k, None) for k in keys)
        slow.build((k, None) for k in keys)
        for query in keys[:20]:
            assert fast.retrieve(query, JACCARD, 0.6) == slow.retrieve(query, JACCARD, 0.6)

    def test_threshold_one_is_exact(self):
        """At threshold 1.0 only identical feature sets match."""
        index = NgramIndex(order=3)
        index.build([("nfkappab", None), ("nfkappa", None)])
        assert index.retrieve("nfkappab", JACCARD, 1.0) == ["nfkappab"]

    def test_example(self):
        """A prefix query finds the longer key, not an unrelated one."""
        index = NgramIndex(order=3)
        index.build([("nfkappab", None), ("tnfalpha", None)])
        assert index.retrieve("nfkappa", JACCARD, 0.6) == ["nfkappab"]

    def test_empty_query_and_empty_index(self):
        """Empty inputs return no keys."""
        index = NgramIndex()
        assert index.retrieve("abc", JACCARD, 0.5) == []
        index.build([("abc", None)])
        assert index.retrieve("", JACCARD, 0.5) == []

    @pytest.mark.parametrize("threshold", [0, -0.1, 1.5, math.nan, "high"])
    def test_invalid_threshold(self, threshold):
        """Thresholds outside (0, 1] are rejected."""
        index = NgramIndex()
        index.build([("abc", None)])
        with pytest.raises(ValidationError):
            index.retrieve("abc", JACCARD, threshold)

    def test_parallel_build(self):
        """Sharded feature extraction gives the same index."""
        keys = _random_strings(11, n=500)
        serial = NgramIndex(order=3)
        parallel = NgramIndex(order=3)
        serial.build((k, None) for k in keys)
        parallel.build(((k, None) for k in keys), workers=4)
        assert serial.keys == parallel.keys
        for query in keys[:20]:
            assert serial.retrieve(query, COSINE, 0.7) == parallel.retrieve(query, COSINE, 0.7)


class TestPayloads:
    """Tests for keys and payloads."""

    def test_duplicates_accumulate(self):
        """Duplicate keys are stored once with every payload."""
        index = NgramIndex()
        index.build([("abc", 1), ("abc", 2), ("", 3), ("abd", 4)])
        assert len(index) == 2
        assert index.payloads("abc") == [1, 2]
        assert index.payloads("zzz") == []
        assert "abd" in index

    def test_keys_sorted(self):
        """Keys are kept in sorted order."""
        index = NgramIndex()
        index.build([("b", None), ("c", None), ("a", None)])
        assert index.keys == ["a", "b", "c"]

    def test_invalid_order(self):
        """Order must be positive."""
        with pytest.raises(ValidationError):
            NgramIndex(order=0)

    def test_close(self):
        """Closing releases the contents."""
        with NgramIndex() as index:
            index.build([("abc", None)])
        assert len(index) == 0


class TestPersistence:
    """Tests for save/load."""

    def test_roundtrip(self, tmp_path):
        """A loaded index answers like the saved one."""
        index = NgramIndex(order=2)
        index.build([("nfkappab", {"identifier": "GENE:1"}), ("tnfalpha", {"identifier": "GENE:2"})])
        path = tmp_path / "ngram.npz"
        index.save(path)

        loaded = NgramIndex.load(path)
        assert loaded.order == 2
        assert loaded.keys == index.keys
        assert loaded.payloads("nfkappab") == [{"identifier": "GENE:1"}]
        assert loaded.retrieve("nfkappa", COSINE, 0.7) == index.retrieve("nfkappa", COSINE, 0.7)
        assert not (tmp_path / "ngram.npz.tmp").exists()

    def test_empty_roundtrip(self, tmp_path):
        """An empty index can be saved and loaded."""
        path = tmp_path / "empty.npz"
        NgramIndex().save(path)
        assert len(NgramIndex.load(path)) == 0

    def test_garbage_file(self, tmp_path):
        """Unreadable artifacts raise IndexCorrupt."""
        path = tmp_path / "ngram.npz"
        path.write_bytes(b"not an index")
        with pytest.raises(IndexCorrupt):
            NgramIndex.load(path)

    def test_missing_file(self, tmp_path):
        """A missing artifact raises IndexCorrupt."""
        with pytest.raises(IndexCorrupt):
            NgramIndex.load(tmp_path / "missing.npz")

    def test_inconsistent_file(self, tmp_path):
        """Mismatched keys and payloads raise IndexCorrupt."""
        path = tmp_path / "ngram.npz"
        np.savez_compressed(
            path,
            version=np.array(1),
            order=np.array(3),
            keys=np.array(["abc", "abd"], dtype=str),
            payloads=np.array(["[null]"], dtype=str),
        )
        with pytest.raises(IndexCorrupt):
            NgramIndex.load(path)

    def test_unsupported_version(self, tmp_path):
        """Artifacts from another format version are rejected."""
        path = tmp_path / "ngram.npz"
        np.savez_compressed(
            path,
            version=np.array(99),
            order=np.array(3),
            keys=np.array([], dtype=str),
            payloads=np.array([], dtype=str),
        )
        with pytest.raises(IndexCorrupt):
            NgramIndex.load(path)
