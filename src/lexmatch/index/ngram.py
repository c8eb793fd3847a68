"""Approximate string matching index over character n-grams.

Each stored string is represented as a set of character n-gram features
(repeated n-grams are numbered so the multiset becomes a set). An inverted
list maps every feature to the ids of the stored strings containing it,
grouped by feature-set size.

Retrieval answers "which stored strings have similarity >= threshold with
the query" for a set-similarity measure (Jaccard or Cosine). Two searchers
implement the same contract:

- CPMergeSearcher: length filtering + overlap counting over the inverted
  lists (the CPMerge algorithm). Only sizes compatible with the threshold
  are visited, and candidates are generated from the shortest lists and
  pruned as soon as they can no longer reach the minimum overlap.
- LinearSearcher: scores every stored string. Kept as a reference
  implementation; swap it in with ``NgramIndex(searcher=LinearSearcher())``.

Both verify survivors with the exact measure, so there are no false
positives and no false negatives.

Example:
    >>> index = NgramIndex(order=3)
    >>> index.build([("nfkappab", None), ("tnfalpha", None)])
    >>> sorted(index.retrieve("nfkappa", JACCARD, 0.6))
    ['nfkappab']
"""

from __future__ import annotations

import json
import logging
import math
import os
import threading
import zipfile
from abc import ABC, abstractmethod
from bisect import bisect_left
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import numpy as np

from lexmatch.errors import IndexCorrupt, ValidationError

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

# Slack for float rounding in the size/overlap bounds. Bounds are only
# used for pruning; survivors are verified with the exact measure.
_EPS = 1e-9


def ngram_features(text: str, order: int) -> frozenset[str]:
    """Return the n-gram feature set of ``text``.

    A string shorter than ``order`` yields itself as its single feature.
    The k-th repetition of an n-gram (k >= 1) is kept as a distinct
    feature ``"<gram>\\x00<k>"``.
    """
    if not text:
        return frozenset()
    if len(text) < order:
        return frozenset((text,))

    seen: dict[str, int] = {}
    features = []
    for i in range(len(text) - order + 1):
        gram = text[i:i + order]
        k = seen.get(gram, 0)
        seen[gram] = k + 1
        features.append(gram if k == 0 else f"{gram}\x00{k}")
    return frozenset(features)


class Measure(ABC):
    """Set similarity measure with the bounds CPMerge needs."""

    name: str

    @abstractmethod
    def similarity(self, overlap: int, x_size: int, y_size: int) -> float:
        """Similarity of two sets from their sizes and overlap."""

    @abstractmethod
    def min_size(self, x_size: int, threshold: float) -> int:
        """Smallest candidate set size that can reach the threshold."""

    @abstractmethod
    def max_size(self, x_size: int, threshold: float) -> int:
        """Largest candidate set size that can reach the threshold."""

    @abstractmethod
    def min_overlap(self, x_size: int, y_size: int, threshold: float) -> int:
        """Minimum overlap needed between sets of the two sizes."""

    def between(self, x: frozenset[str], y: frozenset[str]) -> float:
        if not x or not y:
            return 0.0
        return self.similarity(len(x & y), len(x), len(y))

    def __repr__(self) -> str:
        return self.name


class JaccardMeasure(Measure):
    name = "jaccard"

    def similarity(self, overlap: int, x_size: int, y_size: int) -> float:
        union = x_size + y_size - overlap
        return overlap / union if union else 0.0

    def min_size(self, x_size: int, threshold: float) -> int:
        return max(1, math.ceil(threshold * x_size - _EPS))

    def max_size(self, x_size: int, threshold: float) -> int:
        return math.floor(x_size / threshold + _EPS)

    def min_overlap(self, x_size: int, y_size: int, threshold: float) -> int:
        return max(1, math.ceil(threshold * (x_size + y_size) / (1 + threshold) - _EPS))


class CosineMeasure(Measure):
    name = "cosine"

    def similarity(self, overlap: int, x_size: int, y_size: int) -> float:
        if not x_size or not y_size:
            return 0.0
        return overlap / math.sqrt(x_size * y_size)

    def min_size(self, x_size: int, threshold: float) -> int:
        return max(1, math.ceil(threshold * threshold * x_size - _EPS))

    def max_size(self, x_size: int, threshold: float) -> int:
        return math.floor(x_size / (threshold * threshold) + _EPS)

    def min_overlap(self, x_size: int, y_size: int, threshold: float) -> int:
        return max(1, math.ceil(threshold * math.sqrt(x_size * y_size) - _EPS))


JACCARD = JaccardMeasure()
COSINE = CosineMeasure()

MEASURES: dict[str, Measure] = {JACCARD.name: JACCARD, COSINE.name: COSINE}


def get_measure(name: str) -> Measure:
    try:
        return MEASURES[name.lower()]
    except KeyError:
        raise ValidationError(f"Unknown measure: {name!r}. Available: {list(MEASURES)}") from None


class Searcher(ABC):
    """Strategy that finds the ids of stored strings meeting a threshold."""

    @abstractmethod
    def search(
        self,
        index: NgramIndex,
        features: frozenset[str],
        measure: Measure,
        threshold: float,
    ) -> list[int]:
        """Return ids of stored strings with measure >= threshold."""


class CPMergeSearcher(Searcher):
    """Length filtering + overlap counting over per-size inverted lists."""

    def search(self, index, features, measure, threshold):
        q = len(features)
        results: list[int] = []
        lo = measure.min_size(q, threshold)
        hi = min(measure.max_size(q, threshold), index.max_feature_size)

        for size in range(lo, hi + 1):
            table = index.postings_for_size(size)
            if not table:
                continue
            tau = measure.min_overlap(q, size, threshold)
            if tau > min(q, size):
                continue

            lists = sorted((table.get(f, ()) for f in features), key=len)

            # Any string with overlap >= tau appears in at least one of the
            # first q - tau + 1 lists, so those lists generate candidates.
            counts: dict[int, int] = {}
            n_signature = q - tau + 1
            for ids in lists[:n_signature]:
                for sid in ids:
                    counts[sid] = counts.get(sid, 0) + 1

            for i in range(n_signature, q):
                ids = lists[i]
                remaining = q - i - 1
                survivors: dict[int, int] = {}
                for sid, count in counts.items():
                    pos = bisect_left(ids, sid)
                    if pos < len(ids) and ids[pos] == sid:
                        count += 1
                    if count + remaining >= tau:
                        survivors[sid] = count
                counts = survivors
                if not counts:
                    break

            for sid, overlap in counts.items():
                if measure.similarity(overlap, q, size) >= threshold:
                    results.append(sid)

        return results


class LinearSearcher(Searcher):
    """Score every stored string with the exact measure."""

    def search(self, index, features, measure, threshold):
        q = len(features)
        return [
            sid
            for sid, stored in enumerate(index.feature_sets())
            if stored and measure.similarity(len(features & stored), q, len(stored)) >= threshold
        ]


def validate_threshold(threshold: float) -> float:
    """Thresholds must lie in (0, 1]."""
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid threshold: {threshold!r}") from None
    if math.isnan(value) or value <= 0 or value > 1:
        raise ValidationError(f"Threshold must be in (0, 1], got {threshold!r}")
    return value


class NgramIndex:
    """Rebuildable approximate-membership index over normalized strings.

    Keys are deduplicated and stored in sorted order so that ids, and
    therefore retrieval output, are deterministic. Each key keeps the list
    of payloads it was inserted with.

    Attributes:
        order: Character n-gram order.
        searcher: Retrieval strategy (CPMerge by default).
    """

    def __init__(self, order: int = 3, searcher: Searcher | None = None) -> None:
        if order < 1:
            raise ValidationError(f"n-gram order must be >= 1, got {order}")
        self.order = order
        self.searcher = searcher or CPMergeSearcher()
        self._lock = threading.Lock()
        self._reset()

    def _reset(self) -> None:
        self._keys: list[str] = []
        self._payloads: list[list[Any]] = []
        self._sizes: np.ndarray = np.zeros(0, dtype=np.int32)
        self._postings: dict[int, dict[str, list[int]]] = {}
        self._feature_sets: list[frozenset[str]] | None = None
        self._closed = False

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        pos = bisect_left(self._keys, key)
        return pos < len(self._keys) and self._keys[pos] == key

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    @property
    def max_feature_size(self) -> int:
        return int(self._sizes.max()) if len(self._sizes) else 0

    def postings_for_size(self, size: int) -> dict[str, list[int]]:
        return self._postings.get(size, {})

    def feature_sets(self) -> list[frozenset[str]]:
        """Feature set of every stored key, by id (computed on first use)."""
        with self._lock:
            if self._feature_sets is None:
                self._feature_sets = [ngram_features(k, self.order) for k in self._keys]
            return self._feature_sets

    def build(self, items: Iterable[tuple[str, Any]], workers: int = 1) -> None:
        """Replace the index contents with ``items``.

        Args:
            items: ``(key, payload)`` pairs. Duplicate keys accumulate their
                payloads; empty keys are skipped.
            workers: Threads used to extract features (sharded by key).
        """
        grouped: dict[str, list[Any]] = {}
        for key, payload in items:
            if not key:
                continue
            grouped.setdefault(key, []).append(payload)

        keys = sorted(grouped)
        feature_sets = self._extract_features(keys, workers)

        postings: dict[int, dict[str, list[int]]] = {}
        sizes = np.zeros(len(keys), dtype=np.int32)
        for sid, features in enumerate(feature_sets):
            sizes[sid] = len(features)
            table = postings.setdefault(len(features), {})
            for f in features:
                table.setdefault(f, []).append(sid)

        self._keys = keys
        self._payloads = [grouped[k] for k in keys]
        self._sizes = sizes
        self._postings = postings
        self._feature_sets = None
        self._closed = False
        logger.debug(f"[NgramIndex] Built {len(keys)} keys (order={self.order}, sizes={len(postings)})")

    def _extract_features(self, keys: Sequence[str], workers: int) -> list[frozenset[str]]:
        if workers <= 1 or len(keys) < 2 * workers:
            return [ngram_features(k, self.order) for k in keys]

        shard = math.ceil(len(keys) / workers)
        shards = [keys[i:i + shard] for i in range(0, len(keys), shard)]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            parts = executor.map(lambda ks: [ngram_features(k, self.order) for k in ks], shards)
            return [fs for part in parts for fs in part]

    def retrieve(self, query: str, measure: Measure = JACCARD, threshold: float = 0.7) -> list[str]:
        """Return the stored keys whose similarity with ``query`` is >= threshold.

        Args:
            query: Normalized query string. Empty returns no keys.
            measure: Similarity measure.
            threshold: In (0, 1]; 1.0 means identical feature sets.

        Returns:
            Matching keys in sorted order.

        Raises:
            ValidationError: If the threshold is outside (0, 1].
        """
        threshold = validate_threshold(threshold)
        assert not self._closed, "retrieve() on a closed NgramIndex"
        if not query or not self._keys:
            return []
        features = ngram_features(query, self.order)
        ids = self.searcher.search(self, features, measure, threshold)
        return [self._keys[sid] for sid in sorted(ids)]

    def payloads(self, key: str) -> list[Any]:
        """Payloads stored under ``key`` (empty list when absent)."""
        pos = bisect_left(self._keys, key)
        if pos < len(self._keys) and self._keys[pos] == key:
            return list(self._payloads[pos])
        return []

    def save(self, path: str | Path) -> None:
        """Write the index to ``path`` atomically (temp file + rename).

        Payloads must be JSON serializable.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            np.savez_compressed(
                f,
                version=np.array(FORMAT_VERSION),
                order=np.array(self.order),
                keys=np.array(self._keys, dtype=str),
                payloads=np.array([json.dumps(p) for p in self._payloads], dtype=str),
            )
        os.replace(tmp, path)
        logger.debug(f"[NgramIndex] Saved {len(self._keys)} keys to {path}")

    @classmethod
    def load(cls, path: str | Path, searcher: Searcher | None = None) -> NgramIndex:
        """Load an index written by ``save``.

        Raises:
            IndexCorrupt: If the file is missing, unreadable or inconsistent.
        """
        try:
            with np.load(path, allow_pickle=False) as data:
                version = int(data["version"])
                if version != FORMAT_VERSION:
                    raise IndexCorrupt(f"unsupported index format {version} in {path}")
                order = int(data["order"])
                keys = [str(k) for k in data["keys"].tolist()]
                payloads = [json.loads(p) for p in data["payloads"].tolist()]
        except IndexCorrupt:
            raise
        except (OSError, KeyError, ValueError, zipfile.BadZipFile) as e:
            raise IndexCorrupt(f"cannot load index {path}: {e}") from e

        if len(keys) != len(payloads):
            raise IndexCorrupt(f"index {path} has {len(keys)} keys but {len(payloads)} payload lists")

        index = cls(order=order, searcher=searcher)
        index.build((k, p) for k, ps in zip(keys, payloads) for p in ps)
        return index

    def close(self) -> None:
        """Release the inverted lists. The index may be rebuilt afterwards."""
        self._reset()
        self._closed = True

    def __enter__(self) -> NgramIndex:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
