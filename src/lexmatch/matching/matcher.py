"""End-to-end matching of free text against one or more vocabularies.

Per call:
  1. SpanGenerator turns the text into distinct query strings, each with
     every offset it occurs at.
  2. Each query string is searched in every vocabulary: approximately
     through the norm2 n-gram index (threshold < 1), or by exact label.
  3. Hits of all vocabularies are merged and ranked (TOP_ONLY keeps every
     hit at the maximum score).
  4. Each kept hit is expanded to one AnnotationResult per occurrence.

Every vocabulary is read through the snapshot taken at the start of the
call, so a compile finishing mid-call is not observed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from lexmatch.errors import NormalizationUnavailable, ValidationError
from lexmatch.index.ngram import validate_threshold
from lexmatch.matching.scoring import score
from lexmatch.normalize.factory import CachingNormalizer
from lexmatch.normalize.protocol import Normalizer
from lexmatch.text.spans import SpanGenerator, SpanStopWords
from lexmatch.types import AnnotationResult, Hit, MatchOptions, MatchReport, Ranking

if TYPE_CHECKING:
    from lexmatch.vocab.vocabulary import Vocabulary, VocabularyView

logger = logging.getLogger(__name__)


def _record_key(record: dict) -> tuple:
    return (record["label"], record["identifier"], record["norm1"], record["norm2"])


def _filter_records(records: Iterable[dict], tags: frozenset[str]) -> list[dict]:
    """Drop duplicates, and entries without any of ``tags`` when tags are given."""
    seen = set()
    kept = []
    for record in records:
        if tags and not tags.intersection(record.get("tags", ())):
            continue
        key = _record_key(record)
        if key in seen:
            continue
        seen.add(key)
        kept.append(record)
    return kept


def _hit(record: dict, vocabulary: str, value: float) -> Hit:
    return Hit(
        label=record["label"],
        identifier=record["identifier"],
        vocabulary=vocabulary,
        score=value,
        tags=tuple(record.get("tags", ())),
        norm1=record["norm1"],
        norm2=record["norm2"],
    )


def search_vocabulary(
    term: str,
    view: VocabularyView,
    normalizer: Normalizer,
    threshold: float | None = None,
    tags: frozenset[str] = frozenset(),
    use_ngram: bool = True,
) -> list[Hit]:
    """Scored entries of one vocabulary for one query string.

    Raises:
        NormalizationUnavailable: If the query cannot be normalized.
    """
    if not term:
        return []
    threshold = view.config.threshold if threshold is None else threshold
    snapshot = view.snapshot

    if threshold >= 1:
        records = [r for r in view.pending if r["label"] == term] + snapshot.by_label(term)
        return [_hit(r, view.name, 1.0) for r in _filter_records(records, tags)]

    profile = view.profile
    norm1 = normalizer.normalize(term, profile.normalizer1)
    norm2 = normalizer.normalize(term, profile.normalizer2)

    keys = []
    if use_ngram and norm2:
        keys = snapshot.index.retrieve(norm2, profile.measure, threshold)
    if not keys:
        keys = [norm2]

    records = []
    for key in keys:
        records.extend(r for r in view.pending if r["norm2"] == key)
        records.extend(snapshot.by_norm2(key))

    hits = []
    for record in _filter_records(records, tags):
        value = score(term, norm1, norm2, record["label"], record["norm1"], record["norm2"], profile)
        if value >= threshold:
            hits.append(_hit(record, view.name, value))
    return hits


def rank(hits: list[Hit], ranking: Ranking) -> list[Hit]:
    """Apply a ranking policy to the merged hits of one query string.

    Output is ordered by descending score, then vocabulary, identifier, label.
    """
    if not hits:
        return []
    ordered = sorted(hits, key=lambda h: (-h.score, h.vocabulary, h.identifier, h.label))
    if ranking == Ranking.TOP_ONLY:
        best = ordered[0].score
        return [h for h in ordered if h.score >= best]
    return ordered


class VocabularyMatcher:
    """Runs span generation, index lookup, scoring and ranking.

    Args:
        normalizer: Normalization collaborator; wrapped per call in a cache so
            each distinct query string is normalized once per profile.
    """

    def __init__(self, normalizer: Normalizer) -> None:
        self.normalizer = normalizer

    @staticmethod
    def _window(views: Sequence[VocabularyView], options: MatchOptions) -> tuple[int, int]:
        """Token window of one call; a bound given alone pulls the default other bound along."""
        default_min = min(v.config.min_tokens for v in views)
        default_max = max(v.config.max_tokens for v in views)
        min_tokens, max_tokens = options.min_tokens, options.max_tokens
        if min_tokens is None:
            min_tokens = default_min if max_tokens is None else min(default_min, max_tokens)
        if max_tokens is None:
            max_tokens = max(default_max, min_tokens)
        return min_tokens, max_tokens

    @staticmethod
    def _stop_words(views: Sequence[VocabularyView]) -> SpanStopWords:
        """Words that rule out a span for every vocabulary of the call."""
        stop_words = views[0].snapshot.stop_words
        for view in views[1:]:
            stop_words = stop_words.intersection(view.snapshot.stop_words)
        return stop_words

    def search(
        self,
        term: str,
        views: Sequence[VocabularyView],
        options: MatchOptions,
        normalizer: Normalizer | None = None,
    ) -> list[Hit]:
        """Merged and ranked hits of all vocabularies for one query string."""
        normalizer = normalizer or self.normalizer
        hits: list[Hit] = []
        for view in views:
            hits.extend(search_vocabulary(
                term, view, normalizer,
                threshold=options.threshold,
                tags=options.tag_filter,
                use_ngram=options.use_ngram,
            ))
        return rank(hits, options.ranking)

    def match_report(
        self,
        text: str,
        vocabularies: Sequence[Vocabulary],
        options: MatchOptions | None = None,
    ) -> MatchReport:
        """Annotate ``text``; also reports spans dropped for normalization failures."""
        options = options or MatchOptions()
        if options.threshold is not None:
            validate_threshold(options.threshold)
        report = MatchReport()
        if not text or not vocabularies:
            return report

        views = [v.view() for v in vocabularies]
        min_tokens, max_tokens = self._window(views, options)
        generator = SpanGenerator(min_tokens, max_tokens, options.spans, self._stop_words(views))
        queries = generator.queries(text)
        normalizer = CachingNormalizer(self.normalizer)

        n_hits = 0
        for query, occurrences in queries.items():
            try:
                hits = self.search(query, views, options, normalizer)
            except NormalizationUnavailable as e:
                if not options.partial_on_normalization_error:
                    raise
                logger.warning(f"[Matcher] Dropping span {query!r}: {e}")
                report.failed_spans.append(query)
                continue
            n_hits += len(hits)
            for hit in hits:
                for begin, end in occurrences:
                    report.annotations.append(AnnotationResult(
                        begin=begin,
                        end=end,
                        matched_string=hit.label,
                        identifier=hit.identifier,
                        vocabulary_name=hit.vocabulary,
                        score=hit.score,
                        tags=hit.tags,
                        span_text=text[begin:end],
                    ))

        report.annotations.sort(key=lambda a: (
            a.begin, -a.score, a.end, a.vocabulary_name, a.identifier, a.matched_string
        ))
        logger.debug(
            f"[Matcher] {len(queries)} query strings, {n_hits} hits, "
            f"{len(report.annotations)} annotations, {normalizer.calls} normalizer calls"
        )
        return report

    def match(
        self,
        text: str,
        vocabularies: Sequence[Vocabulary],
        options: MatchOptions | None = None,
    ) -> list[AnnotationResult]:
        """Annotations of ``text``, sorted by begin offset then descending score."""
        return self.match_report(text, vocabularies, options).annotations

    def find_ids(
        self,
        terms: Sequence[str],
        vocabularies: Sequence[Vocabulary],
        options: MatchOptions | None = None,
        verbose: bool = False,
    ) -> dict[str, list]:
        """Map each term to the identifiers (or verbose records) it matches.

        Terms are matched whole, without span generation.
        """
        options = options or MatchOptions()
        if options.threshold is not None:
            validate_threshold(options.threshold)
        if not vocabularies:
            raise ValidationError("No vocabulary given")

        views = [v.view() for v in vocabularies]
        normalizer = CachingNormalizer(self.normalizer)
        result: dict[str, list] = {}
        for term in terms:
            hits = self.search(term, views, options, normalizer)
            if verbose:
                result[term] = [h.to_record() for h in hits]
            else:
                result[term] = list(dict.fromkeys(h.identifier for h in hits))
        return result
