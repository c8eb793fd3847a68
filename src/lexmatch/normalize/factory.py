"""Normalizer factory and per-call caching.

Environment Variables:
    NORMALIZER: "local" (default) or "elasticsearch"
    ELASTICSEARCH_URL: Elasticsearch URL (default: "http://localhost:9200")
"""

from __future__ import annotations

import logging
import os

from lexmatch.errors import ValidationError
from lexmatch.normalize.protocol import Normalizer

logger = logging.getLogger(__name__)


class CachingNormalizer:
    """Memoizes another normalizer for the lifetime of one match call.

    Failures are not cached.
    """

    def __init__(self, inner: Normalizer) -> None:
        self.inner = inner
        self._cache: dict[tuple[str, str], str] = {}
        self.calls = 0

    def normalize(self, text: str, profile: str) -> str:
        key = (profile, text)
        if key not in self._cache:
            self.calls += 1
            self._cache[key] = self.inner.normalize(text, profile)
        return self._cache[key]

    def batch_normalize(self, texts: list[str], profile: str) -> list[str]:
        missing = list(dict.fromkeys(t for t in texts if t and (profile, t) not in self._cache))
        if missing:
            self.calls += 1
            for text, norm in zip(missing, self.inner.batch_normalize(missing, profile)):
                self._cache[(profile, text)] = norm
        return [self._cache[(profile, t)] if t else "" for t in texts]


def create_normalizer() -> Normalizer:
    """Create a normalizer based on environment configuration."""
    kind = os.environ.get("NORMALIZER", "local").lower()

    if kind == "local":
        from lexmatch.normalize.local import LocalNormalizer
        logger.debug("[Normalizer] NORMALIZER=local, using LocalNormalizer")
        return LocalNormalizer()

    if kind == "elasticsearch":
        from lexmatch.normalize.elasticsearch import ElasticsearchNormalizer
        url = os.environ.get("ELASTICSEARCH_URL", "http://localhost:9200")
        logger.info(f"[Normalizer] NORMALIZER=elasticsearch, using {url}")
        return ElasticsearchNormalizer(url)

    raise ValidationError(f"Unknown NORMALIZER: {kind!r} (expected 'local' or 'elasticsearch')")
