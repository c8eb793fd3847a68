"""In-process normalizer mirroring the Elasticsearch analyzer chain.

normalizer1: Unicode folding (NFKD, combining marks dropped, lowercase),
tokens of word characters joined without separator.

normalizer2: normalizer1 tokens minus English stop words, Porter-stemmed,
joined without separator.

Language suffixes (``_ko``, ``_ja``) are accepted and use the same chain.
"""

from __future__ import annotations

import re
import unicodedata

from lexmatch.errors import ValidationError
from lexmatch.text.constants import NORMALIZER_STOPWORDS
from lexmatch.text.spans import stem_word

_WORD_RE = re.compile(r"[^\W_]+")


def fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.translate(str.maketrans("{}", "()")))
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


def tokens(text: str) -> list[str]:
    return _WORD_RE.findall(fold(text))


class LocalNormalizer:
    """Normalizer that needs no external service."""

    def normalize(self, text: str, profile: str) -> str:
        if not text:
            raise ValidationError("Empty text")
        return self._normalize(text, profile)

    def batch_normalize(self, texts: list[str], profile: str) -> list[str]:
        if not texts:
            raise ValidationError("Empty text in array")
        return [self._normalize(t, profile) if t else "" for t in texts]

    def _normalize(self, text: str, profile: str) -> str:
        if profile.startswith("normalizer1"):
            return "".join(tokens(text))
        if profile.startswith("normalizer2"):
            return "".join(stem_word(t) for t in tokens(text) if t not in NORMALIZER_STOPWORDS)
        raise ValidationError(f"Unknown normalization profile: {profile!r}")
