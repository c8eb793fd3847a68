"""Normalization through an Elasticsearch ``_analyze`` endpoint.

The analyzers (``normalizer1``, ``normalizer2`` and their ``_ko``/``_ja``
variants) are defined on the ``entries`` index; this client only calls them.
"""

from __future__ import annotations

import logging

import httpx

from lexmatch.errors import NormalizationUnavailable, ValidationError

logger = logging.getLogger(__name__)

# Elasticsearch advances token positions by this gap between array elements.
POSITION_INCREMENT_GAP = 100


def _prepare(text: str) -> str:
    return text.translate(str.maketrans("{}", "()"))


def regroup_tokens(tokens: list[dict]) -> list[str]:
    """Split the token stream of an array ``_analyze`` call back into per-text strings.

    Consecutive tokens belong to the same text while their positions differ
    by at most POSITION_INCREMENT_GAP. A jump larger than twice the gap
    means texts in between (or before the first token) produced no tokens;
    they become ``""``.
    """
    groups: list[list[dict]] = []
    for token in tokens:
        if groups and token["position"] - groups[-1][-1]["position"] <= POSITION_INCREMENT_GAP:
            groups[-1].append(token)
        else:
            groups.append([token])

    result: list[str] = []
    previous = -POSITION_INCREMENT_GAP
    for words in groups:
        gap = words[0]["position"] - previous
        if gap > 2 * POSITION_INCREMENT_GAP:
            result.extend([""] * (gap // POSITION_INCREMENT_GAP - 1))
        previous = words[-1]["position"]
        result.append("".join(w["token"] for w in words))
    return result


class ElasticsearchNormalizer:
    """Normalizer backed by Elasticsearch analyzers.

    Args:
        url: Elasticsearch base URL.
        index: Index holding the analyzer definitions.
        timeout: Request timeout in seconds.
        client: Optional preconfigured httpx client (tests inject a mock transport).
    """

    def __init__(
        self,
        url: str = "http://localhost:9200",
        index: str = "entries",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.index = index
        self._client = client or httpx.Client(base_url=self.url, timeout=timeout)

    def _analyze(self, text: str | list[str], profile: str) -> list[dict]:
        try:
            response = self._client.post(
                f"/{self.index}/_analyze",
                json={"analyzer": profile, "text": text},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NormalizationUnavailable(
                f"analyzer {profile!r} returned {e.response.status_code}: {e.response.text[:200]}",
                profile=profile,
            ) from e
        except httpx.HTTPError as e:
            raise NormalizationUnavailable(
                f"cannot reach Elasticsearch at {self.url}: {e}", profile=profile
            ) from e
        return response.json().get("tokens", [])

    def normalize(self, text: str, profile: str) -> str:
        if not text:
            raise ValidationError("Empty text")
        return "".join(t["token"] for t in self._analyze(_prepare(text), profile))

    def batch_normalize(self, texts: list[str], profile: str) -> list[str]:
        if not texts:
            raise ValidationError("Empty text in array")
        result = regroup_tokens(self._analyze([_prepare(t) for t in texts], profile))
        # Trailing texts without tokens leave no trace in the stream.
        result.extend([""] * (len(texts) - len(result)))
        if len(result) != len(texts):
            raise NormalizationUnavailable(
                f"analyzer {profile!r} returned {len(result)} groups for {len(texts)} texts",
                profile=profile,
            )
        return result

    def close(self) -> None:
        self._client.close()
