"""Normalization collaborator: typographic (norm1) and morphosyntactic (norm2) forms.

Usage:
    from lexmatch.normalize import create_normalizer

    normalizer = create_normalizer()  # LocalNormalizer or ElasticsearchNormalizer from env
    normalizer.normalize("NF-kappa B", "normalizer2")  # "nfkappab"
"""

from lexmatch.normalize.elasticsearch import ElasticsearchNormalizer
from lexmatch.normalize.factory import CachingNormalizer, create_normalizer
from lexmatch.normalize.local import LocalNormalizer
from lexmatch.normalize.protocol import Normalizer

__all__ = [
    "create_normalizer",
    "CachingNormalizer",
    "ElasticsearchNormalizer",
    "LocalNormalizer",
    "Normalizer",
]
