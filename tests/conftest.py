"""Shared test fixtures."""
import pytest

from lexmatch.matching.matcher import VocabularyMatcher
from lexmatch.normalize.local import LocalNormalizer
from lexmatch.storage.sqlite import SQLiteStorage
from lexmatch.types import VocabularyConfig
from lexmatch.vocab.registry import VocabularyRegistry


@pytest.fixture
def storage(tmp_path):
    storage = SQLiteStorage(str(tmp_path / "lexmatch.db"))
    storage.create_tables()
    return storage


@pytest.fixture
def normalizer():
    return LocalNormalizer()


@pytest.fixture
def registry(storage, normalizer, tmp_path):
    return VocabularyRegistry(storage, normalizer, tmp_path / "index")


@pytest.fixture
def matcher(normalizer):
    return VocabularyMatcher(normalizer)


@pytest.fixture
def gene_entries():
    return [
        ("NF-kappa B", "GENE:1", []),
        ("TNF alpha", "GENE:2", []),
        ("interleukin 2", "GENE:3", ["cytokine"]),
        ("IL-2", "GENE:3", ["cytokine"]),
    ]


@pytest.fixture
def genes(registry, gene_entries):
    """Compiled vocabulary of a few gene names, threshold 0.7."""
    vocabulary = registry.create("genes", VocabularyConfig(threshold=0.7))
    vocabulary.add_entries(gene_entries)
    vocabulary.compile()
    return vocabulary


@pytest.fixture
def drugs(registry):
    """Compiled vocabulary of drug names, threshold 0.85."""
    vocabulary = registry.create("drugs", VocabularyConfig(threshold=0.85))
    vocabulary.add_entries([
        ("aspirin", "D001", []),
        ("acetylsalicylic acid", "D001", []),
        ("ibuprofen", "D002", []),
    ])
    vocabulary.compile()
    return vocabulary
