"""Vocabularies, their entry lifecycle and compiled snapshots."""

from lexmatch.vocab.registry import VocabularyRegistry
from lexmatch.vocab.tsv import read_entry_file, read_entry_line
from lexmatch.vocab.vocabulary import (
    CompileStats,
    Vocabulary,
    VocabularySnapshot,
    VocabularyView,
)

__all__ = [
    "CompileStats",
    "Vocabulary",
    "VocabularyRegistry",
    "VocabularySnapshot",
    "VocabularyView",
    "read_entry_file",
    "read_entry_line",
]
