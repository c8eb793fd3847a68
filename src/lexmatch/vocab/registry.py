"""Named vocabularies backed by one storage and one index directory."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from lexmatch.errors import UnknownVocabularyError, ValidationError
from lexmatch.normalize.protocol import Normalizer
from lexmatch.storage.sqlite import SQLiteStorage
from lexmatch.types import VocabularyConfig
from lexmatch.vocab.vocabulary import Vocabulary, validate_config, validate_name

logger = logging.getLogger(__name__)


class VocabularyRegistry:
    """Hands out one Vocabulary object per name so that compile locks are shared."""

    def __init__(self, storage: SQLiteStorage, normalizer: Normalizer, index_dir: str | Path) -> None:
        self.storage = storage
        self.normalizer = normalizer
        self.index_dir = Path(index_dir)
        self._vocabularies: dict[str, Vocabulary] = {}
        self._lock = threading.Lock()

    def create(self, name: str, config: VocabularyConfig | None = None) -> Vocabulary:
        validate_name(name)
        config = validate_config(config or VocabularyConfig())
        if self.storage.get_vocabulary(name) is not None:
            raise ValidationError(f"Vocabulary {name!r} already exists")
        self.storage.create_vocabulary(name, config)
        logger.info(f"[Registry] Created vocabulary {name} ({config})")
        return self.get(name)

    def get_or_create(self, name: str, config: VocabularyConfig | None = None) -> Vocabulary:
        if self.storage.get_vocabulary(name) is None:
            return self.create(name, config)
        return self.get(name)

    def get(self, name: str) -> Vocabulary:
        with self._lock:
            vocabulary = self._vocabularies.get(name)
            if vocabulary is not None:
                return vocabulary
            config = self.storage.get_vocabulary(name)
            if config is None:
                raise UnknownVocabularyError(name)
            vocabulary = Vocabulary(name, config, self.storage, self.normalizer, self.index_dir)
            self._vocabularies[name] = vocabulary
            return vocabulary

    def resolve(self, names: list[str]) -> list[Vocabulary]:
        """Look up several vocabularies, reporting every unknown name at once."""
        known = set(self.storage.list_vocabularies())
        unknown = [n for n in names if n not in known]
        if unknown:
            raise UnknownVocabularyError(unknown)
        return [self.get(n) for n in dict.fromkeys(names)]

    def find_labels_by_ids(
        self, identifiers: list[str], vocabularies: list[str] | None = None
    ) -> dict[str, list[dict]]:
        """Reverse lookup: identifier -> ``[{label, dictionary}, ...]``."""
        if vocabularies:
            self.resolve(vocabularies)
        result: dict[str, list[dict]] = {}
        for row in self.storage.find_labels_by_ids(identifiers, vocabularies):
            result.setdefault(row["identifier"], []).append(
                {"label": row["label"], "dictionary": row["vocabulary"]}
            )
        return result

    def names(self) -> list[str]:
        return self.storage.list_vocabularies()

    def delete(self, name: str) -> None:
        vocabulary = self.get(name)
        vocabulary.empty_entries()
        self.storage.delete_vocabulary(name)
        with self._lock:
            self._vocabularies.pop(name, None)
        logger.info(f"[Registry] Deleted vocabulary {name}")
