"""A named vocabulary: its entries, configuration and compiled snapshot.

Queries read an immutable VocabularySnapshot. Compile builds a new snapshot
from the active entries, persists it, then swaps the reference; a query
that picked up the previous snapshot keeps using it until it finishes.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import shutil
import threading
import time
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from lexmatch.errors import (
    ConcurrentCompileRejected,
    IndexCorrupt,
    IndexUnavailable,
    ValidationError,
)
from lexmatch.index.ngram import NgramIndex
from lexmatch.matching.scoring import LanguageProfile, language_profile
from lexmatch.normalize.protocol import Normalizer
from lexmatch.storage.sqlite import SQLiteStorage
from lexmatch.text.spans import SpanStopWords
from lexmatch.types import ACTIVE_MODES, Entry, EntryMode, VocabularyConfig
from lexmatch.vocab import lifecycle
from lexmatch.vocab.tsv import RawEntry

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_\- ()]*$")
MIN_NAME_LENGTH = 3

NORMALIZE_BATCH_SIZE = 1000

INDEX_FILE = "ngram.npz"
LABELS_FILE = "labels.json"
CURRENT_FILE = "CURRENT"
LOCK_SUFFIX = ".lock"

SynonymExpander = Callable[[list[str]], list[tuple[str, float]]]


def validate_name(name: str) -> str:
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError(f"Vocabulary name must be at least {MIN_NAME_LENGTH} characters: {name!r}")
    if not NAME_RE.match(name):
        raise ValidationError(
            f"Vocabulary name {name!r} should begin with a letter or underscore and only contain "
            "alphanumeric letters, underscore, hyphen, space, or round brackets"
        )
    return name


def validate_config(config: VocabularyConfig) -> VocabularyConfig:
    if not 0 < config.threshold <= 1:
        raise ValidationError(f"threshold must be in (0, 1], got {config.threshold}")
    if config.min_tokens < 1 or config.max_tokens < config.min_tokens:
        raise ValidationError(
            f"invalid token window [{config.min_tokens}, {config.max_tokens}]"
        )
    return config


def entry_record(entry: Entry) -> dict:
    """Entry fields a query needs, as stored in snapshot artifacts."""
    return {
        "label": entry.label,
        "identifier": entry.identifier,
        "norm1": entry.norm1,
        "norm2": entry.norm2,
        "tags": sorted(entry.tags),
    }


@dataclass(frozen=True)
class VocabularySnapshot:
    """Immutable compiled state of a vocabulary.

    Attributes:
        index: n-gram index over active norm2 forms; payloads are entry records.
        labels: Exact label -> entry records (active and AUTO_EXPANDED).
        blank: Active entries whose norm2 is empty (not indexable).
        generation: Artifact directory name, empty for an uncompiled vocabulary.
        stop_words: Span stop words left after lifting the ones the labels use.
    """

    index: NgramIndex
    labels: dict[str, list[dict]] = field(default_factory=dict)
    blank: list[dict] = field(default_factory=list)
    generation: str = ""
    stop_words: SpanStopWords = field(default_factory=SpanStopWords)

    @property
    def compiled(self) -> bool:
        return bool(self.generation)

    def by_norm2(self, norm2: str) -> list[dict]:
        if not norm2:
            return list(self.blank)
        return self.index.payloads(norm2)

    def by_label(self, label: str) -> list[dict]:
        return list(self.labels.get(label, ()))


@dataclass(frozen=True)
class VocabularyView:
    """What one match call sees of a vocabulary."""

    name: str
    config: VocabularyConfig
    profile: LanguageProfile
    snapshot: VocabularySnapshot
    pending: tuple[dict, ...] = ()


@dataclass
class CompileStats:
    vocabulary: str
    entries: int
    keys: int
    labels: int
    elapsed_s: float
    generation: str


class Vocabulary:
    """Entries, configuration and compiled snapshot of one named vocabulary.

    Args:
        name: Vocabulary name.
        config: Stored defaults (threshold, token window, language).
        storage: Persistence collaborator.
        normalizer: Normalization collaborator.
        index_dir: Root directory for snapshot artifacts.
    """

    def __init__(
        self,
        name: str,
        config: VocabularyConfig,
        storage: SQLiteStorage,
        normalizer: Normalizer,
        index_dir: str | Path,
    ) -> None:
        self.name = name
        self.config = config
        self.storage = storage
        self.normalizer = normalizer
        self.profile = language_profile(config.language)
        self.artifact_dir = Path(index_dir) / name
        # Beside the artifact directory so that emptying it keeps the lock.
        self.lock_path = Path(index_dir) / (name + LOCK_SUFFIX)

        self._compile_lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._snapshot: VocabularySnapshot | None = None
        # (generation, reason) of the artifact that could neither load nor rebuild
        self._failed: tuple[str, str] | None = None
        # Generation that failed to load while an older snapshot stayed live
        self._skipped: str | None = None

    def __repr__(self) -> str:
        return f"Vocabulary({self.name!r})"

    # -- normalization -------------------------------------------------------

    def normalize1(self, text: str) -> str:
        return self.normalizer.normalize(text, self.profile.normalizer1)

    def normalize2(self, text: str) -> str:
        return self.normalizer.normalize(text, self.profile.normalizer2)

    def _batch_normalize(self, labels: list[str]) -> tuple[list[str], list[str]]:
        norm1s: list[str] = []
        norm2s: list[str] = []
        for i in range(0, len(labels), NORMALIZE_BATCH_SIZE):
            batch = labels[i:i + NORMALIZE_BATCH_SIZE]
            norm1s.extend(self.normalizer.batch_normalize(batch, self.profile.normalizer1))
            norm2s.extend(self.normalizer.batch_normalize(batch, self.profile.normalizer2))
        return norm1s, norm2s

    # -- entries -------------------------------------------------------------

    def add_entries(self, raw_entries: Iterable[RawEntry]) -> int:
        """Bulk import ``(label, identifier, tags)`` triples as GRAY entries."""
        raw = list(raw_entries)
        if not raw:
            return 0
        norm1s, norm2s = self._batch_normalize([label for label, _, _ in raw])
        entries = [
            lifecycle.imported_entry(label, identifier, norm1, norm2, tags)
            for (label, identifier, tags), norm1, norm2 in zip(raw, norm1s, norm2s)
        ]
        self.storage.add_entries(self.name, entries)
        logger.info(f"[Vocabulary] {self.name}: imported {len(entries)} entries")
        return len(entries)

    def create_entry(self, label: str, identifier: str, tags: Iterable[str] = ()) -> Entry:
        """Create a curator-confirmed (WHITE) entry, searchable right away."""
        if not label or not identifier:
            raise ValidationError(f"The entry, [{label}, {identifier}], is rejected: empty label or identifier")
        entry = lifecycle.manual_entry(label, identifier, self.normalize1(label), self.normalize2(label), tags)
        (stored,) = self.storage.add_entries(self.name, [entry])
        return stored

    def get_entry(self, entry_id: int) -> Entry:
        entry = self.storage.get_entry(self.name, entry_id)
        if entry is None:
            raise ValidationError(f"No entry {entry_id} in vocabulary {self.name!r}")
        return entry

    def entries(self, mode: EntryMode | None = None) -> list[Entry]:
        return self.storage.get_entries(self.name, None if mode is None else [mode])

    def _apply(self, entry_id: int, transition: Callable[[Entry], Entry]) -> Entry:
        entry = transition(self.get_entry(entry_id))
        self.storage.update_entry_state(self.name, entry.id, entry.mode, entry.dirty)
        return entry

    def turn_to_white(self, entry_id: int) -> Entry:
        return self._apply(entry_id, lifecycle.turn_to_white)

    def turn_to_black(self, entry_id: int) -> Entry:
        return self._apply(entry_id, lifecycle.turn_to_black)

    def cancel_black(self, entry_id: int) -> Entry:
        return self._apply(entry_id, lifecycle.cancel_black)

    def confirm_entries(self, entry_ids: Iterable[int]) -> list[Entry]:
        return [self.turn_to_white(entry_id) for entry_id in entry_ids]

    def undo_entry(self, entry_id: int) -> Entry | None:
        """Undo a curator decision; returns None when the entry was deleted."""
        entry = self.get_entry(entry_id)
        if lifecycle.undo(entry):
            self.storage.delete_entry(self.name, entry.id)
            self.storage.mark_stale(self.name)
            return None
        self.storage.update_entry_state(self.name, entry.id, entry.mode, entry.dirty)
        return entry

    def remove_entry(self, entry_id: int) -> None:
        """Delete an entry; it stays matchable until the next compile."""
        self.get_entry(entry_id)
        self.storage.delete_entry(self.name, entry_id)
        self.storage.mark_stale(self.name)

    def empty_entries(self, mode: EntryMode | None = None) -> int:
        """Remove entries, all of them or those of one mode.

        For BLACK, rejections are cancelled (entries go back to GRAY) instead.
        Emptying everything also discards the compiled snapshot.
        """
        if mode is None:
            with self._exclusive(block=True):
                removed = self.storage.delete_entries(self.name)
                self.storage.clear_stale(self.name, self.storage.get_stale(self.name))
                shutil.rmtree(self.artifact_dir, ignore_errors=True)
                self._snapshot = None
                self._failed = None
                self._skipped = None
            return removed
        if mode == EntryMode.BLACK:
            return self.storage.reset_black_entries(self.name)
        if mode in (EntryMode.GRAY, EntryMode.WHITE, EntryMode.AUTO_EXPANDED):
            removed = self.storage.delete_entries(self.name, mode)
            if removed:
                self.storage.mark_stale(self.name)
            return removed
        raise ValidationError(f"Unexpected mode: {mode}")

    def counts(self) -> dict[str, int]:
        by_mode = self.storage.count_entries(self.name)
        return {
            "entries_num": sum(n for mode, n in by_mode.items() if mode != EntryMode.BLACK),
            "num_gray": by_mode[EntryMode.GRAY],
            "num_white": by_mode[EntryMode.WHITE],
            "num_black": by_mode[EntryMode.BLACK],
            "num_auto_expanded": by_mode[EntryMode.AUTO_EXPANDED],
        }

    @property
    def entries_num(self) -> int:
        return self.counts()["entries_num"]

    def pending_entries(self) -> list[Entry]:
        """WHITE entries created or confirmed since the last compile."""
        return self.storage.get_entries(self.name, [EntryMode.WHITE], dirty=True)

    def expand_synonyms(self, expander: SynonymExpander) -> int:
        """Add AUTO_EXPANDED entries produced by ``expander`` for each identifier.

        ``expander`` receives the labels of the active entries sharing an
        identifier and returns ``(label, score)`` pairs with ``score`` in [0, 1).
        """
        by_identifier: dict[str, list[str]] = {}
        for entry in self.storage.get_entries(self.name, ACTIVE_MODES):
            by_identifier.setdefault(entry.identifier, []).append(entry.label)

        created = []
        for identifier in sorted(by_identifier):
            for label, score in expander(by_identifier[identifier]):
                created.append(lifecycle.expanded_entry(label, identifier, score))
        self.storage.add_entries(self.name, created)
        logger.info(f"[Vocabulary] {self.name}: added {len(created)} expanded synonyms "
                    f"for {len(by_identifier)} identifiers")
        return len(created)

    # -- snapshot ------------------------------------------------------------

    def _current_generation(self) -> str | None:
        try:
            return (self.artifact_dir / CURRENT_FILE).read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def has_artifact(self) -> bool:
        return self._current_generation() is not None

    def compilable(self) -> bool:
        """True when the compiled snapshot lags behind the stored entries."""
        if self.storage.get_stale(self.name) and self.has_artifact():
            return True
        if not any(self.storage.count_entries(self.name).values()):
            return False
        return self.storage.has_dirty_entries(self.name) or not self.has_artifact()

    def is_compiling(self) -> bool:
        """True while this process or another one compiles the vocabulary."""
        if self._compile_lock.locked():
            return True
        try:
            with open(self.lock_path, "rb") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_SH | fcntl.LOCK_NB)
        except FileNotFoundError:
            return False
        except BlockingIOError:
            return True
        return False

    @contextmanager
    def _exclusive(self, block: bool):
        """Hold the in-process compile lock, then the lock file shared with other processes."""
        if not self._compile_lock.acquire(blocking=block):
            raise ConcurrentCompileRejected(self.name)
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a") as lock_file:
                try:
                    fcntl.flock(lock_file, fcntl.LOCK_EX if block else fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    raise ConcurrentCompileRejected(self.name) from None
                yield
        finally:
            self._compile_lock.release()

    def _empty_snapshot(self) -> VocabularySnapshot:
        return VocabularySnapshot(index=NgramIndex(order=self.profile.ngram_order))

    def _load(self, generation: str) -> VocabularySnapshot:
        directory = self.artifact_dir / generation
        index = NgramIndex.load(directory / INDEX_FILE)
        if index.order != self.profile.ngram_order:
            raise IndexCorrupt(
                f"index order {index.order} does not match language profile {self.profile.name}"
            )
        try:
            with open(directory / LABELS_FILE, encoding="utf-8") as f:
                data = json.load(f)
            return VocabularySnapshot(
                index=index,
                labels=data["labels"],
                blank=data["blank"],
                generation=generation,
                stop_words=SpanStopWords.from_dict(data.get("stop_words")),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise IndexCorrupt(f"cannot load {directory / LABELS_FILE}: {e}") from e

    def _is_live(self, snapshot: VocabularySnapshot | None, current: str) -> bool:
        return snapshot is not None and current in (snapshot.generation, self._skipped)

    def _check_failed(self, current: str) -> None:
        if self._failed is not None and self._failed[0] == current:
            raise IndexUnavailable(f"vocabulary {self.name!r} needs recompiling: {self._failed[1]}")

    def snapshot(self) -> VocabularySnapshot:
        """The live compiled snapshot, following the ``CURRENT`` pointer on disk.

        The snapshot is loaded on first use and reloaded whenever a compile in
        another process has moved ``CURRENT``. A corrupt artifact triggers one
        rebuild from entries; a newer generation that fails to load while a
        compiled snapshot is live is skipped, and the live one kept.

        Raises:
            IndexUnavailable: If loading and rebuilding both failed; cleared
                by the next successful compile.
        """
        current = self._current_generation() or ""
        snapshot = self._snapshot
        if self._is_live(snapshot, current):
            return snapshot
        self._check_failed(current)

        with self._load_lock:
            current = self._current_generation() or ""
            snapshot = self._snapshot
            if self._is_live(snapshot, current):
                return snapshot
            self._check_failed(current)

            if not current:
                self._snapshot = self._empty_snapshot()
                return self._snapshot
            try:
                self._snapshot = self._load(current)
                if snapshot is not None:
                    logger.info(f"[Vocabulary] {self.name}: reloaded generation {current}")
                return self._snapshot
            except IndexCorrupt as e:
                if snapshot is not None and snapshot.compiled:
                    self._skipped = current
                    logger.warning(f"[Vocabulary] {self.name}: {e}; keeping generation {snapshot.generation}")
                    return snapshot
                logger.warning(f"[Vocabulary] {self.name}: {e}; rebuilding from entries")

            try:
                self.compile(block=True)
            except (IndexCorrupt, OSError, ValueError) as e:
                self._failed = (current, str(e))
                logger.error(f"[Vocabulary] {self.name}: rebuild failed: {e}")
                raise IndexUnavailable(f"vocabulary {self.name!r} needs recompiling: {e}") from e
            return self._snapshot

    def view(self) -> VocabularyView:
        """Snapshot plus pending entries, read once for one match call.

        Pending entries are read first: an entry a concurrent compile absorbs
        then shows up in both, and matching drops the duplicate.
        """
        pending = tuple(entry_record(e) for e in self.pending_entries())
        return VocabularyView(
            name=self.name,
            config=self.config,
            profile=self.profile,
            snapshot=self.snapshot(),
            pending=pending,
        )

    # -- compile -------------------------------------------------------------

    def _build(self, entries: list[Entry], workers: int) -> VocabularySnapshot:
        index = NgramIndex(order=self.profile.ngram_order)
        index.build(
            ((e.norm2, entry_record(e)) for e in entries if e.mode.is_active and e.norm2),
            workers=workers,
        )
        labels: dict[str, list[dict]] = {}
        blank = []
        for e in entries:
            if e.mode == EntryMode.BLACK:
                continue
            labels.setdefault(e.label, []).append(entry_record(e))
            if e.mode.is_active and not e.norm2:
                blank.append(entry_record(e))
        generation = f"g{time.time_ns()}"
        return VocabularySnapshot(
            index=index,
            labels=labels,
            blank=blank,
            generation=generation,
            stop_words=SpanStopWords.from_labels(labels),
        )

    def _persist(self, snapshot: VocabularySnapshot) -> None:
        directory = self.artifact_dir / snapshot.generation
        directory.mkdir(parents=True, exist_ok=True)
        snapshot.index.save(directory / INDEX_FILE)
        with open(directory / LABELS_FILE, "w", encoding="utf-8") as f:
            json.dump({
                "labels": snapshot.labels,
                "blank": snapshot.blank,
                "stop_words": snapshot.stop_words.to_dict(),
            }, f)

        tmp = self.artifact_dir / (CURRENT_FILE + ".tmp")
        tmp.write_text(snapshot.generation, encoding="utf-8")
        os.replace(tmp, self.artifact_dir / CURRENT_FILE)

    def _remove_stale_generations(self, keep: str) -> None:
        for path in self.artifact_dir.iterdir():
            if path.is_dir() and path.name != keep:
                shutil.rmtree(path, ignore_errors=True)

    def compile(self, block: bool = True, workers: int = 1) -> CompileStats:
        """Rebuild the snapshot from the current entries and swap it in.

        Args:
            block: Wait for a running compile of this vocabulary instead of
                raising ConcurrentCompileRejected.
            workers: Threads used for n-gram extraction.

        Raises:
            ConcurrentCompileRejected: If ``block`` is False and a compile of
                this vocabulary runs in this or another process.
        """
        with self._exclusive(block):
            start = time.perf_counter()
            deletions = self.storage.get_stale(self.name)
            entries = self.storage.get_entries(self.name)
            snapshot = self._build(entries, workers)
            self._persist(snapshot)

            previous = self._snapshot
            self._snapshot = snapshot
            self._failed = None
            self._skipped = None
            if previous is not None and previous is not snapshot:
                logger.debug(f"[Vocabulary] {self.name}: replaced {previous.generation or 'empty'} snapshot")

            self.storage.clear_dirty(self.name, [e.id for e in entries if e.dirty])
            if deletions:
                self.storage.clear_stale(self.name, deletions)
            self._remove_stale_generations(keep=snapshot.generation)

            stats = CompileStats(
                vocabulary=self.name,
                entries=len(entries),
                keys=len(snapshot.index),
                labels=len(snapshot.labels),
                elapsed_s=time.perf_counter() - start,
                generation=snapshot.generation,
            )
            logger.info(
                f"[Vocabulary] Compiled {self.name}: {stats.entries} entries, "
                f"{stats.keys} keys, {stats.labels} labels in {stats.elapsed_s:.2f}s"
            )
            return stats
