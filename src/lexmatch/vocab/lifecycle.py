"""Entry curation state machine.

    GRAY ──confirm──▶ WHITE ──undo──▶ (deleted)
      │
      └──reject──▶ BLACK ──cancel_black / undo──▶ GRAY

AUTO_EXPANDED entries are created by synonym expansion and only leave by
deletion. Every transition marks the entry dirty: the compiled index no
longer reflects it.
"""

from __future__ import annotations

from lexmatch.errors import InvalidTransitionError, ValidationError
from lexmatch.types import Entry, EntryMode

MAX_LABEL_LENGTH = 127
MIN_LABEL_LENGTH = 2
MAX_IDENTIFIER_LENGTH = 255


def validate_entry(entry: Entry) -> Entry:
    if not entry.label:
        raise ValidationError("Entry label must not be empty")
    if not entry.identifier:
        raise ValidationError(f"Entry {entry.label!r} has an empty identifier")
    if entry.score is not None and not 0 <= entry.score < 1:
        raise ValidationError(f"Entry score must be in [0, 1), got {entry.score}")
    return entry


def imported_entry(label: str, identifier: str, norm1: str, norm2: str, tags=()) -> Entry:
    """Bulk-imported entry: GRAY, waiting for the next compile."""
    return validate_entry(Entry(
        label=label, identifier=identifier, norm1=norm1, norm2=norm2,
        mode=EntryMode.GRAY, dirty=True, tags=frozenset(tags),
    ))


def manual_entry(label: str, identifier: str, norm1: str, norm2: str, tags=()) -> Entry:
    """Curator-created entry: WHITE and searchable before the next compile."""
    return validate_entry(Entry(
        label=label, identifier=identifier, norm1=norm1, norm2=norm2,
        mode=EntryMode.WHITE, dirty=True, tags=frozenset(tags),
    ))


def expanded_entry(label: str, identifier: str, score: float) -> Entry:
    """Synonym-expansion output, found only by exact label."""
    return validate_entry(Entry(
        label=label, identifier=identifier,
        mode=EntryMode.AUTO_EXPANDED, dirty=True, score=score,
    ))


def _move(entry: Entry, source: EntryMode, target: EntryMode) -> Entry:
    if entry.mode != source:
        raise InvalidTransitionError(
            f"Only a {source.name} entry can be turned to {target.name} "
            f"(entry {entry.id} is {entry.mode.name})"
        )
    entry.mode = target
    entry.dirty = True
    return entry


def turn_to_white(entry: Entry) -> Entry:
    return _move(entry, EntryMode.GRAY, EntryMode.WHITE)


def turn_to_black(entry: Entry) -> Entry:
    return _move(entry, EntryMode.GRAY, EntryMode.BLACK)


def cancel_black(entry: Entry) -> Entry:
    return _move(entry, EntryMode.BLACK, EntryMode.GRAY)


def undo(entry: Entry) -> bool:
    """Undo a curator decision.

    Returns:
        True if the entry must be deleted (WHITE entries cannot be
        un-confirmed), False if it was moved back to GRAY.

    Raises:
        InvalidTransitionError: For GRAY and AUTO_EXPANDED entries.
    """
    if entry.mode == EntryMode.WHITE:
        return True
    if entry.mode == EntryMode.BLACK:
        cancel_black(entry)
        return False
    raise InvalidTransitionError(f"Nothing to undo on a {entry.mode.name} entry")
