"""Tab-separated entry files: ``label<TAB>identifier[<TAB>tag1|tag2]``."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from pathlib import Path

from lexmatch.errors import ValidationError
from lexmatch.vocab.lifecycle import MAX_IDENTIFIER_LENGTH, MAX_LABEL_LENGTH, MIN_LABEL_LENGTH

logger = logging.getLogger(__name__)

_TAGS_RE = re.compile(r"^([a-zA-Z0-9]+)(\|[a-zA-Z0-9]+)*$")

RawEntry = tuple[str, str, list[str]]


def parse_tags(value: str | None) -> list[str]:
    """Split a ``|``-separated tag field; empty or missing gives no tags."""
    if not value:
        return []
    if not _TAGS_RE.match(value):
        raise ValidationError(f"invalid tags: {value!r}")
    return value.split("|")


def read_entry_line(line: str) -> RawEntry | None:
    """Parse one line, or return None for blank, comment and malformed lines.

    Raises:
        ValidationError: If the tag field is present but malformed.
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    items = line.split("\t")
    if len(items) < 2:
        return None
    label, identifier = items[0], items[1]
    if not MIN_LABEL_LENGTH <= len(label) <= MAX_LABEL_LENGTH:
        return None
    if not identifier or len(identifier) > MAX_IDENTIFIER_LENGTH:
        return None

    tags = parse_tags(items[2] if len(items) > 2 else None)
    return label, identifier, tags


def read_entries(lines: Iterable[str]) -> Iterator[RawEntry]:
    skipped = 0
    for line in lines:
        entry = read_entry_line(line)
        if entry is None:
            if line.strip() and not line.lstrip().startswith("#"):
                skipped += 1
            continue
        yield entry
    if skipped:
        logger.warning(f"[TSV] Skipped {skipped} malformed lines")


def read_entry_file(path: str | Path) -> list[RawEntry]:
    with open(path, encoding="utf-8") as f:
        return list(read_entries(f))
