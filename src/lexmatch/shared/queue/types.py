"""Message schemas carried on the compile stream."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TypedDict


class CompileRequest(TypedDict):
    """Ask the compile worker to rebuild one vocabulary's index."""
    vocabulary: str
    requested_at: str  # ISO 8601
    workers: int


class MessageEnvelope(TypedDict):
    """Transport metadata around a payload."""
    message_id: str
    timestamp: str  # ISO 8601
    source_service: str  # e.g. "lexmatch-service", "lexmatch-cli"
    payload: CompileRequest


def compile_request(vocabulary: str, workers: int = 1) -> CompileRequest:
    return CompileRequest(
        vocabulary=vocabulary,
        requested_at=datetime.now(timezone.utc).isoformat(),
        workers=workers,
    )


def envelope(payload: CompileRequest, source_service: str) -> MessageEnvelope:
    return MessageEnvelope(
        message_id=uuid.uuid4().hex,
        timestamp=datetime.now(timezone.utc).isoformat(),
        source_service=source_service,
        payload=payload,
    )
