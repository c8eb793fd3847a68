"""NullQueue: the queue used when QUEUE_ENABLED is off.

Compile requests are then run in-process by the service instead of being
published.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class NullQueue:
    """MessageQueue that drops every message and reports itself unavailable."""

    def publish(self, stream: str, message: dict) -> str | None:
        logger.debug(f"[NullQueue] Dropping message for '{stream}'")
        return None

    def is_available(self) -> bool:
        return False
