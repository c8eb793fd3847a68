"""Build the configured MessageQueue.

Environment Variables:
    QUEUE_ENABLED: "true" publishes compile requests to Redis; anything else
        (default "false") keeps compiles in-process via NullQueue
    QUEUE_URL: Redis URL (default: "redis://localhost:6379")
    QUEUE_STREAM: Compile stream name (default: "lexmatch:compile")
"""

from __future__ import annotations

import logging
import os

from lexmatch.shared.queue.null_queue import NullQueue
from lexmatch.shared.queue.protocol import MessageQueue

logger = logging.getLogger(__name__)

DEFAULT_STREAM = "lexmatch:compile"


def queue_enabled() -> bool:
    return os.environ.get("QUEUE_ENABLED", "false").lower() == "true"


def queue_url() -> str:
    return os.environ.get("QUEUE_URL", "redis://localhost:6379")


def queue_stream() -> str:
    return os.environ.get("QUEUE_STREAM", DEFAULT_STREAM)


def create_queue() -> MessageQueue:
    """NullQueue unless QUEUE_ENABLED=true, then a RedisStreamQueue on QUEUE_URL."""
    if not queue_enabled():
        logger.debug("[Queue] QUEUE_ENABLED=false, using NullQueue")
        return NullQueue()

    url = queue_url()
    logger.info(f"[Queue] QUEUE_ENABLED=true, publishing to {url}")
    from lexmatch.shared.queue.redis_queue import RedisStreamQueue
    return RedisStreamQueue(url)
