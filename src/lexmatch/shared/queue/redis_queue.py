"""Redis Streams publisher.

Each message is stored as a single ``data`` field holding its JSON
encoding. Connection errors propagate to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis

logger = logging.getLogger(__name__)

# Streams are trimmed to roughly this many entries.
DEFAULT_MAXLEN = 10000


class RedisStreamQueue:
    """MessageQueue backed by Redis Streams (XADD with approximate MAXLEN).

    Args:
        url: Redis connection URL.
        maxlen: Approximate bound on stream length.
        client: Preconfigured client; created from ``url`` on first use otherwise.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        maxlen: int = DEFAULT_MAXLEN,
        client: redis.Redis | None = None,
    ) -> None:
        self._url = url
        self._maxlen = maxlen
        self._client = client
        self._checked = False

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        if not self._checked:
            self._client.ping()
            self._checked = True
            logger.info(f"[RedisQueue] Connected to {self._url}")
        return self._client

    def publish(self, stream: str, message: dict) -> str | None:
        """XADD ``message`` to ``stream``.

        Raises:
            redis.exceptions.ConnectionError: If Redis is unreachable.
        """
        client = self._get_client()
        msg_id: Any = client.xadd(
            stream,
            {"data": json.dumps(message)},
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.debug(f"[RedisQueue] Published to {stream}: {msg_id}")
        return str(msg_id)

    def is_available(self) -> bool:
        try:
            self._get_client().ping()
            return True
        except redis.exceptions.ConnectionError:
            return False
