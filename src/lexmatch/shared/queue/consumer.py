"""Redis Streams consumer base class.

A consumer joins a consumer group (created with MKSTREAM if missing), reads
with XREADGROUP, and acknowledges every message it has finished with:
either handled, or parked on the dead-letter stream after its retries ran
out. Exceptions listed in ``non_retryable`` skip the retries.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any

import redis

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BLOCK_MS = 5000
DEFAULT_BATCH_SIZE = 10


class QueueConsumer(ABC):
    """Consumer-group reader with immediate retries and a dead-letter stream.

    Args:
        redis_url: Redis connection URL.
        stream: Stream to consume.
        group: Consumer group name.
        consumer: Consumer name (default: ``<hostname>-<pid>``).
        max_retries: Attempts per message before it is dead-lettered.
        dlq_stream: Dead-letter stream (default: ``<stream>:dlq``).
        block_ms: XREADGROUP block time in the run loop.
        batch_size: Messages fetched per read.
        client: Preconfigured Redis client.
    """

    non_retryable: tuple[type[Exception], ...] = ()

    def __init__(
        self,
        redis_url: str,
        stream: str,
        group: str,
        consumer: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        dlq_stream: str | None = None,
        block_ms: int = DEFAULT_BLOCK_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        client: redis.Redis | None = None,
    ) -> None:
        self._url = redis_url
        self._stream = stream
        self._group = group
        self._consumer = consumer or f"{socket.gethostname()}-{os.getpid()}"
        self._max_retries = max_retries
        self._dlq_stream = dlq_stream or f"{stream}:dlq"
        self._block_ms = block_ms
        self._batch_size = batch_size

        self._client = client
        self._shutdown = threading.Event()
        self._previous_handlers: dict[int, Any] = {}

    @property
    def stream(self) -> str:
        return self._stream

    @property
    def dlq_stream(self) -> str:
        return self._dlq_stream

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def _ensure_group(self) -> None:
        try:
            self._get_client().xgroup_create(self._stream, self._group, id="0", mkstream=True)
            logger.info(f"[Consumer] Created group '{self._group}' on '{self._stream}'")
        except redis.exceptions.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.debug(f"[Consumer] Group '{self._group}' exists")

    @abstractmethod
    def process_message(self, data: dict) -> None:
        """Handle one decoded message; raising triggers retry / dead-lettering."""
        ...

    def _dead_letter(self, msg_id: str, data: dict, error: Exception) -> None:
        self._get_client().xadd(self._dlq_stream, {
            "original_stream": self._stream,
            "original_id": msg_id,
            "data": json.dumps(data),
            "error_type": type(error).__name__,
            "error_message": str(error),
            "consumer": self._consumer,
        })
        logger.warning(f"[Consumer] {msg_id} dead-lettered to {self._dlq_stream}: {error}")

    def _attempt(self, msg_id: str, data: dict) -> Exception | None:
        """Run process_message up to max_retries times; return the last error."""
        error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                self.process_message(data)
                return None
            except self.non_retryable as e:
                logger.error(f"[Consumer] {msg_id} rejected: {e}")
                return e
            except Exception as e:
                error = e
                logger.warning(f"[Consumer] Attempt {attempt}/{self._max_retries} for {msg_id} failed: {e}")
        return error

    def _process_one(self, msg_id: str, fields: dict[str, str]) -> bool:
        """Handle, or dead-letter, one message; it is acknowledged either way.

        Returns:
            True if handled.
        """
        client = self._get_client()
        try:
            data = json.loads(fields.get("data", "{}"))
        except json.JSONDecodeError as e:
            self._dead_letter(msg_id, {"raw": fields}, e)
            client.xack(self._stream, self._group, msg_id)
            return False

        error = self._attempt(msg_id, data)
        if error is not None:
            self._dead_letter(msg_id, data, error)
        else:
            logger.debug(f"[Consumer] Processed {msg_id}")
        client.xack(self._stream, self._group, msg_id)
        return error is None

    def _read_messages(self, start_id: str, block_ms: int = 100) -> list[tuple[str, dict[str, str]]]:
        """XREADGROUP from ``start_id`` (">" for new, "0" for this consumer's pending)."""
        result: Any = self._get_client().xreadgroup(
            self._group,
            self._consumer,
            {self._stream: start_id},
            count=self._batch_size,
            block=block_ms,
        )
        return [(msg_id, fields) for _, messages in (result or []) for msg_id, fields in messages]

    def _drain(self, start_id: str) -> int:
        processed = 0
        while not self._shutdown.is_set():
            messages = self._read_messages(start_id, block_ms=100)
            if not messages:
                break
            for msg_id, fields in messages:
                self._process_one(msg_id, fields)
                processed += 1
        return processed

    def process_pending(self) -> int:
        """Handle unacknowledged deliveries, then everything new, without blocking.

        Returns:
            Number of messages handled or dead-lettered.
        """
        self._ensure_group()
        return self._drain("0") + self._drain(">")

    def run(self) -> None:
        """Consume until stop() or SIGTERM/SIGINT."""
        self._setup_signal_handlers()
        self._ensure_group()
        logger.info(f"[Consumer] '{self._consumer}' consuming '{self._stream}'")

        recovered = self.process_pending()
        if recovered:
            logger.info(f"[Consumer] Recovered {recovered} messages")

        while not self._shutdown.is_set():
            try:
                for msg_id, fields in self._read_messages(">", block_ms=self._block_ms):
                    self._process_one(msg_id, fields)
            except redis.exceptions.ConnectionError as e:
                logger.error(f"[Consumer] Redis connection error: {e}")
                self._shutdown.wait(1.0)

        logger.info("[Consumer] Stopped")
        self._restore_signal_handlers()

    def stop(self) -> None:
        logger.info("[Consumer] Stop requested")
        self._shutdown.set()

    def _setup_signal_handlers(self) -> None:
        # signal.signal only works from the main thread.
        if threading.current_thread() is not threading.main_thread():
            return

        def handler(signum, frame):
            logger.info(f"[Consumer] Received signal {signum}")
            self.stop()

        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, handler)

    def _restore_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()
