"""Compile worker: turns compile requests from Redis Streams into compiles.

Used by the service when QUEUE_ENABLED=true, or standalone:

    python -m lexmatch.service.queue_consumer
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from lexmatch.errors import ConcurrentCompileRejected, ValidationError
from lexmatch.shared.queue import QueueConsumer, queue_stream, queue_url

if TYPE_CHECKING:
    from lexmatch.vocab.registry import VocabularyRegistry

logger = logging.getLogger(__name__)


class CompileQueueConsumer(QueueConsumer):
    """Compiles the vocabulary named in each CompileRequest.

    A request for a vocabulary that is already compiling counts as handled.
    Malformed requests and unknown vocabularies are dead-lettered without retry.
    """

    non_retryable = (ValidationError,)

    def __init__(
        self,
        redis_url: str,
        registry: VocabularyRegistry,
        stream: str = "lexmatch:compile",
        group: str = "lexmatch-compile",
        consumer: str | None = None,
        max_retries: int = 3,
        dlq_stream: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(
            redis_url=redis_url,
            stream=stream,
            group=group,
            consumer=consumer,
            max_retries=max_retries,
            dlq_stream=dlq_stream,
            **kwargs,
        )
        self._registry = registry
        self.compiled: list[str] = []

    def process_message(self, data: dict) -> None:
        payload = data.get("payload", data)
        name = payload.get("vocabulary")
        if not name:
            raise ValidationError("Missing 'vocabulary' in compile request")
        workers = int(payload.get("workers", 1) or 1)

        vocabulary = self._registry.get(name)
        try:
            stats = vocabulary.compile(block=False, workers=workers)
        except ConcurrentCompileRejected:
            logger.info(f"[CompileConsumer] {name} is already compiling; request dropped")
            return
        self.compiled.append(name)
        logger.info(
            f"[CompileConsumer] Compiled {name} ({stats.keys} keys, {stats.elapsed_s:.2f}s, "
            f"source: {data.get('source_service', 'unknown')})"
        )


def main() -> None:
    from lexmatch.normalize import create_normalizer
    from lexmatch.storage.sqlite import SQLiteStorage
    from lexmatch.vocab.registry import VocabularyRegistry

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    db_path = os.environ.get("LEXMATCH_DB_PATH", "/data/lexmatch/lexmatch.db")
    index_dir = os.environ.get("LEXMATCH_INDEX_DIR", "/data/lexmatch/index")
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    storage = SQLiteStorage(db_path)
    storage.create_tables()
    registry = VocabularyRegistry(storage, create_normalizer(), index_dir)
    CompileQueueConsumer(queue_url(), registry, stream=queue_stream()).run()


if __name__ == "__main__":
    main()
