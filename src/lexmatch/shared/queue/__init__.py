"""Optional Redis Streams transport for compile requests.

With QUEUE_ENABLED=false (default) the service compiles in-process and
nothing here needs Redis.

Usage:
    from lexmatch.shared.queue import create_queue, compile_request, envelope

    queue = create_queue()  # NullQueue or RedisStreamQueue based on env
    if queue.is_available():
        queue.publish("lexmatch:compile", envelope(compile_request("mesh"), "lexmatch-cli"))
"""

from lexmatch.shared.queue.consumer import QueueConsumer
from lexmatch.shared.queue.factory import create_queue, queue_enabled, queue_stream, queue_url
from lexmatch.shared.queue.null_queue import NullQueue
from lexmatch.shared.queue.protocol import MessageQueue
from lexmatch.shared.queue.redis_queue import RedisStreamQueue
from lexmatch.shared.queue.types import CompileRequest, MessageEnvelope, compile_request, envelope

__all__ = [
    # Factory
    "create_queue",
    "queue_enabled",
    "queue_stream",
    "queue_url",
    # Protocol & implementations
    "MessageQueue",
    "NullQueue",
    "RedisStreamQueue",
    # Consumer
    "QueueConsumer",
    # Types
    "CompileRequest",
    "MessageEnvelope",
    "compile_request",
    "envelope",
]
