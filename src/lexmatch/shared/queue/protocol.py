"""MessageQueue Protocol: what the service needs from a queue backend."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MessageQueue(Protocol):
    """Publisher side of a queue (Redis Streams, or a disabled NullQueue)."""

    def publish(self, stream: str, message: dict) -> str | None:
        """Append ``message`` to ``stream``.

        Returns:
            The backend's message id, or None when nothing was published.
        """
        ...

    def is_available(self) -> bool:
        """True when the backend is connected and accepts messages."""
        ...
