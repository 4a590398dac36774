"""Abstract base class for reply generation backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ambient_inbox.messages.models import Bucket, Message


class BaseGenerationBackend(ABC):
    """Produces candidate replies for a message.

    Backends may keep per-conversation state keyed by message id; state for
    one id is never shared with another.
    """

    @abstractmethod
    async def generate(self, message: Message, bucket: Bucket) -> list[str]:
        """Return reply candidates in display order. May be slow."""
        ...

    @abstractmethod
    async def close_session(self, message_id: int) -> None:
        """Release state held for ``message_id``. Idempotent."""
        ...

    async def aclose(self) -> None:
        """Release backend-wide resources."""
        return None
