"""Fixed-response backend for development and tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ambient_inbox.generation.base import BaseGenerationBackend
from ambient_inbox.messages.models import Bucket, Message

logger = logging.getLogger(__name__)

DEFAULT_RESPONSES = ("hello", "Got it!", "Thanks!")


class StubGenerationBackend(BaseGenerationBackend):
    """Returns the same replies for every message after an optional delay.

    ``calls`` records the ids passed to :meth:`generate` and ``closed`` the
    ids passed to :meth:`close_session`.
    """

    def __init__(self, responses: Sequence[str] = DEFAULT_RESPONSES, delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[int] = []
        self.closed: list[int] = []

    async def generate(self, message: Message, bucket: Bucket) -> list[str]:
        self.calls.append(message.id)
        logger.debug(f"Returning stub responses for message {message.id}")
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.responses)

    async def close_session(self, message_id: int) -> None:
        self.closed.append(message_id)
