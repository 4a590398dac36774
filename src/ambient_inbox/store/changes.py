"""Push-based change notifications from a message store to asyncio consumers."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ambient_inbox.messages.models import Message

if TYPE_CHECKING:
    from ambient_inbox.store.base import BaseMessageStore

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChangeSubscription:
    """Async iterator over store snapshots.

    Every item is the full ordered list of messages as of one mutation. Stores
    may publish from any thread; items are handed to the subscriber's event
    loop with ``call_soon_threadsafe``. With ``conflate=True`` a slow consumer
    only sees the newest pending snapshot, which is safe because each snapshot
    is complete.

    Usage::

        async with repository.watch() as changes:
            async for messages in changes:
                render(messages)
    """

    def __init__(
        self,
        store: BaseMessageStore,
        loop: asyncio.AbstractEventLoop | None = None,
        conflate: bool = True,
    ):
        self._store = store
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._conflate = conflate
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, snapshot: list[Message]) -> None:
        """Queue a snapshot for the subscriber. Safe to call from any thread."""
        if self._closed or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, snapshot)
        except RuntimeError:
            # Loop shut down between the check and the call.
            logger.debug("Dropping snapshot for subscription on a closed loop")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store.unsubscribe(self)
        if not self._loop.is_closed():
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
            except RuntimeError:
                pass

    def __aiter__(self):
        return self

    async def __anext__(self) -> list[Message]:
        item = await self._queue.get()
        if self._conflate:
            while item is not _CLOSED and not self._queue.empty():
                item = self._queue.get_nowait()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> ChangeSubscription:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
