"""Abstract base class for message store backends."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable

from ambient_inbox.messages.models import Message
from ambient_inbox.store.changes import ChangeSubscription

logger = logging.getLogger(__name__)

Mutation = Callable[[Message], Message]


def preserve_immutable(current: Message, updated: Message) -> Message:
    """Carry identity, creation time and original content over from ``current``."""
    if (
        updated.id == current.id
        and updated.timestamp == current.timestamp
        and updated.original_content == current.original_content
    ):
        return updated
    return dataclasses.replace(
        updated,
        id=current.id,
        timestamp=current.timestamp,
        original_content=current.original_content,
    )


class BaseMessageStore(ABC):
    """Durable keyed table of messages with change notification.

    Implementations hold ``self._lock`` around every read-modify-write and
    call :meth:`_publish` while still holding it, so subscribers observe
    snapshots in commit order.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._subscriptions: list[ChangeSubscription] = []

    @abstractmethod
    def insert(
        self,
        source: str,
        sender_display_name: str,
        original_content: str,
        timestamp: int,
        thread_key: str | None = None,
        context_tag: str | None = None,
    ) -> Message:
        """Create a RECEIVED message with a freshly assigned id."""
        ...

    @abstractmethod
    def get(self, message_id: int) -> Message | None:
        """Fetch one message by id."""
        ...

    @abstractmethod
    def list_all(self) -> list[Message]:
        """All messages, newest first, ties in insertion order."""
        ...

    @abstractmethod
    def update(self, message_id: int, mutate: Mutation) -> Message:
        """Atomically re-read, transform and write back one message.

        ``mutate`` receives the current record and returns its replacement.
        Raises :class:`~ambient_inbox.exceptions.MessageNotFoundError` when the
        id does not exist; exceptions raised by ``mutate`` leave the record
        untouched.
        """
        ...

    @abstractmethod
    def clear(self) -> None:
        """Delete every message. Ids are never reused afterwards."""
        ...

    def close(self) -> None:
        """Release backend resources and end all subscriptions."""
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()

    def subscribe(self, conflate: bool = True) -> ChangeSubscription:
        """Open a change stream; the current snapshot is delivered first.

        Must be called from inside a running event loop.
        """
        subscription = ChangeSubscription(
            self, loop=asyncio.get_running_loop(), conflate=conflate
        )
        with self._lock:
            self._subscriptions.append(subscription)
            subscription.publish(self.list_all())
        return subscription

    def unsubscribe(self, subscription: ChangeSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _publish(self) -> None:
        if not self._subscriptions:
            return
        snapshot = self.list_all()
        for subscription in list(self._subscriptions):
            subscription.publish(snapshot)
