"""In-process message store backed by a dict."""

from __future__ import annotations

from ambient_inbox.exceptions import MessageNotFoundError
from ambient_inbox.messages.models import Message, sort_for_display
from ambient_inbox.store.base import BaseMessageStore, Mutation, preserve_immutable


class InMemoryMessageStore(BaseMessageStore):
    """Non-durable store for tests and short-lived processes."""

    def __init__(self):
        super().__init__()
        self._messages: dict[int, Message] = {}
        self._next_id = 1

    def insert(
        self,
        source: str,
        sender_display_name: str,
        original_content: str,
        timestamp: int,
        thread_key: str | None = None,
        context_tag: str | None = None,
    ) -> Message:
        with self._lock:
            message = Message(
                id=self._next_id,
                source=source,
                sender_display_name=sender_display_name,
                original_content=original_content,
                timestamp=timestamp,
                thread_key=thread_key,
                context_tag=context_tag,
            )
            self._next_id += 1
            self._messages[message.id] = message
            self._publish()
            return message

    def get(self, message_id: int) -> Message | None:
        with self._lock:
            return self._messages.get(message_id)

    def list_all(self) -> list[Message]:
        with self._lock:
            return sort_for_display(self._messages.values())

    def update(self, message_id: int, mutate: Mutation) -> Message:
        with self._lock:
            current = self._messages.get(message_id)
            if current is None:
                raise MessageNotFoundError(message_id)
            updated = preserve_immutable(current, mutate(current))
            self._messages[message_id] = updated
            self._publish()
            return updated

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            self._publish()

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
