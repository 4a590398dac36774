"""Message store backends with change notification."""

from ambient_inbox.store.base import BaseMessageStore
from ambient_inbox.store.changes import ChangeSubscription
from ambient_inbox.store.memory import InMemoryMessageStore
from ambient_inbox.store.sqlite import SQLiteMessageStore

__all__ = [
    "BaseMessageStore",
    "ChangeSubscription",
    "InMemoryMessageStore",
    "SQLiteMessageStore",
]
