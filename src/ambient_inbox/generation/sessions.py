"""Per-message conversation histories for chat-style backends."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class ConversationSession:
    """Chat turns exchanged with a model about one message."""

    message_id: int
    turns: list[dict] = field(default_factory=list)
    last_used: float = 0.0


class ConversationSessions:
    """Map of message id to its own :class:`ConversationSession`."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._sessions: dict[int, ConversationSession] = {}

    def open(self, message_id: int) -> ConversationSession:
        session = self._sessions.get(message_id)
        if session is None:
            session = ConversationSession(message_id=message_id)
            self._sessions[message_id] = session
        session.last_used = self._clock()
        return session

    def close(self, message_id: int) -> bool:
        return self._sessions.pop(message_id, None) is not None

    def prune_idle(self, idle_seconds: float) -> int:
        """Drop sessions unused for ``idle_seconds``; returns how many were dropped."""
        cutoff = self._clock() - idle_seconds
        stale = [mid for mid, s in self._sessions.items() if s.last_used < cutoff]
        for mid in stale:
            del self._sessions[mid]
        return len(stale)

    def clear(self) -> None:
        self._sessions.clear()

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
