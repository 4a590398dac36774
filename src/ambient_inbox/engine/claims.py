"""Exclusive per-message claims for processing attempts."""

from __future__ import annotations

import threading


class ClaimTracker:
    """Set of message ids with a live processing attempt.

    Owned by one processor instance. ``try_claim`` is a single
    check-and-insert under a lock, so of any number of concurrent callers for
    the same id exactly one wins until the claim is released. Claims live in
    memory only; a new process starts with none.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed: set[int] = set()

    def try_claim(self, message_id: int) -> bool:
        with self._lock:
            if message_id in self._claimed:
                return False
            self._claimed.add(message_id)
            return True

    def release(self, message_id: int) -> None:
        with self._lock:
            self._claimed.discard(message_id)

    def is_claimed(self, message_id: int) -> bool:
        with self._lock:
            return message_id in self._claimed

    def claimed_ids(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._claimed)

    def clear(self) -> None:
        with self._lock:
            self._claimed.clear()

    def __contains__(self, message_id: int) -> bool:
        return self.is_claimed(message_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)
