"""Data models for ingested messages and their lifecycle."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Bucket(Enum):
    """Category assigned to a message; drives the veil template and reply tone."""

    URGENT = "URGENT"
    WORK = "WORK"
    SOCIAL = "SOCIAL"
    PROMOTIONAL = "PROMOTIONAL"
    TRANSACTIONAL = "TRANSACTIONAL"
    UNKNOWN = "UNKNOWN"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: str | None) -> Bucket:
        """Map a stored string to a bucket, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class MessageStatus(Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    RETRY = "RETRY"
    FAILED = "FAILED"
    QUEUED = "QUEUED"
    SENT = "SENT"
    DISMISSED = "DISMISSED"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]

    def can_transition_to(self, target: MessageStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self]


S = MessageStatus

ALLOWED_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    S.RECEIVED: frozenset({S.RECEIVED, S.PROCESSED, S.RETRY, S.FAILED, S.DISMISSED}),
    S.RETRY: frozenset({S.RETRY, S.PROCESSED, S.FAILED, S.DISMISSED}),
    S.PROCESSED: frozenset({S.PROCESSED, S.RETRY, S.QUEUED, S.SENT, S.DISMISSED}),
    S.QUEUED: frozenset({S.QUEUED, S.PROCESSED, S.RETRY, S.SENT, S.DISMISSED}),
    # A message that exhausted its retries can still be answered by hand.
    S.FAILED: frozenset({S.QUEUED, S.SENT, S.DISMISSED}),
    S.SENT: frozenset(),
    S.DISMISSED: frozenset(),
}

del S


@dataclass(frozen=True)
class Message:
    """A single ingested message.

    Instances are immutable; every update produces a new record through
    ``dataclasses.replace``. ``original_content`` is left out of ``repr`` so
    the sensitive payload never reaches log output by accident.
    """

    id: int
    source: str
    sender_display_name: str
    original_content: str = field(repr=False)
    timestamp: int
    status: MessageStatus = MessageStatus.RECEIVED
    veiled_content: str | None = None
    bucket: Bucket | None = None
    generated_responses: tuple[str, ...] = ()
    selected_response: str | None = field(default=None, repr=False)
    retry_count: int = 0
    snoozed_until: int = 0
    thread_key: str | None = None
    context_tag: str | None = None
    user_interacted: bool = False

    def is_snoozed(self, now: int) -> bool:
        return self.snoozed_until > now

    def is_visible(self, now: int) -> bool:
        """Whether the message belongs in the default (non-snoozed) listing."""
        return not self.is_snoozed(now)

    def is_eligible(self, now: int) -> bool:
        """Whether the processing engine may start an attempt on this message."""
        if self.status is MessageStatus.RECEIVED:
            return True
        return self.status is MessageStatus.RETRY and self.snoozed_until <= now


def sort_for_display(messages) -> list[Message]:
    """Newest first; equal timestamps keep insertion (id) order."""
    ordered = sorted(messages, key=lambda m: m.id)
    return sorted(ordered, key=lambda m: m.timestamp, reverse=True)
