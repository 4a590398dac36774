"""Repository facade: the single entry point for reading and writing messages."""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Sequence

from ambient_inbox.config import BackoffPolicy
from ambient_inbox.exceptions import InvalidTransitionError
from ambient_inbox.messages.models import Bucket, Message, MessageStatus, now_ms
from ambient_inbox.store.base import BaseMessageStore
from ambient_inbox.store.changes import ChangeSubscription
from ambient_inbox.store.memory import InMemoryMessageStore

logger = logging.getLogger(__name__)

# Statuses the processing engine is allowed to write results over.
ENGINE_WRITABLE = frozenset({MessageStatus.RECEIVED, MessageStatus.RETRY})


class MessageRepository:
    """Wraps a :class:`BaseMessageStore` and enforces the message lifecycle.

    Every write goes through ``store.update`` so the current record is re-read
    under the store lock before the new one is computed. Writes return the
    updated message or raise ``MessageNotFoundError`` /
    ``InvalidTransitionError``.
    """

    def __init__(
        self,
        store: BaseMessageStore | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store or InMemoryMessageStore()
        self._clock = clock

    @property
    def store(self) -> BaseMessageStore:
        return self._store

    # Ingestion

    def ingest(
        self,
        source: str,
        sender_display_name: str,
        original_content: str,
        thread_key: str | None = None,
        context_tag: str | None = None,
    ) -> int:
        """Store a new RECEIVED message and return its id. Thread-safe."""
        message = self._store.insert(
            source=source,
            sender_display_name=sender_display_name,
            original_content=original_content,
            timestamp=self._clock(),
            thread_key=thread_key,
            context_tag=context_tag,
        )
        logger.debug(f"Ingested message {message.id} from {source}")
        return message.id

    # Queries

    def messages(self) -> list[Message]:
        """All messages, newest first."""
        return self._store.list_all()

    def visible_messages(self, now: int | None = None) -> list[Message]:
        """Messages that are not snoozed into the future."""
        now = self._clock() if now is None else now
        return [m for m in self._store.list_all() if m.is_visible(now)]

    def messages_by_bucket(self, bucket: Bucket) -> list[Message]:
        return [m for m in self._store.list_all() if m.bucket is bucket]

    def get_message(self, message_id: int) -> Message | None:
        return self._store.get(message_id)

    def watch(self, conflate: bool = True) -> ChangeSubscription:
        """Subscribe to the always-current ordered message list."""
        return self._store.subscribe(conflate=conflate)

    # UI-facing state changes

    def update_state(
        self,
        message_id: int,
        status: MessageStatus,
        *,
        veiled_content: str | None = None,
        bucket: Bucket | None = None,
        generated_responses: Sequence[str] | None = None,
        selected_response: str | None = None,
        snoozed_until: int | None = None,
        retry_count: int | None = None,
        user_interacted: bool | None = None,
    ) -> Message:
        """Move a message to ``status`` and overwrite any fields given.

        ``veiled_content``, ``bucket`` and ``generated_responses`` form one
        group: pass all three or none of them. ``None`` means "leave as is";
        use :meth:`clear_selected_response` to drop a chosen reply.
        """
        grouped = (veiled_content, bucket, generated_responses)
        if any(v is not None for v in grouped) and any(v is None for v in grouped):
            raise ValueError(
                "veiled_content, bucket and generated_responses must be replaced together"
            )
        if retry_count is not None and retry_count < 0:
            raise ValueError(f"retry_count must be non-negative, got {retry_count}")

        changes: dict = {"status": status}
        if veiled_content is not None:
            changes.update(
                veiled_content=veiled_content,
                bucket=bucket,
                generated_responses=tuple(generated_responses),
            )
        if selected_response is not None:
            changes["selected_response"] = selected_response
        if snoozed_until is not None:
            changes["snoozed_until"] = snoozed_until
        if retry_count is not None:
            changes["retry_count"] = retry_count
        if user_interacted is not None:
            changes["user_interacted"] = user_interacted

        return self._transition(message_id, status, changes)

    def snooze_message(self, message_id: int, until: int) -> Message:
        """Hide a message from the visible listing until ``until`` (epoch ms).

        Leaves status and retry bookkeeping alone. On a message waiting to be
        retried the later of the two deadlines wins, so a user snooze never
        shortens the engine's backoff. ``until=0`` un-snoozes, except that a
        RETRY message keeps its backoff deadline.
        """
        if until < 0:
            raise ValueError(f"Snooze deadline must be non-negative, got {until}")

        def mutate(current: Message) -> Message:
            deadline = until
            if current.status is MessageStatus.RETRY:
                deadline = max(until, current.snoozed_until)
            return dataclasses.replace(current, snoozed_until=deadline)

        return self._store.update(message_id, mutate)

    def queue_for_sending(self, message_id: int, selected_response: str) -> Message:
        return self._transition(
            message_id,
            MessageStatus.QUEUED,
            {"status": MessageStatus.QUEUED, "selected_response": selected_response},
        )

    def clear_selected_response(self, message_id: int) -> Message:
        """Forget the reply the user picked. A QUEUED message goes back to PROCESSED."""

        def mutate(current: Message) -> Message:
            status = current.status
            if status is MessageStatus.QUEUED:
                status = MessageStatus.PROCESSED
            _check_transition(current, status)
            return dataclasses.replace(current, status=status, selected_response=None)

        return self._store.update(message_id, mutate)

    def mark_as_sent(self, message_id: int) -> Message:
        return self._transition(
            message_id,
            MessageStatus.SENT,
            {"status": MessageStatus.SENT, "snoozed_until": 0},
        )

    def dismiss(self, message_id: int) -> Message:
        return self._transition(
            message_id,
            MessageStatus.DISMISSED,
            {"status": MessageStatus.DISMISSED, "snoozed_until": 0},
        )

    def mark_retry(self, message_id: int, next_attempt_at: int) -> Message:
        """Record a failed delivery and schedule the message for another pass."""

        def mutate(current: Message) -> Message:
            _check_transition(current, MessageStatus.RETRY)
            return dataclasses.replace(
                current,
                status=MessageStatus.RETRY,
                retry_count=current.retry_count + 1,
                snoozed_until=next_attempt_at,
            )

        return self._store.update(message_id, mutate)

    def mark_user_interacted(self, message_id: int) -> Message:
        return self._store.update(
            message_id, lambda current: dataclasses.replace(current, user_interacted=True)
        )

    def clear_all(self) -> None:
        """Delete every message (account reset and tests)."""
        self._store.clear()
        logger.info("Cleared all messages")

    # Engine-facing writes

    def complete_processing(
        self,
        message_id: int,
        bucket: Bucket,
        veiled_content: str,
        generated_responses: Sequence[str],
    ) -> Message:
        """Publish a successful processing pass as one update."""
        responses = tuple(generated_responses)

        def mutate(current: Message) -> Message:
            _check_engine_writable(current, MessageStatus.PROCESSED)
            return dataclasses.replace(
                current,
                status=MessageStatus.PROCESSED,
                bucket=bucket,
                veiled_content=veiled_content,
                generated_responses=responses,
                snoozed_until=0 if current.status is MessageStatus.RETRY else current.snoozed_until,
            )

        return self._store.update(message_id, mutate)

    def record_failure(
        self,
        message_id: int,
        now: int,
        max_retries: int,
        backoff: BackoffPolicy,
    ) -> Message:
        """Count a failed attempt and either schedule a retry or give up.

        Below ``max_retries`` the message goes to RETRY with a backoff
        deadline; at the ceiling it goes to FAILED. Processing results from an
        earlier successful pass are kept, and so is a user snooze that runs
        past the new deadline.
        """

        def mutate(current: Message) -> Message:
            attempts = current.retry_count + 1
            if attempts < max_retries:
                _check_engine_writable(current, MessageStatus.RETRY)
                return dataclasses.replace(
                    current,
                    status=MessageStatus.RETRY,
                    retry_count=attempts,
                    snoozed_until=max(now + backoff.delay_ms(attempts), current.snoozed_until),
                )
            _check_engine_writable(current, MessageStatus.FAILED)
            return dataclasses.replace(
                current,
                status=MessageStatus.FAILED,
                retry_count=attempts,
                # An expired deadline is the backoff just served; a future one is the user's.
                snoozed_until=current.snoozed_until if current.snoozed_until > now else 0,
            )

        return self._store.update(message_id, mutate)

    def _transition(self, message_id: int, status: MessageStatus, changes: dict) -> Message:
        def mutate(current: Message) -> Message:
            _check_transition(current, status)
            return dataclasses.replace(current, **changes)

        return self._store.update(message_id, mutate)


def _check_transition(current: Message, target: MessageStatus) -> None:
    if not current.status.can_transition_to(target):
        raise InvalidTransitionError(current.id, current.status, target)


def _check_engine_writable(current: Message, target: MessageStatus) -> None:
    if current.status not in ENGINE_WRITABLE:
        raise InvalidTransitionError(current.id, current.status, target)
    _check_transition(current, target)
