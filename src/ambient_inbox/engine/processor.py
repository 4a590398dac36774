"""The processing engine: turns RECEIVED messages into veiled, answerable ones."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable, Iterable

from ambient_inbox.classify.categorizer import MessageCategorizer
from ambient_inbox.classify.veil import VeilGenerator
from ambient_inbox.config import ProcessorConfig
from ambient_inbox.engine.claims import ClaimTracker
from ambient_inbox.exceptions import (
    EmptyGenerationError,
    GenerationTimeoutError,
    InvalidTransitionError,
    MessageNotFoundError,
)
from ambient_inbox.generation.base import BaseGenerationBackend
from ambient_inbox.generation.stub import StubGenerationBackend
from ambient_inbox.messages.models import Bucket, Message, MessageStatus, now_ms
from ambient_inbox.messages.repository import MessageRepository
from ambient_inbox.store.changes import ChangeSubscription

logger = logging.getLogger(__name__)

# Statuses after which the backend conversation for a message is no longer needed.
SESSION_CLOSING_STATUSES = frozenset(
    {MessageStatus.SENT, MessageStatus.DISMISSED, MessageStatus.FAILED}
)


class MessageProcessor:
    """Watches the repository and processes every eligible message once.

    A message is eligible when it is RECEIVED, or in RETRY with an expired
    snooze. For each eligible message in a change notification the processor
    claims the id, re-reads the record, and runs one attempt in its own task:
    categorize, veil, generate replies, then write the three results together.
    Failures are counted and turned into a RETRY with exponential backoff, or
    FAILED once ``config.max_retries`` is reached.

    Usage::

        async with MessageProcessor(repository, backend) as processor:
            repository.ingest("com.slack", "Team", "Please review the PR")
            await processor.wait_idle()
    """

    def __init__(
        self,
        repository: MessageRepository,
        backend: BaseGenerationBackend | None = None,
        categorizer: MessageCategorizer | None = None,
        veil_generator: VeilGenerator | None = None,
        claims: ClaimTracker | None = None,
        config: ProcessorConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.repository = repository
        self.backend = backend or StubGenerationBackend()
        self.categorizer = categorizer or MessageCategorizer()
        self.veil_generator = veil_generator or VeilGenerator()
        self.claims = claims or ClaimTracker()
        self.config = config or ProcessorConfig()
        self._clock = clock

        self._accepting = False
        self._subscription: ChangeSubscription | None = None
        self._listener: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._wakeup: asyncio.Task | None = None
        self._wakeup_at: int | None = None
        # Ids seen eligible while another attempt held their claim.
        self._deferred: set[int] = set()
        self._open_sessions: set[int] = set()

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """Subscribe to the repository's change stream."""
        if self._accepting:
            return
        self._accepting = True
        self._subscription = self.repository.watch()
        self._listener = asyncio.create_task(
            self._listen(self._subscription), name="message-processor-listener"
        )
        logger.info("Message processor started")

    async def stop(self, cancel_in_flight: bool = True) -> None:
        """Stop listening, then cancel or drain every outstanding attempt.

        Cancelled attempts write nothing and release their claims, so the
        affected messages are picked up again after the next start.
        """
        if not self._accepting and self._listener is None and not self._tasks:
            return
        self._accepting = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
            self._listener = None
        self._cancel_wakeup()

        tasks = list(self._tasks)
        if cancel_in_flight:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._deferred.clear()

        for message_id in list(self._open_sessions):
            await self._close_session(message_id)
        logger.info(f"Message processor stopped ({len(tasks)} attempt(s) outstanding)")

    async def __aenter__(self) -> MessageProcessor:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def wait_idle(self) -> None:
        """Wait until no attempt is running, including ones started meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def handle_snapshot(self, messages: Iterable[Message]) -> int:
        """Start attempts for the eligible messages in one notification.

        Returns the number of attempts started. Ignored once the processor
        has been stopped.
        """
        if not self._accepting:
            return 0
        now = self._clock()
        started = 0
        next_due: int | None = None
        for message in messages:
            if message.is_eligible(now):
                if self._dispatch(message.id):
                    started += 1
            elif message.status is MessageStatus.RETRY:
                if next_due is None or message.snoozed_until < next_due:
                    next_due = message.snoozed_until
        if next_due is not None:
            self._schedule_wakeup(next_due)
        return started

    async def process_message(self, message: Message) -> Message | None:
        """Run one attempt on ``message``. The caller must hold its claim.

        Returns the stored result, or None if the message vanished or changed
        state underneath the attempt.
        """
        logger.debug(f"Processing message {message.id} from {message.source}")
        try:
            bucket = self.categorizer.categorize(message)
            veil = self.veil_generator.generate_veil(message, bucket)
            self._open_sessions.add(message.id)
            responses = await asyncio.wait_for(
                self.backend.generate(message, bucket),
                timeout=self.config.generation_timeout,
            )
            if not responses:
                raise EmptyGenerationError(f"No replies generated for message {message.id}")
        except asyncio.TimeoutError:
            error = GenerationTimeoutError(
                f"Generation exceeded {self.config.generation_timeout}s"
            )
            return await self._record_failure(message, error)
        except Exception as e:
            return await self._record_failure(message, e)
        return self._record_success(message, bucket, veil, responses)

    def _dispatch(self, message_id: int) -> bool:
        if not self.claims.try_claim(message_id):
            self._deferred.add(message_id)
            return False
        try:
            # Re-read under the claim: a stale snapshot must not restart work
            # that another attempt already finished.
            current = self.repository.get_message(message_id)
        except Exception:
            self.claims.release(message_id)
            raise
        if current is None or not current.is_eligible(self._clock()):
            self.claims.release(message_id)
            return False

        task = asyncio.create_task(
            self.process_message(current), name=f"process-message-{message_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(partial(self._attempt_done, message_id))
        return True

    def _attempt_done(self, message_id: int, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self.claims.release(message_id)
        if task.cancelled():
            logger.info(f"Processing of message {message_id} cancelled")
        elif task.exception() is not None:
            logger.error(
                f"Processing of message {message_id} crashed",
                exc_info=task.exception(),
            )
        if message_id in self._deferred:
            self._deferred.discard(message_id)
            if self._accepting:
                self.handle_snapshot(self.repository.messages())

    def _record_success(
        self, message: Message, bucket: Bucket, veil: str, responses: list[str]
    ) -> Message | None:
        try:
            updated = self.repository.complete_processing(
                message.id,
                bucket=bucket,
                veiled_content=veil,
                generated_responses=[str(r) for r in responses],
            )
        except MessageNotFoundError:
            logger.info(f"Message {message.id} was deleted during processing, result dropped")
            return None
        except InvalidTransitionError as e:
            logger.info(f"Result for message {message.id} dropped: {e}")
            return None
        logger.info(
            f"Message {message.id} processed as {bucket.value} "
            f"with {len(updated.generated_responses)} replies"
        )
        return updated

    async def _record_failure(self, message: Message, error: Exception) -> Message | None:
        now = self._clock()
        reason = str(error) or error.__class__.__name__
        try:
            updated = self.repository.record_failure(
                message.id,
                now=now,
                max_retries=self.config.max_retries,
                backoff=self.config.backoff,
            )
        except MessageNotFoundError:
            logger.info(f"Message {message.id} was deleted during processing")
            return None
        except InvalidTransitionError as e:
            logger.info(f"Failure for message {message.id} not recorded: {e}")
            return None

        if updated.status is MessageStatus.RETRY:
            logger.warning(
                f"Message {message.id} attempt {updated.retry_count} failed: {reason}; "
                f"retrying in {updated.snoozed_until - now}ms"
            )
        else:
            logger.error(
                f"Message {message.id} failed permanently after "
                f"{updated.retry_count} attempts: {reason}"
            )
            await self._close_session(message.id)
        return updated

    async def _listen(self, subscription: ChangeSubscription) -> None:
        async for snapshot in subscription:
            try:
                self.handle_snapshot(snapshot)
                await self._close_finished_sessions(snapshot)
            except Exception:
                logger.exception("Failed to handle message change notification")

    async def _close_finished_sessions(self, snapshot: list[Message]) -> None:
        if not self._open_sessions:
            return
        present = {m.id: m for m in snapshot}
        for message_id in list(self._open_sessions):
            message = present.get(message_id)
            if message is None or message.status in SESSION_CLOSING_STATUSES:
                await self._close_session(message_id)

    async def _close_session(self, message_id: int) -> None:
        self._open_sessions.discard(message_id)
        try:
            await self.backend.close_session(message_id)
        except Exception:
            logger.exception(f"Failed to close backend session for message {message_id}")

    def _schedule_wakeup(self, due_at: int) -> None:
        if self._wakeup is not None and self._wakeup_at is not None and self._wakeup_at <= due_at:
            return
        self._cancel_wakeup()
        delay = max(0, due_at - self._clock()) / 1000
        self._wakeup_at = due_at
        self._wakeup = asyncio.create_task(self._wake_after(delay), name="message-processor-wakeup")

    def _cancel_wakeup(self) -> None:
        if self._wakeup is not None:
            self._wakeup.cancel()
        self._wakeup = None
        self._wakeup_at = None

    async def _wake_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._wakeup = None
        self._wakeup_at = None
        try:
            self.handle_snapshot(self.repository.messages())
        except Exception:
            logger.exception("Failed to rescan messages for due retries")
