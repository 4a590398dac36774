"""Claude-backed reply generation with per-message conversations."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Callable

from ambient_inbox.config import DEFAULT_MODEL, compute_backoff
from ambient_inbox.exceptions import ConfigError, GenerationError
from ambient_inbox.generation.base import BaseGenerationBackend
from ambient_inbox.generation.prompt import (
    DEFAULT_MAX_REPLIES,
    SYSTEM_PROMPT,
    build_prompt,
    parse_replies,
)
from ambient_inbox.generation.sessions import ConversationSessions
from ambient_inbox.messages.models import Bucket, Message

logger = logging.getLogger(__name__)

COOLDOWN_BASE_MS = 1_000
COOLDOWN_MAX_MS = 60_000


class ClaudeGenerationBackend(BaseGenerationBackend):
    """Asks Claude for reply candidates through the AsyncAnthropic SDK.

    Each message id gets its own conversation, so asking again about the same
    message (for example on a retry) keeps earlier turns while concurrent
    messages never see each other's history. After consecutive failures the
    backend refuses calls for a capped, exponentially growing cooldown.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        max_retries: int = 3,
        max_replies: int = DEFAULT_MAX_REPLIES,
        max_tokens: int = 256,
        temperature: float = 0.7,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not api_key and not os.environ.get("ANTHROPIC_API_KEY"):
            raise ConfigError(
                "Anthropic API key is required. "
                "Pass it directly or set ANTHROPIC_API_KEY in your environment."
            )
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "anthropic is required for ClaudeGenerationBackend. "
                "Install with: pip install anthropic"
            )
        self._client = AsyncAnthropic(api_key=api_key or None)
        self.model = model
        self.max_retries = max_retries
        self.max_replies = max_replies
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._clock = clock
        self._sessions = ConversationSessions(clock=clock)
        self._consecutive_failures = 0
        self._disabled_until = 0.0

    @property
    def client(self):
        """Access the underlying AsyncAnthropic SDK client for advanced usage."""
        return self._client

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def cooling_down(self) -> bool:
        return self._clock() < self._disabled_until

    async def generate(self, message: Message, bucket: Bucket) -> list[str]:
        if self.cooling_down:
            raise GenerationError(
                f"Claude backend cooling down after {self._consecutive_failures} failures"
            )

        session = self._sessions.open(message.id)
        turns = session.turns + [
            {"role": "user", "content": build_prompt(message, bucket, self.max_replies)}
        ]
        try:
            text = await self._create(turns)
        except GenerationError:
            self._record_failure()
            raise

        self._consecutive_failures = 0
        session.turns = turns + [{"role": "assistant", "content": text}]
        return parse_replies(text, self.max_replies)

    async def close_session(self, message_id: int) -> None:
        if self._sessions.close(message_id):
            logger.debug(f"Closed Claude session for message {message_id}")

    def prune_idle_sessions(self, idle_seconds: float) -> int:
        return self._sessions.prune_idle(idle_seconds)

    async def aclose(self) -> None:
        self._sessions.clear()
        await self._client.close()

    async def _create(self, messages: list[dict]) -> str:
        from anthropic import APIError, APITimeoutError, RateLimitError

        for attempt in range(self.max_retries):
            try:
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    system=SYSTEM_PROMPT,
                    messages=messages,
                )
                return "\n".join(
                    block.text for block in response.content if block.type == "text"
                )
            except RateLimitError:
                wait = 2 ** (attempt + 1)
                logger.warning(f"Rate limited, retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
            except APITimeoutError:
                wait = 2 ** attempt
                logger.warning(f"API timeout, retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
            except APIError as e:
                raise GenerationError(f"Claude API error: {e}") from e

        raise GenerationError(f"Failed after {self.max_retries} retries")

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        cooldown_ms = compute_backoff(
            self._consecutive_failures, COOLDOWN_BASE_MS, COOLDOWN_MAX_MS
        )
        self._disabled_until = self._clock() + cooldown_ms / 1000
        logger.warning(
            f"Claude backend failed {self._consecutive_failures} time(s) in a row, "
            f"pausing for {cooldown_ms}ms"
        )
