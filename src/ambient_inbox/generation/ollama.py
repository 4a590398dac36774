"""Reply generation against a local Ollama server."""

from __future__ import annotations

import asyncio
import logging

from ambient_inbox.exceptions import GenerationError
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

MAX_RETRIES = 3


class OllamaGenerationBackend(BaseGenerationBackend):
    """On-device style generation through Ollama's ``/api/chat`` endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2",
        max_replies: int = DEFAULT_MAX_REPLIES,
        timeout: float = 30.0,
        client=None,
    ):
        try:
            import httpx
        except ImportError:
            raise ImportError(
                "httpx is required for OllamaGenerationBackend. "
                "Install with: pip install httpx"
            )
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_replies = max_replies
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sessions = ConversationSessions()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def generate(self, message: Message, bucket: Bucket) -> list[str]:
        session = self._sessions.open(message.id)
        turns = session.turns + [
            {"role": "user", "content": build_prompt(message, bucket, self.max_replies)}
        ]
        text = await self._chat(turns)
        session.turns = turns + [{"role": "assistant", "content": text}]
        return parse_replies(text, self.max_replies)

    async def close_session(self, message_id: int) -> None:
        self._sessions.close(message_id)

    async def aclose(self) -> None:
        self._sessions.clear()
        await self._client.aclose()

    async def _chat(self, turns: list[dict]) -> str:
        import httpx

        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": SYSTEM_PROMPT}] + turns,
            "stream": False,
        }
        for attempt in range(MAX_RETRIES):
            try:
                response = await self._client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()
                return data["message"]["content"]
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                wait = 2 ** attempt
                logger.warning(
                    f"Ollama connection issue ({e.__class__.__name__}), "
                    f"retrying in {wait}s (attempt {attempt + 1})"
                )
                await asyncio.sleep(wait)
            except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
                raise GenerationError(f"Ollama generation failed: {e}") from e
        raise GenerationError(f"Ollama generation failed after {MAX_RETRIES} retries")
