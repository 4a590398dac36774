"""Tests for the Claude generation backend."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from ambient_inbox.exceptions import ConfigError, GenerationError
from ambient_inbox.generation.claude import ClaudeGenerationBackend
from ambient_inbox.messages.models import Bucket, Message


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_message(message_id=1):
    return Message(
        id=message_id,
        source="com.slack",
        sender_display_name="Team",
        original_content="Please review the PR",
        timestamp=0,
    )


def text_response(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def api_error():
    return anthropic.APIError(
        "boom", request=httpx.Request("POST", "https://api.anthropic.com"), body=None
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(monkeypatch, clock):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    backend = ClaudeGenerationBackend(clock=clock)
    backend._client = MagicMock()
    backend._client.messages.create = AsyncMock(return_value=text_response("1. On it\n2. Will do"))
    return backend


def test_init_requires_api_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ConfigError, match="API key is required"):
        ClaudeGenerationBackend(api_key=None)


def test_init_accepts_env_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key-123")
    backend = ClaudeGenerationBackend()
    assert backend.model == "claude-haiku-4-5-20251001"
    assert backend.client is backend._client


def test_generate_parses_replies(backend):
    replies = asyncio.run(backend.generate(make_message(), Bucket.WORK))
    assert replies == ["On it", "Will do"]
    kwargs = backend._client.messages.create.call_args.kwargs
    assert kwargs["model"] == backend.model
    assert kwargs["messages"][-1]["role"] == "user"
    assert "Category: WORK" in kwargs["messages"][-1]["content"]


def test_sessions_keep_history_per_message(backend):
    async def scenario():
        await backend.generate(make_message(1), Bucket.WORK)
        await backend.generate(make_message(2), Bucket.WORK)
        await backend.generate(make_message(1), Bucket.WORK)

    asyncio.run(scenario())
    calls = backend._client.messages.create.call_args_list
    assert len(calls[1].kwargs["messages"]) == 1
    # Third call repeats message 1 and carries its earlier user/assistant turns.
    assert len(calls[2].kwargs["messages"]) == 3
    assert backend.session_count == 2


def test_close_session(backend):
    async def scenario():
        await backend.generate(make_message(1), Bucket.WORK)
        await backend.close_session(1)
        await backend.close_session(1)

    asyncio.run(scenario())
    assert backend.session_count == 0


def test_api_error_raises_and_starts_cooldown(backend, clock):
    backend._client.messages.create = AsyncMock(side_effect=api_error())

    with pytest.raises(GenerationError, match="Claude API error"):
        asyncio.run(backend.generate(make_message(), Bucket.WORK))
    assert backend.cooling_down

    with pytest.raises(GenerationError, match="cooling down"):
        asyncio.run(backend.generate(make_message(), Bucket.WORK))
    assert backend._client.messages.create.await_count == 1

    clock.now += 1.0
    assert not backend.cooling_down


def test_cooldown_grows_with_consecutive_failures(backend, clock):
    backend._client.messages.create = AsyncMock(side_effect=api_error())
    with pytest.raises(GenerationError):
        asyncio.run(backend.generate(make_message(), Bucket.WORK))
    clock.now += 1.0
    with pytest.raises(GenerationError):
        asyncio.run(backend.generate(make_message(), Bucket.WORK))
    clock.now += 1.0
    assert backend.cooling_down
    clock.now += 1.0
    assert not backend.cooling_down


def test_success_resets_failures(backend, clock):
    backend._client.messages.create = AsyncMock(side_effect=[api_error(), text_response("Ok")])
    with pytest.raises(GenerationError):
        asyncio.run(backend.generate(make_message(), Bucket.WORK))
    clock.now += 1.0
    assert asyncio.run(backend.generate(make_message(), Bucket.WORK)) == ["Ok"]
    assert backend._consecutive_failures == 0


def test_timeout_retries_then_fails(backend):
    error = anthropic.APITimeoutError(request=httpx.Request("POST", "https://api.anthropic.com"))
    backend._client.messages.create = AsyncMock(side_effect=error)
    with patch("ambient_inbox.generation.claude.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(GenerationError, match="Failed after 3 retries"):
            asyncio.run(backend.generate(make_message(), Bucket.WORK))
    assert backend._client.messages.create.await_count == 3
    assert sleep.await_count == 3
