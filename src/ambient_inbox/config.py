"""Runtime configuration for the processing engine and generation backends."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from ambient_inbox.exceptions import ConfigError

DEFAULT_MODEL = os.environ.get("AMBIENT_INBOX_LLM_MODEL", "claude-haiku-4-5-20251001")

DEFAULT_MAX_RETRIES = 5
DEFAULT_GENERATION_TIMEOUT = 30.0
DEFAULT_BACKOFF_BASE_MS = 1_000
DEFAULT_BACKOFF_MAX_MS = 60_000


def compute_backoff(retry_count: int, base_ms: int, max_ms: int) -> int:
    """Exponential delay in milliseconds, capped at ``max_ms``.

    ``retry_count`` is the number of failures so far; the first failure waits
    ``base_ms``, each further one doubles it.
    """
    if retry_count <= 0:
        return 0
    # Any cap is reached long before 2**62.
    exponent = min(retry_count - 1, 62)
    return min(base_ms * (2 ** exponent), max_ms)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential, capped delay between failed processing attempts."""

    base_ms: int = DEFAULT_BACKOFF_BASE_MS
    max_ms: int = DEFAULT_BACKOFF_MAX_MS

    def __post_init__(self):
        if self.base_ms <= 0:
            raise ConfigError(f"Backoff base must be positive, got {self.base_ms}")
        if self.max_ms < self.base_ms:
            raise ConfigError(
                f"Backoff cap ({self.max_ms}ms) is below the base delay ({self.base_ms}ms)"
            )

    def delay_ms(self, retry_count: int) -> int:
        """Delay before the attempt following the ``retry_count``-th failure."""
        return compute_backoff(retry_count, self.base_ms, self.max_ms)


@dataclass(frozen=True)
class ProcessorConfig:
    """Knobs for :class:`~ambient_inbox.engine.processor.MessageProcessor`.

    Attributes:
        max_retries: Failed attempts allowed before a message is marked FAILED.
        generation_timeout: Seconds the engine waits on a backend call.
        backoff: Delay policy applied between failed attempts.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    generation_timeout: float = DEFAULT_GENERATION_TIMEOUT
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.generation_timeout <= 0:
            raise ConfigError(
                f"generation_timeout must be positive, got {self.generation_timeout}"
            )

    @classmethod
    def from_env(cls) -> ProcessorConfig:
        """Build a config from ``AMBIENT_INBOX_*`` environment variables."""
        return cls(
            max_retries=_env_int("AMBIENT_INBOX_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            generation_timeout=_env_float(
                "AMBIENT_INBOX_GENERATION_TIMEOUT", DEFAULT_GENERATION_TIMEOUT
            ),
            backoff=BackoffPolicy(
                base_ms=_env_int("AMBIENT_INBOX_BACKOFF_BASE_MS", DEFAULT_BACKOFF_BASE_MS),
                max_ms=_env_int("AMBIENT_INBOX_BACKOFF_MAX_MS", DEFAULT_BACKOFF_MAX_MS),
            ),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
