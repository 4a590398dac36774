"""Reply generation backends with abstract base."""

from ambient_inbox.generation.base import BaseGenerationBackend
from ambient_inbox.generation.claude import ClaudeGenerationBackend
from ambient_inbox.generation.ollama import OllamaGenerationBackend
from ambient_inbox.generation.stub import StubGenerationBackend

__all__ = [
    "BaseGenerationBackend",
    "ClaudeGenerationBackend",
    "OllamaGenerationBackend",
    "StubGenerationBackend",
]
