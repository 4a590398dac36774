"""Unified exception hierarchy for ambient-inbox."""


class AmbientInboxError(Exception):
    """Base exception for all ambient-inbox errors."""


# Store
class StoreError(AmbientInboxError):
    """Base exception for message store operations."""


class MessageNotFoundError(StoreError):
    """No message exists with the requested id."""

    def __init__(self, message_id: int):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class InvalidTransitionError(StoreError):
    """A status change that is not an allowed edge of the lifecycle."""

    def __init__(self, message_id: int, current, requested):
        super().__init__(
            f"Message {message_id} cannot move from {current.value} to {requested.value}"
        )
        self.message_id = message_id
        self.current = current
        self.requested = requested


# Generation
class GenerationError(AmbientInboxError):
    """Base exception for reply generation backends."""


class GenerationTimeoutError(GenerationError):
    """Reply generation did not finish within the allowed time."""


class EmptyGenerationError(GenerationError):
    """The backend produced no usable reply candidates."""


# Config
class ConfigError(AmbientInboxError):
    """Invalid or missing configuration value."""
