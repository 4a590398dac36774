"""Processing engine: claims, retry scheduling and the message processor."""

from ambient_inbox.config import BackoffPolicy, ProcessorConfig, compute_backoff
from ambient_inbox.engine.claims import ClaimTracker
from ambient_inbox.engine.processor import MessageProcessor

__all__ = [
    "BackoffPolicy",
    "ClaimTracker",
    "MessageProcessor",
    "ProcessorConfig",
    "compute_backoff",
]
