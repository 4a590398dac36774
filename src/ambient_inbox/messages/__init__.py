"""Message records and lifecycle.

The repository facade lives in :mod:`ambient_inbox.messages.repository`; it is
not re-exported here because the store backends import these models.
"""

from ambient_inbox.messages.models import (
    ALLOWED_TRANSITIONS,
    Bucket,
    Message,
    MessageStatus,
    now_ms,
    sort_for_display,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Bucket",
    "Message",
    "MessageStatus",
    "now_ms",
    "sort_for_display",
]
