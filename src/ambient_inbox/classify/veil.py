"""Privacy veils: short display strings shown in place of message content."""

from __future__ import annotations

from typing import Mapping

from bs4 import BeautifulSoup

from ambient_inbox.classify.rules import APP_DISPLAY_NAMES
from ambient_inbox.messages.models import Bucket, Message

UNKNOWN_SENDER = "Unknown"


def sanitize_sender(sender: str | None) -> str:
    """Reduce an untrusted sender name to letters, digits and single spaces.

    Script-like elements are dropped with their content so injected code does
    not survive as plain words; other tags are removed but their text kept.
    Returns ``"Unknown"`` when nothing is left.
    """
    if not sender or not sender.strip():
        return UNKNOWN_SENDER
    soup = BeautifulSoup(sender, "html.parser")
    for tag in soup(["script", "style", "iframe"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    kept = "".join(ch for ch in text if ch.isalnum() or ch.isspace())
    cleaned = " ".join(kept.split())
    return cleaned or UNKNOWN_SENDER


def resolve_app_name(source: str | None, app_names: Mapping[str, str] = APP_DISPLAY_NAMES) -> str | None:
    """Human-readable app name for a source, or None if it is not mapped."""
    if not source:
        return None
    lowered = source.lower()
    for fragment, name in app_names.items():
        if fragment in lowered:
            return name
    return None


class VeilGenerator:
    """Builds the veil for a categorized message.

    Templates only ever interpolate the sanitized sender or a configured app
    name, so codes, amounts and tracking numbers in the content cannot leak.
    """

    def __init__(self, app_names: Mapping[str, str] | None = None):
        self.app_names = dict(APP_DISPLAY_NAMES if app_names is None else app_names)

    def generate_veil(self, message: Message, bucket: Bucket) -> str:
        sender = sanitize_sender(message.sender_display_name)

        if bucket is Bucket.URGENT:
            return f"Priority message from {sender}"
        if bucket is Bucket.WORK:
            app_name = resolve_app_name(message.source, self.app_names)
            return f"Work notification from {app_name or sender}"
        if bucket is Bucket.SOCIAL:
            return f"New message from {sender}"
        if bucket is Bucket.PROMOTIONAL:
            return "Promotional content"
        if bucket is Bucket.TRANSACTIONAL:
            return "Account notification"
        return "New notification"
