"""Prompt construction and reply parsing shared by the model-backed backends."""

from __future__ import annotations

import re

from ambient_inbox.classify.veil import sanitize_sender
from ambient_inbox.messages.models import Bucket, Message

DEFAULT_MAX_REPLIES = 3

SYSTEM_PROMPT = (
    "You help a user answer the notifications they receive on their phone. "
    "Write short replies the user could send as-is. "
    "Return only the replies, one per line, without numbering or commentary."
)

TONES = {
    Bucket.URGENT: "calm and reassuring, acknowledging the urgency",
    Bucket.WORK: "professional and concise",
    Bucket.SOCIAL: "warm and casual",
    Bucket.PROMOTIONAL: "polite and brief, declining by default",
    Bucket.TRANSACTIONAL: "brief and neutral",
    Bucket.UNKNOWN: "polite and neutral",
}

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)]|\(\d+\))\s*")


def build_prompt(message: Message, bucket: Bucket, max_replies: int = DEFAULT_MAX_REPLIES) -> str:
    return (
        f"Write {max_replies} distinct, short replies to the message below.\n"
        f"Category: {bucket.value}\n"
        f"Tone: {TONES[bucket]}\n"
        f"Sender: {sanitize_sender(message.sender_display_name)}\n"
        f'Message: "{message.original_content}"'
    )


def parse_replies(text: str, max_replies: int = DEFAULT_MAX_REPLIES) -> list[str]:
    """Split model output into distinct replies, dropping list markers and quotes."""
    replies: list[str] = []
    for line in (text or "").splitlines():
        reply = _LIST_MARKER_RE.sub("", line).strip()
        if len(reply) >= 2 and reply[0] == reply[-1] and reply[0] in "\"'":
            reply = reply[1:-1].strip()
        if reply and reply not in replies:
            replies.append(reply)
        if len(replies) >= max_replies:
            break
    return replies
