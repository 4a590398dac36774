"""Rule-based bucket assignment for incoming messages."""

from __future__ import annotations

from ambient_inbox.classify.rules import PERCENT_OFF_PATTERN, CategorizerRules
from ambient_inbox.messages.models import Bucket, Message


class MessageCategorizer:
    """Assigns exactly one :class:`Bucket` to a message.

    Rules are checked in priority order and the first match wins:

    1. URGENT: urgency keyword in the content, whatever the source.
    2. WORK: source is a productivity or collaboration app.
    3. SOCIAL: source is a personal messaging app.
    4. PROMOTIONAL: sale/discount wording or a "N% off" pattern.
    5. TRANSACTIONAL: codes, shipping, payments, or a financial source.
    6. UNKNOWN: everything else, including empty content.
    """

    def __init__(self, rules: CategorizerRules | None = None):
        self.rules = rules or CategorizerRules()

    def categorize(self, message: Message) -> Bucket:
        content = (message.original_content or "").lower()
        source = (message.source or "").lower()

        if _contains_any(content, self.rules.urgent_keywords):
            return Bucket.URGENT
        if _contains_any(source, self.rules.work_sources):
            return Bucket.WORK
        if _contains_any(source, self.rules.social_sources):
            return Bucket.SOCIAL
        if self._is_promotional(content):
            return Bucket.PROMOTIONAL
        if self._is_transactional(content, source):
            return Bucket.TRANSACTIONAL
        return Bucket.UNKNOWN

    def _is_promotional(self, content: str) -> bool:
        if PERCENT_OFF_PATTERN.search(content):
            return True
        return _contains_any(content, self.rules.promotional_keywords)

    def _is_transactional(self, content: str, source: str) -> bool:
        if _contains_any(source, self.rules.financial_sources):
            return True
        return _contains_any(content, self.rules.transactional_keywords)


def _contains_any(text: str, needles) -> bool:
    if not text:
        return False
    return any(needle in text for needle in needles)
