"""Default keyword and source tables used for categorization and veiling."""

from __future__ import annotations

import re
from dataclasses import dataclass

URGENT_KEYWORDS = frozenset({
    "urgent",
    "emergency",
    "asap",
    "immediately",
    "critical",
    "important",
    "911",
})

WORK_SOURCES = frozenset({
    "com.slack",
    "com.github.android",
    "com.notion.id",
    "com.microsoft.teams",
    "com.google.android.apps.docs",
    "com.atlassian.android.jira.core",
    "us.zoom.videomeetings",
    "com.google.android.apps.meetings",
    "slack",
    "github",
    "notion",
})

SOCIAL_SOURCES = frozenset({
    "com.whatsapp",
    "org.telegram.messenger",
    "com.facebook.orca",
    "com.instagram.android",
    "com.snapchat.android",
    "com.discord",
    "com.viber.voip",
    "org.thoughtcrime.securesms",
    "sms",
})

PROMOTIONAL_KEYWORDS = frozenset({
    "sale",
    "discount",
    "% off",
    "offer",
    "deal",
    "promo",
    "coupon",
    "limited time",
    "subscribe",
    "unsubscribe",
})

TRANSACTIONAL_KEYWORDS = frozenset({
    "otp",
    "one-time",
    "verification code",
    "verify",
    "receipt",
    "invoice",
    "order",
    "shipped",
    "delivered",
    "delivery",
    "tracking",
    "payment",
    "transaction",
    "balance",
    "account",
})

FINANCIAL_SOURCE_FRAGMENTS = frozenset({"bank", "finance", "wallet", "paypal", "venmo"})

PERCENT_OFF_PATTERN = re.compile(r"\d+\s*%\s*off\b")

# Substring of a lower-cased source -> name shown in work veils.
APP_DISPLAY_NAMES: dict[str, str] = {
    "slack": "Slack",
    "teams": "Teams",
    "github": "GitHub",
    "notion": "Notion",
    "jira": "Jira",
    "zoom": "Zoom",
    "apps.docs": "Google Docs",
    "apps.meetings": "Google Meet",
    "whatsapp": "WhatsApp",
    "telegram": "Telegram",
    "discord": "Discord",
    "instagram": "Instagram",
    "facebook": "Facebook",
}


@dataclass(frozen=True)
class CategorizerRules:
    """Keyword data for :class:`~ambient_inbox.classify.categorizer.MessageCategorizer`.

    All entries are matched as lower-case substrings.
    """

    urgent_keywords: frozenset[str] = URGENT_KEYWORDS
    work_sources: frozenset[str] = WORK_SOURCES
    social_sources: frozenset[str] = SOCIAL_SOURCES
    promotional_keywords: frozenset[str] = PROMOTIONAL_KEYWORDS
    transactional_keywords: frozenset[str] = TRANSACTIONAL_KEYWORDS
    financial_sources: frozenset[str] = FINANCIAL_SOURCE_FRAGMENTS
