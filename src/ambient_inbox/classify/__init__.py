"""Message categorization and privacy veils."""

from ambient_inbox.classify.categorizer import MessageCategorizer
from ambient_inbox.classify.rules import APP_DISPLAY_NAMES, CategorizerRules
from ambient_inbox.classify.veil import VeilGenerator, resolve_app_name, sanitize_sender

__all__ = [
    "APP_DISPLAY_NAMES",
    "CategorizerRules",
    "MessageCategorizer",
    "VeilGenerator",
    "resolve_app_name",
    "sanitize_sender",
]
