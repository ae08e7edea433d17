"""Service layer helpers (persistence, settings, host capabilities)."""

from .persistence import ConversationPersistence, ConversationSnapshot, JsonConversationStore
from .settings import Settings, SettingsStore

__all__ = [
    "ConversationPersistence",
    "ConversationSnapshot",
    "JsonConversationStore",
    "Settings",
    "SettingsStore",
]
