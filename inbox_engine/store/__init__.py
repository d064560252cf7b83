from .conversation_store import (
    ApplyResult,
    Conversation,
    ConversationStore,
    ConversationView,
    PageResult,
    anchored_scroll_top,
)
from .preferences import AssignPromptPreferences
from .recency import RecencyIndex

__all__ = [
    "ApplyResult",
    "AssignPromptPreferences",
    "Conversation",
    "ConversationStore",
    "ConversationView",
    "PageResult",
    "RecencyIndex",
    "anchored_scroll_top",
]
