"""
Chat session persistence.
"""

from .session_store import (
    ChatSession,
    ChatSessionStore,
    ChatTurn,
    SessionKey,
    SessionSummary,
    SourceRef,
    default_display_name,
)

__all__ = [
    "ChatSession",
    "ChatSessionStore",
    "ChatTurn",
    "SessionKey",
    "SessionSummary",
    "SourceRef",
    "default_display_name",
]
