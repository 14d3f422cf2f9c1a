"""Memory package for conversation history and client-held session state."""

from memory.conversation_history import (
    append_turn,
    format_history,
    new_message,
    render_history,
)
from memory.session_manager import SessionManager, create_session_manager

__all__ = [
    "append_turn",
    "format_history",
    "new_message",
    "render_history",
    "SessionManager",
    "create_session_manager",
]
