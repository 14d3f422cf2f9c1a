"""Conversation history helpers.

History is an ordered list of frozen ChatMessage records owned by the
caller. Helpers here never mutate the list they are given: a turn returns a
new list with exactly one user message and one assistant message appended.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from fundreview.models import ChatMessage, MessageRole


DIGEST_QUESTION_CHARS = 80
DIGEST_MAX_QUESTIONS = 12


def _utc(moment: datetime) -> datetime:
    # Client snapshots may carry naive timestamps; treat them as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def new_message(
    role: MessageRole,
    content: str,
    not_before: Optional[datetime] = None
) -> ChatMessage:
    """Create a message stamped now, but never earlier than ``not_before``."""
    timestamp = datetime.now(timezone.utc)
    if not_before is not None:
        timestamp = max(timestamp, _utc(not_before))
    return ChatMessage(
        id=f"msg-{uuid.uuid4().hex[:12]}-{role}",
        role=role,
        content=content,
        timestamp=timestamp
    )


def append_turn(
    history: Sequence[ChatMessage],
    user_content: str,
    assistant_content: str
) -> List[ChatMessage]:
    """Return ``history`` extended by one user message and one assistant reply.

    Args:
        history: Prior messages (left untouched)
        user_content: The user's message
        assistant_content: The model's reply

    Returns:
        New list of length ``len(history) + 2``
    """
    last_timestamp = history[-1].timestamp if history else None
    user_message = new_message("user", user_content, not_before=last_timestamp)
    assistant_message = new_message("assistant", assistant_content, not_before=user_message.timestamp)
    return [*history, user_message, assistant_message]


def format_history(messages: Sequence[ChatMessage]) -> str:
    """Serialize messages as alternating ``User:`` / ``Assistant:`` lines."""
    lines = []
    for message in messages:
        speaker = "User" if message.role == "user" else "Assistant"
        lines.append(f"{speaker}: {message.content}")
    return "\n".join(lines)


def split_history(
    history: Sequence[ChatMessage],
    max_turns: int
) -> Tuple[List[ChatMessage], List[ChatMessage]]:
    """Split history into (older, recent) where recent holds the last ``max_turns`` turns."""
    keep = max(max_turns, 0) * 2
    if keep == 0:
        return list(history), []
    if len(history) <= keep:
        return [], list(history)
    return list(history[:-keep]), list(history[-keep:])


def summarize_older(messages: Sequence[ChatMessage]) -> str:
    """One-line digest of the user questions in ``messages``.

    Deterministic: no model call is involved. Only the most recent
    questions are listed when there are many.
    """
    questions = [m.content.strip() for m in messages if m.role == "user" and m.content.strip()]
    if not questions:
        return ""

    omitted = max(len(questions) - DIGEST_MAX_QUESTIONS, 0)
    shown = []
    for question in questions[-DIGEST_MAX_QUESTIONS:]:
        question = " ".join(question.split())
        if len(question) > DIGEST_QUESTION_CHARS:
            question = question[:DIGEST_QUESTION_CHARS - 3].rstrip() + "..."
        shown.append(question)

    prefix = f"Earlier in this conversation ({len(questions)} questions"
    if omitted:
        prefix += f", {omitted} not listed"
    return prefix + "), the user asked: " + " | ".join(shown)


def render_history(history: Sequence[ChatMessage], max_turns: int) -> str:
    """Prompt-ready history: digest of older turns plus the recent turns verbatim."""
    older, recent = split_history(history, max_turns)

    parts = []
    digest = summarize_older(older)
    if digest:
        parts.append(digest)
    if recent:
        parts.append(format_history(recent))
    return "\n\n".join(parts)
