"""Session manager for client-held review sessions.

Nothing is stored server-side. A session is a SessionState snapshot that the
client keeps and sends back; this module creates snapshots, encodes and
decodes them, enforces the freshness window and records chat turns.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import msgspec
from msgspec.structs import replace
from loguru import logger

from fundreview.error_handling import SessionError
from fundreview.models import AnalysisResult, ChatTurnResult, SessionState


class SessionManager:
    """Lifecycle helpers for client-held SessionState snapshots."""

    def __init__(self, ttl_minutes: Optional[int] = None):
        """Initialize the session manager.

        Args:
            ttl_minutes: Freshness window (defaults to SESSION_TTL_MINUTES or 30)
        """
        if ttl_minutes is None:
            ttl_minutes = int(os.getenv("SESSION_TTL_MINUTES", "30"))

        self.ttl = timedelta(minutes=ttl_minutes)
        self._decoder = msgspec.json.Decoder(SessionState)

        logger.info(f"SessionManager initialized (ttl_minutes={ttl_minutes})")

    def create_session(
        self,
        target_document_text: str,
        target_document_name: str,
        analysis_result: Optional[AnalysisResult] = None,
        reference_document_text: Optional[str] = None,
        reference_document_name: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> SessionState:
        """Create a fresh snapshot with an empty conversation."""
        state = SessionState(
            session_id=session_id or f"session-{uuid.uuid4().hex}",
            analysis_result=analysis_result,
            target_document_text=target_document_text,
            target_document_name=target_document_name,
            reference_document_text=reference_document_text,
            reference_document_name=reference_document_name,
            created_at=datetime.now(timezone.utc)
        )
        logger.info("Session created", session_id=state.session_id)
        return state

    def is_expired(self, state: SessionState, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        created_at = state.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return now - created_at > self.ttl

    def encode(self, state: SessionState) -> bytes:
        return msgspec.json.encode(state)

    def decode(self, data: Union[bytes, str]) -> SessionState:
        """Decode a snapshot.

        Raises:
            SessionError: If the snapshot is not a valid SessionState
        """
        try:
            return self._decoder.decode(data)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise SessionError(f"Invalid session snapshot: {e}", cause=e) from e

    def restore(
        self,
        data: Union[bytes, str],
        now: Optional[datetime] = None
    ) -> Optional[SessionState]:
        """Decode a snapshot, discarding it if it has expired.

        Returns:
            The session, or None when it is past the freshness window
        """
        state = self.decode(data)
        if self.is_expired(state, now):
            logger.info("Discarding expired session", session_id=state.session_id)
            return None
        return state

    def record_turn(self, state: SessionState, turn: ChatTurnResult) -> SessionState:
        """Return a new snapshot whose history is the turn's updated history."""
        if len(turn.updated_history) != len(state.conversation_history) + 2:
            raise SessionError(
                "Chat turn does not extend this session's history by exactly one exchange"
            )
        return replace(state, conversation_history=list(turn.updated_history))


def create_session_manager(ttl_minutes: Optional[int] = None) -> SessionManager:
    """Create a session manager with the given or environment-configured TTL."""
    return SessionManager(ttl_minutes=ttl_minutes)
