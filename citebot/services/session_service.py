"""
citebot/services/session_service.py
-----------------------------------
Conversation state across turns.

State machine
-------------
  active    -[turn]->     active
  active    -[escalate]-> escalated
  active    -[close]->    closed
  escalated -[close]->    closed
  closed is terminal.

A session is reused only while it is active and younger than
SESSION_EXPIRY_HOURS; otherwise a fresh one is created. Store failures are
raised as SessionUnavailableError, never papered over with a new session.

Import
------
    from citebot.services.session_service import SessionService

    svc = SessionService(store)
    session = svc.get_or_create(session_id)
    summary = SessionService.get_context_summary(session)
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from citebot.agents.intent_tables import TOPIC_KEYWORDS
from citebot.errors import InvalidStatusTransition, SessionNotFoundError, SessionUnavailableError
from citebot.models.domain._time import utcnow
from citebot.models.domain.context_summary import ContextSummary
from citebot.models.domain.session import (
    Message,
    MessageCreate,
    MessageRole,
    Session,
    SessionStatus,
)
from citebot.processing.text import normalize, truncate
from citebot.storage.base import SessionStore

logger = logging.getLogger(__name__)

MAX_CONTEXT_MESSAGES = 10
LOADED_MESSAGES = MAX_CONTEXT_MESSAGES * 2     # user + assistant per turn
SESSION_EXPIRY_HOURS = 24
CLOSED_RETENTION_DAYS = 7
ASSISTANT_EXCERPT_CHARS = 300
MAX_LAST_SOURCES = 5
MAX_SESSION_TOPICS = 10
MAX_SUMMARY_TOPICS = 5

_ALLOWED_TRANSITIONS = {
    SessionStatus.ACTIVE: {SessionStatus.ESCALATED, SessionStatus.CLOSED},
    SessionStatus.ESCALATED: {SessionStatus.CLOSED},
    SessionStatus.CLOSED: set(),
}


def _references(sources: Iterable[Any]) -> List[str]:
    refs = []
    for s in sources:
        ref = s.get("reference") if isinstance(s, dict) else getattr(s, "reference", None)
        if ref:
            refs.append(ref)
    return refs


class SessionService:
    def __init__(
        self,
        store: SessionStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.clock = clock

    # ── Load / create ─────────────────────────────────────────────────────────

    def _load(self, session_id: str) -> Optional[Session]:
        try:
            return self.store.get_session(session_id, LOADED_MESSAGES)
        except Exception as e:
            logger.exception("Session load failed for %s", session_id)
            raise SessionUnavailableError(f"Session store unavailable: {e}") from e

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._load(session_id)

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        if session_id:
            existing = self._load(session_id)
            if existing is not None and self._is_usable(existing):
                return existing
            logger.info("Session %s unusable (missing, expired or not active); creating a new one", session_id)

        expires_at = self.clock() + timedelta(hours=SESSION_EXPIRY_HOURS)
        try:
            session = self.store.create_session(expires_at)
        except Exception as e:
            logger.exception("Session create failed")
            raise SessionUnavailableError(f"Session store unavailable: {e}") from e
        logger.info("Created session %s", session.id)
        return session

    def _is_usable(self, session: Session) -> bool:
        if session.status != SessionStatus.ACTIVE:
            return False
        return self.clock() < session.created_at + timedelta(hours=SESSION_EXPIRY_HOURS)

    # ── Turns ─────────────────────────────────────────────────────────────────

    def add_user_turn(
        self,
        session: Session,
        content: str,
        intent: Optional[str] = None,
        topics: Optional[List[str]] = None,
    ) -> Message:
        """
        Append a user message. The turn counter is not touched; it counts
        completed assistant responses only.
        """
        message = self._append(MessageCreate(
            session_id=session.id,
            role=MessageRole.USER,
            content=content,
            intent=intent,
        ))

        merged = list(session.topics)
        for topic in topics or []:
            if topic not in merged:
                merged.append(topic)
        merged = merged[:MAX_SESSION_TOPICS]
        if merged != session.topics:
            self._update(session.id, topics=merged, at=self.clock())
            session.topics = merged

        session.messages.append(message)
        return message

    def add_assistant_turn(
        self,
        session: Session,
        content: str,
        intent: Optional[str],
        confidence: float,
        sources: List[Dict[str, Any]],
    ) -> Message:
        """
        Append an assistant message, bump turn_count, replace last_sources.

        One store call, so a failure leaves neither the message nor the
        increment behind.
        """
        last_sources = _references(sources)[:MAX_LAST_SOURCES]
        now = self.clock()
        try:
            message = self.store.record_assistant_turn(
                MessageCreate(
                    session_id=session.id,
                    role=MessageRole.ASSISTANT,
                    content=content,
                    intent=intent,
                    confidence=confidence,
                    sources=sources,
                ),
                last_sources,
                now,
            )
        except Exception as e:
            logger.exception("Turn update failed for session %s", session.id)
            raise SessionUnavailableError(f"Session store unavailable: {e}") from e

        session.turn_count += 1
        session.last_sources = last_sources
        session.updated_at = now
        session.messages.append(message)
        return message

    def _append(self, message: MessageCreate) -> Message:
        try:
            return self.store.append_message(message)
        except Exception as e:
            logger.exception("Message append failed for session %s", message.session_id)
            raise SessionUnavailableError(f"Session store unavailable: {e}") from e

    def _update(self, session_id: str, **fields: Any) -> None:
        try:
            self.store.update_session(session_id, **fields)
        except Exception as e:
            logger.exception("Session update failed for %s", session_id)
            raise SessionUnavailableError(f"Session store unavailable: {e}") from e

    # ── Context ───────────────────────────────────────────────────────────────

    @staticmethod
    def get_context_summary(session: Session) -> ContextSummary:
        recent = session.messages[-MAX_CONTEXT_MESSAGES:]

        lines = []
        for m in recent:
            if m.role == MessageRole.USER:
                lines.append(f"UTILISATEUR: {m.content}")
            else:
                lines.append(f"ASSISTANT: {truncate(m.content, ASSISTANT_EXCERPT_CHARS)}")

        topics: List[str] = []
        for m in recent:
            if m.role != MessageRole.USER:
                continue
            text = normalize(m.content)
            for kw in TOPIC_KEYWORDS:
                if kw in text and kw not in topics:
                    topics.append(kw)

        previous: List[str] = []
        for m in recent:
            if m.role != MessageRole.ASSISTANT:
                continue
            for ref in _references(m.sources):
                if ref not in previous:
                    previous.append(ref)

        return ContextSummary(
            topics=topics[:MAX_SUMMARY_TOPICS],
            formatted_history="\n\n".join(lines),
            turn_count=session.turn_count,
            previous_sources=previous,
        )

    # ── Status ────────────────────────────────────────────────────────────────

    def update_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self._load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        target = SessionStatus(status)
        if target == session.status:
            return session
        if target not in _ALLOWED_TRANSITIONS[session.status]:
            raise InvalidStatusTransition(session.status.value, target.value)

        now = self.clock()
        self._update(session_id, status=target, at=now)
        logger.info("Session %s: %s -> %s", session_id, session.status.value, target.value)
        session.status = target
        session.updated_at = now
        return session

    # ── Dashboard reads ───────────────────────────────────────────────────────

    def get_snapshot(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self._load(session_id)
        if session is None:
            return None

        confidences = [
            m.confidence for m in session.messages
            if m.role == MessageRole.ASSISTANT and m.confidence is not None
        ]
        avg = round(sum(confidences) / len(confidences), 2) if confidences else 0.0

        return {
            "session_id": session.id,
            "status": session.status.value,
            "turn_count": session.turn_count,
            "message_count": len(session.messages),
            "average_confidence": avg,
            "topics": session.topics,
            "last_sources": session.last_sources,
            "created_at": session.created_at,
            "updated_at": session.updated_at,
            "expires_at": session.expires_at,
            "messages": [
                {
                    "id": m.id,
                    "role": m.role.value,
                    "content": m.content,
                    "intent": m.intent,
                    "confidence": m.confidence,
                    "created_at": m.created_at,
                }
                for m in session.messages
            ],
        }

    def list_sessions(
        self,
        status: Optional[SessionStatus] = SessionStatus.ACTIVE,
        limit: int = 50,
    ) -> List[Session]:
        return self.store.list_sessions(status, limit)

    def delete_session(self, session_id: str) -> bool:
        return self.store.delete_session(session_id)

    # ── Cleanup ───────────────────────────────────────────────────────────────

    def cleanup_expired_sessions(self) -> int:
        """Delete expired sessions and closed ones past the retention window."""
        now = self.clock()
        deleted = self.store.delete_expired(now, now - timedelta(days=CLOSED_RETENTION_DAYS))
        logger.info("Session cleanup removed %d session(s)", deleted)
        return deleted
