"""
citebot/services/escalation_service.py
--------------------------------------
Explicit human hand-off for a conversation.

The turn pipeline only *suggests* escalation (action "human_handoff"). This
service performs it when the caller asks: the session moves to `escalated`,
a transcript excerpt is stored with the contact details, and an optional
webhook is notified.

A webhook failure is logged and reported as `notified=False`; the hand-off
itself still stands.

Import
------
    from citebot.services.escalation_service import EscalationService

    svc = EscalationService(session_service, escalation_store, webhook_url="https://...")
    record = svc.escalate(session_id, reason="Question sur l'héritage", urgency="high")
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import httpx

from citebot.errors import SessionNotFoundError
from citebot.models.domain.escalation import EscalationRecord
from citebot.models.domain.session import MessageRole, Session, SessionStatus
from citebot.processing.text import truncate
from citebot.services.session_service import SessionService
from citebot.storage.base import EscalationStore

logger = logging.getLogger(__name__)

MIN_REASON_CHARS = 10
TRANSCRIPT_MESSAGES = 10
TRANSCRIPT_CHARS = 200
WEBHOOK_TIMEOUT = 10.0

URGENCY_LABELS = {"low": "Faible", "medium": "Moyenne", "high": "Élevée"}


def build_transcript(session: Session) -> str:
    lines = [
        f"[{m.role.value.upper()}]: {truncate(m.content, TRANSCRIPT_CHARS)}"
        for m in session.messages[-TRANSCRIPT_MESSAGES:]
    ]
    return "\n\n".join(lines) or "Aucun message dans cette session"


class WebhookNotifier:
    """Posts hand-off requests to an HTTP endpoint (Slack, e-mail relay, ticketing)."""

    def __init__(self, url: str = "", timeout: float = WEBHOOK_TIMEOUT):
        self.url = url
        self.timeout = timeout
        if not self.url:
            logger.warning("ESCALATION_WEBHOOK_URL is not set. Hand-offs will not be notified.")

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    def notify(self, payload: Dict[str, Any]) -> bool:
        if not self.is_configured:
            return False
        try:
            resp = httpx.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except Exception as e:
            logger.warning("Escalation webhook failed for session %s: %s", payload.get("session_id"), e)
            return False
        return True


class EscalationService:
    def __init__(
        self,
        sessions: SessionService,
        store: EscalationStore,
        notifier: Optional[WebhookNotifier] = None,
        webhook_url: str = "",
    ):
        self.sessions = sessions
        self.store = store
        self.notifier = notifier if notifier is not None else WebhookNotifier(webhook_url)

    def escalate(
        self,
        session_id: str,
        reason: str,
        urgency: str = "medium",
        user_name: Optional[str] = None,
        user_email: Optional[str] = None,
        user_phone: Optional[str] = None,
        preferred_contact: str = "email",
    ) -> EscalationRecord:
        """
        Hand the session to a human.

        Raises ValueError for a reason shorter than 10 characters,
        SessionNotFoundError for an unknown session and InvalidStatusTransition
        for a closed one.
        """
        reason = (reason or "").strip()
        if len(reason) < MIN_REASON_CHARS:
            raise ValueError(f"Raison requise (minimum {MIN_REASON_CHARS} caractères)")

        session = self.sessions.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self.sessions.update_status(session_id, SessionStatus.ESCALATED)

        record = EscalationRecord(
            escalation_id=f"esc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}",
            session_id=session_id,
            reason=reason,
            urgency=urgency,
            user_name=user_name,
            user_email=user_email,
            user_phone=user_phone,
            preferred_contact=preferred_contact,
            topics=list(session.topics),
            turn_count=session.turn_count,
            transcript=build_transcript(session),
        )
        record.notified = self.notifier.notify(self._payload(record, session))
        self.store.save(record)

        logger.info(
            "Escalated session %s as %s (urgency=%s, turns=%d, notified=%s)",
            session_id, record.escalation_id, urgency, session.turn_count, record.notified,
        )
        return record

    def list_escalations(self, limit: int = 50) -> List[EscalationRecord]:
        return self.store.list_recent(limit)

    @staticmethod
    def _payload(record: EscalationRecord, session: Session) -> Dict[str, Any]:
        user_turns = sum(1 for m in session.messages if m.role == MessageRole.USER)
        who = record.user_name or "Utilisateur anonyme"
        return {
            "escalation_id": record.escalation_id,
            "session_id": record.session_id,
            "subject": f"[{URGENCY_LABELS.get(record.urgency, record.urgency)}] Demande d'escalade - {who}",
            "urgency": record.urgency,
            "reason": record.reason,
            "contact": {
                "name": record.user_name,
                "email": record.user_email,
                "phone": record.user_phone,
                "preferred": record.preferred_contact,
            },
            "topics": record.topics,
            "turn_count": record.turn_count,
            "user_messages": user_turns,
            "transcript": record.transcript,
            "created_at": record.created_at.isoformat(),
        }
