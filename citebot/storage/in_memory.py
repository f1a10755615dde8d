"""Process-local store implementations, used by tests and CITEBOT_STORAGE=memory."""
from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from citebot.models.domain._time import utcnow
from citebot.models.domain.chunks import SourceChunk
from citebot.models.domain.escalation import EscalationRecord
from citebot.models.domain.quota import QuotaRecord
from citebot.models.domain.session import Message, MessageCreate, Session, SessionStatus


class InMemoryCorpusStore:
    def __init__(self, chunks: Optional[Iterable[SourceChunk]] = None) -> None:
        self.chunks: List[SourceChunk] = list(chunks or [])

    def list_chunks(self, categories: Optional[Iterable[str]] = None) -> List[SourceChunk]:
        if categories is None:
            return list(self.chunks)
        wanted = set(categories)
        return [c for c in self.chunks if c.source in wanted]


class InMemorySessionStore:
    """Sessions and messages keyed by session id. Messages are kept in insertion order."""

    def __init__(self) -> None:
        self.sessions: Dict[str, Session] = {}
        self.messages: Dict[str, List[Message]] = {}
        self._lock = threading.Lock()

    def get_session(self, session_id: str, message_limit: int) -> Optional[Session]:
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            recent = self.messages.get(session_id, [])[-message_limit:]
            return session.model_copy(update={"messages": list(recent)}, deep=True)

    def create_session(self, expires_at: datetime) -> Session:
        now = utcnow()
        session = Session(
            id=str(uuid.uuid4()),
            status=SessionStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        with self._lock:
            self.sessions[session.id] = session
            self.messages[session.id] = []
        return session.model_copy(deep=True)

    def append_message(self, message: MessageCreate) -> Message:
        row = Message(id=str(uuid.uuid4()), **message.model_dump())
        with self._lock:
            if message.session_id not in self.sessions:
                raise KeyError(f"Unknown session {message.session_id}")
            self.messages[message.session_id].append(row)
        return row

    def record_assistant_turn(self, message: MessageCreate, last_sources: List[str], at: datetime) -> Message:
        row = Message(id=str(uuid.uuid4()), **message.model_dump())
        with self._lock:
            session = self.sessions[message.session_id]
            self.messages[message.session_id].append(row)
            session.turn_count += 1
            session.last_sources = list(last_sources)
            session.updated_at = at
        return row

    def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        topics: Optional[List[str]] = None,
        at: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            session = self.sessions[session_id]
            if status is not None:
                session.status = status
            if topics is not None:
                session.topics = list(topics)
            session.updated_at = at or utcnow()

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            self.messages.pop(session_id, None)
            return self.sessions.pop(session_id, None) is not None

    def delete_expired(self, now: datetime, closed_before: datetime) -> int:
        with self._lock:
            doomed = [
                sid for sid, s in self.sessions.items()
                if (s.expires_at is not None and s.expires_at < now)
                or (s.status == SessionStatus.CLOSED and s.updated_at < closed_before)
            ]
            for sid in doomed:
                self.sessions.pop(sid, None)
                self.messages.pop(sid, None)
            return len(doomed)

    def list_sessions(self, status: Optional[SessionStatus], limit: int) -> List[Session]:
        with self._lock:
            rows = [
                s.model_copy(deep=True) for s in self.sessions.values()
                if status is None or s.status == status
            ]
        rows.sort(key=lambda s: s.updated_at, reverse=True)
        return rows[:limit]


class InMemoryQuotaStore:
    """Quota records behind one lock, so consume() is a single atomic step."""

    def __init__(self) -> None:
        self.records: Dict[str, QuotaRecord] = {}
        self._lock = threading.Lock()

    def get_or_create(self, identifier: str, quota_reset_at: datetime) -> QuotaRecord:
        with self._lock:
            record = self.records.get(identifier)
            if record is None:
                record = QuotaRecord(identifier=identifier, quota_reset_at=quota_reset_at)
                self.records[identifier] = record
            return record.model_copy()

    def reset_if_stale(self, identifier: str, start_of_day: datetime) -> QuotaRecord:
        with self._lock:
            record = self.records[identifier]
            if record.quota_reset_at < start_of_day:
                record.daily_queries = 0
                record.quota_reset_at = start_of_day
            return record.model_copy()

    def consume(self, identifier: str, daily_limit: int, at: datetime) -> Optional[QuotaRecord]:
        with self._lock:
            record = self.records[identifier]
            if daily_limit >= 0 and record.daily_queries >= daily_limit:
                return None
            record.daily_queries += 1
            record.total_queries += 1
            record.last_query_at = at
            return record.model_copy()

    def set_plan(self, identifier: str, plan: str, quota_reset_at: datetime) -> QuotaRecord:
        with self._lock:
            record = self.records.get(identifier)
            if record is None:
                record = QuotaRecord(identifier=identifier, plan=plan, quota_reset_at=quota_reset_at)
                self.records[identifier] = record
            else:
                record.plan = plan
            return record.model_copy()

    def get(self, identifier: str) -> Optional[QuotaRecord]:
        with self._lock:
            record = self.records.get(identifier)
            return record.model_copy() if record else None

    def list_records(self) -> List[QuotaRecord]:
        with self._lock:
            return [r.model_copy() for r in self.records.values()]


class InMemoryEscalationStore:
    def __init__(self) -> None:
        self.records: List[EscalationRecord] = []
        self._lock = threading.Lock()

    def save(self, record: EscalationRecord) -> EscalationRecord:
        with self._lock:
            self.records.append(record.model_copy())
        return record

    def list_recent(self, limit: int) -> List[EscalationRecord]:
        with self._lock:
            rows = [r.model_copy() for r in self.records]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[:limit]
