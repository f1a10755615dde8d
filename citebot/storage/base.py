"""
citebot/storage/base.py
-----------------------
Store interfaces consumed by the turn pipeline.

Two implementations exist:
  SupabaseCorpusStore / SupabaseSessionStore / SupabaseQuotaStore  (supabase_store.py)
  InMemoryCorpusStore / InMemorySessionStore / InMemoryQuotaStore  (in_memory.py)
  plus SupabaseEscalationStore / InMemoryEscalationStore

All methods are synchronous; the async pipeline runs them in a worker thread.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from citebot.models.domain.chunks import SourceChunk
from citebot.models.domain.escalation import EscalationRecord
from citebot.models.domain.quota import QuotaRecord
from citebot.models.domain.session import Message, MessageCreate, Session, SessionStatus


class CorpusStore(Protocol):
    def list_chunks(self, categories: Optional[Iterable[str]] = None) -> List[SourceChunk]:
        """Full scan of the corpus, optionally restricted to some categories."""
        ...


class SessionStore(Protocol):
    def get_session(self, session_id: str, message_limit: int) -> Optional[Session]:
        """Session with its most recent `message_limit` messages, oldest first."""
        ...

    def create_session(self, expires_at: datetime) -> Session:
        ...

    def append_message(self, message: MessageCreate) -> Message:
        ...

    def record_assistant_turn(self, message: MessageCreate, last_sources: List[str], at: datetime) -> Message:
        """
        Store an assistant message, increment turn_count by one and replace
        last_sources, all or nothing.
        """
        ...

    def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        topics: Optional[List[str]] = None,
        at: Optional[datetime] = None,
    ) -> None:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...

    def delete_expired(self, now: datetime, closed_before: datetime) -> int:
        """
        Delete sessions whose expires_at < now, or that are closed and were last
        updated before closed_before. Returns the number deleted.
        """
        ...

    def list_sessions(self, status: Optional[SessionStatus], limit: int) -> List[Session]:
        """Most recently updated first. Messages are not loaded."""
        ...


class QuotaStore(Protocol):
    def get_or_create(self, identifier: str, quota_reset_at: datetime) -> QuotaRecord:
        ...

    def reset_if_stale(self, identifier: str, start_of_day: datetime) -> QuotaRecord:
        """Zero daily_queries only where quota_reset_at < start_of_day."""
        ...

    def consume(self, identifier: str, daily_limit: int, at: datetime) -> Optional[QuotaRecord]:
        """
        Atomically increment daily and total counters when the plan is unlimited
        (daily_limit < 0) or daily_queries < daily_limit. Returns the updated
        record, or None when the limit is reached.
        """
        ...

    def set_plan(self, identifier: str, plan: str, quota_reset_at: datetime) -> QuotaRecord:
        ...

    def get(self, identifier: str) -> Optional[QuotaRecord]:
        ...

    def list_records(self) -> List[QuotaRecord]:
        ...


class EscalationStore(Protocol):
    def save(self, record: EscalationRecord) -> EscalationRecord:
        ...

    def list_recent(self, limit: int) -> List[EscalationRecord]:
        """Most recent first."""
        ...
