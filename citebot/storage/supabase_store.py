"""
citebot/storage/supabase_store.py
---------------------------------
Supabase-backed stores for the corpus, chat sessions, usage quotas and
human hand-off requests.

Tables
------
  document_chunks  — id, content, source, reference
  chat_sessions    — id, status, turn_count, topics, last_sources,
                     created_at, updated_at, expires_at
  chat_messages    — id, session_id, role, content, intent, confidence,
                     sources, created_at
  usage_quotas     — identifier, plan, daily_queries, total_queries,
                     quota_reset_at, last_query_at
  escalations      — escalation_id, session_id, reason, urgency, contact
                     fields, topics, turn_count, transcript, notified,
                     created_at
  system_metrics   — name, value, tags, created_at (metrics_buffer.py)

SQL RPCs required
-----------------
  consume_quota          — sql/quota_rpc.sql (conditional increment)
  record_assistant_turn  — sql/quota_rpc.sql (message insert + turn_count + 1)
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from citebot.models.domain.chunks import SourceChunk
from citebot.models.domain.escalation import EscalationRecord
from citebot.models.domain.quota import QuotaRecord
from citebot.models.domain.session import Message, MessageCreate, Session, SessionStatus

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

_PAGE_SIZE = 1000


def _session_from_row(row: JsonDict, messages: Optional[List[JsonDict]] = None) -> Session:
    return Session(
        id=row["id"],
        status=row.get("status") or SessionStatus.ACTIVE,
        turn_count=row.get("turn_count") or 0,
        topics=row.get("topics") or [],
        last_sources=row.get("last_sources") or [],
        messages=[Message(**m) for m in (messages or [])],
        created_at=row["created_at"],
        updated_at=row.get("updated_at") or row["created_at"],
        expires_at=row.get("expires_at"),
    )


class SupabaseCorpusStore:
    def __init__(self, supabase: Client):
        self.sb = supabase

    def list_chunks(self, categories: Optional[Iterable[str]] = None) -> List[SourceChunk]:
        """Page through document_chunks; PostgREST caps a single response."""
        rows: List[JsonDict] = []
        offset = 0
        wanted = list(categories) if categories is not None else None
        while True:
            q = self.sb.table("document_chunks").select("id, content, source, reference")
            if wanted is not None:
                q = q.in_("source", wanted)
            res = q.order("id").range(offset, offset + _PAGE_SIZE - 1).execute()
            page = res.data or []
            rows.extend(page)
            if len(page) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE
        return [SourceChunk(**r) for r in rows]


class SupabaseSessionStore:
    def __init__(self, supabase: Client):
        self.sb = supabase

    def get_session(self, session_id: str, message_limit: int) -> Optional[Session]:
        res = (
            self.sb.table("chat_sessions")
            .select("*")
            .eq("id", session_id)
            .limit(1)
            .execute()
        )
        if not res.data:
            return None
        msgs = (
            self.sb.table("chat_messages")
            .select("*")
            .eq("session_id", session_id)
            .order("created_at", desc=True)
            .limit(message_limit)
            .execute()
        )
        return _session_from_row(res.data[0], list(reversed(msgs.data or [])))

    def create_session(self, expires_at: datetime) -> Session:
        res = (
            self.sb.table("chat_sessions")
            .insert({
                "status": SessionStatus.ACTIVE.value,
                "turn_count": 0,
                "topics": [],
                "last_sources": [],
                "expires_at": expires_at.isoformat(),
            })
            .execute()
        )
        return _session_from_row(res.data[0])

    def append_message(self, message: MessageCreate) -> Message:
        res = (
            self.sb.table("chat_messages")
            .insert(message.model_dump(mode="json"))
            .execute()
        )
        return Message(**res.data[0])

    def record_assistant_turn(self, message: MessageCreate, last_sources: List[str], at: datetime) -> Message:
        res = self.sb.rpc(
            "record_assistant_turn",
            {
                "p_message": message.model_dump(mode="json"),
                "p_last_sources": last_sources,
                "p_updated_at": at.isoformat(),
            },
        ).execute()
        row = res.data[0] if isinstance(res.data, list) else res.data
        return Message(**row)

    def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        topics: Optional[List[str]] = None,
        at: Optional[datetime] = None,
    ) -> None:
        patch: JsonDict = {}
        if status is not None:
            patch["status"] = SessionStatus(status).value
        if topics is not None:
            patch["topics"] = topics
        if at is not None:
            patch["updated_at"] = at.isoformat()
        if not patch:
            return
        self.sb.table("chat_sessions").update(patch).eq("id", session_id).execute()

    def delete_session(self, session_id: str) -> bool:
        # chat_messages rows cascade on delete
        res = self.sb.table("chat_sessions").delete().eq("id", session_id).execute()
        return len(res.data or []) > 0

    def delete_expired(self, now: datetime, closed_before: datetime) -> int:
        expired = (
            self.sb.table("chat_sessions")
            .delete()
            .lt("expires_at", now.isoformat())
            .execute()
        )
        stale_closed = (
            self.sb.table("chat_sessions")
            .delete()
            .eq("status", SessionStatus.CLOSED.value)
            .lt("updated_at", closed_before.isoformat())
            .execute()
        )
        return len(expired.data or []) + len(stale_closed.data or [])

    def list_sessions(self, status: Optional[SessionStatus], limit: int) -> List[Session]:
        q = self.sb.table("chat_sessions").select("*")
        if status is not None:
            q = q.eq("status", SessionStatus(status).value)
        res = q.order("updated_at", desc=True).limit(limit).execute()
        return [_session_from_row(r) for r in (res.data or [])]


class SupabaseQuotaStore:
    def __init__(self, supabase: Client):
        self.sb = supabase

    def get(self, identifier: str) -> Optional[QuotaRecord]:
        res = (
            self.sb.table("usage_quotas")
            .select("*")
            .eq("identifier", identifier)
            .limit(1)
            .execute()
        )
        return QuotaRecord(**res.data[0]) if res.data else None

    def get_or_create(self, identifier: str, quota_reset_at: datetime) -> QuotaRecord:
        # ignore_duplicates keeps an existing row untouched under concurrent creates
        self.sb.table("usage_quotas").upsert(
            {
                "identifier": identifier,
                "plan": "free",
                "daily_queries": 0,
                "total_queries": 0,
                "quota_reset_at": quota_reset_at.isoformat(),
            },
            on_conflict="identifier",
            ignore_duplicates=True,
        ).execute()
        record = self.get(identifier)
        if record is None:
            raise RuntimeError(f"Quota row for {identifier!r} missing after upsert")
        return record

    def reset_if_stale(self, identifier: str, start_of_day: datetime) -> QuotaRecord:
        (
            self.sb.table("usage_quotas")
            .update({"daily_queries": 0, "quota_reset_at": start_of_day.isoformat()})
            .eq("identifier", identifier)
            .lt("quota_reset_at", start_of_day.isoformat())
            .execute()
        )
        record = self.get(identifier)
        if record is None:
            raise RuntimeError(f"Quota row for {identifier!r} disappeared")
        return record

    def consume(self, identifier: str, daily_limit: int, at: datetime) -> Optional[QuotaRecord]:
        res = self.sb.rpc(
            "consume_quota",
            {
                "p_identifier": identifier,
                "p_daily_limit": daily_limit,
                "p_at": at.isoformat(),
            },
        ).execute()
        rows = res.data or []
        return QuotaRecord(**rows[0]) if rows else None

    def set_plan(self, identifier: str, plan: str, quota_reset_at: datetime) -> QuotaRecord:
        existing = self.get(identifier)
        if existing is None:
            self.sb.table("usage_quotas").insert({
                "identifier": identifier,
                "plan": plan,
                "daily_queries": 0,
                "total_queries": 0,
                "quota_reset_at": quota_reset_at.isoformat(),
            }).execute()
        else:
            self.sb.table("usage_quotas").update({"plan": plan}).eq("identifier", identifier).execute()
        record = self.get(identifier)
        if record is None:
            raise RuntimeError(f"Quota row for {identifier!r} missing after plan update")
        return record

    def list_records(self) -> List[QuotaRecord]:
        res = self.sb.table("usage_quotas").select("*").execute()
        return [QuotaRecord(**r) for r in (res.data or [])]


class SupabaseEscalationStore:
    def __init__(self, supabase: Client):
        self.sb = supabase

    def save(self, record: EscalationRecord) -> EscalationRecord:
        self.sb.table("escalations").insert(record.model_dump(mode="json")).execute()
        return record

    def list_recent(self, limit: int) -> List[EscalationRecord]:
        res = (
            self.sb.table("escalations")
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [EscalationRecord(**r) for r in (res.data or [])]
