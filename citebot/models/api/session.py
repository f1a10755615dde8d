"""Pydantic models for the /session router."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from citebot.models.domain.session import SessionStatus


class SnapshotMessage(BaseModel):
    id: str
    role: str
    content: str
    intent: Optional[str] = None
    confidence: Optional[float] = None
    created_at: datetime


class SessionSnapshot(BaseModel):
    session_id: str
    status: str
    turn_count: int
    message_count: int
    average_confidence: float
    topics: List[str] = Field(default_factory=list)
    last_sources: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    messages: List[SnapshotMessage] = Field(default_factory=list)


class SessionSummary(BaseModel):
    session_id: str
    status: str
    turn_count: int
    topics: List[str] = Field(default_factory=list)
    updated_at: datetime


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
    count: int


class StatusUpdateRequest(BaseModel):
    status: SessionStatus


class CleanupResponse(BaseModel):
    deleted: int
