"""Domain models for chat sessions and their messages."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ._time import utcnow

JsonDict = Dict[str, Any]


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    CLOSED = "closed"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageCreate(BaseModel):
    # Messages are immutable once written.
    session_id: str
    role: MessageRole
    content: str
    intent: Optional[str] = None
    confidence: Optional[float] = None
    sources: List[JsonDict] = Field(default_factory=list)   # assistant only


class Message(MessageCreate):
    id: str
    created_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """
    Conversation state owned by SessionService.

    turn_count counts assistant messages, not user messages.
    messages holds the most recent window only (oldest first).
    """

    id: str
    status: SessionStatus = SessionStatus.ACTIVE
    turn_count: int = 0
    topics: List[str] = Field(default_factory=list)
    last_sources: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
