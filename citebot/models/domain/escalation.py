"""Domain model for a human hand-off request."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ._time import utcnow


class EscalationRecord(BaseModel):
    escalation_id: str
    session_id: str
    reason: str
    urgency: str = "medium"             # low | medium | high
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    preferred_contact: str = "email"    # email | phone
    topics: List[str] = Field(default_factory=list)
    turn_count: int = 0
    transcript: str = ""
    notified: bool = False
    created_at: datetime = Field(default_factory=utcnow)
