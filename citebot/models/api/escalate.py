"""Pydantic models for the /escalate router."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel

from citebot.models.domain.escalation import EscalationRecord


class EscalationRequest(BaseModel):
    session_id: str
    reason: str
    urgency: Literal["low", "medium", "high"] = "medium"
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    preferred_contact: Literal["email", "phone"] = "email"


class EscalationResponse(BaseModel):
    escalation_id: str
    session_id: str
    status: str
    notified: bool
    message: str


class EscalationListResponse(BaseModel):
    escalations: List[EscalationRecord]
    count: int
