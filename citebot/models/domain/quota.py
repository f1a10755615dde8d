"""Domain models for per-identifier daily usage quotas."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class QuotaRecord(BaseModel):
    # Natural key: identifier (session id, or client address as fallback)
    identifier: str
    plan: str = "free"
    daily_queries: int = 0
    total_queries: int = 0
    quota_reset_at: datetime
    last_query_at: Optional[datetime] = None


class QuotaStatus(BaseModel):
    allowed: bool
    plan: str
    daily_used: int
    daily_limit: int          # -1 means unlimited
    remaining: int            # -1 means unlimited
    reset_at: datetime
    message: Optional[str] = None
