"""Pydantic models for the /admin router."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str             # "ok" | "degraded"
    storage: str            # "supabase" | "memory"
    store: bool
    openai: bool
    corpus_size: Optional[int] = None
    detail: Optional[str] = None


class PlanUpdateRequest(BaseModel):
    plan: str               # free | essential | premium | institutional


class PlanStats(BaseModel):
    plan: str
    count: int
    total_queries: int
    daily_queries: int


class QuotaStatsResponse(BaseModel):
    total_users: int
    active_today: int
    by_plan: List[PlanStats]
