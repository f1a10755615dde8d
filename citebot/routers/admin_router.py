"""
/admin router
-------------
Operational endpoints: health and usage quotas.

GET  /admin/health                 — Store reachable, corpus size, OpenAI key present
GET  /admin/quota/{identifier}     — Current quota without consuming a question
PUT  /admin/quota/{identifier}     — Change the plan of an identifier
GET  /admin/quota-stats            — Totals per plan, identifiers active today
"""
from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends, HTTPException

from citebot.dependencies import Stores, get_quota_service, get_stores
from citebot.models.api.admin import (
    HealthResponse,
    PlanStats,
    PlanUpdateRequest,
    QuotaStatsResponse,
)
from citebot.models.domain.quota import QuotaStatus
from citebot.services.quota_service import QuotaService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
def health(stores: Stores = Depends(get_stores)) -> HealthResponse:
    """
    Liveness + dependency check.

    Verifies:
      - the corpus store answers a full read
      - OPENAI_API_KEY is present in environment (no API call made)
    """
    store_ok = False
    corpus_size = None
    detail = None

    try:
        corpus_size = len(stores.corpus.list_chunks())
        store_ok = True
    except Exception as e:
        detail = f"Store unreachable: {e}"
        logger.error(detail)

    openai_ok = bool(os.environ.get("OPENAI_API_KEY"))
    if not openai_ok:
        detail = (detail or "") + " OPENAI_API_KEY missing."

    return HealthResponse(
        status="ok" if (store_ok and openai_ok) else "degraded",
        storage=stores.backend,
        store=store_ok,
        openai=openai_ok,
        corpus_size=corpus_size,
        detail=detail,
    )


@router.get("/quota/{identifier}", response_model=QuotaStatus)
def quota_status(
    identifier: str,
    svc: QuotaService = Depends(get_quota_service),
) -> QuotaStatus:
    return svc.get_status(identifier)


@router.put("/quota/{identifier}", response_model=QuotaStatus)
def update_plan(
    identifier: str,
    req: PlanUpdateRequest,
    svc: QuotaService = Depends(get_quota_service),
) -> QuotaStatus:
    try:
        svc.update_plan(identifier, req.plan)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return svc.get_status(identifier)


@router.get("/quota-stats", response_model=QuotaStatsResponse)
def quota_stats(svc: QuotaService = Depends(get_quota_service)) -> QuotaStatsResponse:
    stats = svc.get_stats()
    return QuotaStatsResponse(
        total_users=stats["total_users"],
        active_today=stats["active_today"],
        by_plan=[PlanStats(**row) for row in stats["by_plan"]],
    )
