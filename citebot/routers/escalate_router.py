"""
/escalate router
----------------
Human hand-off.

POST /escalate  — Move a session to `escalated` and notify the support team
GET  /escalate  — Most recent hand-off requests
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from citebot.dependencies import get_escalation_service
from citebot.errors import InvalidStatusTransition, SessionNotFoundError, SessionUnavailableError
from citebot.models.api.escalate import (
    EscalationListResponse,
    EscalationRequest,
    EscalationResponse,
)
from citebot.services.escalation_service import EscalationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/escalate", tags=["escalate"])


@router.post("", response_model=EscalationResponse)
def escalate(
    req: EscalationRequest,
    svc: EscalationService = Depends(get_escalation_service),
) -> EscalationResponse:
    try:
        record = svc.escalate(
            req.session_id,
            req.reason,
            urgency=req.urgency,
            user_name=req.user_name,
            user_email=req.user_email,
            user_phone=req.user_phone,
            preferred_contact=req.preferred_contact,
        )
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session non trouvée")
    except SessionUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return EscalationResponse(
        escalation_id=record.escalation_id,
        session_id=record.session_id,
        status="escalated",
        notified=record.notified,
        message="Votre demande a été transmise. Un spécialiste vous contactera prochainement.",
    )


@router.get("", response_model=EscalationListResponse)
def list_escalations(
    limit: int = Query(default=50, ge=1, le=500),
    svc: EscalationService = Depends(get_escalation_service),
) -> EscalationListResponse:
    records = svc.list_escalations(limit)
    return EscalationListResponse(escalations=records, count=len(records))
