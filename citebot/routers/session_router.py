"""
/session router
---------------
Conversation reads and lifecycle for dashboards.

GET    /session              — Most recent sessions (default: active)
GET    /session/{id}         — Snapshot with messages and average confidence
PATCH  /session/{id}         — Status change (escalated, closed)
DELETE /session/{id}         — Delete a session and its messages
POST   /session/cleanup      — Delete expired sessions and old closed ones
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from citebot.dependencies import get_pipeline, get_session_service
from citebot.errors import InvalidStatusTransition, SessionNotFoundError, SessionUnavailableError
from citebot.models.api.session import (
    CleanupResponse,
    SessionListResponse,
    SessionSnapshot,
    SessionSummary,
    StatusUpdateRequest,
)
from citebot.models.domain.session import SessionStatus
from citebot.services.session_service import SessionService
from citebot.workflows.chat_workflow import TurnPipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=SessionListResponse)
def list_sessions(
    status: Optional[SessionStatus] = Query(default=SessionStatus.ACTIVE),
    limit: int = Query(default=50, ge=1, le=500),
    svc: SessionService = Depends(get_session_service),
) -> SessionListResponse:
    sessions = svc.list_sessions(status, limit)
    return SessionListResponse(
        sessions=[
            SessionSummary(
                session_id=s.id,
                status=s.status.value,
                turn_count=s.turn_count,
                topics=s.topics,
                updated_at=s.updated_at,
            )
            for s in sessions
        ],
        count=len(sessions),
    )


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup(svc: SessionService = Depends(get_session_service)) -> CleanupResponse:
    return CleanupResponse(deleted=svc.cleanup_expired_sessions())


@router.get("/{session_id}", response_model=SessionSnapshot)
def get_session(
    session_id: str,
    pipeline: TurnPipeline = Depends(get_pipeline),
) -> SessionSnapshot:
    try:
        snapshot = pipeline.get_session_snapshot(session_id)
    except SessionUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Session non trouvée")
    return SessionSnapshot(**snapshot)


@router.patch("/{session_id}", response_model=SessionSummary)
def update_status(
    session_id: str,
    req: StatusUpdateRequest,
    svc: SessionService = Depends(get_session_service),
) -> SessionSummary:
    try:
        session = svc.update_status(session_id, req.status)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session non trouvée")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SessionUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return SessionSummary(
        session_id=session.id,
        status=session.status.value,
        turn_count=session.turn_count,
        topics=session.topics,
        updated_at=session.updated_at,
    )


@router.delete("/{session_id}")
def delete_session(
    session_id: str,
    svc: SessionService = Depends(get_session_service),
) -> dict:
    if not svc.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session non trouvée")
    logger.info("Deleted session %s", session_id)
    return {"deleted": True, "session_id": session_id}
