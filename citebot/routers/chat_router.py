"""
/chat router
------------
Streaming chat endpoint.

POST /chat  — Server-sent events: `delta` increments, then one terminal
              `completed`, `quota_exceeded` or `error` event

The quota identifier is the session id when given, else the client address.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from citebot.dependencies import get_pipeline
from citebot.errors import InvalidTurnInput
from citebot.models.api.chat import ChatRequest, StreamEvent
from citebot.workflows.chat_workflow import TurnPipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


async def _sse(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield event.to_sse()
    yield "data: [DONE]\n\n"


@router.post("")
async def chat(
    req: ChatRequest,
    request: Request,
    pipeline: TurnPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """
    Answer one question with cited passages, streamed.

    Input errors (empty message, malformed session id) are rejected with 400
    before anything is consumed or stored.
    """
    identifier = req.session_id or (request.client.host if request.client else "anonymous")
    try:
        events = pipeline.handle_turn(req.message, session_id=req.session_id, identifier=identifier)
    except InvalidTurnInput as e:
        raise HTTPException(status_code=400, detail=str(e))

    return StreamingResponse(_sse(events), media_type="text/event-stream", headers=SSE_HEADERS)
