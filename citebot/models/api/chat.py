"""Pydantic models for the /chat router and the turn pipeline's event stream."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from citebot.models.domain._time import utcnow
from citebot.models.domain.quota import QuotaStatus

API_VERSION = "1.0.0"


class ChatRequest(BaseModel):
    message: str
    session_id: Optional[str] = None


class SourceReference(BaseModel):
    id: str
    score: float
    snippet: str
    reference: str
    source_type: str


class ResponseMetadata(BaseModel):
    processing_time_ms: int = 0
    sources_searched: int = 0
    sources_selected: int = 0
    sources_used: int = 0
    keywords: List[str] = Field(default_factory=list)
    reranked: bool = False
    model: Optional[str] = None
    api_version: str = API_VERSION
    timestamp: datetime = Field(default_factory=utcnow)


class ChatResult(BaseModel):
    text: str
    citations: List[SourceReference] = Field(default_factory=list)
    intent: str
    confidence: float
    session_id: str
    escalate: bool = False
    actions: List[str] = Field(default_factory=list)
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class StreamEvent(BaseModel):
    """
    One event of a turn stream.

    `delta` events carry answer increments in order. Exactly one terminal
    event ends the stream: `completed` (with `result`), `quota_exceeded`
    (with `quota`) or `error` (with `error` and `retryable`).
    """
    type: Literal["delta", "completed", "quota_exceeded", "error"]
    content: Optional[str] = None
    result: Optional[ChatResult] = None
    quota: Optional[QuotaStatus] = None
    error: Optional[str] = None
    retryable: bool = False

    @property
    def terminal(self) -> bool:
        return self.type != "delta"

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"

    @classmethod
    def delta(cls, content: str) -> "StreamEvent":
        return cls(type="delta", content=content)

    @classmethod
    def completed(cls, result: ChatResult) -> "StreamEvent":
        return cls(type="completed", result=result)

    @classmethod
    def failed(cls, error: str, retryable: bool = False) -> "StreamEvent":
        return cls(type="error", error=error, retryable=retryable)

    @classmethod
    def quota_exceeded(cls, quota: QuotaStatus) -> "StreamEvent":
        return cls(type="quota_exceeded", quota=quota)


def rank_score(rank: int) -> float:
    """1.0 for the first selected passage, 0.1 less for each one after it."""
    return round(max(0.0, 1.0 - rank * 0.1), 2)


def to_source_reference(chunk: Any, rank: int = 0, snippet_chars: int = 200) -> SourceReference:
    return SourceReference(
        id=chunk.id,
        score=rank_score(rank),
        snippet=chunk.content[:snippet_chars],
        reference=chunk.reference,
        source_type=chunk.source,
    )


def citation_payload(citations: List[SourceReference]) -> List[Dict[str, Any]]:
    return [c.model_dump() for c in citations]
